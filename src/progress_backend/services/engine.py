import typing

from progress_backend.dynamodb.catalog_table import CatalogTable
from progress_backend.dynamodb.enrollments_table import EnrollmentsTable
from progress_backend.dynamodb.user_achievements_table import UserAchievementsTable
from progress_backend.dynamodb.user_progress_table import UserProgressTable
from progress_backend.dynamodb.users_table import UsersTable
from progress_backend.models.achievement_models import DEFAULT_ACHIEVEMENTS, AchievementDefinitionModel
from progress_backend.policies.reward_policy import RewardPolicy
from progress_backend.services.achievement_evaluator import AchievementEvaluator
from progress_backend.services.enrollment_aggregator import EnrollmentAggregator
from progress_backend.services.progress_projections import ProgressProjections
from progress_backend.services.progress_tracker import ProgressTracker
from progress_backend.services.streak_tracker import StreakTracker
from progress_backend.services.user_stats_ledger import UserStatsLedger
from progress_backend.utils.aws_env_vars import (
    get_catalog_content_table_name,
    get_catalog_modules_table_name,
    get_enrollments_table_name,
    get_user_achievements_table_name,
    get_user_progress_table_name,
    get_users_table_name,
    get_video_completion_threshold,
)
from progress_backend.utils.time_utils import Clock, utc_now


class ProgressEngine:
    """
    Wires the components together so that every completion path shares one ledger,
    one evaluator and one aggregator.
    """

    def __init__(
        self,
        catalog_table: CatalogTable,
        progress_table: UserProgressTable,
        enrollments_table: EnrollmentsTable,
        achievements_table: UserAchievementsTable,
        users_table: UsersTable,
        reward_policy: typing.Optional[RewardPolicy] = None,
        definitions: typing.Iterable[AchievementDefinitionModel] = DEFAULT_ACHIEVEMENTS,
        video_completion_threshold: int = 90,
        clock: Clock = utc_now,
    ):
        self.reward_policy = reward_policy or RewardPolicy()
        self.ledger = UserStatsLedger(users_table, self.reward_policy)
        self.evaluator = AchievementEvaluator(achievements_table, self.ledger, definitions, clock)
        self.streak_tracker = StreakTracker(users_table, clock)
        self.aggregator = EnrollmentAggregator(
            enrollments_table,
            catalog_table,
            progress_table,
            self.ledger,
            self.evaluator,
            self.reward_policy,
            clock,
        )
        self.tracker = ProgressTracker(
            progress_table,
            catalog_table,
            self.ledger,
            self.evaluator,
            self.aggregator,
            self.streak_tracker,
            self.reward_policy,
            video_completion_threshold,
            clock,
        )
        self.projections = ProgressProjections(progress_table, enrollments_table, catalog_table, self.ledger)

    @classmethod
    def from_env(cls) -> "ProgressEngine":
        return cls(
            catalog_table=CatalogTable(get_catalog_modules_table_name(), get_catalog_content_table_name()),
            progress_table=UserProgressTable(get_user_progress_table_name()),
            enrollments_table=EnrollmentsTable(get_enrollments_table_name()),
            achievements_table=UserAchievementsTable(get_user_achievements_table_name()),
            users_table=UsersTable(get_users_table_name()),
            reward_policy=RewardPolicy.from_env(),
            video_completion_threshold=get_video_completion_threshold(),
        )
