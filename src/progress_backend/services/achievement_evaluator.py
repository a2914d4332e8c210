import logging
import typing

from progress_backend.dynamodb.user_achievements_table import UserAchievementsTable
from progress_backend.models.achievement_models import (
    DEFAULT_ACHIEVEMENTS,
    AchievementDefinitionModel,
    AchievementLeaderboardEntryModel,
    AchievementResource,
    AchievementStatsModel,
    AchievementWithProgressModel,
    ListOfAchievementsResponseModel,
    UserAchievementProgressModel,
)
from progress_backend.services.user_stats_ledger import UserStatsLedger
from progress_backend.utils.base_types import AchievementSlug, UserId
from progress_backend.utils.errors import InvalidInputError, ResourceNotFoundError
from progress_backend.utils.time_utils import Clock, round_half_up, to_iso_timestamp, utc_now

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)

_CATEGORY_ORDER = {"module": 0, "lab": 1, "game": 2, "xp": 3, "general": 4}


class AchievementEvaluator:
    """
    Advances per-user achievement counters with absolute values and pays each achievement's
    reward at most once.

    Callers always pass the current count of the underlying metric ("this user has 4 completed
    labs"), never a delta, so replaying a call cannot double-count.
    """

    def __init__(
        self,
        achievements_table: UserAchievementsTable,
        ledger: UserStatsLedger,
        definitions: typing.Iterable[AchievementDefinitionModel] = DEFAULT_ACHIEVEMENTS,
        clock: Clock = utc_now,
    ):
        self.achievements_table = achievements_table
        self.ledger = ledger
        self.definitions: dict[AchievementSlug, AchievementDefinitionModel] = {d.slug: d for d in definitions}
        self.clock = clock

    def _definitions_for(self, resource: AchievementResource) -> list[AchievementDefinitionModel]:
        return sorted(
            (d for d in self.definitions.values() if d.resource == resource),
            key=lambda d: (d.target, d.order),
        )

    def _advance_definition(self, user_id: UserId, definition: AchievementDefinitionModel, value: int) -> bool:
        clamped = min(value, definition.target)
        self.achievements_table.raise_progress(user_id, definition.slug, clamped, definition.target)
        if clamped < definition.target:
            return False

        progress = self.achievements_table.get_progress(user_id, definition.slug)
        if progress is not None and progress.isCompleted:
            return False

        guard = self.achievements_table.build_completion_guard(
            user_id,
            definition.slug,
            definition.target,
            definition.rewardXp,
            to_iso_timestamp(self.clock()),
        )
        result = self.ledger.award_xp(user_id, definition.rewardXp, f"achievement:{definition.slug}", guard)
        if result.awarded:
            _LOGGER.info(f"User {user_id} completed achievement {definition.slug} (+{definition.rewardXp} XP)")
        return result.awarded

    def advance(self, user_id: UserId, slug: AchievementSlug, value: int) -> bool:
        """
        Raises the user's progress on one achievement to min(value, target).

        :return: True only for the call that completed the achievement.
        :raises ResourceNotFoundError: For an unknown slug.
        :raises InvalidInputError: For a negative value.
        """
        definition = self.definitions.get(slug)
        if definition is None:
            raise ResourceNotFoundError("Achievement", slug)
        if value < 0:
            raise InvalidInputError(f"Achievement progress must not be negative (got {value})")

        newly_completed = self._advance_definition(user_id, definition, value)
        if newly_completed and definition.rewardXp > 0:
            self.sync_xp(user_id)
        return newly_completed

    def advance_metric(self, user_id: UserId, resource: AchievementResource, value: int) -> list[AchievementSlug]:
        """
        Advances every achievement counting `resource`.

        :return: Slugs completed by this call, including XP achievements unlocked by the rewards.
        """
        if value < 0:
            raise InvalidInputError(f"Metric value must not be negative (got {value})")

        newly_completed: list[AchievementSlug] = []
        xp_credited = False
        for definition in self._definitions_for(resource):
            if self._advance_definition(user_id, definition, value):
                newly_completed.append(definition.slug)
                xp_credited = xp_credited or definition.rewardXp > 0

        if xp_credited:
            newly_completed.extend(self.sync_xp(user_id))
        return newly_completed

    def sync_xp(self, user_id: UserId) -> list[AchievementSlug]:
        """
        Brings xp_earned achievements up to the ledger's balance. Terminates because every
        reward it pays completes an achievement that cannot complete again.
        """
        return self.advance_metric(user_id, "xp_earned", self.ledger.get_total_xp(user_id))

    def list_for_user(self, user_id: UserId) -> ListOfAchievementsResponseModel:
        stored: dict[str, UserAchievementProgressModel] = {
            p.achievementSlug: p for p in self.achievements_table.list_for_user(user_id)
        }
        definitions = sorted(self.definitions.values(), key=lambda d: (_CATEGORY_ORDER.get(d.category, 99), d.order))

        achievements: list[AchievementWithProgressModel] = []
        for definition in definitions:
            progress = stored.get(definition.slug)
            current = min(progress.current, definition.target) if progress else 0
            achievements.append(
                AchievementWithProgressModel(
                    slug=definition.slug,
                    title=definition.title,
                    description=definition.description,
                    category=definition.category,
                    rewardXp=definition.rewardXp,
                    current=current,
                    target=definition.target,
                    progressPercentage=round_half_up(current / definition.target * 100),
                    isCompleted=progress.isCompleted if progress else False,
                    completedAt=progress.completedAt if progress else None,
                    earnedXp=progress.earnedXp if progress and progress.isCompleted else 0,
                )
            )

        completed = [a for a in achievements if a.isCompleted]
        stats = AchievementStatsModel(
            total=len(achievements),
            completed=len(completed),
            percentage=round_half_up(len(completed) / len(achievements) * 100) if achievements else 0,
            earnedXp=sum(a.earnedXp for a in completed),
        )
        return ListOfAchievementsResponseModel(userId=user_id, achievements=achievements, stats=stats)

    def leaderboard(self, limit: int = 10) -> list[AchievementLeaderboardEntryModel]:
        """
        Users ranked by the XP earned from completed achievements, then by completed count.
        """
        totals: dict[UserId, list[int]] = {}
        for progress in self.achievements_table.scan_completed():
            if progress.achievementSlug not in self.definitions:
                continue
            points_and_count = totals.setdefault(progress.userId, [0, 0])
            points_and_count[0] += progress.earnedXp
            points_and_count[1] += 1

        ranked = sorted(totals.items(), key=lambda entry: (-entry[1][0], -entry[1][1], entry[0]))[:limit]

        leaderboard: list[AchievementLeaderboardEntryModel] = []
        for rank, (user_id, (points, count)) in enumerate(ranked, start=1):
            user = self.ledger.users_table.get_user(user_id)
            leaderboard.append(
                AchievementLeaderboardEntryModel(
                    rank=rank,
                    userId=user_id,
                    username=user.username if user else None,
                    achievementsCount=count,
                    achievementPoints=points,
                )
            )
        return leaderboard
