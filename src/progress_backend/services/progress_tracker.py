"""
Per-(user, content item) progress state machine and the completion side-effects it triggers.

Status follows the stored percentage: 0 is not-started unless the item was explicitly started,
1-99 is in-progress and 100 is completed. Completed is terminal.
"""

import logging
import typing

from progress_backend.dynamodb.catalog_table import CatalogTable
from progress_backend.dynamodb.user_progress_table import UserProgressTable
from progress_backend.models.achievement_models import CONTENT_TYPE_RESOURCES
from progress_backend.models.catalog_models import ContentItemModel
from progress_backend.models.progress_models import (
    CompletionEffectsModel,
    ProgressRecordModel,
    ProgressRecordResponseModel,
)
from progress_backend.policies.reward_policy import RewardPolicy
from progress_backend.services.achievement_evaluator import AchievementEvaluator
from progress_backend.services.enrollment_aggregator import EnrollmentAggregator
from progress_backend.services.streak_tracker import StreakTracker
from progress_backend.services.user_stats_ledger import UserStatsLedger
from progress_backend.utils.base_types import ContentId, ProgressStatus, UserId
from progress_backend.utils.errors import ConsistencyError, InvalidInputError, ResourceNotFoundError
from progress_backend.utils.time_utils import Clock, to_iso_timestamp, utc_now

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)

STREAMING_CONTENT_TYPES = frozenset({"video"})


class ProgressTracker:
    def __init__(
        self,
        progress_table: UserProgressTable,
        catalog_table: CatalogTable,
        ledger: UserStatsLedger,
        evaluator: AchievementEvaluator,
        aggregator: EnrollmentAggregator,
        streak_tracker: StreakTracker,
        reward_policy: RewardPolicy,
        video_completion_threshold: int = 90,
        clock: Clock = utc_now,
    ):
        self.progress_table = progress_table
        self.catalog_table = catalog_table
        self.ledger = ledger
        self.evaluator = evaluator
        self.aggregator = aggregator
        self.streak_tracker = streak_tracker
        self.reward_policy = reward_policy
        self.video_completion_threshold = video_completion_threshold
        self.clock = clock

    def _get_content(self, content_id: ContentId) -> ContentItemModel:
        item = self.catalog_table.get_content_item(content_id)
        # Deactivated items are out of the catalog: no new progress, XP or achievements.
        if item is None or not item.isActive:
            raise ResourceNotFoundError("Content", content_id)
        return item

    def _reload(self, user_id: UserId, content_id: ContentId) -> ProgressRecordModel:
        record = self.progress_table.get_progress(user_id, content_id)
        if record is None:
            raise ConsistencyError(f"Progress record {user_id}/{content_id} disappeared after being written")
        return record

    def get(self, user_id: UserId, content_id: ContentId) -> ProgressRecordResponseModel:
        item = self._get_content(content_id)
        record = self.progress_table.get_progress(user_id, content_id)
        if record is not None:
            return ProgressRecordResponseModel(record=record)
        return ProgressRecordResponseModel(
            record=ProgressRecordModel(
                userId=user_id,
                contentId=content_id,
                moduleId=item.moduleId,
                contentType=item.type,
            ),
            exists=False,
        )

    def start(self, user_id: UserId, content_id: ContentId) -> ProgressRecordResponseModel:
        item = self._get_content(content_id)
        self.ledger.get_user(user_id)
        started = self.progress_table.start_record(
            user_id, content_id, item.moduleId, item.type, to_iso_timestamp(self.clock())
        )
        if started is not None:
            return ProgressRecordResponseModel(record=started, alreadyStarted=False)
        return ProgressRecordResponseModel(record=self._reload(user_id, content_id), alreadyStarted=True)

    def _effective_percentage(self, item: ContentItemModel, percentage: int) -> int:
        if item.type in STREAMING_CONTENT_TYPES and percentage >= self.video_completion_threshold:
            return 100
        return percentage

    def update_progress(
        self,
        user_id: UserId,
        content_id: ContentId,
        percentage: int,
        time_spent: typing.Optional[int] = None,
    ) -> ProgressRecordResponseModel:
        """
        Sets the progress percentage. Completion side-effects run only for the call that moves the
        record into completed; later updates of a completed record only accumulate time spent.
        """
        if not 0 <= percentage <= 100:
            raise InvalidInputError(f"progressPercentage must be within 0-100 (got {percentage})")
        if time_spent is not None and time_spent < 0:
            raise InvalidInputError(f"timeSpent must not be negative (got {time_spent})")

        item = self._get_content(content_id)
        self.ledger.get_user(user_id)
        percentage = self._effective_percentage(item, percentage)
        time_delta = time_spent or 0

        existing = self.progress_table.get_progress(user_id, content_id)
        if existing is not None and existing.is_completed:
            if time_delta:
                self.progress_table.add_time_spent(user_id, content_id, time_delta)
            return ProgressRecordResponseModel(record=self._reload(user_id, content_id), newlyCompleted=False)

        status: ProgressStatus
        if percentage == 100:
            status = "completed"
        elif percentage > 0 or (existing is not None and existing.startedAt):
            status = "in-progress"
        else:
            status = "not-started"

        updated = self.progress_table.apply_percentage(
            user_id,
            content_id,
            item.moduleId,
            item.type,
            percentage,
            status,
            to_iso_timestamp(self.clock()),
            time_delta,
        )
        if updated is None:
            # A concurrent request completed it first and owns the side-effects.
            if time_delta:
                self.progress_table.add_time_spent(user_id, content_id, time_delta)
            return ProgressRecordResponseModel(record=self._reload(user_id, content_id), newlyCompleted=False)

        if not updated.is_completed:
            return ProgressRecordResponseModel(record=updated, newlyCompleted=False)

        effects = self._apply_completion_effects(user_id, item)
        return ProgressRecordResponseModel(
            record=self._reload(user_id, content_id),
            newlyCompleted=True,
            effects=effects,
        )

    def complete(
        self,
        user_id: UserId,
        content_id: ContentId,
        score: typing.Optional[int] = None,
        max_score: typing.Optional[int] = None,
        time_spent: typing.Optional[int] = None,
    ) -> ProgressRecordResponseModel:
        """
        Explicit completion. Always runs the completion side-effects; each of them is a no-op
        when it already happened, so retries are safe.
        """
        if score is not None and score < 0:
            raise InvalidInputError(f"score must not be negative (got {score})")
        if max_score is not None and max_score < 0:
            raise InvalidInputError(f"maxScore must not be negative (got {max_score})")
        if score is not None and max_score is not None and score > max_score:
            raise InvalidInputError(f"score ({score}) must not exceed maxScore ({max_score})")
        if time_spent is not None and time_spent < 0:
            raise InvalidInputError(f"timeSpent must not be negative (got {time_spent})")

        item = self._get_content(content_id)
        self.ledger.get_user(user_id)
        existing = self.progress_table.get_progress(user_id, content_id)
        was_completed = existing is not None and existing.is_completed

        self.progress_table.mark_completed(
            user_id,
            content_id,
            item.moduleId,
            item.type,
            to_iso_timestamp(self.clock()),
            score=score,
            max_score=max_score,
            time_spent_delta=time_spent or 0,
        )
        effects = self._apply_completion_effects(user_id, item)

        return ProgressRecordResponseModel(
            record=self._reload(user_id, content_id),
            newlyCompleted=not was_completed,
            effects=effects,
        )

    def _apply_completion_effects(self, user_id: UserId, item: ContentItemModel) -> CompletionEffectsModel:
        module = self.catalog_table.get_module(item.moduleId)
        xp = self.reward_policy.xp_for_content(
            item.type,
            module.difficulty if module else None,
            item.duration,
        )
        guard = self.progress_table.build_reward_guard(user_id, item.contentId, xp, to_iso_timestamp(self.clock()))
        award = self.ledger.award_xp(user_id, xp, f"content:{item.contentId}", guard)

        completed_of_type = self.progress_table.count_completed_by_type(user_id, item.type)
        newly_completed = self.evaluator.advance_metric(user_id, CONTENT_TYPE_RESOURCES[item.type], completed_of_type)
        if award.awarded:
            newly_completed.extend(self.evaluator.sync_xp(user_id))

        effects = CompletionEffectsModel(xpAwarded=award.xpAwarded, newlyCompletedAchievements=newly_completed)

        recomputed = self.aggregator.recompute(user_id, item.moduleId)
        if recomputed is not None:
            effects.moduleCompleted = recomputed.moduleCompleted
            effects.moduleBonusXp = recomputed.bonusXpAwarded
            effects.newlyCompletedAchievements.extend(recomputed.newlyCompletedAchievements)

        effects.currentStreak = self.streak_tracker.touch(user_id).currentStreak

        _LOGGER.info(
            f"Completion effects for user {user_id}, content {item.contentId}: "
            f"xp={effects.xpAwarded}, module_completed={effects.moduleCompleted}, "
            f"achievements={effects.newlyCompletedAchievements}"
        )
        return effects
