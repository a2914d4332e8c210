import logging
import typing

from progress_backend.dynamodb.catalog_table import CatalogTable
from progress_backend.dynamodb.enrollments_table import EnrollmentsTable
from progress_backend.dynamodb.user_progress_table import UserProgressTable
from progress_backend.models.catalog_models import ModuleModel
from progress_backend.models.enrollment_models import EnrollmentModel, EnrollResultModel, RecomputeResultModel
from progress_backend.policies.reward_policy import RewardPolicy
from progress_backend.services.achievement_evaluator import AchievementEvaluator
from progress_backend.services.user_stats_ledger import UserStatsLedger
from progress_backend.utils.base_types import EnrollmentStatus, IsoTimestamp, ModuleId, UserId
from progress_backend.utils.errors import ConsistencyError, PreconditionFailedError, ResourceNotFoundError
from progress_backend.utils.time_utils import Clock, round_half_up, to_iso_timestamp, utc_now

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)

MAX_RECOMPUTE_ATTEMPTS = 5


def completion_percentage(completed_sections: int, total_sections: int) -> int:
    if total_sections <= 0:
        return 0
    return round_half_up(completed_sections / total_sections * 100)


class EnrollmentAggregator:
    """
    Owns enrollment records. Counts and percentage are always recomputed from the catalog and
    the user's progress records, never incremented, so repeated recomputes converge.
    """

    def __init__(
        self,
        enrollments_table: EnrollmentsTable,
        catalog_table: CatalogTable,
        progress_table: UserProgressTable,
        ledger: UserStatsLedger,
        evaluator: AchievementEvaluator,
        reward_policy: RewardPolicy,
        clock: Clock = utc_now,
    ):
        self.enrollments_table = enrollments_table
        self.catalog_table = catalog_table
        self.progress_table = progress_table
        self.ledger = ledger
        self.evaluator = evaluator
        self.reward_policy = reward_policy
        self.clock = clock

    def _now(self) -> IsoTimestamp:
        return to_iso_timestamp(self.clock())

    def _get_module(self, module_id: ModuleId) -> ModuleModel:
        module = self.catalog_table.get_module(module_id)
        if module is None or not module.isActive:
            raise ResourceNotFoundError("Module", module_id)
        return module

    def get(self, user_id: UserId, module_id: ModuleId) -> EnrollmentModel:
        enrollment = self.enrollments_table.get_enrollment(user_id, module_id)
        if enrollment is None or enrollment.is_unenrolled:
            raise ResourceNotFoundError("Enrollment", module_id)
        return enrollment

    def list_for_user(self, user_id: UserId, status: typing.Optional[EnrollmentStatus] = None) -> list[EnrollmentModel]:
        return self.enrollments_table.list_for_user(user_id, status)

    def enroll(self, user_id: UserId, module_id: ModuleId) -> EnrollResultModel:
        module = self._get_module(module_id)

        existing = self.enrollments_table.get_enrollment(user_id, module_id)
        if existing is not None and not existing.is_unenrolled:
            raise PreconditionFailedError(f"Already enrolled in module {module_id}", current_state=existing.status)
        if existing is not None:
            return self._reenroll(existing)

        now = self._now()
        enrollment = EnrollmentModel(
            userId=user_id,
            moduleId=module_id,
            status="active",
            totalSections=self.catalog_table.count_active_items(module_id),
            enrolledAt=now,
            lastAccessedAt=now,
        )
        xp = self.reward_policy.xp_for_enrollment(module)
        award = self.ledger.award_xp(
            user_id,
            xp,
            f"enrollment:{module_id}",
            self.enrollments_table.build_create_enrollment_put(enrollment),
        )
        if not award.awarded:
            current = self.enrollments_table.get_enrollment(user_id, module_id)
            raise PreconditionFailedError(
                f"Already enrolled in module {module_id}",
                current_state=current.status if current else None,
            )
        _LOGGER.info(f"User {user_id} enrolled in module {module_id} with {enrollment.totalSections} sections")

        return self._after_enroll(enrollment, xp)

    def _reenroll(self, previous: EnrollmentModel) -> EnrollResultModel:
        """
        Enrollment XP is paid once per module; a re-enroll only brings the record back.
        A module whose bonus was already paid comes back completed.
        """
        status: EnrollmentStatus = "completed" if previous.completionBonusAwardedAt else "active"
        enrollment = self.enrollments_table.reactivate(
            previous.userId, previous.moduleId, status, self._now(), previous.version
        )
        if enrollment is None:
            current = self.enrollments_table.get_enrollment(previous.userId, previous.moduleId)
            raise PreconditionFailedError(
                f"Enrollment in module {previous.moduleId} changed while re-enrolling",
                current_state=current.status if current else None,
            )
        _LOGGER.info(f"User {previous.userId} re-enrolled in module {previous.moduleId} without enrollment XP")
        return self._after_enroll(enrollment, 0)

    def _after_enroll(self, enrollment: EnrollmentModel, xp: int) -> EnrollResultModel:
        user_id, module_id = enrollment.userId, enrollment.moduleId
        newly_completed = self.evaluator.advance_metric(
            user_id, "enrollments_created", self.enrollments_table.count_enrollments(user_id)
        )
        newly_completed.extend(self.evaluator.sync_xp(user_id))

        # Progress made before enrolling counts straight away.
        recomputed = self.recompute(user_id, module_id)
        if recomputed is not None:
            enrollment = recomputed.enrollment
            newly_completed.extend(recomputed.newlyCompletedAchievements)

        return EnrollResultModel(enrollment=enrollment, xpAwarded=xp, newlyCompletedAchievements=newly_completed)

    def _write_counts(self, user_id: UserId, module_id: ModuleId) -> typing.Optional[EnrollmentModel]:
        """
        Counts against the version read first, so a count taken before a concurrent write never
        lands after it. Recounts when another writer got there first.
        """
        for _ in range(MAX_RECOMPUTE_ATTEMPTS):
            current = self.enrollments_table.get_enrollment(user_id, module_id)
            if current is None or current.is_unenrolled:
                return None

            active_item_ids = {item.contentId for item in self.catalog_table.list_active_items(module_id)}
            completed_sections = sum(
                1
                for record in self.progress_table.get_progress_for_module(user_id, module_id)
                if record.is_completed and record.contentId in active_item_ids
            )
            total_sections = len(active_item_ids)
            percentage = completion_percentage(completed_sections, total_sections)

            enrollment = self.enrollments_table.update_counts(
                user_id, module_id, total_sections, completed_sections, percentage, self._now(), current.version
            )
            if enrollment is not None:
                _LOGGER.info(
                    f"Recomputed enrollment {user_id}/{module_id}: "
                    f"{completed_sections}/{total_sections} ({percentage}%)"
                )
                return enrollment

            _LOGGER.info(f"Recounting enrollment {user_id}/{module_id} after a concurrent update.")

        raise ConsistencyError(
            f"Could not recompute enrollment {user_id}/{module_id} after {MAX_RECOMPUTE_ATTEMPTS} attempts"
        )

    def recompute(self, user_id: UserId, module_id: ModuleId) -> typing.Optional[RecomputeResultModel]:
        """
        Re-derives counts and percentage for the enrollment. If the enrollment is active and now
        at 100%, the first caller to flip it to completed also receives the module bonus.

        :return: None when the user is not enrolled in the module.
        """
        enrollment = self._write_counts(user_id, module_id)
        if enrollment is None:
            return None
        if enrollment.progressPercentage < 100 or enrollment.status != "active":
            return RecomputeResultModel(enrollment=enrollment)

        module = self.catalog_table.get_module(module_id) or ModuleModel(moduleId=module_id)
        bonus_xp = self.reward_policy.xp_for_module_completion(module)
        guard = self.enrollments_table.build_completion_guard(user_id, module_id, bonus_xp, self._now())
        award = self.ledger.award_xp(user_id, bonus_xp, f"module:{module_id}", guard)
        if not award.awarded:
            refreshed = self.enrollments_table.get_enrollment(user_id, module_id)
            return RecomputeResultModel(enrollment=refreshed or enrollment)

        _LOGGER.info(f"User {user_id} completed module {module_id} (+{bonus_xp} XP)")
        newly_completed = self.evaluator.advance_metric(
            user_id, "modules_completed", self.enrollments_table.count_completed_enrollments(user_id)
        )
        newly_completed.extend(self.evaluator.sync_xp(user_id))

        return RecomputeResultModel(
            enrollment=self.enrollments_table.get_enrollment(user_id, module_id) or enrollment,
            moduleCompleted=True,
            bonusXpAwarded=bonus_xp,
            newlyCompletedAchievements=newly_completed,
        )

    def _transition(
        self,
        user_id: UserId,
        module_id: ModuleId,
        allowed_from: typing.Sequence[EnrollmentStatus],
        to_status: EnrollmentStatus,
        action: str,
    ) -> EnrollmentModel:
        updated = self.enrollments_table.transition_status(user_id, module_id, allowed_from, to_status, self._now())
        if updated is not None:
            return updated

        current = self.get(user_id, module_id)
        raise PreconditionFailedError(
            f"Cannot {action} an enrollment that is {current.status}",
            current_state=current.status,
        )

    def pause(self, user_id: UserId, module_id: ModuleId) -> EnrollmentModel:
        return self._transition(user_id, module_id, ["active"], "paused", "pause")

    def resume(self, user_id: UserId, module_id: ModuleId) -> RecomputeResultModel:
        """
        Reactivates a paused enrollment and recomputes it, which completes it if the learner
        finished the module while paused.
        """
        resumed = self._transition(user_id, module_id, ["paused"], "active", "resume")
        return self.recompute(user_id, module_id) or RecomputeResultModel(enrollment=resumed)

    def complete(self, user_id: UserId, module_id: ModuleId) -> EnrollmentModel:
        """
        Administrative override: marks the enrollment completed at 100% without a bonus.
        """
        current = self.get(user_id, module_id)
        if current.status == "completed":
            return current
        return self._transition(user_id, module_id, ["active", "paused"], "completed", "complete")

    def drop(self, user_id: UserId, module_id: ModuleId) -> EnrollmentModel:
        return self._transition(user_id, module_id, ["active", "paused"], "dropped", "drop")

    def unenroll(self, user_id: UserId, module_id: ModuleId) -> None:
        """
        Soft delete: the record stays behind with its reward markers, so enrolling again
        pays neither the enrollment XP nor the module bonus a second time.
        """
        if not self.enrollments_table.mark_unenrolled(user_id, module_id, self._now()):
            raise ResourceNotFoundError("Enrollment", module_id)
        _LOGGER.info(f"User {user_id} unenrolled from module {module_id}")
