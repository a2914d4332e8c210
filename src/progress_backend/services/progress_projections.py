import logging
import typing

from progress_backend.dynamodb.catalog_table import CatalogTable
from progress_backend.dynamodb.enrollments_table import EnrollmentsTable
from progress_backend.dynamodb.user_progress_table import UserProgressTable
from progress_backend.models.catalog_models import ModuleModel
from progress_backend.models.progress_models import (
    ContentTypeCountModel,
    EnrollmentSummaryModel,
    LearnerModuleProgressModel,
    ModuleEnrollmentStatsModel,
    ModuleItemProgressModel,
    ModuleProgressModel,
    ModuleProgressStatsModel,
    OverallProgressModel,
    StatusCountsModel,
)
from progress_backend.services.enrollment_aggregator import completion_percentage
from progress_backend.services.user_stats_ledger import UserStatsLedger
from progress_backend.utils.base_types import ModuleId, UserId
from progress_backend.utils.errors import ResourceNotFoundError
from progress_backend.utils.time_utils import round_half_up

_LOGGER = logging.getLogger(__name__)
_LOGGER.setLevel(logging.INFO)

ENROLLMENT_STATUSES = ("active", "paused", "completed", "dropped")
CONTENT_TYPES = ("video", "lab", "game", "document")


def _rate(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return round_half_up(part / whole * 100)


def _average(values: typing.Sequence[int]) -> int:
    if not values:
        return 0
    return round_half_up(sum(values) / len(values))


class ProgressProjections:
    """Read-only views assembled from progress records and enrollments. Nothing here is stored."""

    def __init__(
        self,
        progress_table: UserProgressTable,
        enrollments_table: EnrollmentsTable,
        catalog_table: CatalogTable,
        ledger: UserStatsLedger,
    ):
        self.progress_table = progress_table
        self.enrollments_table = enrollments_table
        self.catalog_table = catalog_table
        self.ledger = ledger

    def overall_progress(self, user_id: UserId) -> OverallProgressModel:
        stats = self.ledger.get_stats(user_id)
        enrollments = self.enrollments_table.list_for_user(user_id)
        records = self.progress_table.get_all_progress_for_user(user_id)

        by_status = {status: 0 for status in ENROLLMENT_STATUSES}
        for enrollment in enrollments:
            by_status[enrollment.status] += 1

        average = 0
        if enrollments:
            average = round_half_up(sum(e.progressPercentage for e in enrollments) / len(enrollments))

        return OverallProgressModel(
            userId=user_id,
            totalEnrollments=len(enrollments),
            enrollmentsByStatus=by_status,
            averageProgress=average,
            completedContent=sum(1 for r in records if r.status == "completed"),
            inProgressContent=sum(1 for r in records if r.status == "in-progress"),
            totalTimeSpent=sum(r.timeSpent for r in records),
            totalXP=stats.totalXP,
            level=stats.level,
            enrollments=[
                EnrollmentSummaryModel(
                    moduleId=e.moduleId,
                    status=e.status,
                    progressPercentage=e.progressPercentage,
                    completedSections=e.completedSections,
                    totalSections=e.totalSections,
                )
                for e in enrollments
            ],
        )

    def module_progress(self, user_id: UserId, module_id: ModuleId) -> ModuleProgressModel:
        module = self._get_module(module_id)

        items = self.catalog_table.list_active_items(module_id)
        records = {r.contentId: r for r in self.progress_table.get_progress_for_module(user_id, module_id)}
        enrollment = self.enrollments_table.get_enrollment(user_id, module_id)

        item_views: list[ModuleItemProgressModel] = []
        by_type: dict[str, ContentTypeCountModel] = {}
        for item in items:
            record = records.get(item.contentId)
            is_completed = record is not None and record.is_completed
            counts = by_type.setdefault(item.type, ContentTypeCountModel())
            counts.total += 1
            if is_completed:
                counts.completed += 1

            item_views.append(
                ModuleItemProgressModel(
                    contentId=item.contentId,
                    type=item.type,
                    section=item.section,
                    title=item.title,
                    duration=item.duration,
                    status=record.status if record else "not-started",
                    progressPercentage=record.progressPercentage if record else 0,
                    score=record.score if record else None,
                    maxScore=record.maxScore if record else None,
                    timeSpent=record.timeSpent if record else 0,
                    isCompleted=is_completed,
                )
            )

        completed_sections = sum(1 for view in item_views if view.isCompleted)
        return ModuleProgressModel(
            userId=user_id,
            moduleId=module_id,
            moduleTitle=module.title,
            enrollmentStatus=enrollment.status if enrollment and not enrollment.is_unenrolled else None,
            totalSections=len(item_views),
            completedSections=completed_sections,
            progressPercentage=completion_percentage(completed_sections, len(item_views)),
            totalTimeSpent=sum(view.timeSpent for view in item_views),
            contentTypeProgress=by_type,
            items=item_views,
        )

    def _get_module(self, module_id: ModuleId) -> ModuleModel:
        module = self.catalog_table.get_module(module_id)
        if module is None:
            raise ResourceNotFoundError("Module", module_id)
        return module

    def module_progress_stats(self, module_id: ModuleId) -> ModuleProgressStatsModel:
        module = self._get_module(module_id)
        active_item_ids = {item.contentId for item in self.catalog_table.list_active_items(module_id)}
        records = [
            r for r in self.progress_table.scan_progress_for_module(module_id) if r.contentId in active_item_ids
        ]
        enrollments = self.enrollments_table.scan_for_module(module_id)

        by_status = StatusCountsModel(
            completed=sum(1 for r in records if r.status == "completed"),
            inProgress=sum(1 for r in records if r.status == "in-progress"),
            notStarted=sum(1 for r in records if r.status == "not-started"),
        )
        completion_rates: dict[str, int] = {}
        average_time: dict[str, int] = {}
        for content_type in CONTENT_TYPES:
            of_type = [r for r in records if r.contentType == content_type]
            completion_rates[content_type] = _rate(sum(1 for r in of_type if r.is_completed), len(of_type))
            average_time[content_type] = _average([r.timeSpent for r in of_type])

        learners = []
        for enrollment in enrollments:
            own = [r for r in records if r.userId == enrollment.userId]
            learners.append(
                LearnerModuleProgressModel(
                    userId=enrollment.userId,
                    enrollmentStatus=enrollment.status,
                    enrolledAt=enrollment.enrolledAt,
                    progressPercentage=enrollment.progressPercentage,
                    completedContent=sum(1 for r in own if r.is_completed),
                    totalTimeSpent=sum(r.timeSpent for r in own),
                )
            )
        learners.sort(key=lambda learner: (-learner.progressPercentage, learner.userId))

        _LOGGER.info(f"Built progress stats for module {module_id} over {len(enrollments)} enrollments")
        return ModuleProgressStatsModel(
            moduleId=module_id,
            moduleTitle=module.title,
            totalEnrollments=len(enrollments),
            totalContent=len(active_item_ids),
            progressByStatus=by_status,
            completionRateByType=completion_rates,
            averageTimeSpentByType=average_time,
            learners=learners,
        )

    def module_enrollment_stats(self, module_id: ModuleId) -> ModuleEnrollmentStatsModel:
        module = self._get_module(module_id)
        enrollments = self.enrollments_table.scan_for_module(module_id)

        by_status = {status: 0 for status in ENROLLMENT_STATUSES}
        for enrollment in enrollments:
            by_status[enrollment.status] += 1

        return ModuleEnrollmentStatsModel(
            moduleId=module_id,
            moduleTitle=module.title,
            totalEnrollments=len(enrollments),
            enrollmentsByStatus=by_status,
            averageProgress=_average([e.progressPercentage for e in enrollments]),
            completionRate=_rate(by_status["completed"], len(enrollments)),
        )
