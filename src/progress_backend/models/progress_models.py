import typing

import pydantic

from progress_backend.utils.base_types import (
    ContentId,
    ContentType,
    EnrollmentStatus,
    IsoTimestamp,
    ModuleId,
    ProgressStatus,
    UserId,
)


class ProgressRecordModel(pydantic.BaseModel):
    """
    One learner's progress on one content item, stored in the UserProgress table.

    Table Schema:
      - PK: userId
      - SK: contentId
    """

    userId: UserId
    contentId: ContentId
    moduleId: ModuleId
    contentType: ContentType
    status: ProgressStatus = "not-started"
    progressPercentage: int = pydantic.Field(default=0, ge=0, le=100)
    score: typing.Optional[int] = pydantic.Field(default=None, ge=0)
    maxScore: typing.Optional[int] = pydantic.Field(default=None, ge=0)
    startedAt: typing.Optional[IsoTimestamp] = None
    completedAt: typing.Optional[IsoTimestamp] = None
    timeSpent: int = pydantic.Field(default=0, ge=0, description="Seconds, accumulated")
    xpAwarded: typing.Optional[int] = None
    rewardedAt: typing.Optional[IsoTimestamp] = None

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"


class CompletionEffectsModel(pydantic.BaseModel):
    """What a completion call actually changed; zeros and empty lists on a repeated completion."""

    xpAwarded: int = 0
    newlyCompletedAchievements: list[str] = pydantic.Field(default_factory=list)
    moduleCompleted: bool = False
    moduleBonusXp: int = 0
    currentStreak: typing.Optional[int] = None


class ProgressRecordResponseModel(pydantic.BaseModel):
    record: ProgressRecordModel
    exists: bool = True
    alreadyStarted: typing.Optional[bool] = None
    newlyCompleted: typing.Optional[bool] = None
    effects: typing.Optional[CompletionEffectsModel] = None


class UpdateProgressInputModel(pydantic.BaseModel):
    # Range is checked by the tracker so out-of-range input surfaces as a domain validation error.
    progressPercentage: int
    timeSpent: typing.Optional[int] = pydantic.Field(default=None, ge=0)

    model_config = pydantic.ConfigDict(extra="forbid")


class CompleteContentInputModel(pydantic.BaseModel):
    score: typing.Optional[int] = None
    maxScore: typing.Optional[int] = None
    timeSpent: typing.Optional[int] = pydantic.Field(default=None, ge=0)

    model_config = pydantic.ConfigDict(extra="forbid")


class ContentTypeCountModel(pydantic.BaseModel):
    completed: int = 0
    total: int = 0


class ModuleItemProgressModel(pydantic.BaseModel):
    contentId: ContentId
    type: ContentType
    section: str
    title: str
    duration: int
    status: ProgressStatus
    progressPercentage: int
    score: typing.Optional[int] = None
    maxScore: typing.Optional[int] = None
    timeSpent: int = 0
    isCompleted: bool


class ModuleProgressModel(pydantic.BaseModel):
    userId: UserId
    moduleId: ModuleId
    moduleTitle: str
    enrollmentStatus: typing.Optional[EnrollmentStatus] = None
    totalSections: int
    completedSections: int
    progressPercentage: int
    totalTimeSpent: int
    contentTypeProgress: dict[str, ContentTypeCountModel]
    items: list[ModuleItemProgressModel]


class EnrollmentSummaryModel(pydantic.BaseModel):
    moduleId: ModuleId
    status: EnrollmentStatus
    progressPercentage: int
    completedSections: int
    totalSections: int


class OverallProgressModel(pydantic.BaseModel):
    userId: UserId
    totalEnrollments: int
    enrollmentsByStatus: dict[str, int]
    averageProgress: int
    completedContent: int
    inProgressContent: int
    totalTimeSpent: int
    totalXP: int
    level: int
    enrollments: list[EnrollmentSummaryModel]


class StatusCountsModel(pydantic.BaseModel):
    completed: int = 0
    inProgress: int = 0
    notStarted: int = 0


class LearnerModuleProgressModel(pydantic.BaseModel):
    userId: UserId
    enrollmentStatus: EnrollmentStatus
    enrolledAt: IsoTimestamp
    progressPercentage: int
    completedContent: int
    totalTimeSpent: int


class ModuleProgressStatsModel(pydantic.BaseModel):
    """
    Cross-user view of one module for admins, built from active items only.
    Rates and averages are rounded half up; learners are ordered by progress, best first.
    """

    moduleId: ModuleId
    moduleTitle: str
    totalEnrollments: int
    totalContent: int
    progressByStatus: StatusCountsModel
    completionRateByType: dict[str, int]
    averageTimeSpentByType: dict[str, int]
    learners: list[LearnerModuleProgressModel]


class ModuleEnrollmentStatsModel(pydantic.BaseModel):
    moduleId: ModuleId
    moduleTitle: str
    totalEnrollments: int
    enrollmentsByStatus: dict[str, int]
    averageProgress: int
    completionRate: int
