import typing

import pydantic

from progress_backend.utils.base_types import EnrollmentStatus, IsoTimestamp, ModuleId, UserId


class EnrollmentModel(pydantic.BaseModel):
    """
    A learner's relationship to a module, stored in the Enrollments table.

    Table Schema:
      - PK: userId
      - SK: moduleId

    progressPercentage is always written together with the two counts it is derived from.
    Every write bumps version; recomputes only land on the version they read. Unenrolling
    sets unenrolledAt and keeps the record, so reward markers survive a later re-enroll.
    """

    userId: UserId
    moduleId: ModuleId
    status: EnrollmentStatus = "active"
    totalSections: int = pydantic.Field(default=0, ge=0)
    completedSections: int = pydantic.Field(default=0, ge=0)
    progressPercentage: int = pydantic.Field(default=0, ge=0, le=100)
    enrolledAt: IsoTimestamp
    lastAccessedAt: IsoTimestamp
    completedAt: typing.Optional[IsoTimestamp] = None
    completionBonusAwardedAt: typing.Optional[IsoTimestamp] = None
    completionBonusXp: typing.Optional[int] = None
    unenrolledAt: typing.Optional[IsoTimestamp] = None
    version: int = pydantic.Field(default=0, ge=0)

    @property
    def is_unenrolled(self) -> bool:
        return self.unenrolledAt is not None


class RecomputeResultModel(pydantic.BaseModel):
    enrollment: EnrollmentModel
    moduleCompleted: bool = False
    bonusXpAwarded: int = 0
    newlyCompletedAchievements: list[str] = pydantic.Field(default_factory=list)


class EnrollResultModel(pydantic.BaseModel):
    enrollment: EnrollmentModel
    xpAwarded: int = 0
    newlyCompletedAchievements: list[str] = pydantic.Field(default_factory=list)


class ListOfEnrollmentsResponseModel(pydantic.BaseModel):
    enrollments: list[EnrollmentModel]
