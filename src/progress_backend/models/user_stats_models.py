import typing

import pydantic

from progress_backend.utils.base_types import IsoDate, UserId

StreakStatus = typing.Literal["start", "active", "at_risk", "broken"]
StreakRankBy = typing.Literal["current", "longest"]


class UserStatsItemModel(pydantic.BaseModel):
    """
    The slice of the user entity this engine reads and writes, stored in the Users table.
    The user item itself is created by the authentication service.

    Table Schema:
      - PK: userId
    """

    userId: UserId = pydantic.Field(description="Partition Key")
    username: typing.Optional[str] = None
    displayName: typing.Optional[str] = None
    totalXP: int = pydantic.Field(default=0, ge=0)
    currentStreak: int = pydantic.Field(default=0, ge=0)
    longestStreak: int = pydantic.Field(default=0, ge=0)
    lastActivityDate: typing.Optional[IsoDate] = None


class XpStatsModel(pydantic.BaseModel):
    userId: UserId
    totalXP: int
    level: int
    nextLevelXP: int
    xpToNextLevel: int
    xpThisLevel: int
    progressToNext: int


class XpAwardResultModel(pydantic.BaseModel):
    awarded: bool
    xpAwarded: int
    totalXP: int
    level: int
    reason: str


class StreakStateModel(pydantic.BaseModel):
    userId: UserId
    currentStreak: int
    longestStreak: int
    lastActivityDate: typing.Optional[IsoDate] = None
    streakStatus: StreakStatus
    daysSinceLastActivity: typing.Optional[int] = None


class StreakLeaderboardEntryModel(pydantic.BaseModel):
    rank: int
    userId: UserId
    username: typing.Optional[str] = None
    displayName: typing.Optional[str] = None
    currentStreak: int
    longestStreak: int
    lastActivityDate: typing.Optional[IsoDate] = None
    streakStatus: StreakStatus
