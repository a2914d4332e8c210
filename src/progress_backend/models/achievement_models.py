import typing

import pydantic

from progress_backend.utils.base_types import AchievementSlug, ContentType, IsoTimestamp, UserId

AchievementCategory = typing.Literal["module", "lab", "game", "xp", "general"]
AchievementResource = typing.Literal[
    "modules_completed",
    "labs_completed",
    "games_completed",
    "videos_completed",
    "documents_completed",
    "xp_earned",
    "enrollments_created",
]

CONTENT_TYPE_RESOURCES: dict[ContentType, AchievementResource] = {
    "video": "videos_completed",
    "lab": "labs_completed",
    "game": "games_completed",
    "document": "documents_completed",
}


class AchievementDefinitionModel(pydantic.BaseModel):
    """
    Near-static reference data describing an achievement: a target on a countable metric.
    """

    slug: AchievementSlug = pydantic.Field(pattern=r"^[a-z0-9_-]{3,50}$")
    title: str
    description: str = ""
    category: AchievementCategory
    resource: AchievementResource
    target: int = pydantic.Field(ge=1)
    rewardXp: int = pydantic.Field(ge=0, le=10000)
    order: int = 0

    model_config = pydantic.ConfigDict(frozen=True)


class UserAchievementProgressModel(pydantic.BaseModel):
    """
    Table Schema:
      - PK: userId
      - SK: achievementSlug
    """

    userId: UserId
    achievementSlug: AchievementSlug
    current: int = pydantic.Field(default=0, ge=0)
    target: int = pydantic.Field(ge=1)
    isCompleted: bool = False
    completedAt: typing.Optional[IsoTimestamp] = None
    earnedXp: int = 0


class AchievementWithProgressModel(pydantic.BaseModel):
    slug: AchievementSlug
    title: str
    description: str
    category: AchievementCategory
    rewardXp: int
    current: int
    target: int
    progressPercentage: int
    isCompleted: bool
    completedAt: typing.Optional[IsoTimestamp] = None
    earnedXp: int = 0


class AchievementStatsModel(pydantic.BaseModel):
    total: int
    completed: int
    percentage: int
    earnedXp: int


class ListOfAchievementsResponseModel(pydantic.BaseModel):
    userId: UserId
    achievements: list[AchievementWithProgressModel]
    stats: AchievementStatsModel


class AchievementLeaderboardEntryModel(pydantic.BaseModel):
    rank: int
    userId: UserId
    username: typing.Optional[str] = None
    achievementsCount: int
    achievementPoints: int


class AdvanceAchievementInputModel(pydantic.BaseModel):
    value: int

    model_config = pydantic.ConfigDict(extra="forbid")


def _definition(
    slug: str,
    title: str,
    description: str,
    category: AchievementCategory,
    resource: AchievementResource,
    target: int,
    reward_xp: int,
    order: int,
) -> AchievementDefinitionModel:
    return AchievementDefinitionModel(
        slug=AchievementSlug(slug),
        title=title,
        description=description,
        category=category,
        resource=resource,
        target=target,
        rewardXp=reward_xp,
        order=order,
    )


DEFAULT_ACHIEVEMENTS: tuple[AchievementDefinitionModel, ...] = (
    _definition("first-steps", "First Steps", "Complete your first module", "module", "modules_completed", 1, 50, 1),
    _definition("learning-streak", "Learning Streak", "Complete 3 modules", "module", "modules_completed", 3, 150, 2),
    _definition("knowledge-seeker", "Knowledge Seeker", "Complete 5 modules", "module", "modules_completed", 5, 300, 3),
    _definition("module-master", "Module Master", "Complete 10 modules", "module", "modules_completed", 10, 500, 4),
    _definition("lab-rookie", "Lab Rookie", "Complete your first lab", "lab", "labs_completed", 1, 25, 1),
    _definition("hands-on-learner", "Hands-On Learner", "Complete 5 labs", "lab", "labs_completed", 5, 100, 2),
    _definition("lab-expert", "Lab Expert", "Complete 15 labs", "lab", "labs_completed", 15, 250, 3),
    _definition("game-on", "Game On", "Complete your first game", "game", "games_completed", 1, 25, 1),
    _definition("gaming-enthusiast", "Gaming Enthusiast", "Complete 5 games", "game", "games_completed", 5, 100, 2),
    _definition("game-master", "Game Master", "Complete 10 games", "game", "games_completed", 10, 200, 3),
    _definition("xp-collector", "XP Collector", "Earn 100 XP", "xp", "xp_earned", 100, 50, 1),
    _definition("xp-hunter", "XP Hunter", "Earn 500 XP", "xp", "xp_earned", 500, 100, 2),
    _definition("xp-legend", "XP Legend", "Earn 1000 XP", "xp", "xp_earned", 1000, 200, 3),
    _definition("explorer", "Explorer", "Enroll in your first module", "general", "enrollments_created", 1, 25, 2),
)
