import typing

UserId = typing.NewType("UserId", str)
ContentId = typing.NewType("ContentId", str)
ModuleId = typing.NewType("ModuleId", str)
AchievementSlug = typing.NewType("AchievementSlug", str)

IsoTimestamp = typing.NewType("IsoTimestamp", str)
IsoDate = typing.NewType("IsoDate", str)

ContentType = typing.Literal["video", "lab", "game", "document"]
ProgressStatus = typing.Literal["not-started", "in-progress", "completed"]
EnrollmentStatus = typing.Literal["active", "paused", "completed", "dropped"]
ModuleDifficulty = typing.Literal["beginner", "intermediate", "advanced", "expert"]
