"""
XP amounts for completion events.

Everything here is pure: no I/O, no clocks, no tables. Swap the policy by constructing a
RewardPolicy with different tables and handing it to the services.
"""

import typing

import pydantic

from progress_backend.models.catalog_models import ModuleModel
from progress_backend.utils.aws_env_vars import get_xp_per_level
from progress_backend.utils.time_utils import round_half_up

DEFAULT_CONTENT_XP: dict[str, int] = {
    "video": 10,
    "lab": 25,
    "game": 20,
    "document": 5,
}
UNKNOWN_CONTENT_XP = 5

DEFAULT_CONTENT_DIFFICULTY_MULTIPLIERS: dict[str, float] = {
    "intermediate": 1.2,
    "advanced": 1.5,
    "expert": 2.0,
}
DEFAULT_MODULE_DIFFICULTY_MULTIPLIERS: dict[str, float] = {
    "intermediate": 1.3,
    "advanced": 1.6,
    "expert": 2.2,
}

LONG_CONTENT_MINUTES = 30
LONG_CONTENT_BONUS = 1.1

MODULE_COMPLETE_XP = 150
MODULE_ENROLL_XP = 5


class RewardPolicy(pydantic.BaseModel):
    content_xp: dict[str, int] = pydantic.Field(default_factory=lambda: dict(DEFAULT_CONTENT_XP))
    unknown_content_xp: int = UNKNOWN_CONTENT_XP
    content_difficulty_multipliers: dict[str, float] = pydantic.Field(
        default_factory=lambda: dict(DEFAULT_CONTENT_DIFFICULTY_MULTIPLIERS)
    )
    module_difficulty_multipliers: dict[str, float] = pydantic.Field(
        default_factory=lambda: dict(DEFAULT_MODULE_DIFFICULTY_MULTIPLIERS)
    )
    long_content_minutes: int = LONG_CONTENT_MINUTES
    long_content_bonus: float = LONG_CONTENT_BONUS
    module_complete_xp: int = MODULE_COMPLETE_XP
    module_enroll_xp: int = MODULE_ENROLL_XP
    xp_per_level: int = pydantic.Field(default=500, gt=0)

    model_config = pydantic.ConfigDict(frozen=True)

    @classmethod
    def from_env(cls) -> "RewardPolicy":
        return cls(xp_per_level=get_xp_per_level())

    def xp_for_content(
        self,
        content_type: str,
        module_difficulty: typing.Optional[str] = None,
        duration: typing.Optional[int] = None,
    ) -> int:
        """
        Base XP by content type, scaled by the owning module's difficulty,
        plus a bonus for content longer than `long_content_minutes`.
        """
        base_xp: float = self.content_xp.get(content_type.lower(), self.unknown_content_xp)

        if module_difficulty:
            base_xp *= self.content_difficulty_multipliers.get(module_difficulty.lower(), 1.0)

        if duration and duration > self.long_content_minutes:
            base_xp *= self.long_content_bonus

        return round_half_up(base_xp)

    def xp_for_module_completion(self, module: ModuleModel, bonus_base: typing.Optional[int] = None) -> int:
        base_xp: float = self.module_complete_xp if bonus_base is None else bonus_base
        if module.difficulty:
            base_xp *= self.module_difficulty_multipliers.get(module.difficulty.lower(), 1.0)
        return round_half_up(base_xp)

    def xp_for_enrollment(self, module: ModuleModel) -> int:
        return self.module_enroll_xp

    def level_for_xp(self, total_xp: int) -> int:
        return max(0, total_xp) // self.xp_per_level + 1
