import typing

import pydantic

from progress_backend.utils.base_types import ContentId, ContentType, ModuleDifficulty, ModuleId


class ModuleModel(pydantic.BaseModel):
    """
    Read-only view of a catalog module. Only the fields the reward engine needs.
    """

    moduleId: ModuleId = pydantic.Field(description="Partition Key")
    title: str = ""
    difficulty: typing.Optional[ModuleDifficulty] = None
    isActive: bool = True


class ContentItemModel(pydantic.BaseModel):
    """
    Read-only view of a catalog content item.
    """

    contentId: ContentId = pydantic.Field(description="Partition Key")
    moduleId: ModuleId = pydantic.Field(description="GSI partition key (ModuleContentIndex)")
    type: ContentType
    title: str = ""
    section: str = ""
    duration: int = pydantic.Field(default=0, ge=0, description="Minutes")
    order: int = 0
    isActive: bool = True
