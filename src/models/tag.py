from pydantic import BaseModel, ConfigDict


class TagGroup(BaseModel):
    """Named category of tags, e.g. 'Project'"""
    model_config = ConfigDict(frozen=True)

    title: str = "Untitled Tag Group"


class Tag(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str = "Untitled Tag"
    group: TagGroup | None = None
