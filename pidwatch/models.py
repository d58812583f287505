"""
On-disk format of a supervised process's data file.

The pid is deliberately absent: the child writes its own pid file and the
supervisor always re-reads it from there.
"""

from pydantic import BaseModel, Field, field_validator


class ProcessRecord(BaseModel):
    """Serialized identity and configuration of a supervised process."""

    id: str = Field(..., description="Opaque unique id")
    type: str = Field(..., description="Process kind, used for file naming")
    name: str = Field(..., description="Command to run")
    args: list[str] = Field(default_factory=list, description="Command arguments")
    ctx: dict[str, str] = Field(default_factory=dict, description="Caller metadata")

    @field_validator("args", "ctx", mode="before")
    @classmethod
    def _none_as_empty(cls, v, info):
        # Older writers emit null for empty args/ctx
        if v is None:
            return [] if info.field_name == "args" else {}
        return v
