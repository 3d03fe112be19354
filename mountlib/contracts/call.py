"""Wire models for a single remote method call."""
from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CallRequest(BaseModel):
    """Body of ``POST {base_path}/{method}``.

    Unknown keys are ignored.  A missing or ``null`` ``args`` entry means the
    method is called without arguments.
    """

    model_config = ConfigDict(extra="ignore")

    args: List[Any] = Field(default_factory=list)

    @field_validator("args", mode="before")
    @classmethod
    def _null_args(cls, value: Any) -> Any:
        return [] if value is None else value


class ErrorBody(BaseModel):
    """Body written with status 500 when a method raised an exception."""

    name: str
    message: str = ""
    stack: str = ""
