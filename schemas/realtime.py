from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """A row change pushed to realtime subscribers."""

    model_config = ConfigDict(populate_by_name=True)

    event_type: str = Field(alias="eventType")
    table: str
    new: dict = Field(default_factory=dict)
    old: dict = Field(default_factory=dict)
    commit_timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
