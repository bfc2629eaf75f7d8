from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class AuditLog(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    type: str
    sub_type: str | None = Field(default=None, alias="subType")
    level: str | None = None
    application: str | None = None
    env: str | None = None
    user_id: str | None = Field(default=None, alias="userId")
    organisation_id: str | None = Field(default=None, alias="organisationid")
    meta: dict[str, Any] | None = None

    def to_message(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
