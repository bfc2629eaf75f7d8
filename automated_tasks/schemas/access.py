from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ServiceRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    service_id: str = Field(alias="serviceId")
    organisation_id: str = Field(alias="organisationId")
    user_id: str | None = Field(default=None, alias="userId")
    invitation_id: str | None = Field(default=None, alias="invitationId")
    roles: list[dict[str, Any]] = Field(default_factory=list)
    identifiers: list[dict[str, Any]] = Field(default_factory=list)
    access_granted_on: str | None = Field(default=None, alias="accessGrantedOn")
