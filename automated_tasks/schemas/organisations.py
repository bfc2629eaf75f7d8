from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

OVERDUE_REQUEST_STATUS = 2
REJECTED_REQUEST_STATUS = -1


class OrganisationSummary(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str | None = None


class OrganisationLink(BaseModel):
    """A user's or invitation's link to an organisation."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    organisation: OrganisationSummary
    invitation_id: str | None = Field(default=None, alias="invitationId")


class RequestStatus(BaseModel):
    id: int
    name: str | None = None


class OrganisationRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    org_id: str
    org_name: str | None = None
    user_id: str
    created_date: datetime
    status: RequestStatus | None = None
    reason: str | None = None


class OrganisationRequestPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    requests: list[OrganisationRequest] = Field(default_factory=list)
    page: int
    total_number_of_pages: int = Field(default=0, alias="totalNumberOfPages")
    total_number_of_records: int = Field(default=0, alias="totalNumberOfRecords")
