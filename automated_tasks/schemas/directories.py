from pydantic import AliasChoices, BaseModel, ConfigDict, Field

ACTIVE_USER_STATUS = 1
DEACTIVATED_USER_STATUS = 0


class SafeUser(BaseModel):
    """User details returned by the directories API, without credentials."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(validation_alias=AliasChoices("id", "sub"))
    email: str
    given_name: str | None = None
    family_name: str | None = None
    status: int

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE_USER_STATUS

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.given_name, self.family_name) if part)
