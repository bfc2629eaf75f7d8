"""Wrappers over the DfE Sign-in internal APIs used by the maintenance jobs."""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
from typing import Any

import httpx

from automated_tasks.core.config import Settings, require_settings
from automated_tasks.schemas.access import ServiceRecord
from automated_tasks.schemas.directories import SafeUser
from automated_tasks.schemas.organisations import OrganisationLink, OrganisationRequestPage
from automated_tasks.services.api_client import MsalApiClient, MsalAuthOptions

API_AUTH_SETTINGS = (
    "api_internal_tenant",
    "api_internal_authority_host",
    "api_internal_client_id",
    "api_internal_client_secret",
    "api_internal_resource",
)


class ApiName(str, Enum):
    ACCESS = "access"
    DIRECTORIES = "directories"
    ORGANISATIONS = "organisations"


def build_internal_client(
    settings: Settings,
    api: ApiName,
    *,
    client: httpx.AsyncClient | None = None,
) -> MsalApiClient:
    host_setting = f"api_internal_{api.value}_host"
    require_settings(settings, (host_setting, *API_AUTH_SETTINGS), "DSi internal API")

    host: str = getattr(settings, host_setting)
    base_url = host if host.lower().startswith("http") else f"https://{host}"
    return MsalApiClient(
        base_url,
        MsalAuthOptions(
            tenant=settings.api_internal_tenant or "",
            authority_host_url=settings.api_internal_authority_host or "",
            client_id=settings.api_internal_client_id or "",
            client_secret=settings.api_internal_client_secret or "",
            resource=settings.api_internal_resource or "",
        ),
        timeout_seconds=settings.api_timeout_seconds,
        client=client,
    )


class AccessApi:
    def __init__(self, client: MsalApiClient) -> None:
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> AccessApi:
        return cls(build_internal_client(settings, ApiName.ACCESS))

    async def get_invitation_services(self, invitation_id: str, correlation_id: str) -> list[ServiceRecord]:
        payload = await self.client.request("GET", f"/invitations/{invitation_id}/services", correlation_id=correlation_id)
        return [ServiceRecord.model_validate(item) for item in payload or []]

    async def get_user_services(self, user_id: str, correlation_id: str) -> list[ServiceRecord]:
        payload = await self.client.request("GET", f"/users/{user_id}/services", correlation_id=correlation_id)
        return [ServiceRecord.model_validate(item) for item in payload or []]

    async def delete_invitation_service(
        self,
        invitation_id: str,
        service_id: str,
        organisation_id: str,
        correlation_id: str,
    ) -> bool:
        response = await self.client.request_raw(
            "DELETE",
            f"/invitations/{invitation_id}/services/{service_id}/organisations/{organisation_id}",
            correlation_id=correlation_id,
        )
        return response.status_code == 204

    async def delete_user_service(
        self,
        user_id: str,
        service_id: str,
        organisation_id: str,
        correlation_id: str,
    ) -> bool:
        response = await self.client.request_raw(
            "DELETE",
            f"/users/{user_id}/services/{service_id}/organisations/{organisation_id}",
            correlation_id=correlation_id,
        )
        return response.status_code == 204


class DirectoriesApi:
    def __init__(self, client: MsalApiClient) -> None:
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> DirectoriesApi:
        return cls(build_internal_client(settings, ApiName.DIRECTORIES))

    async def deactivate_user(self, user_id: str, reason: str, correlation_id: str) -> bool:
        response = await self.client.request_raw(
            "POST",
            f"/users/{user_id}/deactivate",
            correlation_id=correlation_id,
            json_body={"reason": reason},
        )
        return response.text.strip() == "true"

    async def delete_user_code(self, user_id: str, correlation_id: str) -> bool:
        response = await self.client.request_raw("DELETE", f"/userCodes/{user_id}", correlation_id=correlation_id)
        return response.status_code == 200

    async def get_users_by_ids(self, user_ids: Sequence[str], correlation_id: str) -> list[SafeUser]:
        if not user_ids:
            raise ValueError("get_users_by_ids must be called with at least one user ID")
        payload = await self.client.request(
            "POST",
            "/users/by-ids",
            correlation_id=correlation_id,
            json_body={"ids": ",".join(user_ids)},
        )
        return [SafeUser.model_validate(item) for item in payload or []]


class OrganisationsApi:
    def __init__(self, client: MsalApiClient) -> None:
        self.client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> OrganisationsApi:
        return cls(build_internal_client(settings, ApiName.ORGANISATIONS))

    async def get_invitation_organisations(self, invitation_id: str, correlation_id: str) -> list[OrganisationLink]:
        payload = await self.client.request("GET", f"/invitations/v2/{invitation_id}", correlation_id=correlation_id)
        return [OrganisationLink.model_validate(item) for item in payload or []]

    async def get_user_organisations(self, user_id: str, correlation_id: str) -> list[OrganisationLink]:
        payload = await self.client.request(
            "GET",
            f"/organisations/v2/associated-with-user/{user_id}",
            correlation_id=correlation_id,
        )
        return [OrganisationLink.model_validate(item) for item in payload or []]

    async def get_organisation_request_page(
        self,
        page: int,
        correlation_id: str,
        statuses: Sequence[int] = (),
    ) -> OrganisationRequestPage:
        status_query = "".join(f"&filterstatus={status}" for status in statuses)
        payload = await self.client.request(
            "GET",
            f"/organisations/requests?page={page}{status_query}",
            correlation_id=correlation_id,
        )
        if payload is None:
            return OrganisationRequestPage(requests=[], page=page)
        return OrganisationRequestPage.model_validate(payload)

    async def update_organisation_request(
        self,
        request_id: str,
        properties: dict[str, Any],
        correlation_id: str,
    ) -> bool:
        response = await self.client.request_raw(
            "PATCH",
            f"/organisations/requests/{request_id}",
            correlation_id=correlation_id,
            json_body=properties,
        )
        return response.status_code == 202

    async def delete_invitation_organisation(self, invitation_id: str, organisation_id: str, correlation_id: str) -> bool:
        response = await self.client.request_raw(
            "DELETE",
            f"/organisations/{organisation_id}/invitations/{invitation_id}",
            correlation_id=correlation_id,
        )
        return response.status_code == 204

    async def delete_user_organisation(self, user_id: str, organisation_id: str, correlation_id: str) -> bool:
        response = await self.client.request_raw(
            "DELETE",
            f"/organisations/{organisation_id}/users/{user_id}",
            correlation_id=correlation_id,
        )
        return response.status_code == 204
