"""Exchange Online admin API helper focused on the IsExchangeCloudManaged flag."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterator

import msal
import requests
from requests import Response

from .config import Settings
from .errors import ExchangeApiError, MailboxNotFound
from .models import MailboxState
from .retry import call_with_retry
from .utils import parse_bool

logger = logging.getLogger(__name__)

MAILBOX_PROPERTIES = [
    "Identity",
    "DisplayName",
    "PrimarySmtpAddress",
    "UserPrincipalName",
    "IsDirSynced",
    "IsExchangeCloudManaged",
]


class ExchangeAdminClient:
    """Thin wrapper that authenticates with Exchange Online and runs mailbox cmdlets.

    Cmdlets go through the same InvokeCommand REST endpoint the
    ExchangeOnlineManagement v3 module uses, so no PowerShell host is needed.
    """

    EXO_SCOPE = ["https://outlook.office365.com/.default"]

    def __init__(self, settings: Settings, session: requests.Session | None = None) -> None:
        self.settings = settings
        self.session = session or requests.Session()
        self.auth_mode = settings.exo_auth_mode
        self.authority = settings.authority_url
        self.url = settings.invoke_command_url
        self._token_cache = None

        if self.auth_mode == "client_credentials":
            self.app = msal.ConfidentialClientApplication(
                client_id=settings.exo_client_id,
                client_credential=settings.exo_client_secret,
                authority=self.authority,
            )
        else:
            token_cache = msal.SerializableTokenCache()
            cache_path = settings.exo_token_cache
            if cache_path.exists():
                token_cache.deserialize(cache_path.read_text())
            self._token_cache = token_cache
            self.app = msal.PublicClientApplication(
                client_id=settings.exo_client_id,
                authority=self.authority,
                token_cache=token_cache,
            )

    def fetch_state(self, identity: str) -> MailboxState:
        """Read IsDirSynced and IsExchangeCloudManaged for one mailbox."""
        payload = self.invoke(
            "Get-Mailbox",
            {"Identity": identity},
            select=MAILBOX_PROPERTIES,
        )
        values = payload.get("value") or []
        if not values:
            raise MailboxNotFound(identity)
        return self._to_state(values[0], identity)

    def apply_cloud_managed(self, identity: str, value: bool) -> None:
        """Flip the Source of Authority flag on one mailbox."""
        logger.info("Setting IsExchangeCloudManaged=%s on %s", value, identity)
        self.invoke(
            "Set-Mailbox",
            {"Identity": identity, "IsExchangeCloudManaged": value},
        )

    def iter_mailboxes(self, directory_synced_only: bool = True) -> Iterator[MailboxState]:
        """Yield user mailboxes page by page, optionally only directory-synced ones.

        Each page is retried on its own; a page that keeps failing raises
        RetryExhausted.
        """
        parameters: dict[str, Any] = {
            "ResultSize": "Unlimited",
            "RecipientTypeDetails": "UserMailbox",
        }
        if directory_synced_only:
            parameters["Filter"] = "IsDirSynced -eq $true"

        url: str | None = self.url
        params: dict | None = {
            "$select": ",".join(MAILBOX_PROPERTIES),
            "$top": self.settings.exo_page_size,
        }
        body = self._command_body("Get-Mailbox", parameters)
        page = 0

        while url:
            page += 1
            logger.debug("Fetching mailbox page %s", url)
            payload = call_with_retry(
                lambda: self._post(url, body, params=params).json(),
                f"Get-Mailbox page {page}",
                self.settings.retry_policy,
            )
            for raw in payload.get("value", []):
                yield self._to_state(raw)
            url = payload.get("@odata.nextLink")
            params = None  # nextLink already carries the paging query

    def check_connection(self) -> None:
        """Fail early when the tenant cannot be reached or the token is refused."""
        self.invoke("Get-OrganizationConfig", {}, select=["Identity"])

    def invoke(
        self,
        cmdlet: str,
        parameters: dict[str, Any],
        select: list[str] | None = None,
    ) -> dict:
        params = {"$select": ",".join(select)} if select else None
        response = self._post(self.url, self._command_body(cmdlet, parameters), params=params)
        if not response.content:
            return {}
        return response.json()

    @staticmethod
    def _command_body(cmdlet: str, parameters: dict[str, Any]) -> dict:
        return {"CmdletInput": {"CmdletName": cmdlet, "Parameters": parameters}}

    def _post(self, url: str, body: dict, params: dict | None = None) -> Response:
        headers = {
            "Authorization": f"Bearer {self._acquire_token()}",
            "Content-Type": "application/json",
        }
        if self.settings.exo_anchor_mailbox:
            headers["X-AnchorMailbox"] = f"UPN:{self.settings.exo_anchor_mailbox}"
        resp = self.session.post(
            url,
            headers=headers,
            json=body,
            params=params,
            timeout=self.settings.exo_request_timeout,
        )
        if resp.status_code >= 400:
            message = self._error_message(resp)
            logger.debug("Exchange request failed (%s): %s", resp.status_code, message)
            command = body["CmdletInput"]
            if command["CmdletName"] == "Get-Mailbox" and (
                resp.status_code == 404 or "couldn't be found" in message.lower()
            ):
                raise MailboxNotFound(command["Parameters"].get("Identity", ""))
            raise ExchangeApiError(message, status_code=resp.status_code)
        return resp

    @staticmethod
    def _error_message(response: Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        error = payload.get("error") if isinstance(payload, dict) else None
        if isinstance(error, dict):
            details = error.get("details") or []
            if details and isinstance(details[0], dict) and details[0].get("message"):
                return details[0]["message"]
            return error.get("message") or error.get("code") or response.text
        return response.text

    def _acquire_token(self) -> str:
        if self.auth_mode == "client_credentials":
            return self._acquire_token_client_credentials()
        return self._acquire_token_device_flow()

    def _acquire_token_client_credentials(self) -> str:
        result = self.app.acquire_token_silent(self.EXO_SCOPE, account=None)
        if not result:
            result = self.app.acquire_token_for_client(scopes=self.EXO_SCOPE)
        if "access_token" not in result:
            raise RuntimeError(f"Unable to obtain Exchange token: {result.get('error_description')}")
        return result["access_token"]

    def _acquire_token_device_flow(self) -> str:
        accounts = self.app.get_accounts()
        result = None
        if accounts:
            result = self.app.acquire_token_silent(self.EXO_SCOPE, account=accounts[0])
        if not result:
            flow = self.app.initiate_device_flow(scopes=self.EXO_SCOPE)
            if "user_code" not in flow:
                raise RuntimeError(f"Unable to start device code flow: {flow}")
            logger.info(flow.get("message"))
            result = self.app.acquire_token_by_device_flow(flow)
        if "access_token" not in result:
            raise RuntimeError(f"Unable to obtain Exchange token: {result.get('error_description')}")
        self._persist_token_cache()
        return result["access_token"]

    def _persist_token_cache(self) -> None:
        if not self._token_cache or not self._token_cache.has_state_changed:
            return
        cache_path: Path = self.settings.exo_token_cache
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        cache_path.write_text(self._token_cache.serialize())

    @staticmethod
    def _to_state(raw: dict, identity: str | None = None) -> MailboxState:
        return MailboxState(
            identity=identity or raw.get("UserPrincipalName") or raw.get("Identity", ""),
            is_directory_synced=parse_bool(raw.get("IsDirSynced")),
            is_cloud_managed=parse_bool(raw.get("IsExchangeCloudManaged")),
            display_name=raw.get("DisplayName"),
            primary_smtp_address=raw.get("PrimarySmtpAddress"),
            user_principal_name=raw.get("UserPrincipalName"),
            raw=raw,
        )
