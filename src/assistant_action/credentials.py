"""Workload identity token -> scoped credential exchange.

``CredentialBroker.acquire`` returns a tagged :data:`CredentialOutcome`
instead of raising, so the caller has to handle success, a clean skip, and
failure explicitly.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol
from urllib.parse import quote

from assistant_action.config import ActionConfig
from assistant_action.errors import (
    IdentityTokenError,
    TokenExchangeError,
    WorkflowValidationSkip,
)
from assistant_action.http_utils import HttpResponse, request_json
from assistant_action.retry import RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_PERMISSIONS: dict[str, str] = {
    "contents": "write",
    "pull_requests": "write",
    "issues": "write",
}
WORKFLOW_VALIDATION_ERROR_CODE = "workflow_not_found_on_default_branch"
OIDC_REMEDIATION = (
    "Could not fetch an OIDC token. Did you remember to add "
    "`id-token: write` to your workflow permissions?"
)

Transport = Callable[..., HttpResponse]


# ---------------------------------------------------------------------------
# Outcome variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Success:
    credential: str
    source: str = "exchange"

    def __repr__(self) -> str:
        return f"Success(source={self.source!r})"


@dataclass(frozen=True, slots=True)
class Skipped:
    reason: str


@dataclass(frozen=True, slots=True)
class Failed:
    error: Exception

    @property
    def message(self) -> str:
        return str(self.error)


CredentialOutcome = Success | Skipped | Failed


# ---------------------------------------------------------------------------
# Permission overlay
# ---------------------------------------------------------------------------


def parse_additional_permissions(raw: str | None) -> dict[str, str] | None:
    """Parse newline-delimited ``scope: level`` lines into a permission overlay.

    Returns ``None`` when no well-formed line is present. Otherwise the
    defaults are merged with the parsed lines, which win on conflicts.
    """
    text = str(raw or "")
    if not text.strip():
        return None

    additional: dict[str, str] = {}
    for line in text.split("\n"):
        trimmed = line.strip()
        if not trimmed or ":" not in trimmed:
            continue
        key, _, value = trimmed.partition(":")
        key = key.strip()
        value = value.strip()
        if key and value:
            additional[key] = value

    if not additional:
        return None
    return {**DEFAULT_PERMISSIONS, **additional}


# ---------------------------------------------------------------------------
# Identity provider
# ---------------------------------------------------------------------------


class IdentityProvider(Protocol):
    def issue_token(self, audience: str) -> str: ...


class RunnerOidcProvider:
    """Request identity tokens from the CI runner's OIDC endpoint."""

    def __init__(self, request_url: str, request_token: str, *, transport: Transport | None = None) -> None:
        self.request_url = str(request_url or "").strip()
        self._request_token = str(request_token or "").strip()
        self._transport = transport

    def issue_token(self, audience: str) -> str:
        if not self.request_url or not self._request_token:
            raise IdentityTokenError(
                "ACTIONS_ID_TOKEN_REQUEST_URL / ACTIONS_ID_TOKEN_REQUEST_TOKEN are not set"
            )
        separator = "&" if "?" in self.request_url else "?"
        url = f"{self.request_url}{separator}audience={quote(audience, safe='')}"
        transport = self._transport or request_json
        response = transport(url, headers={"Authorization": f"Bearer {self._request_token}"})
        if not response.ok:
            raise IdentityTokenError(f"OIDC endpoint returned HTTP {response.status}")
        value = (response.body or {}).get("value") if isinstance(response.body, dict) else None
        if not value:
            raise IdentityTokenError("OIDC response did not contain a token value")
        return str(value)


# ---------------------------------------------------------------------------
# Broker
# ---------------------------------------------------------------------------


def _exchange_error_fields(body: Any) -> tuple[str | None, str, str]:
    """Return ``(error_code, error.message, top-level message)`` from an error body."""
    if not isinstance(body, dict):
        return None, "", ""
    error = body.get("error") if isinstance(body.get("error"), dict) else {}
    details = error.get("details") if isinstance(error.get("details"), dict) else {}
    code = details.get("error_code")
    return (
        str(code) if code else None,
        str(error.get("message") or "").strip(),
        str(body.get("message") or "").strip(),
    )


class CredentialBroker:
    """Obtain the scoped credential used for every repository operation.

    Parameters
    ----------
    config:
        Run configuration (override token, overlay, exchange URL, retries).
    identity_provider:
        Issues the workload identity token; defaults to the runner OIDC
        endpoint described by *config*.
    transport:
        HTTP function with the signature of :func:`request_json`.
    retry_policy:
        Applied separately to token issuance and to the exchange.
    """

    def __init__(
        self,
        config: ActionConfig,
        *,
        identity_provider: IdentityProvider | None = None,
        transport: Transport | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self.config = config
        self._transport = transport
        self.identity_provider = identity_provider or RunnerOidcProvider(
            config.oidc_request_url, config.oidc_request_token, transport=transport
        )
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=config.retry_max_attempts,
            base_delay=config.retry_base_delay,
        )
        self._sleep = sleep

    def _retry(self, operation: Callable[[], str], description: str) -> str:
        if self._sleep is None:
            return self.retry_policy.call(operation, description=description)
        return self.retry_policy.call(operation, description=description, sleep=self._sleep)

    def fetch_identity_token(self) -> str:
        """Ask the identity provider for one token; errors carry the remediation hint."""
        try:
            return self.identity_provider.issue_token(self.config.oidc_audience)
        except Exception as exc:
            logger.error("Failed to get OIDC token: %s", exc)
            raise IdentityTokenError(OIDC_REMEDIATION) from exc

    def exchange(self, identity_token: str, permissions: dict[str, str] | None = None) -> str:
        """POST the identity token to the exchange endpoint and return the credential."""
        payload = {"permissions": permissions} if permissions else None
        transport = self._transport or request_json
        response = transport(
            self.config.token_exchange_url,
            method="POST",
            headers={"Authorization": f"Bearer {identity_token}"},
            payload=payload,
        )

        if not response.ok:
            code, error_message, top_message = _exchange_error_fields(response.body)
            if code == WORKFLOW_VALIDATION_ERROR_CODE:
                raise WorkflowValidationSkip(
                    top_message or error_message or "Workflow validation failed"
                )
            message = error_message or "Unknown error"
            logger.error("App token exchange failed: HTTP %s - %s", response.status, message)
            raise TokenExchangeError(message, status=response.status)

        body = response.body if isinstance(response.body, dict) else {}
        credential = body.get("token") or body.get("app_token")
        if not credential:
            raise TokenExchangeError("App token not found in response", status=response.status)
        return str(credential)

    def acquire(self) -> CredentialOutcome:
        """Resolve the credential: override, or identity token plus exchange."""
        override = self.config.override_github_token.strip()
        if override:
            logger.info("Using provided GITHUB_TOKEN for authentication")
            return Success(credential=override, source="override")

        try:
            logger.info("Requesting OIDC token...")
            identity_token = self._retry(self.fetch_identity_token, "OIDC token request")
            logger.info("OIDC token successfully obtained")

            permissions = parse_additional_permissions(self.config.additional_permissions)
            if permissions:
                logger.info("Requesting permission overlay: %s", ", ".join(sorted(permissions)))

            logger.info("Exchanging OIDC token for app token...")
            credential = self._retry(
                lambda: self.exchange(identity_token, permissions), "App token exchange"
            )
        except WorkflowValidationSkip as exc:
            logger.warning("Skipping action due to workflow validation: %s", exc)
            logger.info(
                "This is expected when the workflow is new or changed in this PR; "
                "runs will start working once it is merged to the default branch."
            )
            return Skipped(reason=str(exc))
        except Exception as exc:
            return Failed(error=exc)

        logger.info("App token successfully obtained")
        return Success(credential=credential, source="exchange")
