"""Credential cache: one lazily refreshed bearer token per client."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from vertexgen._http import CLOUD_PLATFORM_SCOPE
from vertexgen.errors import CredentialError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

# Lifetime assumed for tokens whose issuer did not report an expiry.
DEFAULT_TOKEN_LIFETIME = timedelta(seconds=300)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # google-auth reports naive UTC datetimes.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Credential:
    """An access token and the instant it stops being usable."""

    access_token: str
    expiry: datetime

    def __post_init__(self) -> None:
        """Normalize expiry to an aware UTC datetime."""
        object.__setattr__(self, "expiry", _as_utc(self.expiry))

    def is_valid(self, now: datetime) -> bool:
        """Return True iff ``now`` is strictly before the expiry."""
        return _as_utc(now) < self.expiry

    def __repr__(self) -> str:
        """Return a redacted representation."""
        return f"Credential(access_token='[REDACTED]', expiry={self.expiry.isoformat()})"


@runtime_checkable
class CredentialProvider(Protocol):
    """Black-box source of fresh credentials."""

    async def fetch_credential(self, scope: str) -> Credential:
        """Return a new credential for *scope*."""
        ...


class GoogleCredentialProvider:
    """Application Default Credentials via google-auth.

    google-auth is synchronous, so discovery and refresh run in a worker
    thread to keep the event loop responsive.
    """

    def __init__(self, *, quota_project_id: str | None = None) -> None:
        """Create a provider; credentials are discovered on first fetch."""
        self.quota_project_id = quota_project_id
        self._credentials: Any = None

    async def fetch_credential(self, scope: str) -> Credential:
        """Refresh the ambient credentials and return the new token."""
        return await asyncio.to_thread(self._fetch_blocking, scope)

    def _fetch_blocking(self, scope: str) -> Credential:
        import google.auth
        from google.auth.transport.requests import Request

        if self._credentials is None:
            credentials, _project = google.auth.default(
                scopes=[scope], quota_project_id=self.quota_project_id
            )
            self._credentials = credentials

        self._credentials.refresh(Request())
        token = self._credentials.token
        if not isinstance(token, str) or not token:
            raise CredentialError("Default credentials returned an empty access token")

        expiry = self._credentials.expiry
        if expiry is None:
            expiry = _utcnow() + DEFAULT_TOKEN_LIFETIME
        return Credential(access_token=token, expiry=expiry)


class StaticCredentialProvider:
    """Serve a pre-minted token (e.g. ``gcloud auth print-access-token``)."""

    def __init__(
        self,
        access_token: str,
        *,
        lifetime: timedelta = DEFAULT_TOKEN_LIFETIME,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Create a provider handing out *access_token*."""
        if not access_token:
            raise CredentialError("access_token must be a non-empty string")
        self._access_token = access_token
        self._lifetime = lifetime
        self._clock = clock

    async def fetch_credential(self, scope: str) -> Credential:  # noqa: ARG002
        """Return the static token with a fresh expiry."""
        return Credential(
            access_token=self._access_token, expiry=self._clock() + self._lifetime
        )


class CredentialCache:
    """Single cached credential with mutually exclusive, on-demand refresh.

    All callers contend for one lock around check-refresh-store: a caller that
    finds the cache stale refreshes it while the others wait and then see the
    fresh credential. There is no background refresh.
    """

    def __init__(
        self,
        provider: CredentialProvider,
        *,
        scope: str = CLOUD_PLATFORM_SCOPE,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Create an empty cache backed by *provider*."""
        self._provider = provider
        self._scope = scope
        self._clock = clock
        self._credential: Credential | None = None
        self._lock = asyncio.Lock()

    @property
    def credential(self) -> Credential | None:
        """The cached credential, if any (possibly expired)."""
        return self._credential

    async def get_token(self) -> str:
        """Return a usable access token, refreshing it first when stale."""
        async with self._lock:
            cached = self._credential
            if cached is not None and cached.is_valid(self._clock()):
                return cached.access_token

            logger.debug("Refreshing access token (scope=%s)", self._scope)
            try:
                fresh = await self._provider.fetch_credential(self._scope)
            except asyncio.CancelledError:
                raise
            except CredentialError:
                raise
            except Exception as e:
                raise CredentialError(
                    f"credential: failed to get access token: {type(e).__name__}: {e}",
                    hint=(
                        "Run `gcloud auth application-default login` or set "
                        "GOOGLE_APPLICATION_CREDENTIALS."
                    ),
                ) from e

            if not isinstance(fresh, Credential) or not fresh.access_token:
                raise CredentialError(
                    "credential: provider returned no access token",
                    hint="Credential providers must return a Credential with a token.",
                )

            self._credential = fresh
            return fresh.access_token

    async def authorization_header(self) -> dict[str, str]:
        """Return an ``Authorization`` header carrying a usable token."""
        token = await self.get_token()
        return {"Authorization": f"Bearer {token}"}

    def invalidate(self, access_token: str | None = None) -> None:
        """Drop the cached credential so the next call refreshes it.

        With *access_token*, only drop it if it is still the cached token, so a
        stale rejection cannot evict a credential another caller just refreshed.
        """
        cached = self._credential
        if cached is None:
            return
        if access_token is not None and cached.access_token != access_token:
            return
        self._credential = None
