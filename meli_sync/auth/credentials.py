"""Credential manager: serves a valid marketplace bearer token.

The credential table is append-only: the most recently issued row is the
current credential. When it is missing or expired, the stored refresh token is
exchanged at ``POST /oauth/token`` and the new pair is persisted as a new row
before the new access token is returned.

Refresh is single-flight. The marketplace invalidates a refresh token once it
has been exchanged, so two concurrent exchanges would leave one caller holding
a dead token. Concurrent callers queue on a lock and re-read the store once
inside it; only the first one actually calls the token endpoint. Multi-instance
deployments can add a Redis lock around the same critical section.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from datetime import timedelta
from typing import Iterator

import httpx
import redis

from meli_sync.config import Settings
from meli_sync.errors import AuthError
from meli_sync.models import Credential, utcnow
from meli_sync.store.protocol import OrderStore

logger = logging.getLogger(__name__)

_REFRESH_LOCK_KEY = "meli_sync:credential:refresh"


class RedisRefreshLock:
    """Cross-process lock around the refresh critical section.

    If Redis is unreachable the lock is skipped (fail-open) and only the
    in-process lock applies.
    """

    def __init__(self, redis_url: str, timeout_seconds: int = 30):
        self._redis_url = redis_url
        self._timeout = timeout_seconds
        self._client: redis.Redis | None = None

    def _get_redis(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    @contextlib.contextmanager
    def hold(self) -> Iterator[None]:
        try:
            lock = self._get_redis().lock(
                _REFRESH_LOCK_KEY,
                timeout=self._timeout,
                blocking_timeout=self._timeout,
            )
            acquired = lock.acquire()
        except redis.RedisError:
            logger.warning("Redis unavailable for refresh lock, using local lock only", exc_info=True)
            yield
            return

        if not acquired:
            raise AuthError("timed out waiting for refresh lock")
        try:
            yield
        finally:
            try:
                lock.release()
            except redis.RedisError:
                logger.warning("Refresh lock release failed", exc_info=True)


class CredentialManager:
    """Owns the single current marketplace credential."""

    def __init__(
        self,
        store: OrderStore,
        settings: Settings,
        http_client: httpx.Client | None = None,
        refresh_lock: RedisRefreshLock | None = None,
    ):
        self._store = store
        self._settings = settings
        self._http = http_client or httpx.Client(
            base_url=settings.api_base_url,
            timeout=settings.request_timeout_seconds,
        )
        self._lock = threading.Lock()
        self._refresh_lock = refresh_lock

    def _is_current(self, credential: Credential | None) -> bool:
        return credential is not None and not credential.is_expired(
            leeway_seconds=self._settings.token_refresh_leeway_seconds
        )

    def get_valid_token(self) -> str:
        """Return a non-expired access token, refreshing if needed.

        Raises:
            AuthError: refresh failed; callers must abort, never reuse a stale token.
        """
        credential = self._store.latest_credential()
        if self._is_current(credential):
            return credential.access_token

        with self._lock:
            # Another thread may have refreshed while we waited.
            credential = self._store.latest_credential()
            if self._is_current(credential):
                return credential.access_token

            if self._refresh_lock is None:
                return self._refresh(credential).access_token
            with self._refresh_lock.hold():
                credential = self._store.latest_credential()
                if self._is_current(credential):
                    return credential.access_token
                return self._refresh(credential).access_token

    def _refresh(self, current: Credential | None) -> Credential:
        refresh_token = current.refresh_token if current else self._settings.bootstrap_refresh_token
        if not refresh_token:
            raise AuthError("no refresh token available")

        logger.info("Access token expired or missing, refreshing")
        try:
            response = self._http.post(
                "/oauth/token",
                data={
                    "grant_type": "refresh_token",
                    "client_id": self._settings.client_id,
                    "client_secret": self._settings.client_secret,
                    "refresh_token": refresh_token,
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error("Token refresh transport failure: %s", type(e).__name__)
            raise AuthError(f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            logger.error("Token refresh failed: HTTP %d", response.status_code)
            raise AuthError(response.text)

        try:
            data = response.json()
            issued = utcnow()
            credential = Credential(
                access_token=data["access_token"],
                refresh_token=data["refresh_token"],
                expires_at=issued + timedelta(seconds=int(data["expires_in"])),
                issued_at=issued,
            )
        except (ValueError, KeyError, TypeError) as e:
            raise AuthError(f"malformed token response: {response.text}") from e

        self._store.add_credential(credential)
        logger.info("New access token stored (expires %s)", credential.expires_at.isoformat())
        return credential
