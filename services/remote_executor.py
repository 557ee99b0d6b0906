"""Remote executors for queued operations.

The queue only needs two things from the remote side: ``resolve()`` returns
a handle (or ``None`` when no remote is configured) and
``await handle.execute(type, collection, payload)`` reports an
:class:`ExecutionResult`. Transport problems surface as exceptions from
``execute``; the coordinator records them on the operation.

:class:`SupabaseExecutor` is the production implementation and talks to the
Supabase PostgREST endpoint with ``requests``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol
from urllib.parse import quote, urlparse

import requests

from core.settings import SUPABASE, SupabaseSettings
from models.sync_operation import OperationType


logger = logging.getLogger("agritracker.sync.executor")


class RemoteExecutorError(Exception):
    """Base exception for remote executor errors."""


class ExecutorConfigError(RemoteExecutorError):
    """The remote endpoint is configured with unusable settings."""


@dataclass
class ExecutionResult:
    success: bool
    data: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "ExecutionResult":
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, error: str) -> "ExecutionResult":
        return cls(success=False, error=error)


class ExecutorHandle(Protocol):
    async def execute(
        self, op_type: OperationType, collection: str, payload: Dict[str, Any]
    ) -> ExecutionResult:
        ...


class RemoteExecutor(Protocol):
    def resolve(self) -> Optional[ExecutorHandle]:
        ...


def _is_local(host: str) -> bool:
    return host in {"localhost", "127.0.0.1", "::1"}


def validate_url(url: str) -> str:
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        raise ExecutorConfigError(f"Invalid Supabase URL: {url!r}")
    if parsed.scheme != "https" and not _is_local(parsed.hostname):
        raise ExecutorConfigError("Supabase URL must use https:// unless it points at localhost")
    return url.rstrip("/")


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "error_description", "error", "hint"):
            value = body.get(key)
            if value:
                return str(value)
    text = (response.text or "").strip()
    if text:
        return f"HTTP {response.status_code}: {text[:200]}"
    return f"HTTP {response.status_code}"


class SupabaseTableClient:
    """Executes insert/update/delete against Supabase tables over PostgREST."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        client_info: str = "agritracker-sync/1.0",
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = validate_url(base_url)
        self.rest_url = f"{self.base_url}/rest/v1"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "X-Client-Info": client_info,
                "Content-Type": "application/json",
            }
        )

    def close(self) -> None:
        self.session.close()

    async def execute(
        self, op_type: OperationType, collection: str, payload: Dict[str, Any]
    ) -> ExecutionResult:
        return await asyncio.to_thread(self.execute_blocking, op_type, collection, payload)

    def execute_blocking(
        self, op_type: OperationType | str, collection: str, payload: Dict[str, Any]
    ) -> ExecutionResult:
        op_type = OperationType.coerce(op_type)
        url = f"{self.rest_url}/{quote(collection, safe='')}"
        representation = {"Prefer": "return=representation"}

        if op_type is OperationType.CREATE:
            response = self.session.post(
                url, json=payload, headers=representation, timeout=self.timeout
            )
        else:
            record_id = (payload or {}).get("id")
            if record_id in (None, ""):
                return ExecutionResult.failed(
                    f"{op_type.value} on {collection} requires an 'id' in the payload"
                )
            params = {"id": f"eq.{record_id}"}
            if op_type is OperationType.UPDATE:
                response = self.session.patch(
                    url, params=params, json=payload, headers=representation, timeout=self.timeout
                )
            else:
                response = self.session.delete(url, params=params, timeout=self.timeout)

        if not response.ok:
            message = _error_message(response)
            logger.warning("%s %s rejected: %s", op_type.value, collection, message)
            return ExecutionResult.failed(message)

        data = None
        if response.content:
            try:
                data = response.json()
            except ValueError:
                data = response.text
        logger.debug("%s %s applied", op_type.value, collection)
        return ExecutionResult.ok(data)

    def probe(self, timeout: float) -> bool:
        try:
            response = self.session.get(f"{self.base_url}/auth/v1/health", timeout=timeout)
        except requests.exceptions.RequestException as exc:
            logger.debug("Connectivity probe failed: %s", exc)
            return False
        return response.status_code < 500


class SupabaseExecutor:
    """Resolves a :class:`SupabaseTableClient` from settings, once."""

    def __init__(
        self,
        settings: SupabaseSettings = SUPABASE,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.settings = settings
        self._session = session
        self._client: Optional[SupabaseTableClient] = None

    def resolve(self) -> Optional[SupabaseTableClient]:
        if self._client is not None:
            return self._client
        if not self.settings.is_configured:
            logger.debug("Supabase not configured - running in offline mode")
            return None
        try:
            self._client = SupabaseTableClient(
                self.settings.url,
                self.settings.anon_key,
                timeout=self.settings.request_timeout_sec,
                client_info=self.settings.client_info,
                session=self._session,
            )
        except ExecutorConfigError as exc:
            logger.error("Supabase executor unavailable: %s", exc)
            return None
        return self._client

    def probe(self, timeout: float = 5.0) -> bool:
        client = self.resolve()
        if client is None:
            return False
        return client.probe(timeout)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


__all__ = [
    "ExecutionResult",
    "ExecutorConfigError",
    "ExecutorHandle",
    "RemoteExecutor",
    "RemoteExecutorError",
    "SupabaseExecutor",
    "SupabaseTableClient",
    "validate_url",
]
