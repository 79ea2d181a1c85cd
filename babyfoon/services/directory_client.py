"""Async access to a channel directory, in-process or over HTTP."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

import aiohttp

from ..errors import UpstreamError, error_from_payload
from ..models.session import Role, SessionRecord, ValidationResult, is_valid_channel_code
from .directory import ChannelDirectory

logger = logging.getLogger(__name__)


class DirectoryClient(ABC):
    """Directory operations used by the session machine and the CLI."""

    @abstractmethod
    async def allocate_code(self) -> str:
        """Return a code with no active broadcaster (not reserved)."""

    @abstractmethod
    async def register_broadcaster(self, code: str) -> SessionRecord:
        """Claim ``code`` for a broadcaster."""

    @abstractmethod
    async def attach_listener(self, code: str) -> SessionRecord:
        """Add an audience record to a live channel."""

    @abstractmethod
    async def detach_listener(self, record: SessionRecord) -> None:
        """Remove an audience record."""

    @abstractmethod
    async def deactivate(self, code: str) -> None:
        """Mark the channel's broadcaster record inactive."""

    @abstractmethod
    async def validate(self, code: str) -> ValidationResult:
        """Check a code before joining."""

    async def close(self) -> None:
        """Release client resources."""


class LocalDirectoryClient(DirectoryClient):
    """Wraps the in-process ChannelDirectory."""

    def __init__(self, directory: Optional[ChannelDirectory] = None):
        self.directory = directory if directory is not None else ChannelDirectory()

    async def allocate_code(self) -> str:
        return self.directory.allocate_code()

    async def register_broadcaster(self, code: str) -> SessionRecord:
        return self.directory.register_broadcaster(code)

    async def attach_listener(self, code: str) -> SessionRecord:
        return self.directory.attach_listener(code)

    async def detach_listener(self, record: SessionRecord) -> None:
        self.directory.detach_listener(record)

    async def deactivate(self, code: str) -> None:
        self.directory.deactivate(code)

    async def validate(self, code: str) -> ValidationResult:
        return self.directory.validate(code)


class HttpDirectoryClient(DirectoryClient):
    """Talks to the directory routes of ``babyfoon serve``.

    Error bodies are decoded back into the matching BabyfoonError subclass.
    """

    def __init__(self,
                 endpoint: str,
                 timeout_seconds: float = 10.0,
                 session: Optional[aiohttp.ClientSession] = None):
        self.base_url = endpoint.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def _request(self, method: str, path: str, **kwargs) -> Tuple[int, Dict[str, Any]]:
        session = await self._get_session()
        url = self.base_url + path
        try:
            async with session.request(method, url, timeout=self.timeout, **kwargs) as response:
                if response.status == 204:
                    return response.status, {}
                try:
                    payload = await response.json(content_type=None)
                except ValueError:
                    payload = {"error": await response.text()}
                return response.status, payload or {}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Directory request {method} {url} failed: {e}")
            raise UpstreamError(f"Directory unavailable: {e}")

    @staticmethod
    def _raise_for(status: int, payload: Dict[str, Any]) -> None:
        if status // 100 != 2:
            error = error_from_payload(payload)
            logger.debug(f"Directory returned {status}: {error.detail}")
            raise error

    @staticmethod
    def _record_from(payload: Dict[str, Any], role: Role) -> SessionRecord:
        try:
            return SessionRecord(
                code=payload["code"],
                role=role,
                created_at=float(payload["createdAt"]),
                record_id=payload["id"],
            )
        except (KeyError, TypeError, ValueError):
            raise UpstreamError("Malformed directory response")

    async def allocate_code(self) -> str:
        status, payload = await self._request("GET", "/codes/free")
        self._raise_for(status, payload)
        code = payload.get("code")
        if not is_valid_channel_code(code):
            raise UpstreamError("Malformed directory response")
        return code

    async def register_broadcaster(self, code: str) -> SessionRecord:
        status, payload = await self._request("POST", "/channels", json={"code": code})
        self._raise_for(status, payload)
        return self._record_from(payload, Role.BROADCASTER)

    async def attach_listener(self, code: str) -> SessionRecord:
        status, payload = await self._request("POST", f"/channels/{code}/listeners")
        self._raise_for(status, payload)
        return self._record_from(payload, Role.AUDIENCE)

    async def detach_listener(self, record: SessionRecord) -> None:
        status, payload = await self._request(
            "DELETE", f"/channels/{record.code}/listeners", params={"id": record.record_id}
        )
        record.active = False
        self._raise_for(status, payload)

    async def deactivate(self, code: str) -> None:
        status, payload = await self._request("DELETE", f"/channels/{code}")
        self._raise_for(status, payload)

    async def validate(self, code: str) -> ValidationResult:
        if not is_valid_channel_code(code):
            return ValidationResult.INVALID_FORMAT
        status, payload = await self._request("GET", f"/channels/{code}")
        if status == 200:
            return ValidationResult.VALID
        if status == 404:
            return ValidationResult.NOT_FOUND
        if status == 400:
            return ValidationResult.INVALID_FORMAT
        self._raise_for(status, payload)
        raise UpstreamError(f"Unexpected directory status {status}")

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


def as_directory_client(directory) -> DirectoryClient:
    """Accept either a DirectoryClient or a bare ChannelDirectory."""
    if isinstance(directory, DirectoryClient):
        return directory
    if isinstance(directory, ChannelDirectory):
        return LocalDirectoryClient(directory)
    raise TypeError(f"Unsupported directory: {type(directory).__name__}")


__all__ = [
    "DirectoryClient",
    "LocalDirectoryClient",
    "HttpDirectoryClient",
    "as_directory_client",
]
