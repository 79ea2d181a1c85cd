"""Token providers used by the session machine to obtain join credentials."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

import aiohttp
import pydantic

from ..errors import BabyfoonError, CredentialExpiredError, UpstreamError
from ..models.session import Role
from ..models.token import JoinCredential, TokenRequest, TokenResponse
from .service import TokenService

logger = logging.getLogger(__name__)

TOKEN_PATH = "/generate-token"


class TokenProvider(ABC):
    """Source of join credentials; every call issues a fresh credential."""

    @abstractmethod
    async def fetch(self, channel_name: str, uid: int, role: Role) -> JoinCredential:
        """Request a credential for ``channel_name``.

        Raises:
            ConfigurationError, ValidationError, UpstreamError
        """


class LocalTokenProvider(TokenProvider):
    """Issues credentials from an in-process TokenService."""

    def __init__(self, service: TokenService):
        self.service = service

    async def fetch(self, channel_name: str, uid: int, role: Role) -> JoinCredential:
        return self.service.issue_token(channel_name, uid, role)


class HttpTokenProvider(TokenProvider):
    """Requests credentials from the token HTTP endpoint."""

    def __init__(self,
                 endpoint: str,
                 timeout_seconds: float = 10.0,
                 session: Optional[aiohttp.ClientSession] = None,
                 clock: Callable[[], float] = time.time):
        """Initialize HTTP token provider.

        Args:
            endpoint: Base URL of the token service (``/generate-token`` is appended)
                      or the full URL of the endpoint
            timeout_seconds: Total request timeout
            session: Optional shared client session; a private one is used otherwise
            clock: Source of unix time, used for the expiry check
        """
        endpoint = endpoint.rstrip("/")
        self.url = endpoint if endpoint.endswith(TOKEN_PATH) else endpoint + TOKEN_PATH
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        self._clock = clock

    async def fetch(self, channel_name: str, uid: int, role: Role) -> JoinCredential:
        body = TokenRequest(channel_name=channel_name, uid=uid, role=role.value).model_dump(by_alias=True)
        logger.debug(f"Requesting {role.name.lower()} token for channel {channel_name} from {self.url}")
        try:
            if self._session is not None:
                status, payload = await self._post(self._session, body)
            else:
                async with aiohttp.ClientSession(timeout=self.timeout) as session:
                    status, payload = await self._post(session, body)
        except BabyfoonError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Token request failed: {e}")
            raise UpstreamError(f"Token request failed: {e}")

        received_at = self._clock()
        try:
            credential = TokenResponse.model_validate(payload).to_credential(received_at)
        except pydantic.ValidationError as e:
            logger.error(f"Malformed token response: {e}")
            raise UpstreamError("Malformed token response")

        if credential.is_expired(received_at):
            raise CredentialExpiredError()
        return credential

    async def _post(self, session: aiohttp.ClientSession, body: dict):
        async with session.post(self.url, json=body, timeout=self.timeout) as response:
            if response.status // 100 != 2:
                error_text = await response.text()
                try:
                    message = (await response.json(content_type=None)).get("error") or error_text
                except (ValueError, AttributeError):
                    message = error_text
                raise UpstreamError(f"[Code: {response.status}] {message or 'Unknown error'}")
            try:
                return response.status, await response.json(content_type=None)
            except ValueError:
                raise UpstreamError("Token response is not JSON")
