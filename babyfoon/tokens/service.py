"""Token service issuing short-lived, role-scoped join credentials."""

import hashlib
import hmac
import logging
import time
from typing import Callable, Optional

from ..config import BabyfoonConfig
from ..errors import ConfigurationError, UpstreamError, ValidationError
from ..models.session import Role
from ..models.token import JoinCredential

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
TOKEN_VERSION = "007"


class TokenService:
    """Stateless signer of join credentials.

    The credential value is an HMAC-SHA256 over the application id, channel
    name, uid, role and expiry keyed with the server secret, so a credential
    is bound to one channel and cannot be forged without the secret.
    """

    def __init__(self,
                 app_id: Optional[str],
                 app_certificate: Optional[str],
                 ttl_seconds: int = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.time):
        """Initialize token service.

        Args:
            app_id: Application identifier returned to clients with each credential
            app_certificate: Server secret used as HMAC key; never sent to clients
            ttl_seconds: Credential lifetime
            clock: Source of unix time in seconds
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.app_id = (app_id or "").strip()
        self._app_certificate = (app_certificate or "").strip()
        self.ttl_seconds = int(ttl_seconds)
        self._clock = clock

    @classmethod
    def from_config(cls, config: BabyfoonConfig) -> "TokenService":
        """Build a service from configuration; missing credentials fail at issue time."""
        return cls(
            app_id=config.get('token.app_id', ''),
            app_certificate=config.get('token.app_certificate', ''),
            ttl_seconds=int(config.get('token.ttl_seconds', DEFAULT_TTL_SECONDS)),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.app_id and self._app_certificate)

    def issue_token(self, channel_name: str, uid: int = 0, role: Role = Role.BROADCASTER) -> JoinCredential:
        """Issue a join credential for a channel.

        Args:
            channel_name: Channel to join; must be non-empty
            uid: User id; 0 asks the transport to auto-assign
            role: Broadcaster or audience

        Returns:
            JoinCredential expiring ``ttl_seconds`` after issuance

        Raises:
            ConfigurationError: if the application id or server secret is missing
            ValidationError: if the channel name is empty or the uid is negative
            UpstreamError: if signing fails
        """
        if not self.is_configured:
            raise ConfigurationError("Token credentials not configured")
        if not isinstance(channel_name, str) or not channel_name.strip():
            raise ValidationError("Channel name is required")
        if isinstance(uid, bool) or not isinstance(uid, int) or uid < 0:
            raise ValidationError(f"uid must be a non-negative integer, got {uid!r}")
        if not isinstance(role, Role):
            raise ValidationError(f"Unknown role: {role!r}")

        issued_at = int(self._clock())
        expires_at = issued_at + self.ttl_seconds
        try:
            digest = self._sign(channel_name, uid, role, expires_at)
        except (TypeError, ValueError, UnicodeError) as e:
            logger.error(f"Token signing failed for channel {channel_name}: {e}")
            raise UpstreamError(f"Token signing failed: {e}")

        logger.info(f"Issued {role.name.lower()} token for channel {channel_name} uid={uid} "
                    f"expires_at={expires_at}")
        return JoinCredential(
            token=f"{TOKEN_VERSION}{self.app_id}{digest}",
            app_id=self.app_id,
            channel_name=channel_name,
            uid=uid,
            expires_at=float(expires_at),
            issued_at=float(issued_at),
        )

    def verify(self, token: str, channel_name: str, uid: int, role: Role, expires_at: float) -> bool:
        """Check a credential value against its claimed scope and expiry."""
        if not self.is_configured or not token:
            return False
        if self._clock() >= expires_at:
            logger.debug(f"Rejected expired token for channel {channel_name}")
            return False
        prefix = f"{TOKEN_VERSION}{self.app_id}"
        if not token.startswith(prefix):
            return False
        expected = self._sign(channel_name, uid, role, int(expires_at))
        return hmac.compare_digest(expected, token[len(prefix):])

    def _sign(self, channel_name: str, uid: int, role: Role, expires_at: int) -> str:
        payload = f"{self.app_id}:{channel_name}:{uid}:{role.value}:{expires_at}".encode("utf-8")
        return hmac.new(self._app_certificate.encode("utf-8"), payload, hashlib.sha256).hexdigest()
