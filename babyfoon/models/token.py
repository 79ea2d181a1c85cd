"""Join credential and token endpoint wire models."""

import time
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class JoinCredential:
    """Short-lived signed value authorizing a role+uid to join a channel."""
    token: str
    app_id: str
    channel_name: str
    uid: int
    expires_at: float  # Unix seconds
    issued_at: Optional[float] = None

    def is_expired(self, now: Optional[float] = None) -> bool:
        if now is None:
            now = time.time()
        return now >= self.expires_at

    def seconds_remaining(self, now: Optional[float] = None) -> float:
        if now is None:
            now = time.time()
        return max(0.0, self.expires_at - now)


class TokenRequest(BaseModel):
    """Body of ``POST /generate-token``."""
    model_config = ConfigDict(populate_by_name=True)

    channel_name: str = Field(alias="channelName")
    uid: Optional[int] = 0
    role: Optional[int] = 1


class TokenResponse(BaseModel):
    """Successful response of ``POST /generate-token``."""
    model_config = ConfigDict(populate_by_name=True)

    token: str
    app_id: str = Field(alias="appId")
    channel_name: str = Field(alias="channelName")
    uid: int
    expiration: int  # TTL in seconds
    expires_at: Optional[int] = Field(default=None, alias="expiresAt")

    @classmethod
    def from_credential(cls, credential: JoinCredential) -> "TokenResponse":
        issued_at = credential.issued_at if credential.issued_at is not None else time.time()
        return cls(
            token=credential.token,
            app_id=credential.app_id,
            channel_name=credential.channel_name,
            uid=credential.uid,
            expiration=int(round(credential.expires_at - issued_at)),
            expires_at=int(credential.expires_at),
        )

    def to_credential(self, received_at: Optional[float] = None) -> JoinCredential:
        """Convert to a credential; without ``expiresAt`` the TTL counts from receipt."""
        if received_at is None:
            received_at = time.time()
        if self.expires_at is not None:
            expires_at = float(self.expires_at)
        else:
            expires_at = received_at + self.expiration
        return JoinCredential(
            token=self.token,
            app_id=self.app_id,
            channel_name=self.channel_name,
            uid=self.uid,
            expires_at=expires_at,
            issued_at=received_at,
        )
