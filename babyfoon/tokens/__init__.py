"""Join credential issuance and retrieval."""

from .service import TokenService, DEFAULT_TTL_SECONDS
from .providers import TokenProvider, LocalTokenProvider, HttpTokenProvider

__all__ = [
    "TokenService",
    "DEFAULT_TTL_SECONDS",
    "TokenProvider",
    "LocalTokenProvider",
    "HttpTokenProvider",
]
