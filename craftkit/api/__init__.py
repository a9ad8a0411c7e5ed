"""
Network API Layer.

This package handles communication with metadata services and with the
identity providers used for account sign-in.
"""

from .auth import AuthEndpoints, DeviceCodeChallenge, IdentityClient, OAuthTokens
from .client import MetaClient
from .rate_limiter import AdaptiveRateLimiter

__all__ = [
    "AdaptiveRateLimiter",
    "AuthEndpoints",
    "DeviceCodeChallenge",
    "IdentityClient",
    "MetaClient",
    "OAuthTokens",
]
