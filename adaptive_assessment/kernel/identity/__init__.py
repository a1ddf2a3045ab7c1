"""
Caller identity from bearer tokens.
"""

from adaptive_assessment.kernel.identity.jwt import (
    AccessTokenPayload,
    ActorRole,
    JWTManager,
    create_access_token,
    get_jwt_manager,
    verify_access_token,
)

__all__ = [
    "AccessTokenPayload",
    "ActorRole",
    "JWTManager",
    "create_access_token",
    "get_jwt_manager",
    "verify_access_token",
]
