from .passwords import hash_password, verify_password
from .tokens import (
    TokenClaims,
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_refresh_token,
)

__all__ = [
    "hash_password",
    "verify_password",
    "TokenClaims",
    "create_access_token",
    "create_refresh_token",
    "decode_access_token",
    "decode_refresh_token",
]
