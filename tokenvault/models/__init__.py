# tokenvault Models
from tokenvault.models.account import Account
from tokenvault.models.base import BaseModel
from tokenvault.models.key_pair import KeyPair
from tokenvault.models.refresh_token import RefreshToken
from tokenvault.models.token_blacklist import TokenBlacklist

__all__ = [
    "Account",
    "BaseModel",
    "KeyPair",
    "RefreshToken",
    "TokenBlacklist",
]
