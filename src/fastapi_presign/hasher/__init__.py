from .base import ApiKeyHasher, Sha256ApiKeyHasher
from .hmac_sha256 import HmacSha256ApiKeyHasher

__all__ = ["ApiKeyHasher", "Sha256ApiKeyHasher", "HmacSha256ApiKeyHasher"]
