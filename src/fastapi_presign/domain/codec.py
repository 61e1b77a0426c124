import re
import secrets
from dataclasses import dataclass
from typing import Optional, Tuple

from fastapi_presign.hasher.base import ApiKeyHasher, Sha256ApiKeyHasher

KEY_PREFIXES: Tuple[str, ...] = ("sk_live", "sk_test")
"""Known key families. The prefix is cosmetic: it is hashed with the rest of the key."""

DEFAULT_PREFIX = "sk_live"

PREFIX_SEPARATOR = "_"
SECRET_SEPARATOR = "."
"""Not part of the base64url alphabet, so the secret can always be split off."""

PUBLIC_ID_BYTES = 9
SECRET_BYTES = 24

_BASE64URL = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass(frozen=True)
class GeneratedKey:
    """Result of generating a new API key.

    Attributes:
        key: Full plaintext key, shown to the user exactly once.
        key_hash: Storable digest of ``key``.
        public_id: Non-secret identifier, safe to log.
        prefix: Key family tag.
    """

    key: str
    key_hash: str
    public_id: str
    prefix: str

    def __repr__(self) -> str:
        return f"GeneratedKey(prefix={self.prefix!r}, public_id={self.public_id!r})"


@dataclass(frozen=True)
class ParsedApiKey:
    """Parts of a well-formed API key string."""

    prefix: str
    public_id: str
    secret: str
    raw: str

    def __repr__(self) -> str:
        return f"ParsedApiKey(prefix={self.prefix!r}, public_id={self.public_id!r})"


class KeyCodec:
    """Generates, parses and hashes API keys.

    Key format: ``{prefix}_{public_id}.{secret}`` where ``public_id`` and
    ``secret`` are base64url tokens of 9 and 24 random bytes.

    Example::

        codec = KeyCodec()
        generated = codec.generate("sk_test")
        assert codec.hash(generated.key) == generated.key_hash
        assert codec.parse(generated.key).public_id == generated.public_id
    """

    def __init__(
        self,
        hasher: Optional[ApiKeyHasher] = None,
        prefixes: Tuple[str, ...] = KEY_PREFIXES,
    ) -> None:
        self._hasher = hasher or Sha256ApiKeyHasher()
        self.prefixes = prefixes

    def generate(self, prefix: str = DEFAULT_PREFIX) -> GeneratedKey:
        if prefix not in self.prefixes:
            raise ValueError(f"Unknown key prefix '{prefix}'")

        public_id = secrets.token_urlsafe(PUBLIC_ID_BYTES)
        secret = secrets.token_urlsafe(SECRET_BYTES)
        key = f"{prefix}{PREFIX_SEPARATOR}{public_id}{SECRET_SEPARATOR}{secret}"

        return GeneratedKey(
            key=key,
            key_hash=self.hash(key),
            public_id=public_id,
            prefix=prefix,
        )

    def hash(self, key: str) -> str:
        return self._hasher.hash(key)

    def parse(self, key: Optional[str]) -> Optional[ParsedApiKey]:
        """Split a key into its parts without hashing it.

        Returns:
            The parsed key, or None if ``key`` does not have the expected shape.
            Parsing is only used to correlate logs; authentication relies on
            the hash alone.
        """
        if not key:
            return None

        head, separator, secret = key.partition(SECRET_SEPARATOR)
        if not separator or not secret or not _BASE64URL.match(secret):
            return None

        for prefix in self.prefixes:
            lead = f"{prefix}{PREFIX_SEPARATOR}"
            if head.startswith(lead):
                public_id = head[len(lead) :]
                if public_id and _BASE64URL.match(public_id):
                    return ParsedApiKey(prefix=prefix, public_id=public_id, secret=secret, raw=key)

        return None

    def public_id_of(self, key: Optional[str]) -> Optional[str]:
        parsed = self.parse(key)
        return parsed.public_id if parsed else None
