import hashlib
import hmac
import warnings

DEFAULT_PEPPER = "super-secret-pepper"


class HmacSha256ApiKeyHasher:
    """HMAC-SHA256-based API key hasher and verifier.

    Uses the pepper as the HMAC secret key and SHA-256 as the digest algorithm.
    Verification uses :func:`hmac.compare_digest` for constant-time comparison.

    Security properties:

    - The pepper acts as an HMAC secret key; an attacker who obtains the
      stored hashes but not the pepper cannot mount a pre-computation attack.
    - The output is deterministic, so it can be used as the unique lookup
      column for the key.

    Example::

        hasher = HmacSha256ApiKeyHasher(pepper="strong-secret-pepper")
        key_hash = hasher.hash("sk_live_abc.def")
        assert hasher.verify(key_hash, "sk_live_abc.def") is True
    """

    _pepper: str

    def __init__(self, pepper: str = DEFAULT_PEPPER) -> None:
        if pepper == DEFAULT_PEPPER:
            warnings.warn(
                "Using default pepper is insecure. Please provide a strong pepper.",
                UserWarning,
            )
        if not pepper:
            raise ValueError("Pepper must not be empty.")
        self._pepper = pepper

    def hash(self, api_key: str) -> str:
        """Hash a full API key using HMAC-SHA256.

        Args:
            api_key: The plain API key to hash.

        Returns:
            A hex-encoded HMAC-SHA256 digest of ``api_key`` keyed with the pepper.
        """
        return hmac.new(
            self._pepper.encode("utf-8"),
            api_key.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def verify(self, stored_hash: str, supplied_key: str) -> bool:
        expected = self.hash(supplied_key)
        return hmac.compare_digest(expected, stored_hash)
