import hashlib
import hmac
from typing import Protocol, runtime_checkable


@runtime_checkable
class ApiKeyHasher(Protocol):
    """Protocol for API key hashing and verification.

    Notes:
        The stored hash is also the lookup key, so implementations must be
        deterministic: equal inputs always give equal outputs. Salted
        password hashes (Argon2, bcrypt) do not fit this contract.
    """

    def hash(self, api_key: str) -> str:
        """Hash a full plaintext API key into its storable form."""
        ...

    def verify(self, stored_hash: str, supplied_key: str) -> bool:
        """Verify the supplied API key against the stored hash."""
        ...


class Sha256ApiKeyHasher:
    """Plain SHA-256 hasher over the full plaintext key.

    Appropriate because generated keys carry 192 bits of randomness;
    a fast digest cannot be brute-forced back to such an input.
    """

    def hash(self, api_key: str) -> str:
        return hashlib.sha256(api_key.encode("utf-8")).hexdigest()

    def verify(self, stored_hash: str, supplied_key: str) -> bool:
        return hmac.compare_digest(self.hash(supplied_key), stored_hash)
