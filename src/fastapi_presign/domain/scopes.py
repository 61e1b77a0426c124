import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, List, Tuple


class Scope(str, Enum):
    """Capabilities an API key can carry."""

    UPLOAD = "upload"
    DOWNLOAD = "download"
    ADMIN = "admin"


KNOWN_SCOPES: Tuple[str, ...] = tuple(scope.value for scope in Scope)


def _tokens(value: Any) -> List[Any]:
    """Split a stored scope value into raw tokens according to its shape."""
    if value is None:
        return []

    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []

        if text[0] in "[\"":
            try:
                decoded = json.loads(text)
            except ValueError:
                return []
            # A JSON string holding a comma-joined list is still a string.
            return _tokens(decoded)

        return text.split(",")

    return []


def normalize_string_list(value: Any) -> List[str]:
    """Decode a stored list of strings with the same shape tolerance as scopes."""
    return [token.strip() for token in _tokens(value) if isinstance(token, str) and token.strip()]


def _scope_value(scope: Any) -> str:
    return scope.value if isinstance(scope, Scope) else scope


def normalize_scopes(value: Any) -> Tuple[str, ...]:
    """Normalize a loosely typed scope value into known scope names.

    Stored scopes may be a proper list, a JSON-encoded string or a
    comma-separated string. Unknown tokens are dropped silently since old
    records may hold legacy scope names. Order of first appearance is kept
    and duplicates are removed.
    """
    result: List[str] = []
    for token in _tokens(value):
        if isinstance(token, Scope):
            token = token.value

        if not isinstance(token, str):
            continue

        token = token.strip().lower()
        if token in KNOWN_SCOPES and token not in result:
            result.append(token)

    return tuple(result)


@dataclass(frozen=True)
class ScopeSet:
    """Validated set of scopes carried by a key."""

    scopes: Tuple[str, ...] = ()

    @classmethod
    def parse(cls, value: Any) -> "ScopeSet":
        return cls(normalize_scopes(value))

    def has_all(self, required: Iterable[str]) -> bool:
        """Return True if every required scope is present."""
        return not self.missing(required)

    def missing(self, required: Iterable[str]) -> List[str]:
        return [scope for scope in map(_scope_value, required) if scope not in self.scopes]

    def __contains__(self, scope: object) -> bool:
        return _scope_value(scope) in self.scopes

    def __iter__(self):
        return iter(self.scopes)

    def __len__(self) -> int:
        return len(self.scopes)
