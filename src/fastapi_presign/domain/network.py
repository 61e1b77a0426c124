"""Strict IPv4 and CIDR matching.

Only dotted-quad IPv4 is understood. Anything else, including IPv6,
malformed rules and stray whitespace, never matches. Stored rules are
trimmed before they reach this module.
"""

import re
from typing import Iterable, Optional

_OCTET = re.compile(r"[0-9]{1,3}")
_PREFIX = re.compile(r"[0-9]{1,2}")
_FULL_MASK = 0xFFFFFFFF


def parse_ipv4(value: str) -> Optional[int]:
    """Parse a dotted-quad IPv4 address into its 32-bit integer value.

    Returns:
        The address as an unsigned integer, or None if ``value`` is not
        exactly four decimal octets in [0, 255], with no surrounding whitespace.
    """
    if not isinstance(value, str):
        return None

    parts = value.split(".")
    if len(parts) != 4:
        return None

    result = 0
    for part in parts:
        if not _OCTET.fullmatch(part):
            return None
        octet = int(part)
        if octet > 255:
            return None
        result = (result << 8) | octet

    return result


def prefix_mask(prefix_length: int) -> int:
    """Network mask for ``prefix_length`` bits; a length of 0 masks nothing."""
    if prefix_length == 0:
        return 0
    return (_FULL_MASK << (32 - prefix_length)) & _FULL_MASK


def is_valid_rule(rule: str) -> bool:
    """Return True if ``rule`` is a well-formed IPv4 literal or IPv4 CIDR block."""
    return _parse_rule(rule) is not None


def _parse_rule(rule: str):
    if not isinstance(rule, str):
        return None

    if "/" not in rule:
        address = parse_ipv4(rule)
        return None if address is None else (address, _FULL_MASK)

    base, _, bits = rule.partition("/")
    address = parse_ipv4(base)
    if address is None or not _PREFIX.fullmatch(bits):
        return None

    prefix_length = int(bits)
    if prefix_length > 32:
        return None

    return address, prefix_mask(prefix_length)


def matches(ip: Optional[str], rule: str) -> bool:
    """Test whether ``ip`` falls inside ``rule``.

    Args:
        ip: Candidate IPv4 address.
        rule: Either a bare IPv4 literal (exact match) or ``address/prefix``.

    Returns:
        True on match. Malformed input on either side returns False.
    """
    if ip is None:
        return False

    candidate = parse_ipv4(ip)
    if candidate is None:
        return False

    parsed = _parse_rule(rule)
    if parsed is None:
        return False

    address, mask = parsed
    return (candidate & mask) == (address & mask)


def matches_any(ip: Optional[str], rules: Iterable[str]) -> bool:
    """Return True if any rule matches ``ip``.

    Notes:
        An empty rule list returns False. Whether an empty allowlist means
        "unrestricted" is decided by the caller.
    """
    return any(matches(ip, rule) for rule in rules)
