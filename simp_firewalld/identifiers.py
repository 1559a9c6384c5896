"""
Deterministic short identifiers for sets of networks.

The identifier names ipsets and is embedded in rich rule names, so it must be
identical for identical membership on every run and every host.
"""

import hashlib
from typing import Iterable, Union

from .addresses import AddressToken, NetworkSet

IDENTIFIER_PREFIX = "simp-"
# ipset names are limited to 31 characters
IDENTIFIER_LENGTH = 26
CANONICAL_DELIMITER = "\n"
BASE62_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"


def canonicalize(members: Union[NetworkSet, Iterable[Union[str, AddressToken]]]) -> bytes:
    """Sort normalized members and join them into one byte sequence."""
    entries = sorted({str(member) for member in members})
    return CANONICAL_DELIMITER.join(entries).encode("utf-8")


def _base62(number: int, length: int) -> str:
    chars = []
    for _ in range(length):
        number, remainder = divmod(number, len(BASE62_ALPHABET))
        chars.append(BASE62_ALPHABET[remainder])
    return "".join(chars)


def derive(members: Union[NetworkSet, Iterable[Union[str, AddressToken]]],
           prefix: str = IDENTIFIER_PREFIX) -> str:
    """
    Derive the identifier for a set of normalized networks.

    Members must already be normalized (see ``addresses.parse_token``);
    order and duplicates do not matter.
    """
    digest = hashlib.sha256(canonicalize(members)).digest()
    return prefix + _base62(int.from_bytes(digest, "big"), IDENTIFIER_LENGTH)
