"""
Address classification and family partitioning for trusted networks.

Every trusted network token is one of:
- an IPv4 address or CIDR (normalized to ``a.b.c.d/prefix``)
- an IPv6 address or CIDR (normalized to the compressed ``addr/prefix`` form)
- a hostname, which never becomes a rule source and is only reported back

Bare addresses are widened to /32 or /128 and host bits are cleared, so
``1.2.3.4/24`` and ``1.2.3.0/24`` are the same member.
"""

import ipaddress
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple, Union

from .errors import InvalidAddress

IPV4 = "ipv4"
IPV6 = "ipv6"
FAMILIES = (IPV4, IPV6)

IPV4_FULL_RANGE = "0.0.0.0/0"
IPV6_FULL_RANGE = "::/0"
FULL_RANGE = {IPV4: IPV4_FULL_RANGE, IPV6: IPV6_FULL_RANGE}

# Tokens that mean "every source address" in both families
ALL_NETWORKS_TOKENS = frozenset({"all", "any"})

_DOTTED_QUAD = re.compile(r"^[0-9]+(\.[0-9]+){3}$")
_NUMERIC_DOTTED = re.compile(r"^[0-9.]+$")
_PREFIX = re.compile(r"^[0-9]{1,3}$")
_HOSTNAME_LABEL = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")


class AddressKind(str, Enum):
    IPV4_CIDR = "ipv4_cidr"
    IPV6_CIDR = "ipv6_cidr"
    HOSTNAME = "hostname"


@dataclass(frozen=True)
class AddressToken:
    """A classified trusted network token."""
    raw: str
    kind: AddressKind
    normalized: str

    @property
    def family(self) -> Optional[str]:
        if self.kind is AddressKind.IPV4_CIDR:
            return IPV4
        if self.kind is AddressKind.IPV6_CIDR:
            return IPV6
        return None

    @property
    def is_full_range(self) -> bool:
        return self.family is not None and self.normalized.endswith("/0")

    def __str__(self):
        return self.normalized


@dataclass(frozen=True)
class NetworkSet:
    """Ordered, de-duplicated members of a single address family."""
    family: str
    members: Tuple[AddressToken, ...] = ()

    def __len__(self):
        return len(self.members)

    def __iter__(self):
        return iter(self.members)

    @property
    def entries(self) -> List[str]:
        return [member.normalized for member in self.members]

    @property
    def has_full_range(self) -> bool:
        return any(member.is_full_range for member in self.members)


@dataclass(frozen=True)
class NetworkPartition:
    """Result of splitting a trusted network list by family."""
    ipv4: NetworkSet = field(default_factory=lambda: NetworkSet(IPV4))
    ipv6: NetworkSet = field(default_factory=lambda: NetworkSet(IPV6))
    hostnames: Tuple[str, ...] = ()

    def for_family(self, family: str) -> NetworkSet:
        return self.ipv4 if family == IPV4 else self.ipv6

    @property
    def has_full_range(self) -> bool:
        return self.ipv4.has_full_range or self.ipv6.has_full_range


def _parse_ipv4(text: str) -> Optional[ipaddress.IPv4Address]:
    """Parse a dotted quad, tolerating leading zeros in each octet."""
    if _DOTTED_QUAD.match(text):
        octets = [int(part) for part in text.split(".")]
        if any(octet > 255 for octet in octets):
            raise InvalidAddress(token=text, detail=f"octet out of range in '{text}'")
        return ipaddress.IPv4Address(".".join(str(octet) for octet in octets))
    if _NUMERIC_DOTTED.match(text):
        raise InvalidAddress(token=text, detail=f"malformed IPv4 address '{text}'")
    return None


def _parse_ip(text: str) -> Optional[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]]:
    """Return the address for IP-looking text, None for anything else."""
    address = _parse_ipv4(text)
    if address is not None:
        return address
    if ":" in text:
        try:
            address = ipaddress.IPv6Address(text)
        except ValueError as e:
            raise InvalidAddress(token=text, detail=f"malformed IPv6 address '{text}': {e}")
        if address.scope_id:
            raise InvalidAddress(token=text, detail=f"scoped IPv6 address '{text}' cannot be a rule source")
        return address
    return None


def _is_hostname(text: str) -> bool:
    name = text[:-1] if text.endswith(".") else text
    if not name or len(name) > 253:
        return False
    return all(_HOSTNAME_LABEL.match(label) for label in name.split("."))


def parse_token(token: str) -> AddressToken:
    """
    Classify and normalize one trusted network token.

    Raises:
        InvalidAddress: for a malformed IP, an out-of-range prefix length,
            a prefix on something that is not an IP, or text that is not
            a plausible hostname either.
    """
    if not isinstance(token, str) or not token.strip():
        raise InvalidAddress(token=repr(token), detail=f"empty or non-string address {token!r}")

    text = token.strip()

    if "/" in text:
        address_text, _, prefix_text = text.partition("/")
        address = _parse_ip(address_text)
        if address is None:
            raise InvalidAddress(token=text, detail=f"'{text}' has a prefix length but no IP address")
        if not _PREFIX.match(prefix_text) or int(prefix_text) > address.max_prefixlen:
            raise InvalidAddress(
                token=text,
                detail=f"prefix length '/{prefix_text}' out of range 0-{address.max_prefixlen} in '{text}'",
            )
        prefix = int(prefix_text)
    else:
        address = _parse_ip(text)
        if address is None:
            if not _is_hostname(text):
                raise InvalidAddress(token=text, detail=f"'{text}' is not an IP address, CIDR or hostname")
            return AddressToken(raw=text, kind=AddressKind.HOSTNAME, normalized=text.rstrip(".").lower())
        prefix = address.max_prefixlen

    network = ipaddress.ip_network(f"{address}/{prefix}", strict=False)
    kind = AddressKind.IPV4_CIDR if network.version == 4 else AddressKind.IPV6_CIDR
    return AddressToken(raw=text, kind=kind, normalized=network.with_prefixlen)


def classify(token: str) -> AddressKind:
    """Return the kind of a trusted network token."""
    return parse_token(token).kind


def partition(tokens: Iterable[Union[str, AddressToken]], apply_to: str = "any") -> NetworkPartition:
    """
    Split trusted networks into IPv4 and IPv6 sets plus hostnames.

    First-seen order is kept and duplicates (after normalization) collapse.
    A family excluded by ``apply_to`` is dropped entirely; that is not an
    error. Hostnames are always reported, whatever the scope.
    """
    ipv4: List[AddressToken] = []
    ipv6: List[AddressToken] = []
    hostnames: List[str] = []
    seen = set()

    def _add(parsed: AddressToken):
        key = (parsed.kind, parsed.normalized)
        if key in seen:
            return
        seen.add(key)
        if parsed.kind is AddressKind.IPV4_CIDR:
            ipv4.append(parsed)
        elif parsed.kind is AddressKind.IPV6_CIDR:
            ipv6.append(parsed)
        else:
            hostnames.append(parsed.raw)

    for token in tokens:
        if isinstance(token, AddressToken):
            _add(token)
        elif isinstance(token, str) and token.strip().lower() in ALL_NETWORKS_TOKENS:
            _add(AddressToken(raw=token.strip(), kind=AddressKind.IPV4_CIDR, normalized=IPV4_FULL_RANGE))
            _add(AddressToken(raw=token.strip(), kind=AddressKind.IPV6_CIDR, normalized=IPV6_FULL_RANGE))
        else:
            _add(parse_token(token))

    if apply_to == IPV4:
        ipv6 = []
    elif apply_to == IPV6:
        ipv4 = []

    return NetworkPartition(
        ipv4=NetworkSet(IPV4, tuple(ipv4)),
        ipv6=NetworkSet(IPV6, tuple(ipv6)),
        hostnames=tuple(hostnames),
    )
