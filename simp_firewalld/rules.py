"""
Rule expansion: one declared rule becomes one concrete rule per address family.

For each family allowed by ``apply_to`` the source is chosen from the
family's de-duplicated networks:

    0 networks   -> no rule for that family
    1 network    -> inline address/CIDR source
    2+ networks  -> a named ipset, referenced as the source

A full-range network (``0.0.0.0/0`` or ``::/0``) subsumes the whole list and
every allowed family gets a single inline wildcard rule instead.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .addresses import FAMILIES, FULL_RANGE, NetworkPartition, partition
from .config import FirewalldSettings
from .errors import InvalidAddress
from .identifiers import derive
from .models import IPSetResource, RuleSpec

logger = logging.getLogger(__name__)

IPSET_FAMILIES = {"ipv4": "inet", "ipv6": "inet6"}


@dataclass(frozen=True)
class ConcreteRule:
    """A single realized rule for one family and one source representation."""
    family: str
    identifier: str
    action: str
    order: int
    protocol: str
    ports: Tuple[str, ...] = ()
    source: Optional[str] = None
    ipset: Optional[str] = None

    def __str__(self):
        source = f"ipset={self.ipset}" if self.ipset else f"address={self.source}"
        return f"{self.family} {source} {self.protocol} {self.action} (order {self.order})"


@dataclass(frozen=True)
class Expansion:
    """Result of expanding one rule."""
    rules: Tuple[ConcreteRule, ...] = ()
    ipsets: Tuple[IPSetResource, ...] = ()
    hostname_warning: Optional[str] = None


def family_in_scope(apply_to: str, family: str) -> bool:
    return apply_to == "any" or apply_to == family


def hostname_warning(hostnames) -> Optional[str]:
    """Advisory message for hostnames that cannot be used as rule sources."""
    if not hostnames:
        return None
    return (
        "Hostnames are not supported as firewalld rule sources and were ignored: "
        + ", ".join(hostnames)
    )


def _partition_rule_networks(spec: RuleSpec) -> NetworkPartition:
    try:
        return partition(spec.trusted_nets, spec.apply_to)
    except InvalidAddress as e:
        raise e.with_title(spec.title) from e


def expand(spec: RuleSpec, settings: Optional[FirewalldSettings] = None) -> Expansion:
    """
    Expand a rule into concrete per-family rules.

    The whole rule fails with InvalidAddress if any trusted network is
    malformed; no partial expansion is returned.
    """
    settings = settings or FirewalldSettings()
    networks = _partition_rule_networks(spec)
    order = spec.order if spec.order is not None else settings.default_order
    id_prefix = f"{settings.namespace}-"

    rules: List[ConcreteRule] = []
    ipsets: List[IPSetResource] = []

    for family in FAMILIES:
        if not family_in_scope(spec.apply_to, family):
            continue

        if networks.has_full_range:
            entries = [FULL_RANGE[family]]
        else:
            entries = networks.for_family(family).entries

        if not entries:
            logger.debug(f"Rule '{spec.title}' has no {family} networks; skipping {family}")
            continue

        identifier = derive(entries, prefix=id_prefix)
        source = None
        ipset_name = None

        if len(entries) == 1:
            source = entries[0]
        else:
            ipset_name = identifier
            ipsets.append(IPSetResource(
                name=identifier,
                family=IPSET_FAMILIES[family],
                entries=sorted(entries),
            ))

        rules.append(ConcreteRule(
            family=family,
            identifier=identifier,
            action=spec.action,
            order=order,
            protocol=spec.protocol,
            ports=spec.dports,
            source=source,
            ipset=ipset_name,
        ))

    warning = hostname_warning(networks.hostnames)
    if warning:
        logger.warning(f"Rule '{spec.title}': {warning}")

    if not rules:
        logger.info(f"Rule '{spec.title}' produced no rules for apply_to={spec.apply_to}")

    return Expansion(rules=tuple(rules), ipsets=tuple(ipsets), hostname_warning=warning)
