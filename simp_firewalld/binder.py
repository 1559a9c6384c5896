"""
Binds concrete rules to a zone and, where ports are involved, to a custom
service that bundles them.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from .config import FirewalldSettings
from .models import PORT_PROTOCOLS, CustomServiceResource, RichRuleResource, RuleSpec, ServicePort
from .rules import ConcreteRule

logger = logging.getLogger(__name__)

_SERVICE_NAME_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")


@dataclass(frozen=True)
class BoundRule:
    """Rich rules and the services they reference, for one declared rule."""
    rich_rules: Tuple[RichRuleResource, ...] = ()
    services: Tuple[CustomServiceResource, ...] = ()


def service_name(spec: RuleSpec, settings: FirewalldSettings) -> str:
    """Name of the custom service for a rule, e.g. ``simp_allow_ssh``."""
    return f"{settings.namespace}_{_SERVICE_NAME_UNSAFE.sub('_', spec.title)}"


def rule_name(spec: RuleSpec, rule: ConcreteRule, settings: FirewalldSettings) -> str:
    """Unique rich rule name: ``<namespace>_<order>_<title>_<source identifier>``."""
    return f"{settings.namespace}_{rule.order}_{spec.title}_{rule.identifier}"


def needs_service(spec: RuleSpec, settings: FirewalldSettings) -> bool:
    """
    Whether a rule's ports are bundled in a custom service rather than
    matched inline. A single port or a single contiguous range can be matched
    inline; anything more needs a service.
    """
    if spec.protocol not in PORT_PROTOCOLS or not spec.dports:
        return False
    return settings.service_for_single_port or len(spec.dports) > 1


def build_service(spec: RuleSpec, settings: FirewalldSettings) -> CustomServiceResource:
    ports: List[ServicePort] = []
    for port in spec.dports:
        entry = ServicePort(port=port, protocol=spec.protocol)
        if entry not in ports:
            ports.append(entry)
    return CustomServiceResource(
        name=service_name(spec, settings),
        description=f"Ports for rule '{spec.title}'",
        ports=ports,
    )


def bind(concrete_rules: Iterable[ConcreteRule], spec: RuleSpec,
         settings: Optional[FirewalldSettings] = None, zone: Optional[str] = None) -> BoundRule:
    """
    Assign concrete rules to a zone and attach their port/protocol match.

    The zone is, in order of precedence: the ``zone`` argument, the rule's
    own zone, the configured default zone.
    """
    settings = settings or FirewalldSettings()
    zone = zone or spec.zone or settings.default_zone
    concrete_rules = list(concrete_rules)

    service = None
    inline_port = None
    protocol = None

    if needs_service(spec, settings):
        service = build_service(spec, settings)
    elif spec.protocol in PORT_PROTOCOLS and spec.dports:
        inline_port = ServicePort(port=spec.dports[0], protocol=spec.protocol)
    elif spec.protocol != "all":
        protocol = spec.protocol

    rich_rules = []
    for rule in concrete_rules:
        rich_rules.append(RichRuleResource(
            name=rule_name(spec, rule, settings),
            zone=zone,
            family=rule.family,
            source=rule.source,
            ipset=rule.ipset,
            service=service.name if service else None,
            port=inline_port,
            protocol=protocol,
            action=rule.action,
            order=rule.order,
        ))
        logger.debug(f"Bound rule {rich_rules[-1].name} to zone {zone}")

    # services are only emitted when a rich rule references them
    services = (service,) if service and rich_rules else ()
    return BoundRule(rich_rules=tuple(rich_rules), services=services)
