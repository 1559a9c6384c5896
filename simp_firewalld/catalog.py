"""
Compiles declared rules into a single catalog of firewalld resources.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from .binder import bind
from .config import FirewalldSettings
from .errors import InvalidRuleSpec
from .models import (
    Catalog,
    CustomServiceResource,
    DaemonResource,
    IPSetResource,
    NotificationResource,
    RichRuleResource,
    RuleResources,
    RuleSpec,
    ZoneResource,
)
from .rules import expand

logger = logging.getLogger(__name__)


def zone_resource(settings: FirewalldSettings) -> ZoneResource:
    return ZoneResource(
        name=settings.default_zone,
        target=settings.default_zone_target,
        interfaces=[],
        purge_rich_rules=settings.purge_rich_rules,
        purge_services=settings.purge_services,
        purge_ports=settings.purge_ports,
    )


def daemon_resource(settings: FirewalldSettings) -> DaemonResource:
    return DaemonResource(
        default_zone=settings.default_zone,
        lockdown=settings.lockdown,
        log_denied=settings.log_denied,
        firewall_backend=settings.firewall_backend,
    )


def hostname_notification(title: str, message: str) -> NotificationResource:
    return NotificationResource(
        title=f"simp_firewalld::rule[{title}] - hostname warning",
        message=message,
    )


def compile_rule(spec: RuleSpec, settings: Optional[FirewalldSettings] = None) -> RuleResources:
    """Expand and bind a single rule."""
    settings = settings or FirewalldSettings()
    expansion = expand(spec, settings)
    bound = bind(expansion.rules, spec, settings)

    notifications = []
    if expansion.hostname_warning:
        notifications.append(hostname_notification(spec.title, expansion.hostname_warning))

    return RuleResources(
        title=spec.title,
        rich_rules=list(bound.rich_rules),
        ipsets=list(expansion.ipsets),
        services=list(bound.services),
        notifications=notifications,
    )


def _as_specs(rules: Union[Mapping[str, Dict[str, Any]], List[RuleSpec]]) -> List[RuleSpec]:
    if isinstance(rules, Mapping):
        return [RuleSpec.from_params(title, params) for title, params in rules.items()]

    specs = list(rules)
    seen = set()
    for spec in specs:
        if spec.title in seen:
            raise InvalidRuleSpec(title=spec.title, detail="rule title is declared more than once")
        seen.add(spec.title)
    return specs


def compile_rules(rules: Union[Mapping[str, Dict[str, Any]], List[RuleSpec]],
                  settings: Optional[FirewalldSettings] = None) -> Catalog:
    """
    Compile many rules into one catalog.

    ``rules`` is either a mapping of title to parameters (as found in the
    ``rules`` config section) or a list of RuleSpec. Every rule is compiled
    before anything is returned, so one invalid rule fails the whole catalog.
    Ipsets shared by rules with identical networks appear once.
    """
    settings = settings or FirewalldSettings()
    specs = _as_specs(rules)

    rich_rules: List[RichRuleResource] = []
    ipsets: Dict[str, IPSetResource] = {}
    services: Dict[str, CustomServiceResource] = {}
    notifications: List[NotificationResource] = []

    for spec in specs:
        resources = compile_rule(spec, settings)
        rich_rules.extend(resources.rich_rules)
        for ipset in resources.ipsets:
            ipsets.setdefault(ipset.name, ipset)
        for service in resources.services:
            if service.name in services and services[service.name] != service:
                raise InvalidRuleSpec(
                    title=spec.title,
                    detail=f"service name '{service.name}' collides with another rule",
                )
            services.setdefault(service.name, service)
        notifications.extend(resources.notifications)

    logger.info(
        f"Compiled {len(specs)} rules into {len(rich_rules)} rich rules, "
        f"{len(ipsets)} ipsets and {len(services)} services"
    )

    return Catalog(
        zone=zone_resource(settings),
        daemon=daemon_resource(settings),
        rich_rules=rich_rules,
        ipsets=list(ipsets.values()),
        services=list(services.values()),
        notifications=notifications,
    )
