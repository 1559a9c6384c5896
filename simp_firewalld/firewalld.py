"""
Firewalld integration for compiled catalogs.

This module handles:
- Rendering rich rule resources into firewalld's rich language
- Planning the firewall-cmd invocations that realize a catalog
- Applying a catalog idempotently: only missing zones, ipsets, services and
  rich rules are added, stale ones in the managed namespace are removed
"""

import logging
import subprocess
from typing import Dict, List, Optional, Set, Tuple

from .config import FirewalldSettings
from .errors import FirewallCommandError
from .models import Catalog, CustomServiceResource, IPSetResource, RichRuleResource, ServicePort

LOCKDOWN_FLAGS = {"yes": "--lockdown-on", "no": "--lockdown-off"}


def render_rich_rule(rule: RichRuleResource) -> str:
    """
    Render a rich rule resource the way ``firewall-cmd --list-rich-rules``
    prints it, so existing rules can be compared as plain strings.
    """
    parts = ["rule"]
    if rule.order:
        parts.append(f'priority="{rule.order}"')
    parts.append(f'family="{rule.family}"')

    if rule.ipset:
        parts.append(f'source ipset="{rule.ipset}"')
    elif rule.source:
        parts.append(f'source address="{rule.source}"')

    if rule.service:
        parts.append(f'service name="{rule.service}"')
    elif rule.port:
        parts.append(f'port port="{rule.port.port}" protocol="{rule.port.protocol}"')
    elif rule.protocol:
        parts.append(f'protocol value="{rule.protocol}"')

    parts.append(rule.action)
    return " ".join(parts)


def _ipset_create_args(ipset: IPSetResource) -> List[str]:
    return ["--permanent", f"--new-ipset={ipset.name}", f"--type={ipset.type}", f"--option=family={ipset.family}"]


def _ipset_entry_args(ipset: IPSetResource, entry: str, action: str = "add") -> List[str]:
    return ["--permanent", f"--ipset={ipset.name}", f"--{action}-entry={entry}"]


def _service_port_args(service: CustomServiceResource, port, action: str = "add") -> List[str]:
    return ["--permanent", f"--service={service.name}", f"--{action}-port={port.port}/{port.protocol}"]


def _rich_rule_args(zone: str, rule_text: str, action: str = "add") -> List[str]:
    return ["--permanent", f"--zone={zone}", f"--{action}-rich-rule={rule_text}"]


class FirewalldIntegration:
    """Realizes compiled catalogs through firewall-cmd."""

    def __init__(self, settings: Optional[FirewalldSettings] = None, dry_run: bool = False):
        self.settings = settings or FirewalldSettings()
        self.dry_run = dry_run
        self.id_prefix = f"{self.settings.namespace}-"
        self.logger = logging.getLogger(__name__)

    def _run_firewall_cmd(self, args: List[str], check: bool = True) -> Tuple[bool, str, str]:
        """
        Run firewall-cmd with given arguments.

        Returns:
            Tuple of (success, stdout, stderr)
        """
        cmd = ["firewall-cmd"] + args
        self.logger.debug("Executing firewall-cmd: %s", " ".join(cmd))

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=30,
                check=check
            )
            return True, result.stdout.strip(), result.stderr.strip()
        except subprocess.CalledProcessError as e:
            if check:
                self.logger.error(f"firewall-cmd failed: {e.stderr}")
            return False, e.stdout.strip() if e.stdout else "", e.stderr.strip() if e.stderr else ""
        except subprocess.TimeoutExpired:
            self.logger.error("firewall-cmd command timed out")
            return False, "", "Command timed out"
        except OSError as e:
            self.logger.error(f"Unable to run firewall-cmd: {e}")
            return False, "", str(e)

    def _change(self, args: List[str]):
        """Run a mutating command; raise when it fails."""
        if self.dry_run:
            self.logger.info("Dry run, not executing: firewall-cmd %s", " ".join(args))
            return
        success, stdout, stderr = self._run_firewall_cmd(args)
        if not success:
            raise FirewallCommandError(args, detail=stderr or stdout)

    def _query_list(self, args: List[str]) -> List[str]:
        success, stdout, stderr = self._run_firewall_cmd(args, check=False)
        if not success:
            self.logger.warning(f"Query firewall-cmd {' '.join(args)} failed: {stderr}")
            return []
        return stdout.split()

    def _query_lines(self, args: List[str]) -> List[str]:
        success, stdout, stderr = self._run_firewall_cmd(args, check=False)
        if not success:
            self.logger.warning(f"Query firewall-cmd {' '.join(args)} failed: {stderr}")
            return []
        return [line.strip() for line in stdout.splitlines() if line.strip()]

    def is_firewalld_available(self) -> bool:
        """Check if firewalld is available and running."""
        success, stdout, stderr = self._run_firewall_cmd(["--state"], check=False)
        if success and "running" in stdout:
            return True

        self.logger.warning(f"Firewalld not available: {stderr}")
        return False

    def plan(self, catalog: Catalog) -> List[List[str]]:
        """
        Every firewall-cmd argument vector needed to build the catalog from
        scratch, in dependency order: zone, ipsets, services, rich rules,
        daemon settings, reload.
        """
        commands: List[List[str]] = []
        zone = catalog.zone

        commands.append(["--permanent", f"--new-zone={zone.name}"])
        commands.append(["--permanent", f"--zone={zone.name}", f"--set-target={zone.target}"])
        for name in sorted({rule.zone for rule in catalog.rich_rules} - {zone.name}):
            commands.append(["--permanent", f"--new-zone={name}"])

        for ipset in catalog.ipsets:
            commands.append(_ipset_create_args(ipset))
            for entry in ipset.entries:
                commands.append(_ipset_entry_args(ipset, entry))

        for service in catalog.services:
            commands.append(["--permanent", f"--new-service={service.name}"])
            for port in service.ports:
                commands.append(_service_port_args(service, port))

        for rule in catalog.rich_rules:
            commands.append(_rich_rule_args(rule.zone, render_rich_rule(rule)))

        commands.append([f"--set-default-zone={catalog.daemon.default_zone}"])
        commands.append([f"--set-log-denied={catalog.daemon.log_denied}"])
        commands.append([LOCKDOWN_FLAGS[catalog.daemon.lockdown]])
        commands.append(["--reload"])
        return commands

    def _sync_zone(self, catalog: Catalog) -> int:
        """
        Create the managed zone and every zone a rule overrides to. Only the
        managed zone gets its target set; override zones keep their own.
        """
        zone = catalog.zone
        existing = set(self._query_list(["--permanent", "--get-zones"]))
        changes = 0
        for name in [zone.name] + sorted({rule.zone for rule in catalog.rich_rules} - {zone.name}):
            if name not in existing:
                self._change(["--permanent", f"--new-zone={name}"])
                self.logger.info(f"Created firewalld zone: {name}")
                changes += 1

        success, target, _ = self._run_firewall_cmd(["--permanent", f"--zone={zone.name}", "--get-target"], check=False)
        if not success or target != zone.target:
            self._change(["--permanent", f"--zone={zone.name}", f"--set-target={zone.target}"])
            changes += 1
        return changes

    def _sync_ipsets(self, catalog: Catalog) -> int:
        existing = set(self._query_list(["--permanent", "--get-ipsets"]))
        changes = 0
        for ipset in catalog.ipsets:
            current: Set[str] = set()
            if ipset.name not in existing:
                self._change(_ipset_create_args(ipset))
                self.logger.info(f"Created ipset {ipset.name} ({ipset.family})")
                changes += 1
            else:
                current = set(self._query_list(["--permanent", f"--ipset={ipset.name}", "--get-entries"]))

            for entry in ipset.entries:
                if entry not in current:
                    self._change(_ipset_entry_args(ipset, entry))
                    changes += 1
            for entry in sorted(current - set(ipset.entries)):
                self._change(_ipset_entry_args(ipset, entry, action="remove"))
                changes += 1
        return changes

    def _sync_services(self, catalog: Catalog) -> int:
        existing = set(self._query_list(["--permanent", "--get-services"]))
        changes = 0
        for service in catalog.services:
            current: Set[str] = set()
            if service.name not in existing:
                self._change(["--permanent", f"--new-service={service.name}"])
                self.logger.info(f"Created service {service.name}")
                changes += 1
            else:
                current = set(self._query_list(["--permanent", f"--service={service.name}", "--get-ports"]))

            wanted = {f"{port.port}/{port.protocol}": port for port in service.ports}
            for key, port in wanted.items():
                if key not in current:
                    self._change(_service_port_args(service, port))
                    changes += 1
            for entry in sorted(current - set(wanted)):
                number, _, protocol = entry.partition("/")
                self._change(_service_port_args(service, ServicePort(port=number, protocol=protocol), action="remove"))
                self.logger.info(f"Removed port {entry} from service {service.name}")
                changes += 1
        return changes

    def _purge_zone_bindings(self, catalog: Catalog) -> int:
        """
        Remove services and ports bound directly to the managed zone. Compiled
        rules only reach services through rich rules, so any direct binding is
        unmanaged.
        """
        zone = catalog.zone
        changes = 0
        if zone.purge_services:
            for name in self._query_list(["--permanent", f"--zone={zone.name}", "--list-services"]):
                self._change(["--permanent", f"--zone={zone.name}", f"--remove-service={name}"])
                self.logger.info(f"Removed unmanaged service {name} from {zone.name}")
                changes += 1
        if zone.purge_ports:
            for entry in self._query_list(["--permanent", f"--zone={zone.name}", "--list-ports"]):
                self._change(["--permanent", f"--zone={zone.name}", f"--remove-port={entry}"])
                self.logger.info(f"Removed unmanaged port {entry} from {zone.name}")
                changes += 1
        return changes

    def _sync_rich_rules(self, catalog: Catalog) -> int:
        wanted: Dict[str, List[str]] = {}
        for rule in catalog.rich_rules:
            wanted.setdefault(rule.zone, []).append(render_rich_rule(rule))
        wanted.setdefault(catalog.zone.name, [])

        changes = 0
        for zone, rules in wanted.items():
            current = self._query_lines(["--permanent", f"--zone={zone}", "--list-rich-rules"])
            for rule_text in rules:
                if rule_text not in current:
                    self._change(_rich_rule_args(zone, rule_text))
                    self.logger.info(f"Added rich rule to {zone}: {rule_text}")
                    changes += 1

            if zone == catalog.zone.name and catalog.zone.purge_rich_rules:
                for rule_text in current:
                    if rule_text not in rules:
                        self._change(_rich_rule_args(zone, rule_text, action="remove"))
                        self.logger.info(f"Removed unmanaged rich rule from {zone}: {rule_text}")
                        changes += 1
        return changes

    def _prune_ipsets(self, catalog: Catalog) -> int:
        """Delete namespace ipsets that no rule uses any more."""
        wanted = {ipset.name for ipset in catalog.ipsets}
        changes = 0
        for name in self._query_list(["--permanent", "--get-ipsets"]):
            if name.startswith(self.id_prefix) and name not in wanted:
                self._change(["--permanent", f"--delete-ipset={name}"])
                self.logger.info(f"Deleted stale ipset {name}")
                changes += 1
        return changes

    def _prune_services(self, catalog: Catalog) -> int:
        """Delete namespace services that no rule references any more."""
        wanted = {service.name for service in catalog.services}
        service_prefix = f"{self.settings.namespace}_"
        changes = 0
        for name in self._query_list(["--permanent", "--get-services"]):
            if name.startswith(service_prefix) and name not in wanted:
                self._change(["--permanent", f"--delete-service={name}"])
                self.logger.info(f"Deleted stale service {name}")
                changes += 1
        return changes

    def _sync_daemon(self, catalog: Catalog) -> int:
        daemon = catalog.daemon
        changes = 0

        success, default_zone, _ = self._run_firewall_cmd(["--get-default-zone"], check=False)
        if not success or default_zone != daemon.default_zone:
            self._change([f"--set-default-zone={daemon.default_zone}"])
            changes += 1

        success, log_denied, _ = self._run_firewall_cmd(["--get-log-denied"], check=False)
        if not success or log_denied != daemon.log_denied:
            self._change([f"--set-log-denied={daemon.log_denied}"])
            changes += 1

        # --query-lockdown exits non-zero when lockdown is off
        locked, _, _ = self._run_firewall_cmd(["--query-lockdown"], check=False)
        if locked != (daemon.lockdown == "yes"):
            self._change([LOCKDOWN_FLAGS[daemon.lockdown]])
            changes += 1

        self.logger.debug(f"Firewall backend {daemon.firewall_backend} is managed in firewalld.conf")
        return changes

    def apply(self, catalog: Catalog) -> int:
        """
        Bring firewalld in line with the catalog.

        Returns:
            Number of changes made (0 when everything was already in place)

        Raises:
            FirewallCommandError: when firewalld is unavailable or a change fails
        """
        if not self.settings.enable:
            self.logger.info("Firewalld management is disabled; not applying catalog")
            return 0

        if not self.is_firewalld_available():
            raise FirewallCommandError(["--state"], message="firewalld is not running")

        changes = self._sync_zone(catalog)
        changes += self._sync_ipsets(catalog)
        changes += self._sync_services(catalog)
        changes += self._sync_rich_rules(catalog)
        changes += self._purge_zone_bindings(catalog)
        # stale rich rules are gone, so nothing references what is pruned below
        if catalog.zone.purge_rich_rules:
            changes += self._prune_ipsets(catalog)
        if catalog.zone.purge_services:
            changes += self._prune_services(catalog)

        if changes:
            self._change(["--reload"])

        # these take effect without a reload
        changes += self._sync_daemon(catalog)

        self.logger.info(f"Applied catalog to firewalld with {changes} changes")
        return changes
