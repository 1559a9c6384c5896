"""
Tests for binding concrete rules to zones and services.
"""
from simp_firewalld import binder, rules
from simp_firewalld.config import FirewalldSettings
from simp_firewalld.models import RuleSpec, ServicePort


def bound(title, settings=None, **params):
    settings = settings or FirewalldSettings()
    spec = RuleSpec.from_params(title, params)
    return binder.bind(rules.expand(spec, settings).rules, spec, settings)


def test_udp_range_gets_custom_service(ipv4_nets, ipv6_nets):
    result = bound("allow_udp_range", protocol="udp", trusted_nets=ipv4_nets + ipv6_nets, dports=[1234, "234:567"])

    assert len(result.services) == 1
    service = result.services[0]
    assert service.name == "simp_allow_udp_range"
    assert service.ports == [ServicePort(port="1234", protocol="udp"), ServicePort(port="234-567", protocol="udp")]

    assert len(result.rich_rules) == 2
    for rule in result.rich_rules:
        assert rule.service == "simp_allow_udp_range"
        assert rule.zone == "99_simp"
        assert rule.action == "accept"
        assert rule.ensure == "present"
        assert rule.ipset is not None
        assert rule.name == f"simp_11_allow_udp_range_{rule.ipset}"


def test_single_port_service_by_default():
    result = bound("allow_tcp_listen", protocol="tcp", trusted_nets=["1.2.3.4/24", "3.4.5.6", "5.6.7.8/32"], dports=1234)

    assert result.services[0].name == "simp_allow_tcp_listen"
    assert result.services[0].ports == [ServicePort(port="1234", protocol="tcp")]
    assert result.rich_rules[0].service == "simp_allow_tcp_listen"
    assert result.rich_rules[0].port is None


def test_single_port_inline_when_configured():
    settings = FirewalldSettings(service_for_single_port=False)
    result = bound("allow_range", settings, protocol="tcp", trusted_nets=["10.0.0.0/8"], dports="8000:8100")

    assert result.services == ()
    assert result.rich_rules[0].service is None
    assert result.rich_rules[0].port == ServicePort(port="8000-8100", protocol="tcp")


def test_discontiguous_ports_need_service_even_when_inline_configured():
    settings = FirewalldSettings(service_for_single_port=False)
    result = bound("allow_web", settings, protocol="tcp", trusted_nets=["10.0.0.0/8"], dports=[80, 443])

    assert result.services[0].name == "simp_allow_web"
    assert len(result.services[0].ports) == 2


def test_all_protocol_has_no_service_or_protocol(ipv4_nets):
    result = bound("allow_all", protocol="all", trusted_nets=ipv4_nets + ["0.0.0.0/0"])

    assert result.services == ()
    sources = [(rule.family, rule.source, rule.service, rule.protocol) for rule in result.rich_rules]
    assert sources == [("ipv4", "0.0.0.0/0", None, None), ("ipv6", "::/0", None, None)]


def test_portless_protocol_matches_protocol(ipv4_nets, ipv6_nets):
    result = bound("allow_esp", protocol="esp", trusted_nets=ipv4_nets + ipv6_nets, order=15)

    assert result.services == ()
    for rule in result.rich_rules:
        assert rule.protocol == "esp"
        assert rule.service is None
        assert rule.name.startswith("simp_15_allow_esp_simp-")


def test_port_protocol_without_ports_matches_protocol():
    result = bound("allow_sctp", protocol="sctp", trusted_nets=["10.0.0.0/8"])
    assert result.services == ()
    assert result.rich_rules[0].protocol == "sctp"


def test_zone_precedence():
    settings = FirewalldSettings(default_zone="custom")
    spec = RuleSpec.from_params("r", {"protocol": "all", "trusted_nets": ["10.0.0.0/8"]})
    concrete = rules.expand(spec, settings).rules

    assert binder.bind(concrete, spec, settings).rich_rules[0].zone == "custom"
    assert binder.bind(concrete, spec, settings, zone="other").rich_rules[0].zone == "other"

    spec_with_zone = RuleSpec.from_params("r", {"protocol": "all", "trusted_nets": ["10.0.0.0/8"], "zone": "trusted"})
    assert binder.bind(concrete, spec_with_zone, settings).rich_rules[0].zone == "trusted"


def test_no_service_without_rules():
    result = bound("ipv4 nets on ipv6", protocol="tcp", trusted_nets=["10.0.0.0/8"], dports=22, apply_to="ipv6")
    assert result.rich_rules == ()
    assert result.services == ()


def test_service_name_is_sanitized():
    spec = RuleSpec.from_params("allow web/ui", {"protocol": "tcp", "trusted_nets": ["10.0.0.0/8"], "dports": 80})
    assert binder.service_name(spec, FirewalldSettings()) == "simp_allow_web_ui"


def test_names_unique_across_families(ipv4_nets, ipv6_nets):
    result = bound("allow_ah", protocol="ah", trusted_nets=ipv4_nets + ipv6_nets)
    names = [rule.name for rule in result.rich_rules]
    assert len(set(names)) == len(names) == 2
