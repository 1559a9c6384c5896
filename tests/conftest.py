import pytest

from simp_firewalld.config import FirewalldSettings


@pytest.fixture
def settings():
    """Default firewalld policy."""
    return FirewalldSettings()


@pytest.fixture
def ipv4_nets():
    return [
        "10.0.2.0/24",
        "10.0.2.33/32",
        "1.2.3.4/32",
        "2.3.4.0/24",
        "3.0.0.0/8",
    ]


@pytest.fixture
def ipv6_nets():
    return [
        "fe80::/64",
        "2001:cdba:0000:0000:0000:0000:3257:9652/128",
        "2001:cdba:0000:0000:0000:0000:3257:9652/16",
    ]


@pytest.fixture
def hostnames():
    return ["foo.bar.baz", "i.like.cheese"]
