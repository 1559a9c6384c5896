"""
Pydantic models for declared rules, the firewalld resources compiled from
them, and the request/response schemas of the HTTP API.
"""
import re
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import InvalidRuleSpec

PORT_PROTOCOLS = ("tcp", "udp", "sctp", "dccp")
PORTLESS_PROTOCOLS = ("all", "ah", "esp", "icmp", "igmp", "gre", "ipip")
APPLY_TO_SCOPES = ("any", "ipv4", "ipv6")
ACTIONS = ("accept", "reject", "drop")

_PORT_RANGE = re.compile(r"^\s*([0-9]{1,5})\s*[:-]\s*([0-9]{1,5})\s*$")
_PORT = re.compile(r"^\s*([0-9]{1,5})\s*$")


def _check_port(number: int, raw: Any) -> int:
    if number < 1 or number > 65535:
        raise ValueError(f"port {raw!r} out of range 1-65535")
    return number


def normalize_port(value: Union[int, str]) -> str:
    """
    Normalize a port or port range to firewalld's ``port`` / ``low-high`` form.
    ``234:567`` and ``234-567`` are the same range; ``80:80`` is just ``80``.
    """
    if isinstance(value, bool):
        raise ValueError(f"invalid port {value!r}")
    if isinstance(value, int):
        return str(_check_port(value, value))
    if isinstance(value, str):
        match = _PORT.match(value)
        if match:
            return str(_check_port(int(match.group(1)), value))
        match = _PORT_RANGE.match(value)
        if match:
            low = _check_port(int(match.group(1)), value)
            high = _check_port(int(match.group(2)), value)
            if low > high:
                raise ValueError(f"port range {value!r} has its low end above its high end")
            return str(low) if low == high else f"{low}-{high}"
    raise ValueError(f"invalid port {value!r}")


def _summarize_validation_error(error: ValidationError) -> str:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "rule"
        message = str(item.get("msg", "invalid value")).removeprefix("Value error, ")
        messages.append(f"{location}: {message}")
    return "; ".join(messages)


class RuleSpec(BaseModel):
    """A declared rule: who may reach what, in which zone, in which order."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    title: str = Field(min_length=1)
    protocol: str
    trusted_nets: Tuple[str, ...] = Field(min_length=1)
    dports: Tuple[str, ...] = ()
    order: Optional[int] = Field(default=None, ge=0)
    apply_to: str = "any"
    zone: Optional[str] = None
    action: str = "accept"

    @field_validator("protocol", mode="before")
    @classmethod
    def validate_protocol(cls, v):
        if not isinstance(v, str) or v.lower() not in PORT_PROTOCOLS + PORTLESS_PROTOCOLS:
            raise ValueError(
                f"unsupported protocol {v!r}; expected one of {', '.join(PORT_PROTOCOLS + PORTLESS_PROTOCOLS)}"
            )
        return v.lower()

    @field_validator("trusted_nets", mode="before")
    @classmethod
    def coerce_trusted_nets(cls, v):
        if isinstance(v, str):
            return (v,)
        return v

    @field_validator("dports", mode="before")
    @classmethod
    def validate_dports(cls, v):
        if v is None:
            return ()
        if isinstance(v, (int, str)):
            v = [v]
        if not isinstance(v, (list, tuple)):
            raise ValueError(f"dports must be a port, a port range or a list of them, not {v!r}")
        ports: List[str] = []
        for port in v:
            normalized = normalize_port(port)
            if normalized not in ports:
                ports.append(normalized)
        return tuple(ports)

    @field_validator("apply_to")
    @classmethod
    def validate_apply_to(cls, v):
        if v not in APPLY_TO_SCOPES:
            raise ValueError(f"apply_to must be one of {', '.join(APPLY_TO_SCOPES)}, not {v!r}")
        return v

    @field_validator("action")
    @classmethod
    def validate_action(cls, v):
        if v not in ACTIONS:
            raise ValueError(f"action must be one of {', '.join(ACTIONS)}, not {v!r}")
        return v

    @model_validator(mode="after")
    def check_ports_for_protocol(self):
        if self.dports and self.protocol in PORTLESS_PROTOCOLS:
            raise ValueError(f"protocol '{self.protocol}' does not take ports, got {', '.join(self.dports)}")
        return self

    @classmethod
    def from_params(cls, title: str, params: Optional[Mapping[str, Any]] = None) -> "RuleSpec":
        """
        Build a rule from declarative parameters.

        Raises:
            InvalidRuleSpec: naming the rule title and every invalid parameter.
        """
        if params is None:
            params = {}
        if not isinstance(params, Mapping):
            raise InvalidRuleSpec(
                title=title,
                detail=f"rule parameters must be a mapping, not {type(params).__name__}",
            )
        params = dict(params)
        params.pop("title", None)
        try:
            return cls(title=title, **params)
        except ValidationError as e:
            raise InvalidRuleSpec(title=title, detail=_summarize_validation_error(e)) from e


# --- Compiled resources ---


class ServicePort(BaseModel):
    """A port or port range bound to one protocol."""

    model_config = ConfigDict(frozen=True)

    port: str
    protocol: str


class IPSetResource(BaseModel):
    """A named firewalld ipset used as a rich rule source."""

    model_config = ConfigDict(frozen=True)

    name: str
    family: str = Field(description="'inet' for IPv4, 'inet6' for IPv6")
    type: str = "hash:net"
    entries: List[str]


class CustomServiceResource(BaseModel):
    """A firewalld service bundling every port of one rule."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: Optional[str] = None
    ports: List[ServicePort]


class RichRuleResource(BaseModel):
    """One firewalld rich rule as it will be added to a zone."""

    model_config = ConfigDict(frozen=True)

    name: str
    ensure: str = "present"
    zone: str
    family: str
    source: Optional[str] = Field(default=None, description="Inline address or CIDR source")
    ipset: Optional[str] = Field(default=None, description="Name of the ipset used as source")
    service: Optional[str] = None
    port: Optional[ServicePort] = None
    protocol: Optional[str] = None
    action: str = "accept"
    order: int


class NotificationResource(BaseModel):
    """An advisory message attached to a rule that still compiled."""

    model_config = ConfigDict(frozen=True)

    title: str
    message: str
    loglevel: str = "warning"
    withpath: bool = True


class ZoneResource(BaseModel):
    """The zone that holds the compiled rules."""

    model_config = ConfigDict(frozen=True)

    name: str
    target: str
    interfaces: List[str] = Field(default_factory=list)
    purge_rich_rules: bool = True
    purge_services: bool = True
    purge_ports: bool = True


class DaemonResource(BaseModel):
    """Daemon-wide settings passed through to firewalld unchanged."""

    model_config = ConfigDict(frozen=True)

    default_zone: str
    lockdown: str
    log_denied: str
    firewall_backend: str


class RuleResources(BaseModel):
    """Everything compiled from a single rule."""

    model_config = ConfigDict(frozen=True)

    title: str
    rich_rules: List[RichRuleResource] = Field(default_factory=list)
    ipsets: List[IPSetResource] = Field(default_factory=list)
    services: List[CustomServiceResource] = Field(default_factory=list)
    notifications: List[NotificationResource] = Field(default_factory=list)


class Catalog(BaseModel):
    """The merged resources of every rule plus the zone and daemon they live in."""

    model_config = ConfigDict(frozen=True)

    zone: ZoneResource
    daemon: DaemonResource
    rich_rules: List[RichRuleResource] = Field(default_factory=list)
    ipsets: List[IPSetResource] = Field(default_factory=list)
    services: List[CustomServiceResource] = Field(default_factory=list)
    notifications: List[NotificationResource] = Field(default_factory=list)


# --- API schemas ---


class CompileRequest(BaseModel):
    """Body of the /rules/compile and /rules/plan endpoints."""

    model_config = ConfigDict(extra="forbid")

    rules: Dict[str, Dict[str, Any]] = Field(
        description="Rule parameters keyed by rule title.",
        examples=[{"allow_ssh": {"protocol": "tcp", "trusted_nets": ["10.0.0.0/8"], "dports": [22]}}],
    )


class PlanResponse(BaseModel):
    """firewall-cmd argument vectors that realize a catalog."""

    commands: List[List[str]]


class ZoneResponse(BaseModel):
    """Response model for the /zone endpoint."""

    zone: ZoneResource
    daemon: DaemonResource


class HealthResponse(BaseModel):
    """Response model for the /health endpoint."""

    status: str = Field(description="Overall service health status.")


class ErrorResponse(BaseModel):
    """Standard error payload returned by API endpoints when a request fails."""

    error: str = Field(description="Human-readable explanation of the failure.")
