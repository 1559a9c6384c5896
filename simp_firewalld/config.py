import yaml
import sys
import os
import logging
from pathlib import Path
from typing import Dict, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

CONFIG_PATH_ENV = "SIMP_FIREWALLD_CONFIG_PATH"
CONFIG_SECTIONS = ("logging", "firewalld", "rules", "apply", "documentation")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class FirewalldSettings(BaseModel):
    """
    Global policy consumed by every compilation call.

    Frozen so that one instance can be shared between requests; build a new
    one with ``model_copy(update=...)`` when a caller needs different values.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    enable: bool = True
    default_zone: str = Field(default="99_simp", min_length=1)
    default_order: int = Field(default=11, ge=0)
    firewall_backend: Literal["iptables", "nftables"] = "nftables"
    lockdown: Literal["yes", "no"] = "yes"
    log_denied: Literal["all", "unicast", "broadcast", "multicast", "off"] = "unicast"
    default_zone_target: Literal["default", "ACCEPT", "DROP", "REJECT", "%%REJECT%%"] = "DROP"
    purge_rich_rules: bool = True
    purge_services: bool = True
    purge_ports: bool = True
    namespace: str = Field(default="simp", pattern=r"^[A-Za-z][A-Za-z0-9]*$")
    service_for_single_port: bool = True

    @field_validator("default_zone")
    @classmethod
    def validate_zone_name(cls, v):
        # firewalld zone names become file names under /etc/firewalld/zones
        if "/" in v or v.strip() != v:
            raise ValueError(f"Invalid zone name '{v}'")
        return v


class DocumentationSettings(BaseModel):
    """Where the HTTP service writes its OpenAPI document on startup."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = False
    openapi_output_path: Path = Path("docs/openapi.json")


def setup_logging(config: Dict[str, Any]):
    """
    Configures logging for the application.
    Existing handlers (e.g., uvicorn's) are replaced so the requested level
    applies to every simp_firewalld logger. An unknown level falls back to INFO.
    """
    level_name = str((config.get("logging") or {}).get("level", "INFO")).upper()
    level = logging.getLevelName(level_name)
    known = isinstance(level, int)
    if not known:
        level = logging.INFO

    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stdout, force=True)
    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(logger_name).setLevel(level)

    if not known:
        logging.warning(f"Unknown log level '{level_name}', using INFO")


def _fail(message: str):
    logging.critical(message)
    sys.exit(1)


def load_config() -> Dict[str, Any]:
    """
    Loads the YAML configuration file named by SIMP_FIREWALLD_CONFIG_PATH.

    The service cannot run without its policy, so every problem with the file
    is logged at CRITICAL and exits with status 1. Rule parameters themselves
    are validated when the rules are compiled.
    """
    path = os.getenv(CONFIG_PATH_ENV)
    if not path:
        _fail(f"{CONFIG_PATH_ENV} environment variable not set.")

    try:
        with open(path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except OSError as e:
        _fail(f"Cannot read configuration file {path}: {e}")
    except yaml.YAMLError as e:
        _fail(f"Error parsing YAML file {path}: {e}")

    if config is None:
        return {}
    if not isinstance(config, dict):
        _fail("Configuration file must contain a valid YAML dictionary")

    unknown = sorted(str(section) for section in config if section not in CONFIG_SECTIONS)
    if unknown:
        _fail(f"Unknown configuration sections: {', '.join(unknown)}")
    for section in CONFIG_SECTIONS:
        if config.get(section) is not None and not isinstance(config[section], dict):
            _fail(f"'{section}' must be a dictionary")

    return config


def get_firewalld_settings(config: Dict[str, Any]) -> FirewalldSettings:
    """Builds the immutable policy struct from the 'firewalld' config section."""
    return FirewalldSettings(**(config.get("firewalld") or {}))


def get_documentation_settings(config: Dict[str, Any]) -> DocumentationSettings:
    return DocumentationSettings(**(config.get("documentation") or {}))
