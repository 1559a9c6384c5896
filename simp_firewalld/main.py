import logging
from typing import Dict
from functools import lru_cache
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status, Depends
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from . import catalog
from . import config
from . import openapi_utils
from .errors import FirewallCommandError, RuleCompileError
from .firewalld import FirewalldIntegration
from .models import (
    Catalog,
    CompileRequest,
    ErrorResponse,
    HealthResponse,
    PlanResponse,
    ZoneResponse,
)


@lru_cache()
def get_settings() -> Dict:
    """
    Loads settings from the YAML file and caches the result.
    """
    settings = config.load_config()
    config.setup_logging(settings)
    return settings


def get_firewalld_settings(settings: dict = Depends(get_settings)) -> config.FirewalldSettings:
    """Dependency returning the immutable firewalld policy."""
    return config.get_firewalld_settings(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    On startup, it compiles the configured rules so configuration errors are
    reported immediately, and optionally applies them to firewalld.
    """
    logging.info("simp_firewalld service starting up...")

    settings = get_settings()
    fw_settings = config.get_firewalld_settings(settings)

    documentation = config.get_documentation_settings(settings)
    if documentation.enabled:
        try:
            openapi_utils.write_openapi_document(app, documentation.openapi_output_path)
        except OSError as exc:
            logging.error(f"Failed to persist OpenAPI schema: {exc}")

    compiled = catalog.compile_rules(settings.get("rules") or {}, fw_settings)

    apply_config = settings.get("apply") or {}
    if apply_config.get("on_startup", False):
        integration = FirewalldIntegration(fw_settings, dry_run=apply_config.get("dry_run", False))
        try:
            integration.apply(compiled)
            logging.info("Configured rules applied to firewalld")
        except FirewallCommandError as exc:
            logging.error(f"Failed to apply configured rules to firewalld: {exc}")
    else:
        logging.info("Applying rules on startup is disabled")

    yield
    logging.info("simp_firewalld service shutting down.")


app = FastAPI(
    lifespan=lifespan,
    title="simp_firewalld API",
    description="""
Compiles declarative firewall rules into firewalld zones, ipsets, services and rich rules.

## Features

* **Deterministic ipset names**: identical networks always map to the same `simp-` ipset
* **IPv4 and IPv6**: one rule per address family, restricted with `apply_to`
* **Custom services**: ports of a rule are bundled into a `simp_<title>` service
* **firewall-cmd plans**: see exactly which commands realize a rule set
""",
    version="1.0.0",
    openapi_tags=[
        {"name": "Rules", "description": "Rule compilation and planning"},
        {"name": "System", "description": "Health monitoring and zone configuration"},
    ],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Convert request body validation errors to 400 Bad Request."""
    error_msg = "Invalid request data."
    if exc.errors():
        first_error = exc.errors()[0]
        location = ".".join(str(part) for part in first_error.get("loc", []))
        error_msg = f"Invalid request data at {location}: {first_error.get('msg', 'invalid value')}"

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": error_msg},
    )


@app.exception_handler(RuleCompileError)
async def rule_compile_exception_handler(request: Request, exc: RuleCompileError):
    """Report invalid rules and addresses as 422 with the offending rule named."""
    logging.warning(f"Rejected rules: {exc}")
    return JSONResponse(
        status_code=422,
        content={"error": str(exc)},
    )


# --- API Endpoints ---


@app.post(
    "/rules/compile",
    tags=["Rules"],
    summary="Compile rules",
    description="Compile rule parameters into the firewalld resources that implement them.",
    response_model=Catalog,
    responses={
        400: {"model": ErrorResponse, "description": "Malformed request body"},
        422: {"model": ErrorResponse, "description": "A rule or trusted network is invalid"},
    },
)
async def compile_rules(
    body: CompileRequest,
    fw_settings: config.FirewalldSettings = Depends(get_firewalld_settings),
):
    return catalog.compile_rules(body.rules, fw_settings)


@app.post(
    "/rules/plan",
    tags=["Rules"],
    summary="Plan firewall-cmd invocations",
    description="Compile rules and return the firewall-cmd argument vectors that would create them.",
    response_model=PlanResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Malformed request body"},
        422: {"model": ErrorResponse, "description": "A rule or trusted network is invalid"},
    },
)
async def plan_rules(
    body: CompileRequest,
    fw_settings: config.FirewalldSettings = Depends(get_firewalld_settings),
):
    compiled = catalog.compile_rules(body.rules, fw_settings)
    return PlanResponse(commands=FirewalldIntegration(fw_settings, dry_run=True).plan(compiled))


@app.get(
    "/rules",
    tags=["Rules"],
    summary="Configured rules",
    description="The compiled catalog of the rules in the configuration file.",
    response_model=Catalog,
)
async def configured_rules(
    settings: dict = Depends(get_settings),
    fw_settings: config.FirewalldSettings = Depends(get_firewalld_settings),
):
    return catalog.compile_rules(settings.get("rules") or {}, fw_settings)


@app.get(
    "/zone",
    tags=["System"],
    summary="Managed zone",
    description="The zone and daemon settings derived from the configuration.",
    response_model=ZoneResponse,
)
async def zone(fw_settings: config.FirewalldSettings = Depends(get_firewalld_settings)):
    return ZoneResponse(
        zone=catalog.zone_resource(fw_settings),
        daemon=catalog.daemon_resource(fw_settings),
    )


@app.get(
    "/health",
    tags=["System"],
    summary="Health Check",
    description="Simple health check endpoint to verify the service is running.",
    response_model=HealthResponse,
)
async def health_check():
    return HealthResponse(status="ok")
