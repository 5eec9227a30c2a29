"""
Middleware pipeline definition.

``PIPELINE`` is the one ordered list of request-processing stages. It is
built once per application and never re-registered at runtime. Middleware
stages become Starlette ``Middleware`` entries (first entry = outermost);
the trailing stages install routes and handlers on the app.
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from fastapi import APIRouter, FastAPI
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware

from ...core.config import ServiceConfig
from ...core.exceptions import PipelineOrderError
from ..routes import metrics
from .errors import install_catch_all, install_error_reporter
from .payload import BodyParserMiddleware, NoETagMiddleware, OptOutGZipMiddleware
from .probes import AccessLogMiddleware, LivenessProbeMiddleware
from .rate_limit import RateLimitConfig, RateLimitMiddleware
from .security import SecurityHeadersMiddleware

MiddlewareFactory = Callable[[ServiceConfig], Middleware]
Installer = Callable[[FastAPI, ServiceConfig, Optional[APIRouter]], None]


@dataclass(frozen=True)
class PipelineStage:
    """One named request processor and the position it must keep."""
    name: str
    constraint: str
    middleware: Optional[MiddlewareFactory] = None
    install: Optional[Installer] = None


def _rate_limiter(config: ServiceConfig) -> Middleware:
    return Middleware(
        RateLimitMiddleware,
        config=RateLimitConfig(limit=config.rate_limit_max, window_ms=config.rate_limit_window_ms),
    )


def _cross_origin(config: ServiceConfig) -> Middleware:
    return Middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )


def _compression(config: ServiceConfig) -> Middleware:
    return Middleware(OptOutGZipMiddleware, minimum_size=config.compression_min_size)


def _body_parsers(config: ServiceConfig) -> Middleware:
    return Middleware(BodyParserMiddleware, max_bytes=config.max_body_bytes)


def _mount_routes(app: FastAPI, config: ServiceConfig, routes: Optional[APIRouter]) -> None:
    if config.metrics_enabled:
        app.include_router(metrics.router)
    if routes is not None:
        app.include_router(routes, prefix=config.api_prefix.rstrip("/"))


PIPELINE: Tuple[PipelineStage, ...] = (
    PipelineStage("rate_limiter", "first", middleware=_rate_limiter),
    PipelineStage("security_headers", "before liveness_probe",
                  middleware=lambda config: Middleware(SecurityHeadersMiddleware)),
    PipelineStage("cross_origin", "before liveness_probe", middleware=_cross_origin),
    PipelineStage("liveness_probe", "before access_logger",
                  middleware=lambda config: Middleware(LivenessProbeMiddleware)),
    PipelineStage("access_logger", "before compression",
                  middleware=lambda config: Middleware(AccessLogMiddleware)),
    PipelineStage("compression", "before body_parsers", middleware=_compression),
    PipelineStage("body_parsers", "before route_mount", middleware=_body_parsers),
    PipelineStage("cache_control", "before route_mount",
                  middleware=lambda config: Middleware(NoETagMiddleware)),
    PipelineStage("route_mount", "before catch_all", install=_mount_routes),
    PipelineStage("catch_all", "before error_reporter",
                  install=lambda app, config, routes: install_catch_all(app)),
    PipelineStage("error_reporter", "last",
                  install=lambda app, config, routes: install_error_reporter(app)),
)

# (earlier, later) pairs that must hold in any pipeline
ORDER_CONSTRAINTS: Tuple[Tuple[str, str], ...] = (
    ("rate_limiter", "liveness_probe"),
    ("liveness_probe", "access_logger"),
    ("compression", "body_parsers"),
    ("body_parsers", "route_mount"),
    ("route_mount", "catch_all"),
)


def validate_pipeline(stages: Sequence[PipelineStage]) -> None:
    """Raise PipelineOrderError unless ``stages`` keeps every position rule."""
    names = [stage.name for stage in stages]
    if len(set(names)) != len(names):
        raise PipelineOrderError(f"duplicate stage names in {names}")
    if not names or names[-1] != "error_reporter":
        raise PipelineOrderError("error_reporter must be the last stage")

    position = {name: index for index, name in enumerate(names)}
    for earlier, later in ORDER_CONSTRAINTS:
        if earlier in position and later in position and position[earlier] > position[later]:
            raise PipelineOrderError(f"{earlier} must run before {later}")

    seen_installer = False
    for stage in stages:
        if (stage.middleware is None) == (stage.install is None):
            raise PipelineOrderError(f"stage {stage.name} needs exactly one of middleware/install")
        if stage.install is not None:
            seen_installer = True
        elif seen_installer:
            raise PipelineOrderError(f"middleware stage {stage.name} registered after routes")


def build_pipeline(
    config: ServiceConfig,
    stages: Sequence[PipelineStage] = PIPELINE,
) -> Tuple[List[Middleware], List[Installer]]:
    """Split the validated pipeline into middleware entries and installers."""
    validate_pipeline(stages)
    middleware = [stage.middleware(config) for stage in stages if stage.middleware]
    installers = [stage.install for stage in stages if stage.install]
    return middleware, installers
