"""
Security headers stage.

Adds a fixed set of hardening headers to every response that passes
through it and strips headers that advertise the server stack.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


@dataclass(frozen=True)
class SecurityHeadersConfig:
    """Configuration for security headers."""

    csp_directives: Dict[str, str] = field(default_factory=lambda: {
        "default-src": "'self'",
        "base-uri": "'self'",
        "font-src": "'self' https: data:",
        "form-action": "'self'",
        "frame-ancestors": "'self'",
        "img-src": "'self' data:",
        "object-src": "'none'",
        "script-src": "'self'",
        "script-src-attr": "'none'",
        "style-src": "'self' https: 'unsafe-inline'",
        "upgrade-insecure-requests": "",
    })
    hsts_max_age: int = 15552000  # 180 days
    frame_options: str = "SAMEORIGIN"
    referrer_policy: str = "no-referrer"
    removed_headers: Tuple[str, ...] = ("x-powered-by", "server")


def get_security_headers(config: Optional[SecurityHeadersConfig] = None) -> Dict[str, str]:
    """
    Generate security headers dictionary.

    Usage:
        headers = get_security_headers()
        response.headers.update(headers)
    """
    cfg = config or SecurityHeadersConfig()
    csp_value = ";".join(
        f"{directive} {value}".strip()
        for directive, value in cfg.csp_directives.items()
    )
    return {
        "Content-Security-Policy": csp_value,
        "Cross-Origin-Opener-Policy": "same-origin",
        "Cross-Origin-Resource-Policy": "same-origin",
        "Origin-Agent-Cluster": "?1",
        "Referrer-Policy": cfg.referrer_policy,
        "Strict-Transport-Security": f"max-age={cfg.hsts_max_age}; includeSubDomains",
        "X-Content-Type-Options": "nosniff",
        "X-DNS-Prefetch-Control": "off",
        "X-Download-Options": "noopen",
        "X-Frame-Options": cfg.frame_options,
        "X-Permitted-Cross-Domain-Policies": "none",
        "X-XSS-Protection": "0",
    }


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to all responses."""

    def __init__(self, app, config: Optional[SecurityHeadersConfig] = None):
        super().__init__(app)
        self.config = config or SecurityHeadersConfig()
        self._headers = get_security_headers(self.config)

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)

        for name in self.config.removed_headers:
            if name in response.headers:
                del response.headers[name]

        for key, value in self._headers.items():
            response.headers[key] = value

        return response
