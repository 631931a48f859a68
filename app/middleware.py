"""
Middleware configuration for the standalone FastAPI app.
"""

from __future__ import annotations

import os

from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware


def _split_env_list(env_name: str) -> list[str]:
    raw = os.environ.get(env_name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def configure_middleware(app) -> None:
    """Configure host allowlist and CORS middleware for the FastAPI app."""
    # Optional host allowlist for production deployments
    trusted_hosts = _split_env_list("TRUSTED_HOSTS")
    if trusted_hosts:
        app.add_middleware(
            TrustedHostMiddleware,
            allowed_hosts=trusted_hosts,
        )

    # Statistics consoles read from a browser; keep CORS outermost
    allow_origins = _split_env_list("CORS_ALLOWED_ORIGINS")
    if not allow_origins:
        allow_origins = [
            os.environ.get("FRONTEND_URL", "http://localhost:4200"),
            "http://localhost:4200",
        ]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=True,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
    )
