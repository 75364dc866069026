"""Routers package."""

from . import (
    health,
    auth,
    embed,
    videos,
    prompts,
    billing,
    integrations,
    social,
)
