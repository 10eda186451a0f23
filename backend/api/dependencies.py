"""
Dependency injection for the API service.
Provides the service container and its engines to route handlers.
"""
from __future__ import annotations

from shared.config import Settings

from api.container import Services
from api.presence import PresenceStore
from ingest.aggregator import Aggregator
from resolver.stream_resolver import StreamResolver
from resolver.viewer_probe import ViewerCountProbe

# Module-level singleton, initialized at startup
_services: Services | None = None


def init_dependencies(services: Services | None) -> None:
    """Initialize the module-level container. Called once at startup; None resets it."""
    global _services
    _services = services


def get_services() -> Services:
    """FastAPI dependency: returns the shared service container."""
    if _services is None:
        raise RuntimeError("Services not initialized. Call init_dependencies first.")
    return _services


def get_settings_dep() -> Settings:
    return get_services().settings


def get_aggregator() -> Aggregator:
    return get_services().aggregator


def get_resolver() -> StreamResolver:
    return get_services().resolver


def get_probe() -> ViewerCountProbe:
    return get_services().probe


def get_presence() -> PresenceStore:
    return get_services().presence
