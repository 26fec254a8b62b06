"""
Predefined probe registries, one per target role.

Public entrypoint: registry_for(role)
"""

from diagnostics.models import Role
from diagnostics.registry import ProbeRegistry

from .client import client_registry
from .server import server_registry

_FACTORIES = {
    Role.SERVER: server_registry,
    Role.CLIENT: client_registry,
}


def registry_for(role) -> ProbeRegistry:
    """Build a fresh registry for the role ("server", "client" or a Role)."""
    return _FACTORIES[Role(role)]()


__all__ = ["client_registry", "registry_for", "server_registry"]
