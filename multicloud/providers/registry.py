# multicloud/providers/registry.py
"""
Provider registry: maps each Provider to its adapter class.
"""
from typing import Dict, Optional, Type

import aiohttp

from multicloud.core.exceptions import UnsupportedOperationError
from multicloud.db.models import Provider
from multicloud.providers.base import StorageProviderAdapter
from multicloud.providers.drive import DriveAdapter
from multicloud.providers.dropbox import DropboxAdapter
from multicloud.providers.graph import GraphAdapter

PROVIDER_REGISTRY: Dict[Provider, Type[StorageProviderAdapter]] = {
    Provider.DRIVE: DriveAdapter,
    Provider.GRAPH: GraphAdapter,
    Provider.DROPBOX: DropboxAdapter,
}


def get_adapter_class(provider) -> Type[StorageProviderAdapter]:
    try:
        return PROVIDER_REGISTRY[Provider(provider)]
    except (KeyError, ValueError):
        raise UnsupportedOperationError(f"Unknown provider: {provider}")


def build_adapters(session: Optional[aiohttp.ClientSession] = None) -> Dict[Provider, StorageProviderAdapter]:
    """Instantiate one adapter per provider, optionally sharing a session."""
    return {provider: cls(session=session) for provider, cls in PROVIDER_REGISTRY.items()}


def list_providers():
    return [p.value for p in PROVIDER_REGISTRY]
