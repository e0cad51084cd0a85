"""Registry of vendor adapters keyed by provider type."""

from typing import Dict, List, Type, Union

from app.models.provider import ProviderType
from app.services.exceptions import UnsupportedProviderError
from app.services.vendors.base import VendorAdapter

_ADAPTERS: Dict[ProviderType, VendorAdapter] = {}


def register_adapter(adapter_cls: Type[VendorAdapter]) -> Type[VendorAdapter]:
    """Class decorator registering one stateless adapter instance per provider type."""
    _ADAPTERS[adapter_cls.provider_type] = adapter_cls()
    return adapter_cls


def get_adapter(provider_type: Union[ProviderType, str]) -> VendorAdapter:
    """Look up the adapter for a provider type.

    Raises:
        UnsupportedProviderError: If the type is unknown or has no adapter.
    """
    try:
        key = ProviderType(provider_type)
    except ValueError:
        raise UnsupportedProviderError(f"Unsupported provider type: {provider_type}")

    adapter = _ADAPTERS.get(key)
    if adapter is None:
        raise UnsupportedProviderError(f"Unsupported provider type: {provider_type}")
    return adapter


def registered_types() -> List[ProviderType]:
    return list(_ADAPTERS)
