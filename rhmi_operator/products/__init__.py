"""
Product registry: product name -> reconciler factory.

New products are added by registering a factory, never by touching the
orchestrator. A factory has the signature

    factory(name, config_manager, installation, installer, recorder, logger)

and returns a ProductReconciler.
"""

import logging
from typing import Callable, Dict

from ..models import Installation
from ..services.config_store import ConfigManager
from ..services.marketplace import MarketplaceManager
from .base import ProductReconciler

ReconcilerFactory = Callable[..., ProductReconciler]

_REGISTRY: Dict[str, ReconcilerFactory] = {}


class UnknownProductError(KeyError):
    """Raised when no reconciler is registered for a product name."""


def register(*names: str):
    """Register the decorated factory for one or more product names."""
    def decorator(factory: ReconcilerFactory) -> ReconcilerFactory:
        for name in names:
            _REGISTRY[name] = factory
        return factory
    return decorator


def registered_products() -> tuple:
    return tuple(_REGISTRY)


def new_reconciler(name: str, config_manager: ConfigManager, installation: Installation,
                   installer: MarketplaceManager, recorder, logger: logging.Logger) -> ProductReconciler:
    try:
        factory = _REGISTRY[name]
    except KeyError:
        raise UnknownProductError(f"no reconciler registered for product {name}") from None
    return factory(name, config_manager, installation, installer, recorder, logger)


# registration side effects
from . import catalog, cloudresources, rhsso  # noqa: E402,F401
