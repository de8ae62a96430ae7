"""
Exchange factory for creating venue adapters dynamically.

Adapters live outside this repository; each venue in the configuration names
its adapter class as ``"package.module:ClassName"`` (a dotted
``"package.module.ClassName"`` path is accepted too).
"""

import importlib
from typing import Any, Dict, Mapping, Type

from exchange_clients.base_client import BaseExchangeClient
from exchange_clients.base_models import MissingCredentialsError
from helpers.unified_logger import get_core_logger


logger = get_core_logger("exchange_factory")


class ExchangeFactory:
    """Imports and instantiates adapter classes."""

    @classmethod
    def create_exchange(cls, class_path: str, config: Dict[str, Any]) -> BaseExchangeClient:
        exchange_class = cls._import_exchange_class(class_path)
        return exchange_class(config)

    @classmethod
    def _import_exchange_class(cls, class_path: str) -> Type[BaseExchangeClient]:
        """
        Raises:
            ImportError: If the class cannot be imported
            ValueError: If the class does not inherit from BaseExchangeClient
        """
        if ":" in class_path:
            module_path, class_name = class_path.split(":", 1)
        else:
            module_path, _, class_name = class_path.rpartition(".")

        if not module_path or not class_name:
            raise ValueError(f"Invalid adapter path '{class_path}' (expected 'module:Class')")

        try:
            module = importlib.import_module(module_path)
            exchange_class = getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ImportError(f"Failed to import exchange class {class_path}: {e}") from e

        if not isinstance(exchange_class, type) or not issubclass(exchange_class, BaseExchangeClient):
            raise ValueError(f"Exchange class {class_name} must inherit from BaseExchangeClient")

        return exchange_class

    @classmethod
    def create_multiple_exchanges(
        cls,
        adapters: Mapping[str, Any],
        skip_unavailable: bool = True,
    ) -> Dict[str, BaseExchangeClient]:
        """
        Build one adapter per venue.

        Args:
            adapters: venue -> object exposing ``client_class`` and ``adapter_config``
                (``VenueConfig``)
            skip_unavailable: Skip venues whose adapter fails to build instead of raising.
                Venues with missing credentials are always skipped.

        Returns:
            Dictionary mapping venue names to client instances
        """
        clients: Dict[str, BaseExchangeClient] = {}

        for venue, venue_config in adapters.items():
            try:
                clients[venue] = cls.create_exchange(
                    venue_config.client_class, dict(venue_config.adapter_config)
                )
            except MissingCredentialsError as e:
                logger.warning(f"⚠️  Skipping {venue}: {e}")
            except (ImportError, ValueError, TypeError) as e:
                if not skip_unavailable:
                    raise
                logger.error(f"❌ Failed to build adapter for {venue}: {e}")

        if not clients:
            raise ValueError("No venue adapters could be created")

        return clients
