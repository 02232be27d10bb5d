"""Payer adapter registry.

Two mappings are kept:
- adapter kinds ("medicare", "stedi") to adapter classes, used to build
  adapters from configuration
- payer codes ("MEDICARE", "AETNA", ...) to live adapter instances

Several payer codes may share one adapter instance, which is how every
clearinghouse-routed payer reaches the single Stedi adapter.
"""

from __future__ import annotations

import logging
from typing import Any, Type

from .adapters.medicare import MedicareAdapter
from .adapters.stedi import StediAdapter
from .base import BasePayerAdapter

logger = logging.getLogger(__name__)


def normalize_payer_code(payer_code: str) -> str:
    return payer_code.strip().upper()


class AdapterRegistry:
    """Registry of adapter classes and the adapters serving each payer."""

    def __init__(self) -> None:
        self._adapter_classes: dict[str, Type[BasePayerAdapter]] = {}
        self._adapters: dict[str, BasePayerAdapter] = {}

    # --- Adapter classes ---

    def register_adapter_class(
        self, kind: str, adapter_class: Type[BasePayerAdapter]
    ) -> None:
        """Register an adapter implementation under a configuration kind.

        Args:
            kind: Name used in configuration files (e.g., "medicare")
            adapter_class: The adapter class
        """
        kind = kind.lower()
        if kind in self._adapter_classes:
            logger.warning(f"Overwriting existing adapter class for {kind}")
        self._adapter_classes[kind] = adapter_class
        logger.debug(f"Registered adapter class: {kind}")

    def get_adapter_class(self, kind: str) -> Type[BasePayerAdapter] | None:
        return self._adapter_classes.get(kind.lower())

    def list_adapter_kinds(self) -> list[str]:
        return sorted(self._adapter_classes)

    def create_adapter(self, kind: str, **options: Any) -> BasePayerAdapter:
        """Instantiate an adapter of a registered kind.

        Args:
            kind: Adapter kind
            **options: Constructor arguments for the adapter class

        Returns:
            New adapter instance

        Raises:
            ValueError: If the kind is not registered
        """
        adapter_class = self.get_adapter_class(kind)
        if adapter_class is None:
            raise ValueError(f"No adapter registered for kind: {kind}")
        return adapter_class(**options)

    # --- Payer routing ---

    def register(
        self,
        adapter: BasePayerAdapter,
        payer_codes: list[str] | None = None,
    ) -> None:
        """Route payer codes to an adapter instance.

        Args:
            adapter: The adapter
            payer_codes: Codes to route (default: the adapter's own payer code).
                The adapter's own code is always routed.
        """
        codes = [adapter.payer_code, *(payer_codes or [])]
        for code in codes:
            key = normalize_payer_code(code)
            existing = self._adapters.get(key)
            if existing is not None and existing is not adapter:
                logger.warning(f"Overwriting existing adapter for {key}")
            self._adapters[key] = adapter
        logger.debug(f"Registered {type(adapter).__name__} for {codes}")

    def unregister(self, payer_code: str) -> None:
        self._adapters.pop(normalize_payer_code(payer_code), None)

    def get(self, payer_code: str) -> BasePayerAdapter | None:
        """Get the adapter serving a payer code, or None."""
        return self._adapters.get(normalize_payer_code(payer_code))

    def is_registered(self, payer_code: str) -> bool:
        return normalize_payer_code(payer_code) in self._adapters

    def list_payer_codes(self) -> list[str]:
        return sorted(self._adapters)

    def items(self) -> list[tuple[str, BasePayerAdapter]]:
        return sorted(self._adapters.items())

    def adapters(self) -> list[BasePayerAdapter]:
        """Distinct adapter instances, in registration order."""
        unique: dict[int, BasePayerAdapter] = {}
        for adapter in self._adapters.values():
            unique.setdefault(id(adapter), adapter)
        return list(unique.values())

    async def aclose(self) -> None:
        """Close every adapter's HTTP client."""
        for adapter in self.adapters():
            await adapter.aclose()


def create_default_registry() -> AdapterRegistry:
    """Registry with the built-in adapter classes and no payers routed."""
    registry = AdapterRegistry()
    registry.register_adapter_class("medicare", MedicareAdapter)
    registry.register_adapter_class("stedi", StediAdapter)
    return registry


# Global registry instance
_registry: AdapterRegistry | None = None


def get_registry() -> AdapterRegistry:
    """Get the global adapter registry.

    Returns:
        The global AdapterRegistry instance
    """
    global _registry

    if _registry is None:
        _registry = create_default_registry()

    return _registry


def register_adapter(
    adapter: BasePayerAdapter, payer_codes: list[str] | None = None
) -> None:
    """Convenience function to route payer codes in the global registry."""
    get_registry().register(adapter, payer_codes)


def get_adapter(payer_code: str) -> BasePayerAdapter | None:
    """Convenience function to look up a payer in the global registry."""
    return get_registry().get(payer_code)
