"""Ledger adapters for both JSON API generations."""

from __future__ import annotations

from cloak_courier.services.ledger.auth import LedgerTokenFactory
from cloak_courier.services.ledger.base import (
    ContractRef,
    LedgerAdapter,
    LedgerConfig,
    load_ledger_config,
)
from cloak_courier.services.ledger.json_v1 import JsonApiV1Adapter
from cloak_courier.services.ledger.json_v2 import JsonApiV2Adapter

_ADAPTERS: dict[str, type[LedgerAdapter]] = {
    JsonApiV1Adapter.api_version: JsonApiV1Adapter,
    JsonApiV2Adapter.api_version: JsonApiV2Adapter,
}


def build_ledger_adapter(config: LedgerConfig | None = None, **kwargs) -> LedgerAdapter:
    """Select the adapter for the configured protocol generation."""
    config = config or load_ledger_config()
    try:
        adapter_cls = _ADAPTERS[config.api_version]
    except KeyError:
        raise ValueError(
            f"Unsupported LEDGER_API_VERSION {config.api_version!r}; expected one of "
            f"{', '.join(sorted(_ADAPTERS))}"
        ) from None
    return adapter_cls(config, **kwargs)


class _LedgerAdapterSingleton:
    """Singleton wrapper for the process-wide ledger adapter."""

    _instance: LedgerAdapter | None = None

    @classmethod
    def get_instance(cls) -> LedgerAdapter:
        if cls._instance is None:
            cls._instance = build_ledger_adapter()
        return cls._instance


def get_ledger_adapter() -> LedgerAdapter:
    """Return the singleton ledger adapter instance."""
    return _LedgerAdapterSingleton.get_instance()


__all__ = [
    "ContractRef",
    "JsonApiV1Adapter",
    "JsonApiV2Adapter",
    "LedgerAdapter",
    "LedgerConfig",
    "LedgerTokenFactory",
    "build_ledger_adapter",
    "get_ledger_adapter",
    "load_ledger_config",
]
