"""Configuration file loader for payer integrations.

Payer integrations are declared in a YAML or JSON file:

    payers:
      - payer_code: MEDICARE
        adapter: medicare
        use_sandbox: true
      - payer_code: STEDI
        adapter: stedi
        payers: [AETNA, CIGNA, UHC]
        trading_partners:
          oscar: "OSCAR"

Every clearinghouse-routed payer must resolve to a trading partner service
ID when the file is loaded, so a misrouted payer fails at startup instead of
on a patient request.
"""

from __future__ import annotations

import json
import logging
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from . import config
from .adapters.medicare import MedicarePlanDefaults
from .adapters.stedi import normalize_payer_key
from .api.retry import RetryingHttpClient
from .constants import TRADING_PARTNER_MAP
from .registry import AdapterRegistry, create_default_registry
from .security.credentials import CredentialManager

logger = logging.getLogger(__name__)

CLEARINGHOUSE_KINDS = {"stedi"}


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.errors = errors or []


class PayerIntegrationConfig(BaseModel):
    """One payer integration entry."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    payer_code: str
    adapter: str
    enabled: bool = True

    # Medicare
    use_sandbox: bool | None = None
    base_url: str | None = None
    plan_defaults: dict[str, float] | None = None

    # Clearinghouse
    api_url: str | None = None
    routes: list[str] = Field(default_factory=list, alias="payers")
    trading_partners: dict[str, str] = Field(default_factory=dict)
    service_type_codes: list[str] | None = None

    # HTTP
    timeout: float | None = None
    max_attempts: int | None = Field(default=None, ge=1)
    retry_delay: float | None = Field(default=None, ge=0)

    def effective_trading_partners(self) -> dict[str, str]:
        """Built-in trading partners overlaid with this entry's additions."""
        return {
            **TRADING_PARTNER_MAP,
            **{normalize_payer_key(k): v for k, v in self.trading_partners.items()},
        }


class ConfigLoader:
    """Loads and validates payer integration configurations from files."""

    def __init__(
        self,
        registry: AdapterRegistry | None = None,
        config_path: str | Path | None = None,
    ):
        """Initialize the config loader.

        Args:
            registry: Registry whose adapter kinds are accepted
                (default: a registry with the built-in adapters)
            config_path: Config file. Defaults to PAYER_CONFIG_PATH.
        """
        self.registry = registry or create_default_registry()
        self.config_path = Path(config_path or config.CONFIG_PATH)

    def load(self, file_path: str | Path | None = None) -> list[PayerIntegrationConfig]:
        """Load payer configurations from a YAML or JSON file.

        Args:
            file_path: Path to the config file (default: self.config_path)

        Returns:
            Validated configurations, disabled entries included

        Raises:
            ConfigValidationError: If validation fails
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file extension is not supported
        """
        path = Path(file_path) if file_path else self.config_path

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        suffix = path.suffix.lower()
        with open(path) as f:
            if suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            elif suffix == ".json":
                data = json.load(f)
            else:
                raise ValueError(f"Unsupported config format: {suffix}")

        configs = self.parse(data, str(path))
        logger.info(f"Loaded {len(configs)} payer integration(s) from {path.name}")
        return configs

    def parse(self, data: Any, source: str = "<config>") -> list[PayerIntegrationConfig]:
        """Validate already-parsed configuration data.

        Accepts a mapping with a ``payers`` list, a bare list, or a single
        payer mapping. All errors are collected before raising.

        Raises:
            ConfigValidationError: If any entry is invalid
        """
        if isinstance(data, dict):
            entries = data["payers"] if "payers" in data and "adapter" not in data else [data]
        elif isinstance(data, list):
            entries = data
        else:
            raise ConfigValidationError(
                f"Invalid config format in {source}",
                errors=[{"file": source, "error": "Expected dict or list"}],
            )

        if not isinstance(entries, list):
            raise ConfigValidationError(
                f"Invalid config format in {source}",
                errors=[{"file": source, "field": "payers", "error": "Expected a list"}],
            )

        configs: list[PayerIntegrationConfig] = []
        errors: list[dict[str, Any]] = []
        seen_codes: dict[str, int] = {}

        for idx, entry in enumerate(entries):
            try:
                payer_config = self._validate_payer_config(entry, source, idx)
            except ConfigValidationError as e:
                errors.extend(e.errors)
                continue

            for code in (payer_config.payer_code, *payer_config.routes):
                key = code.strip().upper()
                if key in seen_codes:
                    errors.append(
                        {
                            "file": source,
                            "index": idx,
                            "field": "payer_code",
                            "error": f"Payer {key} already configured at index {seen_codes[key]}",
                        }
                    )
                else:
                    seen_codes[key] = idx
            configs.append(payer_config)

        if errors:
            raise ConfigValidationError(
                f"Validation failed for {len(errors)} item(s) in {source}",
                errors=errors,
            )

        return configs

    def _validate_payer_config(
        self, entry: Any, source: str, index: int
    ) -> PayerIntegrationConfig:
        """Validate a single payer entry.

        Args:
            entry: Raw payer config
            source: Source file for error messages
            index: Entry index in file

        Returns:
            Validated PayerIntegrationConfig

        Raises:
            ConfigValidationError: If validation fails
        """
        if not isinstance(entry, dict):
            raise ConfigValidationError(
                f"Invalid payer entry at index {index}",
                errors=[{"file": source, "index": index, "error": "Expected a mapping"}],
            )

        try:
            payer_config = PayerIntegrationConfig.model_validate(entry)
        except ValidationError as e:
            raise ConfigValidationError(
                f"Validation failed for payer at index {index}",
                errors=[
                    {
                        "file": source,
                        "index": index,
                        "field": ".".join(str(part) for part in err["loc"]),
                        "error": err["msg"],
                    }
                    for err in e.errors()
                ],
            )

        errors: list[dict[str, Any]] = []

        if not payer_config.payer_code.strip():
            errors.append(
                {
                    "file": source,
                    "index": index,
                    "field": "payer_code",
                    "error": "payer_code is required",
                }
            )

        kind = payer_config.adapter.lower()
        if self.registry.get_adapter_class(kind) is None:
            errors.append(
                {
                    "file": source,
                    "index": index,
                    "field": "adapter",
                    "error": f"Invalid adapter: {payer_config.adapter}. "
                    f"Valid: {self.registry.list_adapter_kinds()}",
                }
            )

        if kind in CLEARINGHOUSE_KINDS:
            errors.extend(self._validate_routes(payer_config, source, index))
        elif payer_config.routes or payer_config.trading_partners:
            errors.append(
                {
                    "file": source,
                    "index": index,
                    "field": "payers",
                    "error": f"Adapter {payer_config.adapter} does not route payers",
                }
            )

        if payer_config.plan_defaults:
            unknown = set(payer_config.plan_defaults) - {
                f.name for f in fields(MedicarePlanDefaults)
            }
            if unknown:
                errors.append(
                    {
                        "file": source,
                        "index": index,
                        "field": "plan_defaults",
                        "error": f"Unknown plan parameters: {sorted(unknown)}",
                    }
                )

        if errors:
            raise ConfigValidationError(
                f"Validation failed for payer '{payer_config.payer_code}'",
                errors=errors,
            )

        return payer_config

    def _validate_routes(
        self, payer_config: PayerIntegrationConfig, source: str, index: int
    ) -> list[dict[str, Any]]:
        """Check every routed payer resolves to a trading partner."""
        errors = []

        for key, service_id in payer_config.trading_partners.items():
            if not normalize_payer_key(key) or not str(service_id).strip():
                errors.append(
                    {
                        "file": source,
                        "index": index,
                        "field": f"trading_partners.{key}",
                        "error": "Trading partner key and service ID must be non-empty",
                    }
                )

        partners = payer_config.effective_trading_partners()
        for route in payer_config.routes:
            if normalize_payer_key(route) not in partners:
                errors.append(
                    {
                        "file": source,
                        "index": index,
                        "field": "payers",
                        "error": f"No trading partner ID found for payer: {route}",
                    }
                )

        return errors

    def build_registry(
        self,
        configs: list[PayerIntegrationConfig],
        credential_manager: CredentialManager | None = None,
    ) -> AdapterRegistry:
        """Instantiate adapters for enabled configs and route their payers.

        Args:
            configs: Validated configurations
            credential_manager: Passed to every adapter (default: global)

        Returns:
            The loader's registry, populated
        """
        for payer_config in configs:
            if not payer_config.enabled:
                logger.info(f"Skipping disabled payer {payer_config.payer_code}")
                continue

            options = self._adapter_options(payer_config)
            adapter = self.registry.create_adapter(
                payer_config.adapter,
                credential_manager=credential_manager,
                **options,
            )
            self.registry.register(adapter, [payer_config.payer_code, *payer_config.routes])

        return self.registry

    def load_registry(
        self,
        file_path: str | Path | None = None,
        credential_manager: CredentialManager | None = None,
    ) -> AdapterRegistry:
        """Load a config file and build the registry from it."""
        return self.build_registry(self.load(file_path), credential_manager)

    def _adapter_options(self, payer_config: PayerIntegrationConfig) -> dict[str, Any]:
        kind = payer_config.adapter.lower()
        options: dict[str, Any] = {}

        http_options = {
            name: value
            for name, value in (
                ("timeout", payer_config.timeout),
                ("max_attempts", payer_config.max_attempts),
                ("retry_delay", payer_config.retry_delay),
            )
            if value is not None
        }
        if http_options:
            options["http"] = RetryingHttpClient(payer_config.payer_code, **http_options)

        if kind == "medicare":
            if payer_config.use_sandbox is not None:
                options["use_sandbox"] = payer_config.use_sandbox
            if payer_config.base_url:
                options["base_url"] = payer_config.base_url
            if payer_config.plan_defaults:
                options["plan_defaults"] = MedicarePlanDefaults(**payer_config.plan_defaults)
        elif kind in CLEARINGHOUSE_KINDS:
            if payer_config.api_url:
                options["api_url"] = payer_config.api_url
            options["trading_partners"] = payer_config.effective_trading_partners()
            if payer_config.service_type_codes:
                options["service_type_codes"] = payer_config.service_type_codes

        return options
