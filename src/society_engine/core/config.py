"""Configuration management.

Loads from TOML config files + environment variables.
Uses pydantic-settings for validation and env var overriding.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from .errors import ConfigError


# ---------------------------------------------------------------------------
# Sub-configs
# ---------------------------------------------------------------------------

class CollectionConfig(BaseModel):
    listings: str = "listings"
    complaints: str = "complaints"
    bills: str = "bills"
    gate_logs: str = "vehicleLogs"
    counters: str = "counters"
    # Role-partitioned user collections
    residents: str = "residents"
    security_staff: str = "security_staff"
    admins: str = "admins"


class StorageConfig(BaseModel):
    listing_folder: str = "marketplace"
    complaint_folder: str = "complaints"
    bill_folder: str = "bills"
    max_media_items: int = 10
    local_root: str = "data/media"  # LocalObjectStorage only


class BillingConfig(BaseModel):
    base_charges: float = 5000.0
    late_fee_pct: float = 0.10  # On unpaid/pending previous bills
    due_day: int = 25  # Day of the billing month


class GateConfig(BaseModel):
    max_vehicle_no_length: int = 20
    # Classes that must name the house they are visiting or belong to
    house_required_for: list[str] = Field(
        default_factory=lambda: ["Resident", "Visitor"]
    )


class ObservabilityConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "json"  # "json" or "console"


# ---------------------------------------------------------------------------
# Top-level settings
# ---------------------------------------------------------------------------

class Settings(BaseSettings):
    """Top-level engine settings.

    Loaded from TOML config files, overridden by environment variables.
    """

    # Day boundaries for daily stats and billing months are computed in this
    # zone. It must be explicit: the society's local day, not UTC.
    timezone: str = "Asia/Karachi"

    collections: CollectionConfig = Field(default_factory=CollectionConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    billing: BillingConfig = Field(default_factory=BillingConfig)
    gate: GateConfig = Field(default_factory=GateConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    model_config = {"env_prefix": "SOCIETY_", "env_nested_delimiter": "__"}

    def tzinfo(self) -> ZoneInfo:
        """Resolve the configured society timezone."""
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigError(f"Unknown timezone: {self.timezone!r}") from exc


def load_settings(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> Settings:
    """Load settings from TOML file + env vars.

    Args:
        config_path: Path to TOML config file (optional).
        overrides: Dict of overrides to apply on top.
    """
    data: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        import tomli

        with open(path, "rb") as f:
            data = tomli.load(f)

    if overrides:
        data.update(overrides)

    return Settings(**data)
