"""Project settings.

Settings are resolved in three layers, later layers winning:

1. `modelops.yml` at the project root (optional)
2. environment variables (`MODELOPS_*`)
3. explicit overrides, typically CLI flags

Warehouse credentials are never read here; they come from Databricks
unified authentication (profiles in ~/.databrickscfg or DATABRICKS_* env).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from modelops.core.errors import DefinitionError

PROJECT_FILE = "modelops.yml"

_PROFILE_ENV = "MODELOPS_PROFILE"
_WAREHOUSE_ID_ENV = "MODELOPS_WAREHOUSE_ID"
_CONCURRENCY_ENV = "MODELOPS_CONCURRENCY"
_REPORT_PATH_ENV = "MODELOPS_REPORT_PATH"


@dataclass(frozen=True)
class WarehouseSettings:
    """Connection settings for the Databricks SQL warehouse."""

    profile: str | None = None
    warehouse_id: str | None = None
    catalog: str | None = None
    wait_timeout: str = "30s"
    poll_interval: float = 2.0


@dataclass(frozen=True)
class Settings:
    """Resolved settings for one invocation."""

    project_dir: Path = Path(".")
    models_dir: str = "models"
    default_schema: str | None = None
    concurrency: int = 4
    retries: int = 1
    retry_backoff_seconds: float = 5.0
    report_path: str = "target/run_report.json"
    warehouse: WarehouseSettings = field(default_factory=WarehouseSettings)

    @property
    def models_path(self) -> Path:
        return self.project_dir / self.models_dir

    @property
    def report_file(self) -> Path:
        path = Path(self.report_path)
        return path if path.is_absolute() else self.project_dir / path


def _read_project_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise DefinitionError(f"Invalid YAML in {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise DefinitionError(f"{path}: top level must be a mapping")
    return data


def _env_int(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise DefinitionError(f"{name} must be an integer, got '{raw}'") from exc


_WAREHOUSE_KEYS = ("profile", "warehouse_id", "catalog")


def _apply(settings: Settings, values: dict[str, Any]) -> Settings:
    """Overlay non-None values onto settings."""
    values = {k: v for k, v in values.items() if v is not None}
    wh_updates = {k: values.pop(k) for k in _WAREHOUSE_KEYS if k in values}
    if wh_updates:
        settings = replace(settings, warehouse=replace(settings.warehouse, **wh_updates))
    if values:
        settings = replace(settings, **values)
    return settings


def load_settings(project_dir: str | Path = ".", **overrides: Any) -> Settings:
    """
    Resolve settings for a project directory.

    Args:
        project_dir: Project root holding `modelops.yml` and the models dir.
        **overrides: Values that win over file and environment. `None`
                     values are ignored so CLI defaults can be passed as-is.
                     Warehouse keys (`profile`, `warehouse_id`, `catalog`)
                     are routed to the nested warehouse settings.
    """
    root = Path(project_dir)
    data = _read_project_file(root / PROJECT_FILE)

    wh_raw = data.get("warehouse") or {}
    if not isinstance(wh_raw, dict):
        raise DefinitionError(f"{PROJECT_FILE}: 'warehouse' must be a mapping")

    warehouse = WarehouseSettings(
        profile=wh_raw.get("profile"),
        warehouse_id=wh_raw.get("warehouse_id"),
        catalog=wh_raw.get("catalog"),
        wait_timeout=str(wh_raw.get("wait_timeout", "30s")),
        poll_interval=float(wh_raw.get("poll_interval", 2.0)),
    )

    settings = Settings(
        project_dir=root,
        models_dir=str(data.get("models_dir", "models")),
        default_schema=data.get("default_schema"),
        concurrency=int(data.get("concurrency", 4)),
        retries=int(data.get("retries", 1)),
        retry_backoff_seconds=float(data.get("retry_backoff_seconds", 5.0)),
        report_path=str(data.get("report_path", "target/run_report.json")),
        warehouse=warehouse,
    )

    settings = _apply(
        settings,
        {
            "profile": os.getenv(_PROFILE_ENV),
            "warehouse_id": os.getenv(_WAREHOUSE_ID_ENV),
            "concurrency": _env_int(_CONCURRENCY_ENV),
            "report_path": os.getenv(_REPORT_PATH_ENV),
        },
    )
    settings = _apply(settings, overrides)

    if settings.concurrency < 1:
        raise DefinitionError("concurrency must be >= 1")
    if settings.retries < 0:
        raise DefinitionError("retries must be >= 0")
    return settings
