"""Model catalog: declarations on disk -> validated dependency graph.

Models are declared in YAML files under the project's models directory. A
file may hold a `sources:` list (external relations) and a `models:` list:

    sources:
      - name: raw_orders
        relation: raw.orders

    models:
      - name: orders
        schema: analytics
        materialization: incremental
        tags: [daily]
        upstream: [raw_orders]
        merge_keys: [order_id]
        partition_key: order_date
        columns:
          - {name: order_id, type: bigint}
          - {name: order_date, type: date}

A model's compiled SQL is taken from `sql:` when present, otherwise from
`query_file:` or `<name>.sql` next to the YAML file. The catalog is rebuilt
from these files on every invocation; nothing is registered out of band.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable

import yaml

from modelops.core.errors import DefinitionError
from modelops.core.graph import DependencyGraph, build
from modelops.core.models import (
    Column,
    IncrementalStrategy,
    Materialization,
    ModelDefinition,
    Source,
)

logger = logging.getLogger(__name__)

_YAML_SUFFIXES = {".yml", ".yaml"}


def _as_list(value: Any, *, field_name: str, model: str) -> list[str]:
    """Accept a string or a list of strings for list-valued fields."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return list(value)
    raise DefinitionError(f"Model '{model}': '{field_name}' must be a string or a list of strings")


def _parse_enum(enum_cls, raw: Any, *, field_name: str, model: str):
    values = ", ".join(e.value for e in enum_cls)
    try:
        return enum_cls(str(raw).strip().lower().replace("-", "_"))
    except ValueError as exc:
        raise DefinitionError(
            f"Model '{model}': invalid {field_name} '{raw}' (expected one of: {values})"
        ) from exc


def _parse_columns(raw: Any, *, model: str) -> tuple[Column, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise DefinitionError(f"Model '{model}': 'columns' must be a list")
    columns: list[Column] = []
    for item in raw:
        if isinstance(item, str):
            columns.append(Column(name=item))
        elif isinstance(item, dict) and item.get("name"):
            columns.append(
                Column(
                    name=str(item["name"]),
                    type=str(item["type"]) if item.get("type") else None,
                    description=str(item.get("description") or ""),
                )
            )
        else:
            raise DefinitionError(f"Model '{model}': every column needs a name")
    return tuple(columns)


def validate_model(model: ModelDefinition) -> None:
    """
    Check the per-model rules that do not need the rest of the catalog.

    Raises:
        DefinitionError: If the definition is unusable.
    """
    if not model.name or not model.name.strip():
        raise DefinitionError("Model name must be a non-empty string")
    if not model.schema:
        raise DefinitionError(f"Model '{model.name}': schema is required")
    if not model.sql or not model.sql.strip():
        raise DefinitionError(f"Model '{model.name}': compiled query is empty")

    if model.materialization == Materialization.INCREMENTAL:
        if not model.merge_keys:
            raise DefinitionError(
                f"Model '{model.name}': incremental models must declare at least one merge key"
            )
        if (
            model.incremental_strategy == IncrementalStrategy.INSERT_OVERWRITE
            and not model.partition_key
        ):
            raise DefinitionError(
                f"Model '{model.name}': insert_overwrite requires a partition_key"
            )

    if model.partition_key:
        column = model.column(model.partition_key)
        if column is None or not column.type:
            raise DefinitionError(
                f"Model '{model.name}': partition_key '{model.partition_key}' must "
                "reference a declared column with a type"
            )


def parse_model(
    raw: dict[str, Any],
    *,
    base_dir: Path | None = None,
    default_schema: str | None = None,
) -> ModelDefinition:
    """Turn one YAML model mapping into a validated ModelDefinition."""
    if not isinstance(raw, dict) or not raw.get("name"):
        raise DefinitionError("Every model entry must be a mapping with a 'name'")
    name = str(raw["name"])

    sql = raw.get("sql")
    if sql is None and base_dir is not None:
        query_file = base_dir / str(raw.get("query_file") or f"{name}.sql")
        if query_file.is_file():
            sql = query_file.read_text(encoding="utf-8")
    if sql is None:
        raise DefinitionError(f"Model '{name}': no 'sql' and no query file found")

    model = ModelDefinition(
        name=name,
        schema=str(raw.get("schema") or default_schema or ""),
        materialization=_parse_enum(
            Materialization,
            raw.get("materialization", "view"),
            field_name="materialization",
            model=name,
        ),
        sql=str(sql).strip().rstrip(";"),
        tags=frozenset(_as_list(raw.get("tags"), field_name="tags", model=name)),
        upstream=tuple(_as_list(raw.get("upstream"), field_name="upstream", model=name)),
        partition_key=raw.get("partition_key") or None,
        cluster_keys=tuple(
            _as_list(raw.get("cluster_keys"), field_name="cluster_keys", model=name)
        ),
        merge_keys=tuple(_as_list(raw.get("merge_keys"), field_name="merge_keys", model=name)),
        incremental_strategy=_parse_enum(
            IncrementalStrategy,
            raw.get("incremental_strategy", "merge"),
            field_name="incremental_strategy",
            model=name,
        ),
        columns=_parse_columns(raw.get("columns"), model=name),
        description=str(raw.get("description") or ""),
    )
    validate_model(model)
    return model


def parse_source(raw: Any) -> Source:
    if isinstance(raw, str):
        return Source(name=raw)
    if isinstance(raw, dict) and raw.get("name"):
        return Source(name=str(raw["name"]), relation=raw.get("relation"))
    raise DefinitionError("Every source entry must be a name or a mapping with a 'name'")


class Catalog:
    """
    Loads model declarations from a models directory.

    Args:
        models_dir: Directory scanned recursively for YAML declarations.
        default_schema: Schema used by models that do not declare one.
    """

    def __init__(self, models_dir: str | Path, *, default_schema: str | None = None):
        self.models_dir = Path(models_dir)
        self.default_schema = default_schema

    def _files(self) -> list[Path]:
        if not self.models_dir.is_dir():
            raise DefinitionError(f"Models directory not found: {self.models_dir}")
        return sorted(
            p for p in self.models_dir.rglob("*") if p.suffix.lower() in _YAML_SUFFIXES
        )

    def _read(self, path: Path) -> dict[str, Any]:
        try:
            with path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise DefinitionError(f"Invalid YAML in {path}: {exc}") from exc
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise DefinitionError(
                f"{path}: top level must be a mapping, got {type(data).__name__}"
            )
        return data

    def definitions(self) -> tuple[list[ModelDefinition], list[Source]]:
        """Parse every declaration file without building the graph."""
        models: list[ModelDefinition] = []
        sources: list[Source] = []
        for path in self._files():
            data = self._read(path)
            for raw in data.get("sources") or []:
                sources.append(parse_source(raw))
            for raw in data.get("models") or []:
                try:
                    models.append(
                        parse_model(raw, base_dir=path.parent, default_schema=self.default_schema)
                    )
                except DefinitionError as exc:
                    raise DefinitionError(f"{path}: {exc}") from exc
        logger.debug(
            "catalog: %d model(s), %d source(s) from %s",
            len(models),
            len(sources),
            self.models_dir,
        )
        return models, sources

    def load(self) -> DependencyGraph:
        """
        Load, validate and link every declared model.

        Raises:
            DefinitionError: On any invalid entry or duplicate name.
            UnknownReferenceError: On unresolvable upstream references.
            CycleError: If references form a cycle.
        """
        models, sources = self.definitions()
        return build(models, sources)

    @staticmethod
    def from_definitions(
        models: Iterable[ModelDefinition], sources: Iterable[Source] = ()
    ) -> DependencyGraph:
        """Validate in-memory definitions and build their graph."""
        models = list(models)
        for model in models:
            validate_model(model)
        return build(models, sources)
