"""Materialization strategies.

The materializer realizes one model in the warehouse according to its
declared materialization:

- view: create-or-replace the view; consumers keep seeing the old definition
  until the new one commits.
- table: build into a staging relation, then swap it into place. A failure
  before the swap leaves the previous table untouched.
- incremental: stage the new batch, then apply it to the existing target
  (merge by key, append, or partition overwrite). If the target does not
  exist yet the model is bootstrapped with a full build.

Incremental merges are idempotent per key: re-applying the same batch yields
the same relation contents, so a merge interrupted by cancellation is healed
by the next successful run. Within a single batch, rows sharing a merge key
collapse to the last row in source order.

The materializer holds no connection state beyond the warehouse handle.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace

from modelops.core.errors import ExecutionError, ModelOpsError
from modelops.core.models import IncrementalStrategy, Materialization, ModelDefinition
from modelops.core.warehouse import (
    RELATION_TABLE,
    RELATION_VIEW,
    Warehouse,
    backup_name,
    staging_name,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MaterializationResult:
    """
    Outcome of a successful materialization.

    Attributes:
        model: Model name.
        relation: Fully qualified relation written.
        materialization: Strategy used.
        strategy: Incremental strategy applied, if any.
        bootstrapped: True if an incremental model got a full initial build.
        rows: Rows affected or resulting row count, when reported.
        duration_s: Wall-clock duration of the materialization.
    """

    model: str
    relation: str
    materialization: Materialization
    strategy: IncrementalStrategy | None = None
    bootstrapped: bool = False
    rows: int | None = None
    duration_s: float = 0.0


class Materializer:
    """Dispatches each model to its materialization strategy."""

    def __init__(self, warehouse: Warehouse):
        self.warehouse = warehouse

    def materialize(self, model: ModelDefinition) -> MaterializationResult:
        """
        Realize `model` in the warehouse.

        Raises:
            ExecutionError: If any statement fails. Unexpected adapter
                            exceptions are wrapped as non-transient errors.
        """
        start = time.monotonic()
        logger.debug("materializing %s as %s", model.relation, model.materialization.value)
        try:
            self.warehouse.ensure_schema(model.schema)
            if model.materialization == Materialization.VIEW:
                result = self._view(model)
            elif model.materialization == Materialization.TABLE:
                result = self._table(model)
            elif model.materialization == Materialization.INCREMENTAL:
                result = self._incremental(model)
            else:
                raise ExecutionError(
                    f"Unknown materialization for '{model.name}': {model.materialization}"
                )
        except ModelOpsError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ExecutionError(f"{exc.__class__.__name__}: {exc}") from exc

        return replace(result, duration_s=time.monotonic() - start)

    # ------------------------------------------------------------------
    # strategies
    # ------------------------------------------------------------------

    def _view(self, model: ModelDefinition) -> MaterializationResult:
        if self.warehouse.relation_kind(model.relation) == RELATION_TABLE:
            # CREATE OR REPLACE VIEW cannot replace a table
            logger.info("%s is a table; dropping it before creating the view", model.relation)
            self.warehouse.drop_relation(model.relation)
        self.warehouse.create_or_replace_view(model.relation, model.sql)
        return MaterializationResult(
            model=model.name,
            relation=model.relation,
            materialization=Materialization.VIEW,
        )

    def _table(self, model: ModelDefinition) -> MaterializationResult:
        self._full_rebuild(model)
        return MaterializationResult(
            model=model.name,
            relation=model.relation,
            materialization=Materialization.TABLE,
            rows=self.warehouse.count_rows(model.relation),
        )

    def _incremental(self, model: ModelDefinition) -> MaterializationResult:
        target = model.relation
        strategy = model.incremental_strategy

        kind = self.warehouse.relation_kind(target)
        if kind != RELATION_TABLE:
            if kind == RELATION_VIEW:
                logger.info("%s is a view; replacing it with a full build", target)
            else:
                logger.info("%s does not exist yet; bootstrapping with a full build", target)
            self._full_rebuild(model)
            return MaterializationResult(
                model=model.name,
                relation=target,
                materialization=Materialization.INCREMENTAL,
                strategy=strategy,
                bootstrapped=True,
                rows=self.warehouse.count_rows(target),
            )

        staging = self._stage(model)
        try:
            if strategy == IncrementalStrategy.MERGE:
                rows = self.warehouse.execute_merge(
                    target,
                    staging,
                    model.merge_keys,
                    partition_key=model.partition_key,
                )
            elif strategy == IncrementalStrategy.APPEND:
                rows = self.warehouse.insert_into(target, staging)
            elif strategy == IncrementalStrategy.INSERT_OVERWRITE:
                if not model.partition_key:
                    raise ExecutionError(
                        f"'{model.name}' uses insert_overwrite without a partition key"
                    )
                rows = self.warehouse.replace_partitions(
                    target, staging, model.partition_key
                )
            else:
                raise ExecutionError(f"Unknown incremental strategy: {strategy}")
        finally:
            self._drop_quietly(staging)

        return MaterializationResult(
            model=model.name,
            relation=target,
            materialization=Materialization.INCREMENTAL,
            strategy=strategy,
            rows=rows,
        )

    # ------------------------------------------------------------------
    # building blocks
    # ------------------------------------------------------------------

    def _stage(self, model: ModelDefinition) -> str:
        """Compute the model's query into a fresh staging relation."""
        staging = staging_name(model.relation)
        self.warehouse.drop_relation(staging)
        try:
            self.warehouse.create_table_as(
                staging,
                model.sql,
                partition_key=model.partition_key,
                cluster_keys=model.cluster_keys,
            )
        except Exception:
            self._drop_quietly(staging)
            raise
        return staging

    def _full_rebuild(self, model: ModelDefinition) -> None:
        staging = self._stage(model)
        self._swap(staging, model.relation)

    def _swap(self, staging: str, target: str) -> None:
        """
        Move `staging` into place as `target`.

        The previous target is parked under a backup name and restored if the
        final rename fails.
        A view left under the target name (the model used to be a view) is
        dropped first.
        """
        kind = self.warehouse.relation_kind(target)
        if kind == RELATION_VIEW:
            self.warehouse.drop_view(target)
        if kind != RELATION_TABLE:
            self.warehouse.rename_relation(staging, target)
            return

        backup = backup_name(target)
        self.warehouse.drop_relation(backup)
        self.warehouse.rename_relation(target, backup)
        try:
            self.warehouse.rename_relation(staging, target)
        except Exception:
            logger.warning("swap into %s failed; restoring previous version", target)
            self.warehouse.rename_relation(backup, target)
            self._drop_quietly(staging)
            raise
        self._drop_quietly(backup)

    def _drop_quietly(self, name: str) -> None:
        """Drop a helper relation; a failure here must not mask the real outcome."""
        try:
            self.warehouse.drop_relation(name)
        except ExecutionError as exc:
            logger.warning("could not drop %s: %s", name, exc)
