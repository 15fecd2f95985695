from __future__ import annotations

import sys
import threading
from pathlib import Path

import pytest

# Ensure tests always import the local src tree, not an older installed wheel.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from modelops.core.errors import ExecutionError  # noqa: E402
from modelops.core.models import (  # noqa: E402
    IncrementalStrategy,
    Materialization,
    ModelDefinition,
)
from modelops.core.warehouse import RELATION_TABLE, RELATION_VIEW  # noqa: E402


class FakeWarehouse:
    """
    In-memory Warehouse: relations are lists of row dicts.

    `queries` maps a model's SQL text to the rows it produces. Failures can be
    queued per (method, relation) with `fail()`.
    """

    def __init__(self, queries=None, delay: float = 0.0):
        self.queries: dict[str, list[dict]] = dict(queries or {})
        self.tables: dict[str, list[dict]] = {}
        self.views: dict[str, str] = {}
        self.schemas: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self._failures: dict[tuple[str, str], list[BaseException]] = {}
        self._lock = threading.Lock()

    def fail(self, method: str, name: str, exc: BaseException, times: int = 1) -> None:
        self._failures.setdefault((method, name), []).extend([exc] * times)

    def _record(self, method: str, name: str) -> None:
        with self._lock:
            self.calls.append((method, name))
            pending = self._failures.get((method, name))
            if pending:
                raise pending.pop(0)

    def _rows_for(self, sql: str) -> list[dict]:
        return [dict(r) for r in self.queries.get(sql, [])]

    def execute_ddl(self, statement):
        self._record("execute_ddl", statement)

    def execute_query(self, sql):
        self._record("execute_query", sql)
        return self._rows_for(sql)

    def create_or_replace_view(self, name, sql):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                threading.Event().wait(self.delay)
            self._record("create_or_replace_view", name)
            self.views[name] = sql
        finally:
            with self._lock:
                self.in_flight -= 1

    def create_table_as(self, name, sql, *, partition_key=None, cluster_keys=()):
        self._record("create_table_as", name)
        if name in self.tables:
            raise ExecutionError(f"{name} already exists")
        self.tables[name] = self._rows_for(sql)

    def execute_merge(self, target, source, keys, *, partition_key=None):
        self._record("execute_merge", target)
        batch: dict[tuple, dict] = {}
        for row in self.tables[source]:
            batch[tuple(row[k] for k in keys)] = dict(row)

        scope = None
        if partition_key:
            scope = {row[partition_key] for row in batch.values()}

        existing = self.tables[target]
        index = {
            tuple(row[k] for k in keys): i
            for i, row in enumerate(existing)
            if scope is None or row.get(partition_key) in scope
        }
        for key, row in batch.items():
            if key in index:
                existing[index[key]] = row
            else:
                existing.append(row)
                index[key] = len(existing) - 1
        return len(batch)

    def insert_into(self, target, source):
        self._record("insert_into", target)
        rows = [dict(r) for r in self.tables[source]]
        self.tables[target].extend(rows)
        return len(rows)

    def replace_partitions(self, target, source, partition_key):
        self._record("replace_partitions", target)
        rows = [dict(r) for r in self.tables[source]]
        values = {r[partition_key] for r in rows}
        kept = [r for r in self.tables[target] if r[partition_key] not in values]
        self.tables[target] = kept + rows
        return len(rows)

    def rename_relation(self, from_name, to_name):
        self._record("rename_relation", from_name)
        if from_name not in self.tables:
            raise ExecutionError(f"{from_name} does not exist")
        if to_name in self.tables:
            raise ExecutionError(f"{to_name} already exists")
        self.tables[to_name] = self.tables.pop(from_name)

    def drop_relation(self, name):
        self._record("drop_relation", name)
        self.tables.pop(name, None)

    def relation_exists(self, name):
        self._record("relation_exists", name)
        return name in self.tables or name in self.views

    def drop_view(self, name):
        self._record("drop_view", name)
        self.views.pop(name, None)

    def relation_kind(self, name):
        self._record("relation_kind", name)
        if name in self.tables:
            return RELATION_TABLE
        if name in self.views:
            return RELATION_VIEW
        return None

    def count_rows(self, name):
        rows = self.tables.get(name)
        return len(rows) if rows is not None else None

    def ensure_schema(self, schema):
        self._record("ensure_schema", schema)
        self.schemas.add(schema)


def _make_model(
    name: str,
    *,
    upstream=(),
    materialization=Materialization.VIEW,
    schema: str = "analytics",
    sql: str | None = None,
    tags=(),
    merge_keys=(),
    partition_key=None,
    strategy=IncrementalStrategy.MERGE,
    columns=(),
) -> ModelDefinition:
    return ModelDefinition(
        name=name,
        schema=schema,
        materialization=materialization,
        sql=sql or f"select * from src_{name}",
        tags=frozenset(tags),
        upstream=tuple(upstream),
        merge_keys=tuple(merge_keys),
        partition_key=partition_key,
        incremental_strategy=strategy,
        columns=tuple(columns),
    )


@pytest.fixture
def make_model():
    return _make_model


@pytest.fixture
def warehouse():
    return FakeWarehouse()
