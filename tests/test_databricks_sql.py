import pytest
from databricks.sdk.errors import BadRequest, TooManyRequests
from databricks.sdk.service.sql import (
    ColumnInfo,
    ResultData,
    ResultManifest,
    ResultSchema,
    ServiceError,
    ServiceErrorCode,
    StatementResponse,
    StatementState,
    StatementStatus,
)

from modelops.core.adapters.databricks_sql import DatabricksSqlWarehouse, quote_ident
from modelops.core.errors import CancellationError, ExecutionError
from modelops.core.runs import CancelToken


def _response(state=StatementState.SUCCEEDED, columns=(), rows=None, error=None):
    return StatementResponse(
        statement_id="stmt-1",
        status=StatementStatus(state=state, error=error),
        manifest=ResultManifest(schema=ResultSchema(columns=[ColumnInfo(name=c) for c in columns])),
        result=ResultData(data_array=rows) if rows is not None else None,
    )


class _StatementsStub:
    def __init__(self, responses=None, polls=None, error=None):
        self.statements = []
        self.responses = list(responses or [])
        self.polls = list(polls or [])
        self.cancelled = []
        self.error = error

    def execute_statement(self, **kwargs):
        self.statements.append(kwargs)
        if self.error is not None:
            raise self.error
        if self.responses:
            return self.responses.pop(0)
        return _response()

    def get_statement(self, statement_id):
        return self.polls.pop(0)

    def cancel_execution(self, statement_id):
        self.cancelled.append(statement_id)


class _ClientStub:
    def __init__(self, **kwargs):
        self.statement_execution = _StatementsStub(**kwargs)


def _warehouse(client, **kwargs):
    return DatabricksSqlWarehouse(client, "wh-1", catalog="main", poll_interval=0, **kwargs)


def _sql(client, index=-1):
    return client.statement_execution.statements[index]["statement"]


def test_quote_ident_quotes_each_part():
    assert quote_ident("analytics.orders") == "`analytics`.`orders`"
    assert quote_ident("we`ird") == "`we``ird`"


def test_requires_warehouse_id():
    with pytest.raises(ValueError):
        DatabricksSqlWarehouse(_ClientStub(), "")


def test_statements_target_the_configured_warehouse():
    client = _ClientStub()

    _warehouse(client).create_or_replace_view("analytics.v", "select 1")

    call = client.statement_execution.statements[0]
    assert call["warehouse_id"] == "wh-1"
    assert call["catalog"] == "main"
    assert call["statement"] == "CREATE OR REPLACE VIEW `analytics`.`v` AS\nselect 1"


def test_create_table_as_partitioned():
    client = _ClientStub()

    _warehouse(client).create_table_as("s.t", "select 1 as d", partition_key="d")

    assert "PARTITIONED BY (`d`)" in _sql(client)
    assert _sql(client).startswith("CREATE TABLE `s`.`t`")


def test_create_table_as_clustered():
    client = _ClientStub()

    _warehouse(client).create_table_as("s.t", "select 1", cluster_keys=["a", "b"])

    assert "CLUSTER BY (`a`, `b`)" in _sql(client)


def test_merge_statement_dedups_batch_and_upserts():
    client = _ClientStub(responses=[_response(columns=["num_affected_rows"], rows=[["7"]])])

    rows = _warehouse(client).execute_merge("s.t", "s.t__stage", ["id"])

    sql = _sql(client)
    assert rows == 7
    assert sql.startswith("MERGE INTO `s`.`t` AS t")
    assert "ROW_NUMBER() OVER (PARTITION BY `id`" in sql
    assert "ON t.`id` = s.`id`" in sql
    assert "WHEN MATCHED THEN UPDATE SET *" in sql
    assert "WHEN NOT MATCHED THEN INSERT *" in sql


def test_merge_is_scoped_to_batch_partitions():
    client = _ClientStub(
        responses=[
            _response(columns=["v"], rows=[["2024-01-01"], ["2024-01-02"]]),
            _response(),
        ]
    )

    _warehouse(client).execute_merge("s.t", "s.stage", ["id"], partition_key="day")

    assert _sql(client, 0).startswith("SELECT DISTINCT `day`")
    assert "t.`day` IN ('2024-01-01', '2024-01-02')" in _sql(client)


def test_replace_partitions_uses_replace_where():
    client = _ClientStub(responses=[_response(columns=["v"], rows=[["2024-01-02"]]), _response()])

    _warehouse(client).replace_partitions("s.t", "s.stage", "day")

    assert _sql(client).startswith("INSERT INTO `s`.`t` REPLACE WHERE `day` IN ('2024-01-02')")


def test_replace_partitions_with_empty_batch_is_a_noop():
    client = _ClientStub(responses=[_response(columns=["v"], rows=[])])

    assert _warehouse(client).replace_partitions("s.t", "s.stage", "day") == 0
    assert len(client.statement_execution.statements) == 1


def test_relation_exists_reads_show_tables():
    client = _ClientStub(
        responses=[_response(columns=["database", "tableName"], rows=[["s", "orders"]])]
    )

    assert _warehouse(client).relation_exists("s.orders") is True
    assert _sql(client) == "SHOW TABLES IN `s` LIKE 'orders'"


def test_count_rows():
    client = _ClientStub(responses=[_response(columns=["n"], rows=[["42"]])])

    assert _warehouse(client).count_rows("s.t") == 42


def test_pending_statement_is_polled_until_done():
    client = _ClientStub(
        responses=[_response(state=StatementState.RUNNING)],
        polls=[_response(state=StatementState.RUNNING), _response()],
    )

    _warehouse(client).drop_relation("s.t")

    assert client.statement_execution.polls == []


def test_failed_statement_with_transient_code_is_transient():
    error = ServiceError(
        error_code=ServiceErrorCode.TEMPORARILY_UNAVAILABLE, message="warehouse starting"
    )
    client = _ClientStub(responses=[_response(state=StatementState.FAILED, error=error)])

    with pytest.raises(ExecutionError, match="warehouse starting") as excinfo:
        _warehouse(client).execute_ddl("select 1")

    assert excinfo.value.transient is True
    assert excinfo.value.statement == "select 1"


def test_failed_statement_with_sql_error_is_not_transient():
    error = ServiceError(error_code=ServiceErrorCode.BAD_REQUEST, message="syntax error")
    client = _ClientStub(responses=[_response(state=StatementState.FAILED, error=error)])

    with pytest.raises(ExecutionError) as excinfo:
        _warehouse(client).execute_ddl("selec 1")

    assert excinfo.value.transient is False


def test_sdk_errors_are_classified():
    rate_limited = _ClientStub(error=TooManyRequests("slow down"))
    rejected = _ClientStub(error=BadRequest("nope"))

    with pytest.raises(ExecutionError) as transient:
        _warehouse(rate_limited).execute_ddl("select 1")
    with pytest.raises(ExecutionError) as permanent:
        _warehouse(rejected).execute_ddl("select 1")

    assert transient.value.transient is True
    assert permanent.value.transient is False


def test_cancel_token_cancels_running_statement():
    token = CancelToken()
    token.cancel()
    client = _ClientStub(responses=[_response(state=StatementState.RUNNING)])

    with pytest.raises(CancellationError):
        _warehouse(client, cancel_token=token).execute_ddl("select 1")

    assert client.statement_execution.cancelled == ["stmt-1"]


def test_relation_kind_tells_views_from_tables():
    exists = _response(columns=["database", "tableName"], rows=[["s", "v"]])
    view = _StatementsStub(
        responses=[exists, _response(columns=["namespace", "viewName"], rows=[["s", "v"]])]
    )
    table = _StatementsStub(responses=[exists, _response(columns=["viewName"], rows=[])])
    missing = _StatementsStub(responses=[_response(columns=["tableName"], rows=[])])

    kinds = []
    for statements in (view, table, missing):
        client = _ClientStub()
        client.statement_execution = statements
        kinds.append(_warehouse(client).relation_kind("s.v"))

    assert kinds == ["view", "table", None]
    assert view.statements[1]["statement"] == "SHOW VIEWS IN `s` LIKE 'v'"


def test_drop_view():
    client = _ClientStub()

    _warehouse(client).drop_view("s.v")

    assert _sql(client) == "DROP VIEW IF EXISTS `s`.`v`"
