import pytest

from modelops.core.errors import DefinitionError
from modelops.core.settings import load_settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "MODELOPS_PROFILE",
        "MODELOPS_WAREHOUSE_ID",
        "MODELOPS_CONCURRENCY",
        "MODELOPS_REPORT_PATH",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults_without_project_file(tmp_path):
    settings = load_settings(tmp_path)

    assert settings.concurrency == 4
    assert settings.retries == 1
    assert settings.retry_backoff_seconds == 5.0
    assert settings.models_path == tmp_path / "models"
    assert settings.report_file == tmp_path / "target" / "run_report.json"
    assert settings.warehouse.warehouse_id is None


def test_project_file_values(tmp_path):
    (tmp_path / "modelops.yml").write_text(
        "models_dir: transforms\n"
        "default_schema: analytics\n"
        "concurrency: 8\n"
        "retries: 2\n"
        "warehouse:\n"
        "  warehouse_id: abc123\n"
        "  catalog: main\n"
        "  profile: prod\n"
    )

    settings = load_settings(tmp_path)

    assert settings.models_path == tmp_path / "transforms"
    assert settings.default_schema == "analytics"
    assert settings.concurrency == 8
    assert settings.retries == 2
    assert settings.warehouse.warehouse_id == "abc123"
    assert settings.warehouse.catalog == "main"
    assert settings.warehouse.profile == "prod"


def test_env_overrides_file_and_flags_override_env(tmp_path, monkeypatch):
    (tmp_path / "modelops.yml").write_text("concurrency: 8\nwarehouse: {warehouse_id: file}\n")
    monkeypatch.setenv("MODELOPS_CONCURRENCY", "3")
    monkeypatch.setenv("MODELOPS_WAREHOUSE_ID", "env")

    from_env = load_settings(tmp_path)
    from_flags = load_settings(tmp_path, concurrency=1, warehouse_id="flag", profile=None)

    assert from_env.concurrency == 3
    assert from_env.warehouse.warehouse_id == "env"
    assert from_flags.concurrency == 1
    assert from_flags.warehouse.warehouse_id == "flag"


def test_invalid_values_are_rejected(tmp_path, monkeypatch):
    with pytest.raises(DefinitionError, match="concurrency"):
        load_settings(tmp_path, concurrency=0)

    monkeypatch.setenv("MODELOPS_CONCURRENCY", "many")
    with pytest.raises(DefinitionError, match="MODELOPS_CONCURRENCY"):
        load_settings(tmp_path)


def test_project_file_must_be_a_mapping(tmp_path):
    (tmp_path / "modelops.yml").write_text("- just\n- a list\n")

    with pytest.raises(DefinitionError):
        load_settings(tmp_path)
