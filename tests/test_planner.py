import pytest

from modelops.core.errors import MissingUpstreamError
from modelops.core.graph import build
from modelops.core.planner import plan


@pytest.fixture
def chain(make_model):
    return build(
        [
            make_model("a"),
            make_model("b", upstream=["a"]),
            make_model("c", upstream=["b"]),
        ]
    )


def test_chain_plans_one_model_per_wave(chain):
    execution_plan = plan(chain, {"a", "b", "c"})

    assert execution_plan.waves == (("a",), ("b",), ("c",))
    assert execution_plan.models == ["a", "b", "c"]


def test_independent_models_share_a_wave(make_model):
    graph = build(
        [
            make_model("a"),
            make_model("b"),
            make_model("c", upstream=["a", "b"]),
            make_model("d", upstream=["a"]),
            make_model("e", upstream=["c"]),
        ]
    )

    execution_plan = plan(graph, graph.names())

    assert execution_plan.waves == (("a", "b"), ("c", "d"), ("e",))


def test_wave_is_longest_path_from_a_root(make_model):
    graph = build(
        [
            make_model("a"),
            make_model("b", upstream=["a"]),
            make_model("c", upstream=["a", "b"]),
        ]
    )

    assert plan(graph, {"a", "b", "c"}).waves == (("a",), ("b",), ("c",))


def test_unselected_unbuilt_upstream_is_rejected(chain):
    with pytest.raises(MissingUpstreamError) as excinfo:
        plan(chain, {"c"}, is_materialized=lambda m: False)

    assert excinfo.value.model == "c"
    assert excinfo.value.upstream == "b"


def test_unselected_materialized_upstream_is_accepted(chain):
    seen = []

    def exists(model):
        seen.append(model.name)
        return True

    execution_plan = plan(chain, {"c"}, is_materialized=exists)

    assert execution_plan.waves == (("c",),)
    assert seen == ["b"]


def test_without_materialization_check_upstream_is_assumed(chain):
    assert plan(chain, {"b", "c"}).waves == (("b",), ("c",))


def test_empty_selection_gives_empty_plan(chain):
    execution_plan = plan(chain, set())

    assert execution_plan.is_empty
    assert len(execution_plan) == 0


def test_unknown_names_are_ignored(chain):
    assert plan(chain, {"a", "ghost"}).models == ["a"]


def test_ordering_follows_dependencies_through_unselected_models(chain):
    execution_plan = plan(chain, {"a", "c"}, is_materialized=lambda m: True)

    assert execution_plan.waves == (("a",), ("c",))
