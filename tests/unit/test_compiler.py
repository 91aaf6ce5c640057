"""
Unit tests for graph compilation and FSM validation.
"""

import pytest

from chatflow_engine.core.compiler import (
    GraphCompileError,
    compile_graph,
    compile_workflow,
    find_cycle_nodes,
    validate_fsm,
)
from chatflow_engine.core.models import FSMEdge, NodeKind


class TestCompileWorkflow:
    """Tests for FSM construction."""

    def test_compile_survey(self, age_survey_graph):
        """Test nodes are classified and edges kept in authoring order."""
        fsm = compile_graph(age_survey_graph)

        assert fsm.start_id == "start"
        assert fsm.nodes["ask_age"].kind == NodeKind.INPUT
        assert fsm.nodes["branch"].kind == NodeKind.CONDITION
        assert fsm.nodes["greet_young"].kind == NodeKind.OUTPUT
        assert fsm.nodes["finish"].kind == NodeKind.END
        assert [e.to for e in fsm.outgoing("branch")] == ["greet_young", "greet_old"]
        assert [e.label for e in fsm.outgoing("branch")] == ["muda", "tua"]
        assert fsm.cyclic_nodes == []

    def test_node_type_and_data_preserved(self, age_survey_graph):
        """Test the authored type and data survive compilation."""
        fsm = compile_graph(age_survey_graph)
        node = fsm.nodes["ask_age"]

        assert node.type == "ask"
        assert node.data["fieldKey"] == "umur"

    def test_label_fallbacks(self):
        """Test label comes from data.label, then title, then type, then id."""
        fsm = compile_workflow(
            [
                {"id": "a", "type": "send", "data": {"label": "L", "title": "T"}},
                {"id": "b", "type": "send", "data": {"title": "T"}},
                {"id": "c", "type": "send"},
                {"id": "d"},
            ],
            [],
        )
        assert [fsm.nodes[n].label for n in "abcd"] == ["L", "T", "send", "d"]

    def test_edge_condition_from_data(self):
        """Test data.condition becomes the edge condition and branch name."""
        fsm = compile_workflow(
            [{"id": "c", "type": "condition"}, {"id": "y", "type": "send"}],
            [{"source": "c", "target": "y", "label": "Label", "data": {"condition": "yes"}}],
        )
        edge = fsm.outgoing("c")[0]

        assert edge.condition == "yes"
        assert edge.branch_name == "yes"

    def test_edge_serializes_with_from_key(self):
        """Test edges dump with the 'from' key."""
        edge = FSMEdge(from_id="a", to="b")
        assert edge.model_dump(by_alias=True)["from"] == "a"

    def test_malformed_items_skipped(self):
        """Test nodes without id and edges without endpoints are dropped."""
        fsm = compile_workflow(
            [{"type": "send"}, {"id": "a", "type": "start"}, "garbage", None],
            [{"source": "a"}, {"target": "a"}, 7],
        )
        assert list(fsm.nodes) == ["a"]
        assert fsm.edges_from == {}

    def test_duplicate_node_keeps_last(self):
        """Test a repeated id keeps its last definition."""
        fsm = compile_workflow(
            [{"id": "a", "type": "send"}, {"id": "a", "type": "end"}],
            [],
        )
        assert fsm.nodes["a"].kind == NodeKind.END

    def test_non_list_graph_fields(self):
        """Test non-list nodes/edges compile to an empty FSM."""
        fsm = compile_graph({"nodes": "oops", "edges": None})
        assert fsm.nodes == {}
        assert fsm.start_id is None


class TestStartSelection:
    """Tests for start state selection."""

    def test_prefers_start_kind(self):
        """Test a start node wins even when listed later."""
        fsm = compile_workflow(
            [{"id": "q", "type": "ask"}, {"id": "s", "type": "start"}],
            [{"source": "s", "target": "q"}],
        )
        assert fsm.start_id == "s"

    def test_falls_back_to_input(self):
        """Test the first input node is used without a start node."""
        fsm = compile_workflow(
            [{"id": "o", "type": "send"}, {"id": "q", "type": "ask"}],
            [{"source": "q", "target": "o"}],
        )
        assert fsm.start_id == "q"

    def test_falls_back_to_no_incoming(self):
        """Test the first node without incoming edges is used next."""
        fsm = compile_workflow(
            [{"id": "o1", "type": "send"}, {"id": "o2", "type": "send"}],
            [{"source": "o2", "target": "o1"}],
        )
        assert fsm.start_id == "o2"

    def test_falls_back_to_first_node(self):
        """Test a fully cyclic graph starts at the first node."""
        fsm = compile_workflow(
            [{"id": "o1", "type": "send"}, {"id": "o2", "type": "send"}],
            [{"source": "o1", "target": "o2"}, {"source": "o2", "target": "o1"}],
        )
        assert fsm.start_id == "o1"

    def test_empty_graph(self):
        """Test an empty graph has no start."""
        assert compile_workflow([], []).start_id is None


class TestCycleDetection:
    """Tests for cycle flagging."""

    def test_cycle_flagged(self, cyclic_graph):
        """Test nodes on a cycle are flagged, others are not."""
        fsm = compile_graph(cyclic_graph)
        assert fsm.cyclic_nodes == ["p1", "p2"]

    def test_reject_cycles(self, cyclic_graph):
        """Test strict compilation raises with the cycle members."""
        with pytest.raises(GraphCompileError) as exc_info:
            compile_graph(cyclic_graph, reject_cycles=True)

        assert exc_info.value.cycle_nodes == ["p1", "p2"]

    def test_self_loop(self):
        """Test a node pointing at itself is a cycle."""
        fsm = compile_workflow(
            [{"id": "q", "type": "ask"}],
            [{"source": "q", "target": "q"}],
        )
        assert fsm.cyclic_nodes == ["q"]

    def test_diamond_is_not_a_cycle(self):
        """Test converging branches are not mistaken for a cycle."""
        edges = {
            "a": [FSMEdge(from_id="a", to="b"), FSMEdge(from_id="a", to="c")],
            "b": [FSMEdge(from_id="b", to="d")],
            "c": [FSMEdge(from_id="c", to="d")],
        }
        assert find_cycle_nodes(["a", "b", "c", "d"], edges) == []

    def test_long_chain_does_not_recurse(self):
        """Test deep graphs are handled iteratively."""
        count = 5000
        nodes = [{"id": f"n{i}", "type": "process"} for i in range(count)]
        edges = [{"source": f"n{i}", "target": f"n{i + 1}"} for i in range(count - 1)]
        edges.append({"source": f"n{count - 1}", "target": "n0"})

        fsm = compile_workflow(nodes, edges)

        assert len(fsm.cyclic_nodes) == count


class TestValidateFsm:
    """Tests for structural findings."""

    def test_clean_graph(self, age_survey_graph):
        """Test a well-formed graph has no findings."""
        result = validate_fsm(compile_graph(age_survey_graph))
        assert result.is_clean
        assert result.codes() == []

    def test_no_start(self):
        """Test an empty graph reports NO_START."""
        assert validate_fsm(compile_workflow([], [])).codes() == ["NO_START"]

    def test_dangling_edge(self):
        """Test edges to missing nodes are reported."""
        fsm = compile_workflow(
            [{"id": "s", "type": "start"}],
            [{"source": "s", "target": "ghost"}],
        )
        result = validate_fsm(fsm)

        assert "DANGLING_EDGE" in result.codes()
        assert result.warnings[0].details["target"] == "ghost"

    def test_condition_without_branches(self):
        """Test a condition with no outgoing edge is reported."""
        fsm = compile_workflow(
            [{"id": "s", "type": "start"}, {"id": "c", "type": "condition"}],
            [{"source": "s", "target": "c"}],
        )
        assert "CONDITION_WITHOUT_BRANCHES" in validate_fsm(fsm).codes()

    def test_unreachable_nodes(self):
        """Test nodes unreachable from the start are reported."""
        fsm = compile_workflow(
            [{"id": "s", "type": "start"}, {"id": "orphan", "type": "send"}],
            [],
        )
        result = validate_fsm(fsm)
        warning = next(w for w in result.warnings if w.code == "UNREACHABLE_NODES")

        assert warning.details["unreachable_nodes"] == ["orphan"]

    def test_cycle_reported(self, cyclic_graph):
        """Test cycles are reported as warnings."""
        result = validate_fsm(compile_graph(cyclic_graph))
        warning = next(w for w in result.warnings if w.code == "CYCLE_DETECTED")

        assert warning.details["cycle_nodes"] == ["p1", "p2"]
        assert not result.is_clean
