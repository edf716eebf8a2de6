"""
Tests for flow definitions: loading, validation, entry node selection,
handle canonicalization and portal bridging.
"""

import json

import pytest

from flowengine.graph.errors import FlowValidationError
from flowengine.graph.flow import FlowDefinition, canonicalize_handle
from flowengine.nodes import default_registry

from conftest import make_flow


class TestCanonicalizeHandle:
    @pytest.mark.parametrize(
        "name,expected",
        [
            ("context", "context"),
            ("contextIn", "context"),
            ("Context Out", "context"),
            ("ctx", "context"),
            ("dataOut", "data"),
            ("value", "data"),
            ("output", "data"),
            ("tools-in", "tools"),
            ("data-1", "data-1"),
            ("out-2", "out-2"),
            ("billing-context", "billing-context"),
        ],
    )
    def test_spellings(self, name, expected):
        assert canonicalize_handle(name) == expected

    def test_missing_handle_defaults_to_context(self):
        assert canonicalize_handle(None) == "context"
        assert canonicalize_handle("") == "context"


class TestLoad:
    def test_camel_case_json_loads(self):
        flow = FlowDefinition.load(
            {
                "id": "chat",
                "nodes": [
                    {"id": "start", "type": "defaultContextStart"},
                    {"id": "llm", "type": "llmRequest", "config": {"temperature": 0.2}},
                ],
                "edges": [
                    {
                        "id": "e1",
                        "source": "start",
                        "target": "llm",
                        "sourceHandle": "contextOut",
                        "targetHandle": "contextIn",
                    }
                ],
            },
            default_registry(),
        )

        assert flow.get_node("llm").config == {"temperature": 0.2}
        assert flow.edges[0].source_handle == "contextOut"

    def test_unknown_kind_rejected_at_load(self):
        with pytest.raises(FlowValidationError) as exc_info:
            FlowDefinition.load(
                {"id": "f", "nodes": [{"id": "a", "type": "teleporter"}], "edges": []},
                default_registry(),
            )
        assert any("unknown kind 'teleporter'" in e for e in exc_info.value.errors)

    def test_missing_edge_endpoint(self):
        flow = make_flow(
            [("start", "defaultContextStart")],
            [("start", "context", "ghost", "context")],
        )
        errors = flow.validate_structure(default_registry())
        assert any("missing target 'ghost'" in e for e in errors)

    def test_duplicate_node_ids(self):
        flow = make_flow([("a", "defaultContextStart"), ("a", "llmRequest")], [])
        assert any("Duplicate node id 'a'" in e for e in flow.validate_structure())

    def test_empty_flow_invalid(self):
        assert make_flow([], []).validate_structure() == ["Flow has no nodes"]

    def test_from_file(self, tmp_path):
        path = tmp_path / "flow.json"
        path.write_text(
            json.dumps({"id": "f", "nodes": [{"id": "s", "type": "defaultContextStart"}], "edges": []})
        )
        flow = FlowDefinition.from_file(path, default_registry())
        assert flow.get_entry_node().id == "s"


class TestEntryNode:
    def test_default_context_start_preferred(self):
        flow = make_flow(
            [("a", "manualInput"), ("s", "defaultContextStart")],
            [("a", "context", "s", "context")],
        )
        assert flow.get_entry_node().id == "s"

    def test_lone_root_without_start(self):
        flow = make_flow(
            [("a", "manualInput"), ("b", "llmRequest")],
            [("a", "context", "b", "context")],
        )
        assert flow.get_entry_node().id == "a"

    def test_two_starts_is_an_error(self):
        flow = make_flow([("s1", "defaultContextStart"), ("s2", "defaultContextStart")], [])
        with pytest.raises(FlowValidationError):
            flow.get_entry_node()

    def test_ambiguous_roots_is_an_error(self):
        flow = make_flow([("a", "manualInput"), ("b", "manualInput")], [])
        with pytest.raises(FlowValidationError):
            flow.get_entry_node()


class TestWiring:
    def test_handles_canonicalized_and_deduplicated(self):
        flow = make_flow(
            [("s", "defaultContextStart"), ("l", "llmRequest")],
            [
                ("s", "contextOut", "l", "contextIn"),
                ("s", "context", "l", "context"),
            ],
        )
        wiring = flow.build_wiring()

        assert len(wiring.edges) == 1
        edge = wiring.edges[0]
        assert (edge.source_output, edge.target_input) == ("context", "context")
        assert wiring.incoming_for("l", "context") == [edge]
        assert wiring.outgoing("s") == [edge]

    def _portal_flow(self):
        return make_flow(
            [
                ("s", "defaultContextStart"),
                ("pin", "portalInput", {"id": "loop"}),
                ("pout", "portalOutput", {"id": "loop"}),
                ("l", "llmRequest"),
            ],
            [
                ("s", "context", "pin", "context"),
                ("pout", "context", "l", "context"),
            ],
        )

    def test_portals_stay_in_graph_by_default(self):
        wiring = self._portal_flow().build_wiring()
        assert {(e.source, e.target) for e in wiring.edges} == {("s", "pin"), ("pout", "l")}
        assert not any(e.is_bridge for e in wiring.edges)

    def test_bridged_portals_become_direct_edges(self):
        wiring = self._portal_flow().build_wiring(bridge_portals=True)

        assert len(wiring.edges) == 1
        bridge = wiring.edges[0]
        assert bridge.is_bridge
        assert bridge.id == "bridge:e0=>e1"
        assert (bridge.source, bridge.target, bridge.target_input) == ("s", "l", "context")

    def test_bridging_requires_matching_handles(self):
        flow = make_flow(
            [
                ("s", "defaultContextStart"),
                ("pin", "portalInput", {"id": "p"}),
                ("pout", "portalOutput", {"id": "p"}),
                ("l", "llmRequest"),
            ],
            [
                ("s", "data", "pin", "data"),
                ("pout", "context", "l", "context"),
            ],
        )
        assert flow.build_wiring(bridge_portals=True).edges == []
