"""
Flow definitions - the user-authored graph the scheduler walks.

A flow is a set of typed nodes joined by edges between named ports. Edges
carry two handles:

- ``source_handle``: the producer's output port (``context``, ``data``,
  ``tools``, ``out-1``, ``billing-context``)
- ``target_handle``: the consumer's input port (``context``, ``data``,
  ``data-1``, ``tools``)

Editors spell handles loosely (``contextOut``, ``dataIn``, ``value``); they
are canonicalized once when the wiring is built.

Portals normally stay in the graph and talk through the run's portal
registry. With ``build_wiring(bridge_portals=True)`` they become invisible
wiring instead: every edge into a ``portalInput`` is crossed with every edge
out of the ``portalOutput`` sharing its ``config.id``, producing a direct
``bridge:`` edge from the upstream producer to the final consumer wherever
the handle names match.

Example:
    {
      "id": "chat",
      "version": 1,
      "nodes": [
        {"id": "start", "type": "defaultContextStart"},
        {"id": "llm", "type": "llmRequest"}
      ],
      "edges": [
        {"id": "e1", "source": "start", "target": "llm",
         "sourceHandle": "context", "targetHandle": "context"}
      ]
    }
"""

import json
import logging
import re
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from flowengine.graph.errors import FlowValidationError

if TYPE_CHECKING:
    from flowengine.graph.node import NodeRegistry

logger = logging.getLogger(__name__)

ENTRY_NODE_KIND = "defaultContextStart"
PORTAL_INPUT_KIND = "portalInput"
PORTAL_OUTPUT_KIND = "portalOutput"

_HANDLE_SEPARATORS = re.compile(r"[\s\-_]+")
_CONTEXT_HANDLES = {"context", "contextin", "contextout", "ctx", "ctxin", "ctxout"}
_DATA_HANDLES = {"data", "datain", "dataout", "value", "output"}
_TOOLS_HANDLES = {"tools", "toolsin", "toolsout"}


def canonicalize_handle(name: str | None) -> str:
    """
    Map editor handle spellings onto ``context`` / ``data`` / ``tools``.

    Names outside those families (``data-1``, ``out-2``) are returned as given.
    """
    if not name:
        return "context"
    squashed = _HANDLE_SEPARATORS.sub("", name.strip().lower())
    if squashed in _CONTEXT_HANDLES:
        return "context"
    if squashed in _DATA_HANDLES:
        return "data"
    if squashed in _TOOLS_HANDLES:
        return "tools"
    return name


_MODEL_CONFIG = {
    "extra": "allow",
    "alias_generator": to_camel,
    "populate_by_name": True,
    "frozen": True,
}


class FlowNode(BaseModel):
    id: str
    type: str = Field(description="Node kind; selects the registered implementation")
    label: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)

    model_config = _MODEL_CONFIG


class FlowEdge(BaseModel):
    id: str
    source: str
    target: str
    source_handle: str | None = None
    target_handle: str | None = None

    model_config = _MODEL_CONFIG


@dataclass(frozen=True)
class WiredEdge:
    """An edge after canonicalization and portal bridging."""

    id: str
    source: str
    source_output: str
    target: str
    target_input: str

    @property
    def is_bridge(self) -> bool:
        return self.id.startswith("bridge:")


@dataclass
class FlowWiring:
    """Incoming/outgoing edge indexes used by the scheduler."""

    edges: list[WiredEdge] = field(default_factory=list)
    _incoming: dict[str, list[WiredEdge]] = field(default_factory=lambda: defaultdict(list))
    _outgoing: dict[str, list[WiredEdge]] = field(default_factory=lambda: defaultdict(list))

    def add(self, edge: WiredEdge) -> None:
        self.edges.append(edge)
        self._incoming[edge.target].append(edge)
        self._outgoing[edge.source].append(edge)

    def incoming(self, node_id: str) -> list[WiredEdge]:
        return list(self._incoming.get(node_id, []))

    def outgoing(self, node_id: str) -> list[WiredEdge]:
        return list(self._outgoing.get(node_id, []))

    def incoming_for(self, node_id: str, port: str) -> list[WiredEdge]:
        return [e for e in self._incoming.get(node_id, []) if e.target_input == port]


class FlowDefinition(BaseModel):
    """
    A complete flow. Immutable once loaded; edit by building a new definition.
    """

    id: str
    version: int | str = 1
    name: str = ""
    nodes: list[FlowNode] = Field(default_factory=list)
    edges: list[FlowEdge] = Field(default_factory=list)

    model_config = _MODEL_CONFIG

    # --- loading -------------------------------------------------------

    @classmethod
    def load(cls, data: dict[str, Any], registry: "NodeRegistry | None" = None) -> "FlowDefinition":
        """Parse and validate; raises FlowValidationError on any problem."""
        flow = cls.model_validate(data)
        errors = flow.validate_structure(registry)
        if errors:
            raise FlowValidationError(errors)
        return flow

    @classmethod
    def from_file(cls, path: str | Path, registry: "NodeRegistry | None" = None) -> "FlowDefinition":
        with open(path, encoding="utf-8") as f:
            return cls.load(json.load(f), registry)

    # --- queries -------------------------------------------------------

    def get_node(self, node_id: str) -> FlowNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def nodes_of_kind(self, kind: str) -> list[FlowNode]:
        return [n for n in self.nodes if n.type == kind]

    def get_entry_node(self) -> FlowNode:
        """
        The unique ``defaultContextStart`` node, else the lone node without
        incoming edges.
        """
        starts = self.nodes_of_kind(ENTRY_NODE_KIND)
        if len(starts) == 1:
            return starts[0]
        if len(starts) > 1:
            raise FlowValidationError([f"Flow has {len(starts)} '{ENTRY_NODE_KIND}' nodes"])

        targets = {e.target for e in self.edges}
        candidates = [n for n in self.nodes if n.id not in targets]
        if len(candidates) == 1:
            logger.warning(f"No {ENTRY_NODE_KIND} node; using lone entry node '{candidates[0].id}'")
            return candidates[0]
        raise FlowValidationError(
            [f"No '{ENTRY_NODE_KIND}' node and {len(candidates)} nodes without incoming edges"]
        )

    # --- validation ----------------------------------------------------

    def validate_structure(self, registry: "NodeRegistry | None" = None) -> list[str]:
        """Validate the graph structure. Returns a list of error strings."""
        errors = []

        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                errors.append(f"Duplicate node id '{node.id}'")
            seen.add(node.id)
            if registry is not None and node.type not in registry:
                errors.append(f"Node '{node.id}' has unknown kind '{node.type}'")

        for edge in self.edges:
            if edge.source not in seen:
                errors.append(f"Edge '{edge.id}' references missing source '{edge.source}'")
            if edge.target not in seen:
                errors.append(f"Edge '{edge.id}' references missing target '{edge.target}'")

        if self.nodes:
            try:
                self.get_entry_node()
            except FlowValidationError as e:
                errors.extend(e.errors)
        else:
            errors.append("Flow has no nodes")

        return errors

    # --- wiring --------------------------------------------------------

    def build_wiring(self, bridge_portals: bool = False) -> FlowWiring:
        """
        Canonicalize handles and index edges by node.

        With ``bridge_portals`` the portal nodes are compiled away into direct
        ``bridge:`` edges; otherwise they stay in the graph and exchange values
        through the run's PortalRegistry.
        """
        kinds = {n.id: n.type for n in self.nodes}

        base = [
            WiredEdge(
                id=e.id,
                source=e.source,
                source_output=canonicalize_handle(e.source_handle),
                target=e.target,
                target_input=canonicalize_handle(e.target_handle),
            )
            for e in self.edges
        ]

        portal_inputs: dict[str, list[str]] = defaultdict(list)
        portal_outputs: dict[str, list[str]] = defaultdict(list)
        for node in self.nodes:
            portal_id = node.config.get("id")
            if not portal_id:
                continue
            if node.type == PORTAL_INPUT_KIND:
                portal_inputs[portal_id].append(node.id)
            elif node.type == PORTAL_OUTPUT_KIND:
                portal_outputs[portal_id].append(node.id)

        def touches_portal(edge: WiredEdge) -> bool:
            return kinds.get(edge.source) in (PORTAL_INPUT_KIND, PORTAL_OUTPUT_KIND) or kinds.get(
                edge.target
            ) in (PORTAL_INPUT_KIND, PORTAL_OUTPUT_KIND)

        bridged: list[WiredEdge] = []
        for portal_id, input_ids in portal_inputs.items():
            output_ids = portal_outputs.get(portal_id, [])
            if not bridge_portals or not output_ids:
                continue
            into_portal = [e for e in base if e.target in input_ids]
            out_of_portal = [e for e in base if e.source in output_ids]
            for out in out_of_portal:
                for inn in into_portal:
                    if out.target_input != inn.source_output:
                        continue
                    bridged.append(
                        WiredEdge(
                            id=f"bridge:{inn.id}=>{out.id}",
                            source=inn.source,
                            source_output=inn.source_output,
                            target=out.target,
                            target_input=out.target_input,
                        )
                    )

        wiring = FlowWiring()
        seen: set[tuple[str, str, str, str]] = set()
        kept = [e for e in base if not touches_portal(e)] if bridge_portals else base
        for edge in [*kept, *bridged]:
            key = (edge.source, edge.source_output, edge.target, edge.target_input)
            if key in seen:
                continue
            seen.add(key)
            wiring.add(edge)

        if bridged:
            logger.debug(f"Portal bridging created {len(bridged)} virtual edge(s)")
        return wiring
