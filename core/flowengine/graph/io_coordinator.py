"""
Push/pull bookkeeping for one run.

Three maps per node:

- live inputs of the execution currently in flight (late pushes land here)
- pending pushes for a node that has not started yet (coalesced until its
  gate opens)
- the in-flight future, so a pull awaits a running producer instead of
  starting a second execution

plus a per-execution memo of pulled values, and the inputs each node last ran
with so a failed producer can be re-invoked as it was.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from flowengine.graph.flow import FlowWiring
from flowengine.graph.node import ExecutionPolicy, NodeMetadata, NodeOutput

logger = logging.getLogger(__name__)


class NodeIOCoordinator:
    def __init__(self, wiring: FlowWiring, metadata_for: Callable[[str], NodeMetadata]):
        self.wiring = wiring
        self._metadata_for = metadata_for
        self._live: dict[str, dict[str, Any]] = {}
        self._pending: dict[str, dict[str, Any]] = {}
        self._in_flight: dict[str, asyncio.Future[NodeOutput]] = {}
        self._pull_memo: dict[str, dict[str, Any]] = {}
        self._last_inputs: dict[str, dict[str, Any]] = {}

    # --- in-flight executions -----------------------------------------

    def begin(self, node_id: str, inputs: dict[str, Any], future: asyncio.Future[NodeOutput]) -> None:
        self._live[node_id] = inputs
        self._last_inputs[node_id] = inputs
        self._in_flight[node_id] = future

    def end(self, node_id: str, future: asyncio.Future[NodeOutput]) -> None:
        # A newer execution of the same node may have replaced ours
        if self._in_flight.get(node_id) is future:
            del self._in_flight[node_id]
            self._live.pop(node_id, None)

    def in_flight(self, node_id: str) -> asyncio.Future[NodeOutput] | None:
        return self._in_flight.get(node_id)

    def live_inputs(self, node_id: str) -> dict[str, Any]:
        return self._live.get(node_id, {})

    def last_inputs(self, node_id: str) -> dict[str, Any]:
        """Inputs of the most recent execution of ``node_id``, late pushes included."""
        return dict(self._last_inputs.get(node_id, {}))

    def feed(self, node_id: str, values: dict[str, Any]) -> None:
        """Merge a late push into an execution that is already running."""
        self._live.setdefault(node_id, {}).update(values)

    # --- pending pushes -----------------------------------------------

    def add_pending(self, node_id: str, values: dict[str, Any]) -> dict[str, Any]:
        merged = self._pending.setdefault(node_id, {})
        merged.update(values)
        return merged

    def take_pending(self, node_id: str) -> dict[str, Any]:
        return self._pending.pop(node_id, {})

    def pending(self, node_id: str) -> dict[str, Any]:
        return dict(self._pending.get(node_id, {}))

    # --- gating ---------------------------------------------------------

    def gated_ports(self, node_id: str) -> dict[str, int]:
        """
        Input ports that pushes can fill, with their edge counts.

        ``tools`` edges and edges from pull-only producers are excluded: the
        node pulls those itself.
        """
        counts: dict[str, int] = {}
        for edge in self.wiring.incoming(node_id):
            if edge.target_input == "tools":
                continue
            if self._source_is_pull_only(edge.source):
                continue
            counts[edge.target_input] = counts.get(edge.target_input, 0) + 1
        return counts

    def missing_inputs(
        self, node_id: str, available: dict[str, Any], policy: ExecutionPolicy
    ) -> list[str]:
        """
        Ports that must still arrive before ``node_id`` may start.

        - ``all``: every gated port.
        - ``any``: ``context`` when a context edge is wired, and every port fed
          by more than one edge (it cannot be pulled unambiguously).
        """
        counts = self.gated_ports(node_id)
        if policy == ExecutionPolicy.ALL:
            required = list(counts)
        else:
            required = [port for port, count in counts.items() if count > 1]
            if "context" in counts and "context" not in required:
                required.append("context")
        return [port for port in required if port not in available]

    def _source_is_pull_only(self, node_id: str) -> bool:
        return self._metadata_for(node_id).pull_only

    # --- pull memo ------------------------------------------------------

    def memo_get(self, execution_id: str, port: str) -> tuple[bool, Any]:
        memo = self._pull_memo.get(execution_id)
        if memo is not None and port in memo:
            return True, memo[port]
        return False, None

    def memo_set(self, execution_id: str, port: str, value: Any) -> None:
        self._pull_memo.setdefault(execution_id, {})[port] = value

    def memo_clear(self, execution_id: str) -> None:
        self._pull_memo.pop(execution_id, None)
