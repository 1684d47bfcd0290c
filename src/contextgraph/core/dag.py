# src/contextgraph/core/dag.py
"""Render ordering for context graphs.

Uses NetworkX for graph operations:
- Stable topological sorting (Kahn's algorithm with a min-heap tie-break)
- Cycle detection and reporting

Ordering never fails. A cyclic graph is reported through
``OrderResult.cycle_detected`` and the caller renders the nodes in their
original order.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import networkx as nx

from contextgraph.contracts import ContextEdge, ContextNode, GraphError
from contextgraph.core.canonical import compute_graph_hash
from contextgraph.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class OrderResult:
    """Output of GraphOrderer.order().

    Attributes:
        nodes: Nodes in render order (original order when cycle_detected)
        cycle_detected: True if the edges contain at least one cycle
        cycle: Node ids along one detected cycle, empty if acyclic
        ignored_edges: Edges naming a node id that is not in the node list
    """

    nodes: tuple[ContextNode, ...]
    cycle_detected: bool = False
    cycle: tuple[str, ...] = ()
    ignored_edges: tuple[ContextEdge, ...] = ()

    @property
    def node_ids(self) -> list[str]:
        return [n.id for n in self.nodes]


class GraphOrderer:
    """Topologically sorts context nodes by their declared edges.

    Graph vertices are the positions of the nodes in the input list, so the
    lexicographic topological sort breaks ties by original list position:
    among nodes with no unmet dependency, the one listed first renders first.
    The result does not depend on the order in which edges are listed.

    When several nodes share an id, edges attach to the first of them.
    """

    def order(self, nodes: Sequence[ContextNode], edges: Sequence[ContextEdge]) -> OrderResult:
        nodes = tuple(nodes)
        if not edges:
            return OrderResult(nodes=nodes)

        index_of: dict[str, int] = {}
        for i, node in enumerate(nodes):
            index_of.setdefault(node.id, i)

        graph: nx.DiGraph[int] = nx.DiGraph()
        graph.add_nodes_from(range(len(nodes)))

        ignored: list[ContextEdge] = []
        for edge in edges:
            if edge.source not in index_of or edge.target not in index_of:
                ignored.append(edge)
                continue
            graph.add_edge(index_of[edge.source], index_of[edge.target])

        if ignored:
            logger.debug("order.ignored_edges", count=len(ignored))

        try:
            positions = list(nx.lexicographical_topological_sort(graph))
        except nx.NetworkXUnfeasible:
            cycle = self._find_cycle(graph, nodes)
            logger.info("order.cycle_detected", cycle=list(cycle))
            return OrderResult(nodes=nodes, cycle_detected=True, cycle=cycle, ignored_edges=tuple(ignored))

        return OrderResult(
            nodes=tuple(nodes[i] for i in positions),
            ignored_edges=tuple(ignored),
        )

    def order_strict(self, nodes: Sequence[ContextNode], edges: Sequence[ContextEdge]) -> OrderResult:
        """Like order(), but raise GraphError on a cycle.

        For callers that require dependency guarantees (e.g. validation
        tooling); the render pipeline always uses order().
        """
        result = self.order(nodes, edges)
        if result.cycle_detected:
            raise GraphError(f"graph contains a cycle: {' -> '.join(result.cycle)}")
        return result

    @staticmethod
    def graph_hash(nodes: Sequence[ContextNode], edges: Sequence[ContextEdge]) -> str:
        """Canonical fingerprint of the node list and edge set."""
        return compute_graph_hash(nodes, edges)

    @staticmethod
    def _find_cycle(graph: nx.DiGraph[int], nodes: tuple[ContextNode, ...]) -> tuple[str, ...]:
        try:
            cycle_edges = nx.find_cycle(graph)
        except nx.NetworkXNoCycle:
            return ()
        ids = [nodes[u].id for u, _v in cycle_edges]
        ids.append(ids[0])
        return tuple(ids)


def order_nodes(nodes: Sequence[ContextNode], edges: Sequence[ContextEdge]) -> OrderResult:
    """Convenience wrapper around GraphOrderer().order()."""
    return GraphOrderer().order(nodes, edges)
