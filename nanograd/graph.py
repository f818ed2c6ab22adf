"""
Computation graph arena and backward driver.

Nodes live in a Graph keyed by integer id. The graph only holds weak
references; each node holds strong references to its operands, so a live root
keeps its whole subgraph alive and dropping it frees the subgraph. One node
can feed any number of consumers (a real DAG) without reference cycles. Ids
come from a per-graph counter and are never reused.

Backpropagation runs in two steps, both with explicit work stacks so deep
graphs never hit the recursion limit:

1. Discover every ancestor of the root (visited set keyed by id) and count,
   for each of them, how many edges arrive from consumers inside that
   subgraph.
2. Kahn's algorithm from the root: a node is processed only after all of its
   consumers have pushed their gradient into it.
"""

from __future__ import annotations
import weakref
from collections import deque
from contextlib import contextmanager
from typing import TYPE_CHECKING, Dict, Iterable, Iterator, List, Optional, Set, Tuple

import numpy as np

from .backward import backward_by_operation
from .errors import GraphError
from .logger import get_logger

if TYPE_CHECKING:
    from .tensor import Tensor


logger = get_logger(__name__)


class Graph:
    """
    Arena indexing every live node built on it.

    Attributes:
        name: Label used in logs and reprs.
    """

    def __init__(self, name: str = 'graph') -> None:
        self.name = name
        self._nodes: weakref.WeakValueDictionary = weakref.WeakValueDictionary()
        self._fan_out: Dict[int, int] = {}
        self._next_id: int = 0

    def __repr__(self) -> str:
        return f"Graph({self.name!r}, nodes={len(self._nodes)})"

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: int) -> bool:
        return node_id in self._nodes

    def __iter__(self) -> Iterator[Tensor]:
        return iter(list(self._nodes.values()))

    # =========================================================================
    # Arena
    # =========================================================================

    def register(self, node: Tensor, operands: Tuple[int, ...] = ()) -> int:
        """
        Add a node and return its new id.

        The arena holds the node weakly; once nothing else references it,
        it leaves the arena and stops counting towards its operands' fan-out.

        Raises:
            GraphError: If an operand id is not in this graph.
        """
        for operand_id in operands:
            if operand_id not in self._nodes:
                raise GraphError(f"{self.name}: operand {operand_id} is not in this graph")
        node_id = self._next_id
        self._next_id += 1
        self._nodes[node_id] = node
        self._fan_out[node_id] = 0
        for operand_id in operands:
            self._fan_out[operand_id] += 1
        weakref.finalize(node, self._release, node_id, operands).atexit = False
        return node_id

    def _release(self, node_id: int, operands: Tuple[int, ...]) -> None:
        # pruned nodes were already removed from the fan-out table
        if self._fan_out.pop(node_id, None) is None:
            return
        for operand_id in operands:
            if operand_id in self._fan_out:
                self._fan_out[operand_id] -= 1

    def node(self, node_id: int) -> Tensor:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise GraphError(f"{self.name}: no node with id {node_id}") from None

    def fan_out(self, node_id: int) -> int:
        """Number of edges from live consumers into this node."""
        return self._fan_out.get(node_id, 0)

    # =========================================================================
    # Traversal
    # =========================================================================

    def _ancestors(self, root: Tensor) -> Tuple[Dict[int, Tensor], Dict[int, int]]:
        # nodes reachable from root, and in-degree from consumers inside that set
        reachable: Dict[int, Tensor] = {root.id: root}
        indegree: Dict[int, int] = {root.id: 0}
        stack = [root]
        while stack:
            node = stack.pop()
            for operand in node.operands:
                indegree[operand.id] = indegree.get(operand.id, 0) + 1
                if operand.id not in reachable:
                    reachable[operand.id] = operand
                    stack.append(operand)
        return reachable, indegree

    def topological_order(self, root: Tensor) -> List[Tensor]:
        """
        Order root's subgraph so every node follows all of its consumers.

        The root comes first and leaves come last; this is the order in which
        backward processes nodes.

        Raises:
            GraphError: If the subgraph contains a cycle.
        """
        if root.graph is not self:
            raise GraphError(f"{self.name}: root belongs to {root.graph!r}")
        reachable, indegree = self._ancestors(root)

        ready = deque([root])
        ordered: List[Tensor] = []
        while ready:
            node = ready.popleft()
            ordered.append(node)
            for operand in node.operands:
                indegree[operand.id] -= 1
                if indegree[operand.id] == 0:
                    ready.append(operand)

        if len(ordered) != len(reachable):
            raise GraphError(f"{self.name}: cycle detected below node {root.id}")
        return ordered

    def backward(self, root: Tensor) -> None:
        """
        Backpropagate from `root` through its subgraph.

        The root gradient is seeded with ones of the root's shape (dL/dL = 1).
        Gradients of interior nodes are recomputed from scratch on every
        call; gradients of leaves accumulate until cleared.

        Args:
            root: The node to differentiate, usually a 1x1 loss.
        """
        if not root.requires_grad:
            logger.debug("backward on node %d skipped: requires_grad is False", root.id)
            return

        order = self.topological_order(root)
        for node in order:
            if not node.is_leaf:
                node.clear_gradient()
        root._set_gradient(np.ones(root.shape, dtype=root.dtype))

        processed = 0
        for node in order:
            if node.is_leaf or not node.requires_grad:
                continue
            backward_by_operation(node, node.operands)
            processed += 1
        logger.debug(
            "%s: backward from node %d visited %d nodes, ran %d rules",
            self.name, root.id, len(order), processed
        )

    def clear_gradients(self) -> None:
        """Reset the gradient of every node in the arena."""
        for node in self._nodes.values():
            node.clear_gradient()

    def prune(self, keep: Iterable[Tensor]) -> int:
        """
        Drop every node that is neither in `keep` nor an ancestor of one.

        Nodes are released on their own once unreferenced; prune() is for
        loops that hold on to stale results (the last loss, say) and want the
        arena and fan-out counts to reflect only what later steps reach.
        Pruned nodes that are still referenced keep working as values but
        can no longer be used as operands.

        Returns:
            Number of nodes removed.
        """
        live: Set[int] = set()
        stack: List[Tensor] = []
        for tensor in keep:
            if tensor.graph is not self:
                raise GraphError(f"{self.name}: cannot keep a node of {tensor.graph!r}")
            stack.append(tensor)
        while stack:
            node = stack.pop()
            if node.id in live:
                continue
            live.add(node.id)
            stack.extend(node.operands)

        nodes = list(self._nodes.items())
        dropped = [i for i, _ in nodes if i not in live]
        for node_id in dropped:
            self._nodes.pop(node_id, None)
        self._fan_out = {i: 0 for i, _ in nodes if i in live}
        for node_id, node in nodes:
            if node_id not in live:
                continue
            for operand_id in node.operand_ids:
                if operand_id in self._fan_out:
                    self._fan_out[operand_id] += 1

        logger.info("%s: pruned %d nodes, %d remain", self.name, len(dropped), len(self._nodes))
        return len(dropped)


# =============================================================================
# Default graph and gradient mode
# =============================================================================

_default_graph = Graph('default')
_graph_stack: List[Graph] = []
_grad_enabled = True


def get_default_graph() -> Graph:
    """Graph that new tensors join when none is given explicitly."""
    return _graph_stack[-1] if _graph_stack else _default_graph


@contextmanager
def use_graph(graph: Optional[Graph] = None) -> Iterator[Graph]:
    """
    Make `graph` (or a fresh one) the default inside the block.

    Example:
        >>> with use_graph() as g:
        ...     x = Tensor.ones((2, 2), requires_grad=True)
        >>> x.graph is g
        True
    """
    graph = graph if graph is not None else Graph()
    _graph_stack.append(graph)
    try:
        yield graph
    finally:
        _graph_stack.pop()


def is_grad_enabled() -> bool:
    return _grad_enabled


@contextmanager
def no_grad() -> Iterator[None]:
    """Build detached leaves instead of graph nodes inside the block."""
    global _grad_enabled
    old = _grad_enabled
    _grad_enabled = False
    try:
        yield
    finally:
        _grad_enabled = old


# =============================================================================
# Inspection
# =============================================================================

def topological_sort(root: Tensor) -> List[Tensor]:
    """
    Ancestors of `root` in dependency order (root is last).

    Example:
        >>> a = Tensor.scalar(1.0)
        >>> b = Tensor.scalar(2.0)
        >>> c = a + b
        >>> [t.op.symbol for t in topological_sort(c)]
        ['none', 'none', 'add']
    """
    return list(reversed(root.graph.topological_order(root)))


def draw_graph(root: Tensor, format: str = 'text') -> str:
    """
    Render the subgraph below `root`.

    Args:
        root: Root node of the graph to visualize.
        format: 'text' for a listing, 'dot' for Graphviz DOT.

    Returns:
        String representation of the graph.
    """
    nodes = topological_sort(root)

    def name(node: Tensor) -> str:
        return node.label if node.label else f't{node.id}'

    def grad_str(node: Tensor) -> str:
        grad = node.grad
        return 'None' if grad is None else np.array2string(grad, precision=4)

    if format == 'dot':
        lines = ['digraph G {', '  rankdir=LR;']
        for node in nodes:
            lines.append(
                f'  n{node.id} [label="{name(node)}\\n'
                f'shape={node.shape}\\n'
                f'grad={"yes" if node.grad is not None else "no"}", shape=box];'
            )
            if not node.is_leaf:
                op_id = f'op{node.id}'
                lines.append(f'  {op_id} [label="{node.op.symbol}", shape=circle];')
                lines.append(f'  {op_id} -> n{node.id};')
                for operand_id in node.operand_ids:
                    lines.append(f'  n{operand_id} -> {op_id};')
        lines.append('}')
        return '\n'.join(lines)

    lines = ['Computation Graph:', '=' * 50]
    for node in reversed(nodes):
        op_str = ''
        if not node.is_leaf:
            operands = ', '.join(name(o) for o in node.operands)
            op_str = f' = {node.op.symbol}({operands})'
        lines.append(
            f'{name(node):>10}: shape={node.shape}, '
            f'grad={grad_str(node)}{op_str}'
        )
    return '\n'.join(lines)
