# euler.py
"""
Euler tour of a directed multigraph (Hierholzer with cycle splicing).

The walk is built with an explicit stack of frames instead of recursion, so
the depth is bounded by memory and not by the interpreter's recursion limit.

Each frame stands at one node and extends one cycle list:
  - the first unvisited out-arc of the node is appended to the cycle and
    the walk continues at its head,
  - every further unvisited out-arc (found after the walk came back) starts a
    sub-cycle at this node, which is spliced into the cycle right in front of
    the first arc taken from this node.
"""

from typing import List, Optional, Sequence


class NotEulerianError(ValueError):
    """The walk got stuck at `node` before closing its cycle."""

    def __init__(self, node: int):
        super().__init__(f"The graph is not Eulerian (stuck at node {node})")
        self.node = node


# frame slots
_NODE, _ORIGIN, _CYCLE, _POS, _NEXT, _PENDING = range(6)


def euler_tour(out_arcs: Sequence[Sequence[int]], arc_head: Sequence[int],
               start: Optional[int] = None) -> List[int]:
    """
    Closed walk over the arcs of a multigraph given as adjacency lists.

    Args:
        out_arcs: out_arcs[v] = arc ids leaving node v (tried in this order).
        arc_head: arc_head[a] = head node of arc a.
        start   : start node; defaults to the first node with an out-arc.

    Returns:
        Arc ids in walk order, starting and ending at `start`. Arcs that cannot
        be reached from `start` are not part of the result.

    Raises:
        NotEulerianError: a node was reached whose out-arcs are all used while
        its cycle was not closed yet.
    """
    n_arcs = len(arc_head)
    if n_arcs == 0:
        return []
    if start is None:
        start = next(v for v, arcs in enumerate(out_arcs) if arcs)

    visited = [False] * n_arcs
    tour: List[int] = []
    stack = [[start, start, tour, -1, 0, None]]

    while stack:
        frame = stack[-1]

        # a sub-cycle started here is complete: splice it in
        sub = frame[_PENDING]
        if sub is not None:
            pos = frame[_POS]
            frame[_CYCLE][pos:pos] = sub
            frame[_POS] = pos + len(sub)
            frame[_PENDING] = None
            continue

        node = frame[_NODE]
        arcs = out_arcs[node]
        k = frame[_NEXT]
        while k < len(arcs) and visited[arcs[k]]:
            k += 1

        if k == len(arcs):
            if frame[_POS] < 0 and node != frame[_ORIGIN]:
                raise NotEulerianError(node)
            stack.pop()
            continue

        a = arcs[k]
        visited[a] = True
        frame[_NEXT] = k + 1

        if frame[_POS] < 0:
            cycle = frame[_CYCLE]
            frame[_POS] = len(cycle)
            cycle.append(a)
            stack.append([arc_head[a], frame[_ORIGIN], cycle, -1, 0, None])
        else:
            sub = [a]
            frame[_PENDING] = sub
            stack.append([arc_head[a], node, sub, -1, 0, None])

    return tour
