# transit_graph.py
# -*- coding: utf-8 -*-
"""
Builds the transit graph: one node per (line, direction, stop), connected by

  - travel arcs   (riding a line to its next stop),
  - switch arcs   (reversing direction on the same line at the same stop),
  - transfer arcs (changing to a different line at the same station).

Optionally contracts non-branching chains of travel arcs into single arcs and
finally verifies that the result is one connected component.

Public API:
    make_transit_graph(stations, lines, change_cost, switch_cost,
                       problem_type, preprocess) -> TransitGraph
    check_connectivity(graph)
    graph_components(graph) -> (n_components, labels)
    graph_statistics(graph) -> dict
"""

from __future__ import annotations
from collections import deque
from typing import Dict, List, Tuple, Mapping

import numpy as np
from scipy.sparse import csr_matrix
from scipy.sparse.csgraph import connected_components

from data_model import (
    TransitGraph, Station, Line, ProblemType,
    TRANSFER_NAME, STATION, SEGMENT, PROBLEM_TYPES,
)
from errors import MalformedNetworkError, DisconnectedNetworkError


FORWARD = +1
REVERSE = -1


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------

def _is_connecting(name: str, stations: Mapping[str, Station]) -> bool:
    """A connecting station is served by more than one line."""
    return len(stations[name].lines) > 1


def _has_preceding_connecting(pos: int, seq, stations) -> bool:
    return any(_is_connecting(s, stations) for s in seq[:pos])


def _has_following_connecting(pos: int, seq, stations) -> bool:
    return any(_is_connecting(s, stations) for s in seq[pos + 1:])


def weak_components(V: int, tails: List[int], heads: List[int]) -> Tuple[int, np.ndarray]:
    """Connected components of the undirected view of an arc list over 0..V-1."""
    if V == 0:
        return 0, np.zeros(0, dtype=np.int64)
    rows = np.asarray(tails, dtype=np.int64)
    cols = np.asarray(heads, dtype=np.int64)
    adj = csr_matrix((np.ones(len(rows)), (rows, cols)), shape=(V, V))
    n, labels = connected_components(adj, directed=True, connection="weak")
    return int(n), labels


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

def validate_network(stations: Mapping[str, Station], lines: Mapping[str, Line]) -> None:
    """Fail fast on records that violate the network contract."""
    if not lines:
        raise MalformedNetworkError("The network does not contain any line")

    for key, line in lines.items():
        if key != line.name:
            raise MalformedNetworkError(f"Line key {key!r} does not match its name {line.name!r}")
        if line.name == TRANSFER_NAME:
            raise MalformedNetworkError(f"Line name {TRANSFER_NAME!r} is reserved for transfer arcs")
        if len(line.stations) < 2:
            raise MalformedNetworkError(f"Line {line.name} must have at least two stops")
        if len(line.times) != len(line.stations):
            raise MalformedNetworkError(
                f"Line {line.name}: {len(line.stations)} stops but {len(line.times)} times"
            )
        for st in line.stations:
            if st not in stations:
                raise MalformedNetworkError(f"Line {line.name} references unknown station {st}")
            if line.name not in stations[st].lines:
                raise MalformedNetworkError(f"Station {st} does not list line {line.name}")

    for key, station in stations.items():
        if key != station.name:
            raise MalformedNetworkError(f"Station key {key!r} does not match its name {station.name!r}")
        if not station.lines:
            raise MalformedNetworkError(f"Station {key} is not served by any line")
        for ln in station.lines:
            if ln not in lines or key not in lines[ln].stations:
                raise MalformedNetworkError(f"Station {key} lists line {ln}, which does not stop there")


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

class _GraphBuilder:
    """
    Mutable builder for the transit graph.

    Node representation (internal):
      one node per (line, direction, stop position); line_nodes[(line, dir)][pos]
      holds the node of stop `pos` (position in the line's own station order,
      also for the reverse direction).

    Arcs and nodes can be deleted during chain contraction; to_graph() drops
    deleted entries and renumbers the rest.
    """

    def __init__(self, stations: Mapping[str, Station], lines: Mapping[str, Line],
                 change_cost: float, switch_cost: float):
        self.stations = stations
        self.lines = lines
        self.line_order = sorted(lines)
        self.change_cost = float(change_cost)
        self.switch_cost = float(switch_cost)

        # --- node bookkeeping ---
        self.node_station: List[str] = []
        self.node_line: List[str] = []
        self.node_dir: List[int] = []
        self.node_alive: List[bool] = []
        self.in_arcs: List[List[int]] = []
        self.out_arcs: List[List[int]] = []
        self.line_nodes: Dict[Tuple[str, int], List[int]] = {}
        self.station_nodes: Dict[str, List[int]] = {}

        # line -> station -> stop positions (a line may pass a station twice)
        self.positions: Dict[str, Dict[str, List[int]]] = {}
        for name in self.line_order:
            pos_map: Dict[str, List[int]] = {}
            for pos, st in enumerate(lines[name].stations):
                pos_map.setdefault(st, []).append(pos)
            self.positions[name] = pos_map

        # --- arc lists ---
        self.arc_tail: List[int] = []
        self.arc_head: List[int] = []
        self.arc_kind: List[str] = []
        self.arc_line: List[str] = []
        self.arc_cost: List[float] = []
        self.arc_keep: List[bool] = []
        self.arc_segments: List[Tuple[int, ...]] = []
        self.arc_alive: List[bool] = []

        self.segments: List[Tuple[str, str, str]] = []
        self._line_seg0: Dict[str, int] = {}
        self.nodes_removed = False

    # -------- primitive operations --------

    def _new_node(self, station: str, line: str, direction: int) -> int:
        v = len(self.node_station)
        self.node_station.append(station)
        self.node_line.append(line)
        self.node_dir.append(direction)
        self.node_alive.append(True)
        self.in_arcs.append([])
        self.out_arcs.append([])
        self.station_nodes.setdefault(station, []).append(v)
        return v

    def _new_arc(self, tail: int, head: int, kind: str, line: str, cost: float,
                 keep: bool, segments: Tuple[int, ...] = ()) -> int:
        a = len(self.arc_tail)
        self.arc_tail.append(tail)
        self.arc_head.append(head)
        self.arc_kind.append(kind)
        self.arc_line.append(line)
        self.arc_cost.append(float(cost))
        self.arc_keep.append(bool(keep))
        self.arc_segments.append(tuple(segments))
        self.arc_alive.append(True)
        self.out_arcs[tail].append(a)
        self.in_arcs[head].append(a)
        return a

    def _delete_arc(self, a: int) -> None:
        self.arc_alive[a] = False
        self.out_arcs[self.arc_tail[a]].remove(a)
        self.in_arcs[self.arc_head[a]].remove(a)

    def _delete_node(self, v: int) -> None:
        for a in list(self.in_arcs[v]) + list(self.out_arcs[v]):
            if self.arc_alive[a]:
                self._delete_arc(a)
        self.node_alive[v] = False

    def _nodes_at(self, line: str, direction: int, station: str) -> List[int]:
        nodes = self.line_nodes[(line, direction)]
        return [nodes[pos] for pos in self.positions[line].get(station, [])]

    def _travel_time(self, line: Line, i: int, j: int) -> float:
        delta = float(line.times[j]) - float(line.times[i])
        if not delta > 0.0:
            raise MalformedNetworkError(
                f"Line {line.name}: travel time between {line.stations[i]} and "
                f"{line.stations[j]} must be positive (got {delta})"
            )
        return delta

    # -------- travel arcs --------

    def create_nodes_and_travel_arcs(self) -> None:
        """Add all nodes and the travel arcs, first every forward direction, then every reverse one."""
        for name in self.line_order:
            line = self.lines[name]
            seq = line.stations
            seg0 = len(self.segments)
            self._line_seg0[name] = seg0
            for i in range(len(seq) - 1):
                self.segments.append((name, seq[i], seq[i + 1]))

            nodes: List[int] = []
            for i, st in enumerate(seq):
                v = self._new_node(st, name, FORWARD)
                if nodes:
                    self._new_arc(nodes[-1], v, "travel", name,
                                  self._travel_time(line, i - 1, i), False, (seg0 + i - 1,))
                nodes.append(v)
            self.line_nodes[(name, FORWARD)] = nodes

        for name in self.line_order:
            line = self.lines[name]
            seq = line.stations
            seg0 = self._line_seg0[name]

            nodes = [-1] * len(seq)
            for i in range(len(seq) - 1, -1, -1):
                v = self._new_node(seq[i], name, REVERSE)
                if i < len(seq) - 1:
                    self._new_arc(nodes[i + 1], v, "travel", name,
                                  self._travel_time(line, i, i + 1), False, (seg0 + i,))
                nodes[i] = v
            self.line_nodes[(name, REVERSE)] = nodes

    # -------- switch arcs --------

    def _add_switch(self, line: str, pos: int, from_dir: int) -> int:
        tail = self.line_nodes[(line, from_dir)][pos]
        head = self.line_nodes[(line, -from_dir)][pos]
        return self._new_arc(tail, head, "switch", TRANSFER_NAME, self.switch_cost, True)

    def add_all_switch_arcs(self) -> None:
        """Allow switching the direction at every stop of every line."""
        for name in self.line_order:
            for pos in range(len(self.lines[name].stations)):
                self._add_switch(name, pos, FORWARD)
                self._add_switch(name, pos, REVERSE)

    def add_terminal_switch_arcs(self) -> None:
        """Allow switching only where a line ends (reverse -> forward at the first stop, forward -> reverse at the last)."""
        for name in self.line_order:
            last = len(self.lines[name].stations) - 1
            self._add_switch(name, 0, REVERSE)
            self._add_switch(name, last, FORWARD)

    def add_restricted_switch_arcs(self) -> None:
        """
        Switching rules for the station problem:
          - never at a connecting station,
          - always at a terminal,
          - never between a terminal and the first/last connecting station,
          - otherwise only towards a neighbouring connecting station.
        """
        for name in self.line_order:
            seq = self.lines[name].stations
            last = len(seq) - 1
            for pos, st in enumerate(seq):
                if _is_connecting(st, self.stations):
                    continue

                if pos == 0:
                    self._add_switch(name, pos, REVERSE)
                    continue
                if pos == last:
                    self._add_switch(name, pos, FORWARD)
                    continue

                if not (_has_preceding_connecting(pos, seq, self.stations)
                        and _has_following_connecting(pos, seq, self.stations)):
                    continue

                # Switching twice around one long segment between two
                # connecting stations is not modelled.
                if _is_connecting(seq[pos + 1], self.stations):
                    self._add_switch(name, pos, FORWARD)
                if _is_connecting(seq[pos - 1], self.stations):
                    self._add_switch(name, pos, REVERSE)

    # -------- transfer arcs --------

    def _add_transfer(self, s: int, t: int) -> int:
        """
        Add a transfer s -> t only if s can be reached by riding and t can be
        left by riding: changing twice in a row never pays off.
        """
        has_in = any(not self.arc_keep[a] for a in self.in_arcs[s])
        has_out = any(not self.arc_keep[a] for a in self.out_arcs[t])
        if has_in and has_out:
            return self._new_arc(s, t, "transfer", TRANSFER_NAME, self.change_cost, True)
        return -1

    def add_transfer_arcs(self) -> None:
        """Connect every pair of lines at each shared station, in all direction combinations."""
        for st in sorted(self.stations):
            served = sorted(self.stations[st].lines)
            for i, l1 in enumerate(served):
                for l2 in served[i + 1:]:
                    for la, lb in ((l1, l2), (l2, l1)):
                        for da in (FORWARD, REVERSE):
                            for db in (FORWARD, REVERSE):
                                for s in self._nodes_at(la, da, st):
                                    for t in self._nodes_at(lb, db, st):
                                        self._add_transfer(s, t)

    # -------- chain contraction --------

    def degree2_chains(self) -> List[List[int]]:
        """
        Return all maximal chains of degree-2 nodes, each in path order.

        View used: nodes whose degree is not 2 are hidden, and so are both
        endpoints of every must-keep arc. The view must be acyclic; each of its
        connected components is one chain.
        """
        nV = len(self.node_alive)
        visible = [
            self.node_alive[v] and len(self.in_arcs[v]) + len(self.out_arcs[v]) == 2
            for v in range(nV)
        ]
        for a, alive in enumerate(self.arc_alive):
            if alive and self.arc_keep[a]:
                visible[self.arc_tail[a]] = False
                visible[self.arc_head[a]] = False

        view_arcs = [
            a for a, alive in enumerate(self.arc_alive)
            if alive and visible[self.arc_tail[a]] and visible[self.arc_head[a]]
        ]

        # topological order of the view (Kahn)
        indeg = [0] * nV
        succ: Dict[int, List[int]] = {}
        for a in view_arcs:
            indeg[self.arc_head[a]] += 1
            succ.setdefault(self.arc_tail[a], []).append(self.arc_head[a])

        n_visible = sum(visible)
        Q = deque(v for v in range(nV) if visible[v] and indeg[v] == 0)
        order: List[int] = []
        while Q:
            v = Q.popleft()
            order.append(v)
            for w in succ.get(v, []):
                indeg[w] -= 1
                if indeg[w] == 0:
                    Q.append(w)
        if len(order) != n_visible:
            raise RuntimeError("The graph contains a cycle of degree-2 nodes")

        _, labels = weak_components(
            nV, [self.arc_tail[a] for a in view_arcs], [self.arc_head[a] for a in view_arcs]
        )
        chains: Dict[int, List[int]] = {}
        for v in order:
            chains.setdefault(int(labels[v]), []).append(v)
        return list(chains.values())

    def contract_chains(self, problem_type: str) -> None:
        """Replace each contractible chain by one synthetic travel arc."""
        removed = set()
        for chain in self.degree2_chains():
            if problem_type == STATION:
                pred = self.arc_tail[self.in_arcs[chain[0]][0]]
                succ = self.arc_head[self.out_arcs[chain[-1]][0]]
                # contract only if one boundary node can be entered in a single way
                if len(self.in_arcs[pred]) > 1 and len(self.in_arcs[succ]) > 1:
                    continue

            for v in chain:
                if len(self.in_arcs[v]) != 1 or len(self.out_arcs[v]) != 1:
                    raise RuntimeError(f"Chain node {v} ({self.node_station[v]}) is not of in/out degree one")
                a_in = self.in_arcs[v][0]
                a_out = self.out_arcs[v][0]
                if self.arc_line[a_in] != self.arc_line[a_out]:
                    raise RuntimeError(
                        f"Chain at {self.node_station[v]} joins lines "
                        f"{self.arc_line[a_in]} and {self.arc_line[a_out]}"
                    )
                self._new_arc(
                    self.arc_tail[a_in], self.arc_head[a_out], "travel", self.arc_line[a_in],
                    self.arc_cost[a_in] + self.arc_cost[a_out], False,
                    tuple(sorted(set(self.arc_segments[a_in]) | set(self.arc_segments[a_out]))),
                )
                self._delete_node(v)
                removed.add(v)

        if not removed:
            return
        self.nodes_removed = True
        for st in list(self.station_nodes):
            kept = [v for v in self.station_nodes[st] if v not in removed]
            if kept:
                self.station_nodes[st] = kept
            else:
                del self.station_nodes[st]

    # -------- finalize --------

    def to_graph(self, problem_type: str) -> TransitGraph:
        """Drop deleted entries, renumber and pack everything into TransitGraph."""
        node_map: Dict[int, int] = {}
        for v, alive in enumerate(self.node_alive):
            if alive:
                node_map[v] = len(node_map)
        arcs = [a for a, alive in enumerate(self.arc_alive) if alive]

        V = len(node_map)
        A = len(arcs)
        in_arcs: List[List[int]] = [[] for _ in range(V)]
        out_arcs: List[List[int]] = [[] for _ in range(V)]
        arc_tail = [node_map[self.arc_tail[a]] for a in arcs]
        arc_head = [node_map[self.arc_head[a]] for a in arcs]
        for a, (t, h) in enumerate(zip(arc_tail, arc_head)):
            out_arcs[t].append(a)
            in_arcs[h].append(a)

        old_nodes = list(node_map)
        station_nodes = {
            st: [node_map[v] for v in nodes]
            for st, nodes in sorted(self.station_nodes.items())
        }

        return TransitGraph(
            V=V, A=A, in_arcs=in_arcs, out_arcs=out_arcs,
            node_station=[self.node_station[v] for v in old_nodes],
            node_line=[self.node_line[v] for v in old_nodes],
            node_dir=[self.node_dir[v] for v in old_nodes],
            arc_tail=arc_tail, arc_head=arc_head,
            arc_kind=[self.arc_kind[a] for a in arcs],
            arc_line=[self.arc_line[a] for a in arcs],
            arc_cost=[self.arc_cost[a] for a in arcs],
            arc_keep=[self.arc_keep[a] for a in arcs],
            arc_segments=[self.arc_segments[a] for a in arcs],
            station_nodes=station_nodes,
            segments=list(self.segments),
            change_cost=self.change_cost,
            switch_cost=self.switch_cost,
            problem_type=problem_type,
            nodes_removed=self.nodes_removed,
        )


# ---------------------------------------------------------------------------
# Connectivity
# ---------------------------------------------------------------------------

def graph_components(graph: TransitGraph) -> Tuple[int, np.ndarray]:
    """Number of connected components of the undirected view and a label per node."""
    return weak_components(graph.V, graph.arc_tail, graph.arc_head)


def check_connectivity(graph: TransitGraph) -> None:
    """Raise DisconnectedNetworkError naming two stations that cannot reach each other."""
    n, labels = graph_components(graph)
    if n <= 1:
        return
    first = 0
    for v in range(graph.V):
        if labels[v] != labels[first]:
            raise DisconnectedNetworkError(
                f"No connection between stations {graph.node_station[first]} "
                f"and {graph.node_station[v]}"
            )


def graph_statistics(graph: TransitGraph) -> dict:
    """Sizes and cost averages of a built graph (used for console output and logs)."""
    n_comp, _ = graph_components(graph)
    travel = [c for c, keep in zip(graph.arc_cost, graph.arc_keep) if not keep]
    return dict(
        nodes=graph.V,
        arcs=graph.A,
        components=n_comp,
        stations=len(graph.station_nodes),
        avg_travel_cost=(sum(travel) / len(travel)) if travel else 0.0,
        change_cost=graph.change_cost,
        switch_cost=graph.switch_cost,
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def make_transit_graph(
    stations: Mapping[str, Station],
    lines: Mapping[str, Line],
    change_cost: float,
    switch_cost: float,
    problem_type: ProblemType = STATION,
    preprocess: bool = True,
) -> TransitGraph:
    """
    Build the transit graph for the given network.

    - Forward and reverse nodes per line, joined by travel arcs (time deltas).
    - Switch arcs: everywhere without preprocessing; with preprocessing only at
      terminals (segment problem) or by the restricted station-problem rules.
    - Transfer arcs between all lines sharing a station.
    - With preprocessing: contraction of degree-2 chains.
    - Finally the graph must form a single connected component.

    Returns a data_model.TransitGraph instance.
    """
    if problem_type not in PROBLEM_TYPES:
        raise ValueError(f"Unknown problem type {problem_type!r} (expected one of {PROBLEM_TYPES})")
    if not (change_cost > 0 and switch_cost > 0):
        raise MalformedNetworkError("Change and switch costs must be positive")
    validate_network(stations, lines)

    b = _GraphBuilder(stations, lines, change_cost, switch_cost)
    b.create_nodes_and_travel_arcs()

    if not preprocess:
        b.add_all_switch_arcs()
        b.add_transfer_arcs()
    else:
        if problem_type == SEGMENT:
            b.add_terminal_switch_arcs()
        else:
            b.add_restricted_switch_arcs()
        b.add_transfer_arcs()
        b.contract_chains(problem_type)

    graph = b.to_graph(problem_type)
    check_connectivity(graph)
    return graph
