from typing import Dict, List, Tuple

import numpy as np

from backend import MipBackend
from data_model import Station, Line, TransitGraph


def make_network(line_specs: Dict[str, List[Tuple[str, float]]], locations=None):
    """{line: [(station, time), ...]} -> (stations, lines)"""
    serving: Dict[str, set] = {}
    lines: Dict[str, Line] = {}
    for name, stops in line_specs.items():
        lines[name] = Line(
            name=name,
            stations=tuple(s for s, _ in stops),
            times=tuple(float(t) for _, t in stops),
        )
        for s, _ in stops:
            serving.setdefault(s, set()).add(name)
    locations = locations or {}
    stations = {
        s: Station(name=s, location=locations.get(s, ""), lines=frozenset(ls))
        for s, ls in serving.items()
    }
    return stations, lines


def node_of(graph: TransitGraph, station: str, line: str, direction: int) -> int:
    found = [
        v for v in range(graph.V)
        if graph.node_station[v] == station and graph.node_line[v] == line and graph.node_dir[v] == direction
    ]
    assert len(found) == 1, (station, line, direction, found)
    return found[0]


def arc_between(graph: TransitGraph, u: int, v: int, kind=None) -> int:
    found = [
        a for a in graph.out_arcs[u]
        if graph.arc_head[a] == v and (kind is None or graph.arc_kind[a] == kind)
    ]
    assert len(found) == 1, (u, v, kind, found)
    return found[0]


def assert_closed_walk(tour, arc_tail, arc_head):
    for a, b in zip(tour, tour[1:] + tour[:1]):
        assert arc_head[a] == arc_tail[b]


ABC = {"L": [("A", 0), ("B", 4), ("C", 9)]}

# L: W - X - M - Y - V, with X and Y shared with P and R
THROUGH = {
    "L": [("W", 0), ("X", 2), ("M", 5), ("Y", 9), ("V", 12)],
    "P": [("X", 0), ("Q", 3)],
    "R": [("Y", 0), ("Z", 4)],
}

# two lines meeting at B
TWO_LINES = {
    "L": [("A", 0), ("B", 4)],
    "M": [("B", 0), ("C", 3)],
}


class RecordingBackend(MipBackend):
    """
    Keeps everything the formulation asks for. solve() does not optimise: it
    reports `status` and hands the scripted `values` once to the lazy
    separator, like a backend would for an integral candidate.
    """

    def __init__(self, values=None, status="OPTIMAL"):
        self.vars = []
        self.constrs = []
        self.objective = None
        self.separator = None
        self.cuts = []
        self._values = values
        self._status = status

    def add_var(self, lb=0.0, ub=None, integer=True, name=""):
        self.vars.append(dict(lb=lb, ub=ub, integer=integer, name=name))
        return len(self.vars) - 1

    def add_constr(self, terms, sense, rhs, name=""):
        self.constrs.append(dict(terms=list(terms), sense=sense, rhs=rhs, name=name))
        return len(self.constrs) - 1

    def set_objective(self, terms):
        self.objective = list(terms)

    def set_lazy_separator(self, separator):
        self.separator = separator

    def solve(self):
        if self._values is not None and self.separator is not None:
            self.cuts = self.separator(np.asarray(self._values, dtype=float))
        return self._status

    @property
    def status(self):
        return self._status

    @property
    def objective_value(self):
        if self._values is None:
            return None
        return float(sum(c * self._values[i] for i, c in self.objective))

    def solution_values(self):
        return np.asarray(self._values, dtype=float)
