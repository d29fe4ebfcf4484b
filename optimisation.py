# optimisation.py
# -----------------------------------------------------------------------------
# Pure model-building blocks: no config parsing and no I/O here.
# The arc-routing model is built on any MipBackend; the connectivity
# separator only sees a read-only SolutionView and returns cuts.
# -----------------------------------------------------------------------------

from dataclasses import dataclass
from typing import Dict, List, Tuple, Optional, Sequence, Set

import numpy as np

from data_model import TransitGraph, Cluster, STATION, SEGMENT
from errors import UnformulatableProblemError, InvalidSolutionError
from backend import MipBackend, LazyCut
from transit_graph import weak_components


# =============================== Clusters =================================

def build_clusters(graph: TransitGraph) -> List[Cluster]:
    """
    Coverage clusters of the graph.

      - one station cluster per station that still has nodes; covered by any
        arc leaving the cluster,
      - in segment mode additionally one segment cluster per segment that is
        realised by at least one (possibly synthetic) travel arc.
    """
    clusters: List[Cluster] = []
    for name, nodes in graph.station_nodes.items():
        node_set = frozenset(nodes)
        leaving = tuple(
            a for v in nodes for a in graph.out_arcs[v]
            if graph.arc_head[a] not in node_set
        )
        clusters.append(Cluster(name=name, kind=STATION, nodes=node_set, cover_arcs=leaving))

    if graph.problem_type == SEGMENT:
        realised: Dict[int, List[int]] = {}
        for a, segs in enumerate(graph.arc_segments):
            for s in segs:
                realised.setdefault(s, []).append(a)
        for s in sorted(realised):
            line, st_a, st_b = graph.segments[s]
            arcs = tuple(realised[s])
            nodes = frozenset(graph.arc_tail[a] for a in arcs) | frozenset(graph.arc_head[a] for a in arcs)
            clusters.append(Cluster(name=f"{line}:{st_a}-{st_b}", kind=SEGMENT, nodes=nodes, cover_arcs=arcs))

    return clusters


def check_exclusive_cluster(graph: TransitGraph, clusters: Sequence[Cluster]) -> Cluster:
    """
    Precondition of the subtour separation.

    Every node must belong to exactly one station cluster, and at least one
    station must be entered by exactly one arc from outside. Returns the first
    such station cluster.
    """
    owner: List[Optional[str]] = [None] * graph.V
    stations = [c for c in clusters if c.kind == STATION]
    for c in stations:
        for v in c.nodes:
            if owner[v] is not None:
                raise UnformulatableProblemError(
                    f"Node {v} belongs to stations {owner[v]} and {c.name}"
                )
            owner[v] = c.name
    for v, name in enumerate(owner):
        if name is None:
            raise UnformulatableProblemError(
                f"Node {v} ({graph.node_station[v]}) does not belong to any station"
            )

    for c in stations:
        entering = sum(
            1 for v in c.nodes for a in graph.in_arcs[v]
            if graph.arc_tail[a] not in c.nodes
        )
        if entering == 1:
            return c

    raise UnformulatableProblemError(
        "No station is entered by exactly one arc; optimality of the tour cannot be guaranteed"
    )


# ============================ Model building ==============================

def add_arc_variables(backend: MipBackend, graph: TransitGraph) -> Tuple[List[int], Optional[float]]:
    """
    One integer variable x[a] ≥ 0 per arc.

    Station mode: every arc is used at most once (binary).
    Segment mode: arcs may be repeated (no upper bound).
    """
    ub = 1.0 if graph.problem_type == STATION else None
    x = [backend.add_var(lb=0.0, ub=ub, integer=True, name=f"x[a{a}]") for a in range(graph.A)]
    return x, ub


def add_flow_conservation(backend: MipBackend, graph: TransitGraph, x: List[int]) -> None:
    """Σ x[in] − Σ x[out] = 0 at every node."""
    for v in range(graph.V):
        terms = [(x[a], 1.0) for a in graph.in_arcs[v]]
        terms += [(x[a], -1.0) for a in graph.out_arcs[v]]
        backend.add_constr(terms, "==", 0.0, name=f"flow[v{v}]")


def add_cluster_coverage(backend: MipBackend, clusters: Sequence[Cluster], x: List[int]) -> None:
    """Σ x[cover arcs of c] ≥ 1 for every cluster c."""
    for i, c in enumerate(clusters):
        backend.add_constr([(x[a], 1.0) for a in c.cover_arcs], ">=", 1.0, name=f"cover[{c.kind}{i}]")


def set_tour_objective(backend: MipBackend, graph: TransitGraph, x: List[int]) -> None:
    """min Σ cost[a] · x[a]"""
    backend.set_objective([(x[a], graph.arc_cost[a]) for a in range(graph.A)])


@dataclass
class ArcRoutingModel:
    """
    Handle of a formulated model.

    lazy_callback() is registered as the backend's lazy separator: it maps the
    backend's solution vector to arc values, runs separate_subtours() and
    translates the cuts back into variable terms.
    """
    backend: MipBackend
    graph: TransitGraph
    clusters: List[Cluster]
    x: List[int]
    arc_ub: Optional[float]
    exclusive: Cluster
    n_candidates: int = 0
    n_cuts: int = 0

    def view(self, values) -> "SolutionView":
        arc_values = np.asarray(values, dtype=float)[self.x]
        return SolutionView(
            graph=self.graph, clusters=self.clusters, values=arc_values,
            tol=self.backend.int_tol, ub=self.arc_ub,
        )

    def lazy_callback(self, values) -> List[LazyCut]:
        self.n_candidates += 1
        cuts = separate_subtours(self.view(values))
        self.n_cuts += len(cuts)
        return [([(self.x[a], 1.0) for a in cut.arcs], cut.rhs) for cut in cuts]


def formulate(backend: MipBackend, graph: TransitGraph,
              clusters: Optional[List[Cluster]] = None) -> ArcRoutingModel:
    """
    Build the arc-routing model on `backend`:

      - x[a] ∈ Z≥0 (≤ 1 in station mode),
      - flow conservation per node,
      - coverage per cluster,
      - objective min Σ cost · x,
      - lazy connectivity cuts via separate_subtours().

    Raises UnformulatableProblemError if no exclusive station exists.
    """
    if clusters is None:
        clusters = build_clusters(graph)
    exclusive = check_exclusive_cluster(graph, clusters)

    x, ub = add_arc_variables(backend, graph)
    add_flow_conservation(backend, graph, x)
    add_cluster_coverage(backend, clusters, x)
    set_tour_objective(backend, graph, x)

    model = ArcRoutingModel(backend=backend, graph=graph, clusters=list(clusters),
                            x=x, arc_ub=ub, exclusive=exclusive)
    backend.set_lazy_separator(model.lazy_callback)
    return model


# ========================= Connectivity separation ========================

@dataclass(frozen=True)
class SolutionView:
    """Read-only view of one candidate: graph, clusters and one value per arc."""
    graph: TransitGraph
    clusters: Sequence[Cluster]
    values: np.ndarray
    tol: float = 1e-6
    ub: Optional[float] = None


@dataclass(frozen=True)
class Cut:
    """Σ x[arcs] ≥ rhs"""
    arcs: Tuple[int, ...]
    rhs: float = 1.0
    name: str = ""


def arc_multiplicities(view: SolutionView) -> np.ndarray:
    """Round the candidate to integers; fail on fractional or out-of-range values."""
    vals = np.asarray(view.values, dtype=float)
    if vals.shape != (view.graph.A,):
        raise InvalidSolutionError(f"Expected {view.graph.A} arc values, got {vals.shape}")

    rounded = np.rint(vals)
    bad = np.flatnonzero(np.abs(vals - rounded) > view.tol)
    if bad.size:
        a = int(bad[0])
        raise InvalidSolutionError(f"Illegal value: x[{a}] = {vals[a]} is not integral")

    too_big = (rounded > view.ub) if view.ub is not None else np.zeros_like(rounded, dtype=bool)
    bad = np.flatnonzero((rounded < 0) | too_big)
    if bad.size:
        a = int(bad[0])
        raise InvalidSolutionError(f"Illegal value: x[{a}] = {vals[a]} is out of range")

    return rounded.astype(np.int64)


def solution_components(graph: TransitGraph, mult: np.ndarray) -> Tuple[int, np.ndarray]:
    """
    Connected components of the used arcs.

    Returns (n, comp) where comp[v] ∈ 0..n-1 for nodes touched by a used arc
    (numbered by their smallest node) and -1 for unused nodes.
    """
    used = np.flatnonzero(mult > 0)
    tails = [graph.arc_tail[a] for a in used]
    heads = [graph.arc_head[a] for a in used]
    _, labels = weak_components(graph.V, tails, heads)

    touched = np.zeros(graph.V, dtype=bool)
    touched[tails] = True
    touched[heads] = True

    comp = np.full(graph.V, -1, dtype=np.int64)
    renumber: Dict[int, int] = {}
    for v in np.flatnonzero(touched):
        comp[v] = renumber.setdefault(int(labels[v]), len(renumber))
    return len(renumber), comp


def _cover_nodes(graph: TransitGraph, c: Cluster) -> Set[int]:
    """Nodes the tour has to touch to cover c."""
    if c.kind == STATION:
        return set(c.nodes)
    return {graph.arc_tail[a] for a in c.cover_arcs}


def _cover_arcs_where(graph: TransitGraph, c: Cluster, S: Set[int], inside: bool) -> Set[int]:
    """Cover arcs of c whose tail is in S (inside=True) or not in S."""
    return {a for a in c.cover_arcs if (graph.arc_tail[a] in S) == inside}


def separate_subtours(view: SolutionView) -> List[Cut]:
    """
    Connectivity separation for one integral candidate.

    Returns [] if the candidate is one tour (exactly one exclusive component);
    otherwise a pair of cuts (leaving ≥ 1, entering ≥ 1) per exclusive
    component k. With S the node set of k, c a cluster exclusive to k and d a
    cluster exclusive to another component, each cut reads

        x(δ(S)) + x(cover(c) with tail ∉ S) + x(cover(d) with tail ∈ S) ≥ 1

    A connected tour covering c and d either crosses S in both directions or
    uses one of the extra cover arcs. The candidate uses none of them.
    """
    graph = view.graph
    mult = arc_multiplicities(view)
    _, comp = solution_components(graph, mult)

    # components per cluster
    cluster_comps: List[Set[int]] = []
    for c in view.clusters:
        if c.kind == STATION:
            comps = {int(comp[v]) for v in c.nodes if comp[v] >= 0}
        else:
            comps = {int(comp[graph.arc_tail[a]]) for a in c.cover_arcs if mult[a] > 0}
        if not comps:
            raise InvalidSolutionError(f"Cluster {c.name} is not covered by the solution")
        cluster_comps.append(comps)

    exclusive_of: Dict[int, List[int]] = {}
    for i, comps in enumerate(cluster_comps):
        if len(comps) == 1:
            exclusive_of.setdefault(next(iter(comps)), []).append(i)

    if not exclusive_of:
        raise InvalidSolutionError("Solution has no exclusive component")
    if len(exclusive_of) == 1:
        return []

    cuts: List[Cut] = []
    for k in sorted(exclusive_of):
        # used nodes of k plus the untouched nodes of its exclusive clusters
        S = {int(v) for v in np.flatnonzero(comp == k)}
        for i in exclusive_of[k]:
            S |= {v for v in _cover_nodes(graph, view.clusters[i]) if comp[v] < 0}

        # the pair needing the fewest extra arcs; none at all for station clusters
        inner = min((_cover_arcs_where(graph, view.clusters[i], S, inside=False)
                     for i in exclusive_of[k]), key=len)
        outer = min((_cover_arcs_where(graph, view.clusters[i], S, inside=True)
                     for j, idx in exclusive_of.items() if j != k for i in idx), key=len)
        extra = inner | outer

        leaving = {a for a in range(graph.A)
                   if graph.arc_tail[a] in S and graph.arc_head[a] not in S}
        entering = {a for a in range(graph.A)
                    if graph.arc_head[a] in S and graph.arc_tail[a] not in S}
        cuts.append(Cut(arcs=tuple(sorted(leaving | extra)), rhs=1.0, name=f"out[c{k}]"))
        cuts.append(Cut(arcs=tuple(sorted(entering | extra)), rhs=1.0, name=f"in[c{k}]"))

    return cuts
