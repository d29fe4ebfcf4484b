# solve_tour.py
from typing import List, Optional, Sequence

import numpy as np

from backend import GurobiBackend, MipBackend
from data_model import TransitGraph
from errors import BackendError, InvalidSolutionError
from euler import euler_tour, NotEulerianError
from optimisation import formulate, arc_multiplicities


# ---------- Tour extraction ----------

def build_solution_tour(graph: TransitGraph, multiplicity: Sequence[int]) -> List[int]:
    """
    Order the used arcs into one closed walk.

    The working multigraph holds one copy per unit of usage of an arc; the
    walk starts at the tail of the first used arc. Returns graph arc ids.
    """
    mult = np.asarray(multiplicity, dtype=np.int64)

    copy_of: List[int] = []                    # copy arc -> graph arc
    heads: List[int] = []
    out_arcs: List[List[int]] = [[] for _ in range(graph.V)]
    for a in np.flatnonzero(mult > 0):
        a = int(a)
        for _ in range(int(mult[a])):
            out_arcs[graph.arc_tail[a]].append(len(copy_of))
            copy_of.append(a)
            heads.append(graph.arc_head[a])

    if not copy_of:
        return []

    try:
        walk = euler_tour(out_arcs, heads, start=graph.arc_tail[copy_of[0]])
    except NotEulerianError as e:
        raise InvalidSolutionError(f"Invalid solution: {e}") from e

    if len(walk) != len(copy_of):
        raise InvalidSolutionError("Invalid solution: Solution contains sub tours")
    return [copy_of[c] for c in walk]


# ---------- Solve ----------

def solve_tour(graph: TransitGraph, *, threads: int = 1, time_limit: Optional[float] = None,
               mip_gap: Optional[float] = None, verbose: bool = False,
               write_model: bool = False, backend: Optional[MipBackend] = None):
    """
    Minimum-cost covering tour on a built transit graph:
      - formulate the arc-routing model (flow conservation + coverage),
      - solve with lazy connectivity cuts,
      - require a proven optimum,
      - extract the Euler tour of the optimal arc multiset.

    Returns:
      backend    : the solved MipBackend (GurobiBackend unless one is passed)
      solution   : dict with status, objective, runtime, tour (arc ids) and cut counts
      artifacts  : dict with clusters, the model handle and arc multiplicities
    """
    if backend is None:
        backend = GurobiBackend(
            "TRANSIT_TOUR", threads=threads, time_limit=time_limit,
            mip_gap=mip_gap, verbose=verbose, write_model=write_model,
        )

    model = formulate(backend, graph)
    status = backend.solve()
    if status != "OPTIMAL":
        raise BackendError(f"Invalid model: No optimal solution found (status {status})", status=status)

    # ----------------------------- Decode decisions -----------------------------
    mult = arc_multiplicities(model.view(backend.solution_values()))
    tour = build_solution_tour(graph, mult)

    # ----------------------------- Return payloads -----------------------------
    solution = dict(
        status=status,
        objective=backend.objective_value,
        runtime_s=getattr(backend, "runtime", None),
        tour=tour,
        tour_cost=float(sum(graph.arc_cost[a] for a in tour)),
        n_candidates=model.n_candidates,
        n_lazy_cuts=model.n_cuts,
    )

    artifacts = dict(
        graph=graph,
        clusters=model.clusters,
        exclusive=model.exclusive.name,
        model=model,
        multiplicity=mult,
    )

    return backend, solution, artifacts
