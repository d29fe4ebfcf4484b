import os

import numpy as np
import pytest

from data_model import STATION, SEGMENT
from errors import BackendError, InvalidSolutionError
from load_data import read_stations_csv, read_lines_csv, build_network
from solve_tour import build_solution_tour, solve_tour
from transit_graph import make_transit_graph
from tests.helpers import make_network, RecordingBackend, assert_closed_walk, ABC, TWO_LINES

REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def _abc(problem_type=STATION, preprocess=False):
    stations, lines = make_network(ABC)
    return make_transit_graph(stations, lines, 5, 5, problem_type=problem_type, preprocess=preprocess)


# A-B-C without preprocessing:
#   travel 0: A+->B+  1: B+->C+  2: C-->B-  3: B-->A-
#   switch 4/5 at A, 6/7 at B, 8/9 at C
ABC_TOUR = [0, 1, 8, 2, 3, 5]


# ---------- tour extraction ----------

def test_tour_starts_at_first_used_arc():
    graph = _abc()
    mult = np.zeros(graph.A, dtype=np.int64)
    mult[ABC_TOUR] = 1
    assert build_solution_tour(graph, mult) == [0, 1, 8, 2, 3, 5]


def test_repeated_arcs_appear_once_per_use():
    graph = _abc(preprocess=True)
    mult = np.full(graph.A, 2, dtype=np.int64)
    tour = build_solution_tour(graph, mult)
    assert len(tour) == 2 * graph.A
    assert sorted(tour) == sorted(list(range(graph.A)) * 2)
    assert_closed_walk(tour, graph.arc_tail, graph.arc_head)


def test_empty_multiplicity_gives_empty_tour():
    graph = _abc()
    assert build_solution_tour(graph, np.zeros(graph.A, dtype=np.int64)) == []


def test_sub_tours_are_rejected():
    stations, lines = make_network(TWO_LINES)
    graph = make_transit_graph(stations, lines, 5, 5, preprocess=False)
    mult = np.zeros(graph.A, dtype=np.int64)
    mult[[0, 6, 2, 5, 1, 10, 3, 9]] = 1          # one loop per line
    with pytest.raises(InvalidSolutionError, match="sub tours"):
        build_solution_tour(graph, mult)


def test_unbalanced_multiplicity_is_rejected():
    graph = _abc()
    mult = np.zeros(graph.A, dtype=np.int64)
    mult[0] = 1
    with pytest.raises(InvalidSolutionError, match="not Eulerian"):
        build_solution_tour(graph, mult)


# ---------- pipeline on a scripted backend ----------

def test_solve_tour_decodes_backend_solution():
    graph = _abc()
    values = np.zeros(graph.A)
    values[ABC_TOUR] = 1.0
    backend = RecordingBackend(values=values)

    _, solution, artifacts = solve_tour(graph, backend=backend)
    assert solution["status"] == "OPTIMAL"
    assert solution["objective"] == pytest.approx(28.0)
    assert solution["tour"] == ABC_TOUR
    assert solution["tour_cost"] == pytest.approx(28.0)
    assert solution["n_candidates"] == 1
    assert solution["n_lazy_cuts"] == 0
    assert artifacts["exclusive"] == "A"
    assert artifacts["multiplicity"].tolist() == values.astype(int).tolist()


def test_non_optimal_status_is_an_error():
    graph = _abc()
    backend = RecordingBackend(values=None, status="TIME_LIMIT")
    with pytest.raises(BackendError) as exc:
        solve_tour(graph, backend=backend)
    assert exc.value.status == "TIME_LIMIT"
    assert "No optimal solution" in str(exc.value)


# ---------- end to end with gurobipy ----------

@pytest.mark.parametrize("problem_type,preprocess", [
    (STATION, False),
    (STATION, True),
    (SEGMENT, False),
    (SEGMENT, True),
])
def test_single_line_tour_rides_out_and_back(problem_type, preprocess):
    pytest.importorskip("gurobipy")
    graph = _abc(problem_type, preprocess)
    _, solution, _ = solve_tour(graph)

    assert solution["status"] == "OPTIMAL"
    assert solution["objective"] == pytest.approx(28.0)
    assert solution["tour_cost"] == pytest.approx(28.0)
    assert_closed_walk(solution["tour"], graph.arc_tail, graph.arc_head)


def test_two_lines_tour_is_connected():
    pytest.importorskip("gurobipy")
    stations, lines = make_network(TWO_LINES)
    graph = make_transit_graph(stations, lines, 5, 5, preprocess=False)
    _, solution, _ = solve_tour(graph)

    tour = solution["tour"]
    assert_closed_walk(tour, graph.arc_tail, graph.arc_head)
    visited = {graph.node_station[graph.arc_tail[a]] for a in tour}
    assert visited == {"A", "B", "C"}
    # both line loops (4+5+4+5 and 3+5+3+5) or one loop with two changes
    assert solution["objective"] == pytest.approx(34.0)


@pytest.mark.parametrize("problem_type", [STATION, SEGMENT])
def test_example_network_is_solved(problem_type):
    pytest.importorskip("gurobipy")
    root = os.path.join(REPO_ROOT, "Data", "example")
    stations, lines = build_network(
        read_stations_csv(os.path.join(root, "stations.csv")),
        read_lines_csv(os.path.join(root, "lines.csv")),
    )
    graph = make_transit_graph(stations, lines, 5, 5, problem_type=problem_type, preprocess=True)
    _, solution, _ = solve_tour(graph, time_limit=120)

    tour = solution["tour"]
    assert solution["status"] == "OPTIMAL"
    assert_closed_walk(tour, graph.arc_tail, graph.arc_head)
    touched = {graph.node_station[graph.arc_tail[a]] for a in tour}
    assert set(graph.station_nodes) <= touched


def test_segment_tour_on_overlapping_lines():
    pytest.importorskip("gurobipy")
    stations, lines = make_network({
        "L0": [("S2", 0), ("S1", 3), ("S5", 5), ("S0", 9)],
        "L1": [("S4", 0), ("S6", 4), ("S0", 7), ("S3", 9)],
        "L2": [("S1", 0), ("S0", 2), ("S5", 5)],
        "L3": [("S6", 0), ("S5", 3), ("S0", 5), ("S2", 8), ("S4", 11)],
    })
    graph = make_transit_graph(stations, lines, 5, 5, problem_type=SEGMENT, preprocess=False)
    _, solution, _ = solve_tour(graph)

    tour = solution["tour"]
    assert solution["status"] == "OPTIMAL"
    assert_closed_walk(tour, graph.arc_tail, graph.arc_head)
    ridden = {s for a in tour for s in graph.arc_segments[a]}
    assert ridden == set(range(len(graph.segments)))
