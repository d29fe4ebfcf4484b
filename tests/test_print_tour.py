import pytest

from data_model import TRANSFER_NAME
from print_tour import (
    tour_records, rotate_tour, count_changes, repeated_arcs, tour_locations,
    tour_table, print_tour, print_tour_locations, tex_tour, save_tex_tour, TOUR_COLUMNS,
)
from transit_graph import make_transit_graph
from tests.helpers import make_network, ABC

# see test_solve_tour: A->B->C, switch at C, C->B->A, switch at A
ABC_TOUR = [0, 1, 8, 2, 3, 5]


@pytest.fixture
def abc():
    stations, lines = make_network(ABC, locations={"A": "North", "B": "Centre", "C": "South"})
    graph = make_transit_graph(stations, lines, 5, 5, preprocess=False)
    return stations, graph


def test_records_name_stations_and_lines(abc):
    _, graph = abc
    recs = tour_records(graph, ABC_TOUR)
    assert [(r["source"], r["line"], r["target"]) for r in recs] == [
        ("A", "L", "B"), ("B", "L", "C"), ("C", TRANSFER_NAME, "C"),
        ("C", "L", "B"), ("B", "L", "A"), ("A", TRANSFER_NAME, "A"),
    ]
    assert sum(r["cost"] for r in recs) == 28


def test_full_table_has_one_row_per_arc(abc):
    _, graph = abc
    df = tour_table(graph, ABC_TOUR, compact=False)
    assert list(df.columns) == TOUR_COLUMNS
    assert len(df) == 6
    assert df["Time (m)"].tolist() == [4, 9, 14, 19, 23, 28]


def test_compact_table_merges_rides_and_keeps_outer_changes(abc):
    _, graph = abc
    df = tour_table(graph, ABC_TOUR, compact=True)
    assert df.values.tolist() == [
        ["A", "L", "C", 9],
        ["C", "L", "A", 23],
        ["A", TRANSFER_NAME, "A", 28],
    ]


def test_times_are_rounded_half_up():
    stations, lines = make_network({"L": [("A", 0), ("B", 2.5)]})
    graph = make_transit_graph(stations, lines, 5, 5, preprocess=False)
    # A->B, switch at B, B->A, switch at A
    df = tour_table(graph, [0, 4, 1, 3], compact=False)
    assert df["Time (m)"].tolist() == [3, 8, 10, 15]


def test_changes_and_repeats(abc):
    _, graph = abc
    assert count_changes(graph, ABC_TOUR) == 2
    assert repeated_arcs(ABC_TOUR) == []
    assert repeated_arcs(ABC_TOUR + ABC_TOUR) == [(a, 2) for a in sorted(ABC_TOUR)]


def test_rotation_starts_at_last_departure(abc):
    _, graph = abc
    assert rotate_tour(graph, ABC_TOUR, "C") == [2, 3, 5, 0, 1, 8]
    assert rotate_tour(graph, ABC_TOUR, "A")[0] == 5
    with pytest.raises(ValueError, match="Station D is not in the tour"):
        rotate_tour(graph, ABC_TOUR, "D")


def test_locations_collapse_repeats(abc):
    stations, graph = abc
    assert tour_locations(graph, ABC_TOUR, stations) == ["North", "Centre", "South", "Centre", "North"]


def test_locations_are_printed(abc, capsys):
    stations, graph = abc
    print_tour_locations(graph, ABC_TOUR[:3], stations)
    assert capsys.readouterr().out.strip() == "Locations: North -> Centre -> South"


def test_print_tour_reports_changes_and_repeats(abc, capsys):
    _, graph = abc
    df = print_tour(graph, ABC_TOUR + ABC_TOUR, compact=False, start_station="B")
    out = capsys.readouterr().out
    assert "The segment A->B is used 2 times." in out
    assert "The following tour contains 4 changes" in out
    assert len(df) == 12
    assert df.iloc[0]["Start"] == "B"


def test_contracted_graph_is_always_printed_compact(capsys):
    stations, lines = make_network(ABC)
    graph = make_transit_graph(stations, lines, 5, 5, preprocess=True)
    assert graph.nodes_removed
    # switch at A, A->C, switch at C, C->A
    df = print_tour(graph, [0, 2, 1, 3], compact=False)
    capsys.readouterr()
    assert df.values.tolist() == [
        ["A", TRANSFER_NAME, "A", 5],
        ["A", "L", "C", 14],
        ["C", "L", "A", 28],
    ]


def test_tex_document(abc, tmp_path):
    _, graph = abc
    tex = tex_tour(graph, ABC_TOUR)
    assert tex.startswith("\\documentclass{article}")
    assert "\\usepackage{booktabs}" in tex
    assert "Start & Line & Destination & Time (m)\\\\" in tex
    assert "A & L & C & 9\\\\" in tex
    assert tex.rstrip().endswith("\\end{document}")

    path = save_tex_tour(graph, ABC_TOUR, str(tmp_path / "tour.tex"))
    with open(path, encoding="utf-8") as f:
        assert f.read() == tex
