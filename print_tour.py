from collections import Counter
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from data_model import TransitGraph, Station, Line, TRANSFER_NAME
from transit_graph import graph_statistics


TOUR_COLUMNS = ["Start", "Line", "Destination", "Time (m)"]


# ---------- inspection prints (compact, readable) ----------

def print_network_summary(stations: Mapping[str, Station], lines: Mapping[str, Line], max_lines: int = 5):
    """Print a compact overview of the loaded network."""
    print("\n=== Network ===")
    n_conn = sum(1 for s in stations.values() if len(s.lines) > 1)
    print(f"Stations: {len(stations)} (connecting={n_conn})")
    print(f"Lines: {len(lines)}")
    for name in sorted(lines)[:max_lines]:
        ln = lines[name]
        seq = list(ln.stations)
        preview = seq[:6] + (["…"] if len(seq) > 6 else [])
        print(f"  {name}: stops={len(seq)} time={ln.times[-1] - ln.times[0]:g} {preview}")


def print_graph_statistics(graph: TransitGraph):
    """Nodes, arcs, components and cost averages of the built graph."""
    st = graph_statistics(graph)
    print("\n=== Graph ===")
    print(f"Nodes: {st['nodes']}")
    print(f"Arcs: {st['arcs']}")
    print(f"Components: {st['components']}")
    print(f"Stations: {st['stations']}")
    print(f"Average station cost: {st['avg_travel_cost']:.2f}")
    print(f"Changing cost: {st['change_cost']:g}")
    print(f"Switching cost: {st['switch_cost']:g}")


# ---------- tour helpers ----------

def tour_records(graph: TransitGraph, tour: Sequence[int]) -> List[Dict]:
    """One row per tour arc: source station, line, target station, cost."""
    return [
        dict(
            source=graph.node_station[graph.arc_tail[a]],
            line=graph.arc_line[a],
            target=graph.node_station[graph.arc_head[a]],
            cost=graph.arc_cost[a],
        )
        for a in tour
    ]


def rotate_tour(graph: TransitGraph, tour: Sequence[int], start_station: str) -> List[int]:
    """Rotate the closed walk so it starts at the last arc leaving `start_station`."""
    pos = None
    for i, a in enumerate(tour):
        if graph.node_station[graph.arc_tail[a]] == start_station:
            pos = i
    if pos is None:
        raise ValueError(f"Station {start_station} is not in the tour")
    return list(tour[pos:]) + list(tour[:pos])


def count_changes(graph: TransitGraph, tour: Sequence[int]) -> int:
    """Number of transfer and switch arcs on the tour."""
    return sum(1 for a in tour if graph.arc_line[a] == TRANSFER_NAME)


def repeated_arcs(tour: Sequence[int]) -> List[Tuple[int, int]]:
    """(arc, count) for every arc used more than once."""
    return [(a, n) for a, n in sorted(Counter(tour).items()) if n > 1]


def tour_locations(graph: TransitGraph, tour: Sequence[int], stations: Mapping[str, Station]) -> List[str]:
    """Location strings of the visited stations (consecutive duplicates collapsed)."""
    out: List[str] = []
    last = None
    for a in tour:
        name = graph.node_station[graph.arc_tail[a]]
        if name != last:
            out.append(stations[name].location)
        last = name
    return out


def tour_table(graph: TransitGraph, tour: Sequence[int], compact: bool = True) -> pd.DataFrame:
    """
    Itinerary with cumulative time.

    compact=True merges consecutive arcs of the same line and drops the change
    rows in between (the line column already shows the change).
    """
    rows: List[list] = []
    time = 0.0
    for a in tour:
        src = graph.node_station[graph.arc_tail[a]]
        dst = graph.node_station[graph.arc_head[a]]
        line = graph.arc_line[a]
        time += graph.arc_cost[a]
        if compact and rows and rows[-1][1] == line and rows[-1][2] == src:
            rows[-1][2] = dst
            rows[-1][3] = time
        else:
            rows.append([src, line, dst, time])

    if compact:
        last = len(rows) - 1
        rows = [r for i, r in enumerate(rows) if not (r[1] == TRANSFER_NAME and 0 < i < last)]

    df = pd.DataFrame(rows, columns=TOUR_COLUMNS)
    df["Time (m)"] = np.floor(df["Time (m)"].astype(float) + 0.5).astype(int)
    return df


# ---------- output ----------

def print_tour(graph: TransitGraph, tour: Sequence[int], *, compact: bool = True,
               start_station: Optional[str] = None) -> pd.DataFrame:
    """Print repeated segments, the number of changes and the itinerary table."""
    if start_station:
        tour = rotate_tour(graph, tour, start_station)
    # without the contracted stations only the compact form is readable
    if graph.nodes_removed:
        compact = True

    for a, n in repeated_arcs(tour):
        print(f"The segment {graph.node_station[graph.arc_tail[a]]}->"
              f"{graph.node_station[graph.arc_head[a]]} is used {n} times.")

    df = tour_table(graph, tour, compact=compact)
    print(f"The following tour contains {count_changes(graph, tour)} changes")
    print(df.to_string(index=False))
    return df


def print_tour_locations(graph: TransitGraph, tour: Sequence[int], stations: Mapping[str, Station]):
    """Print the locations the tour passes through."""
    print("Locations: " + " -> ".join(tour_locations(graph, tour, stations)))


def tex_tour(graph: TransitGraph, tour: Sequence[int], *, compact: bool = True,
             start_station: Optional[str] = None) -> str:
    """The itinerary as a standalone LaTeX document (booktabs table)."""
    if start_station:
        tour = rotate_tour(graph, tour, start_station)
    if graph.nodes_removed:
        compact = True
    df = tour_table(graph, tour, compact=compact)

    lines = [
        "\\documentclass{article}",
        "\\usepackage{booktabs}",
        "\\usepackage[utf8]{inputenc}",
        "\\begin{document}",
        "\\begin{tabular}{lllr}",
        "\\toprule",
        " & ".join(TOUR_COLUMNS) + "\\\\",
        "\\midrule",
    ]
    for r in df.itertuples(index=False):
        lines.append(" & ".join(str(v) for v in r) + "\\\\")
    lines += ["\\bottomrule", "\\end{tabular}", "\\end{document}"]
    return "\n".join(lines) + "\n"


def save_tex_tour(graph: TransitGraph, tour: Sequence[int], path: str, **kwargs) -> str:
    with open(path, "w", encoding="utf-8") as f:
        f.write(tex_tour(graph, tour, **kwargs))
    return path
