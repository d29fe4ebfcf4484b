# data_model.py
from dataclasses import dataclass, field, asdict
from typing import List, Dict, Tuple, Optional, FrozenSet, Literal


# Label of every arc that is not a ride on a line (transfers and switches).
TRANSFER_NAME = "<->"

# Problem types
STATION = "station"   # visit every station at least once
SEGMENT = "segment"   # traverse every line segment in at least one direction
PROBLEM_TYPES = (STATION, SEGMENT)

ProblemType = Literal["station", "segment"]


# -----------------------------------------------------------------------------
# Network records (input-side, human-friendly)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class Station:
    """Single station of the network.

    Attributes:
        name: Unique station name.
        location: Optional display location (address, coordinates, ...).
        lines: Names of all lines serving this station.
    """
    name: str
    location: str = ""
    lines: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class Line:
    """Single line of the network.

    Attributes:
        name: Unique line name, never equal to TRANSFER_NAME.
        stations: Ordered station names as the line travels them.
        times: Cumulative travel time at each stop (strictly increasing).
    """
    name: str
    stations: Tuple[str, ...]
    times: Tuple[float, ...]


# -----------------------------------------------------------------------------
# Flat configuration exposed to the driver (values from config.csv)
# -----------------------------------------------------------------------------
@dataclass
class Config:
    """Run-time configuration parameters.

    Notes:
        - Costs are in the same unit as the line travel times (minutes).
        - Solver limits are passed through to the backend unchanged;
          None means "backend default".
    """

    # Required identifiers (used to locate data on disk)
    source: str
    network: str

    # Problem / graph construction
    problem_type: str = STATION
    preprocess: bool = True
    change_cost: float = 5.0
    switch_cost: float = 5.0

    # Output
    start_station: Optional[str] = None
    compact: bool = True

    # Solver
    threads: int = 1
    time_limit: Optional[float] = None
    mip_gap: Optional[float] = None
    verbose: bool = False
    write_model: bool = False

    def to_dict(self) -> dict:
        """Return a plain dictionary (useful for logging/serialization)."""
        return asdict(self)


# -----------------------------------------------------------------------------
# Transit graph (solver input after graph construction / preprocessing)
# -----------------------------------------------------------------------------
@dataclass
class TransitGraph:
    """Directed multigraph of all feasible moves in the network.

    Nodes:
        V: number of nodes
        in_arcs / out_arcs: per node incoming/outgoing arc indices
        node_station: station name of each node
        node_line: line the node rides on
        node_dir: +1 (stations in line order) or -1 (reverse order)

    Arcs (aligned lists; same length A):
        arc_tail / arc_head: endpoints (node indices)
        arc_kind: one of {"travel", "switch", "transfer"}
        arc_line: line name for travel arcs, TRANSFER_NAME otherwise
        arc_cost: positive cost (travel time or fixed penalty)
        arc_keep: True for switch/transfer arcs (never contracted)
        arc_segments: segment ids realised by a travel arc (empty otherwise)

    Index:
        station_nodes: station name -> node indices (the station clusters)
        segments: segment id -> (line, station_a, station_b)
    """
    V: int
    A: int
    in_arcs: List[List[int]]
    out_arcs: List[List[int]]

    node_station: List[str]
    node_line: List[str]
    node_dir: List[int]

    arc_tail: List[int]
    arc_head: List[int]
    arc_kind: List[str]            # "travel" | "switch" | "transfer"
    arc_line: List[str]
    arc_cost: List[float]
    arc_keep: List[bool]
    arc_segments: List[Tuple[int, ...]]

    station_nodes: Dict[str, List[int]]
    segments: List[Tuple[str, str, str]]

    change_cost: float
    switch_cost: float
    problem_type: str = STATION
    nodes_removed: bool = False


# -----------------------------------------------------------------------------
# Coverage cluster (formulation view of a station or a segment)
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class Cluster:
    """Group of nodes/arcs that the tour has to cover at least once.

    Attributes:
        name: Station name, or "line:a-b" for a segment.
        kind: "station" or "segment".
        nodes: Nodes belonging to the cluster (for segments: arc endpoints).
        cover_arcs: Arcs whose use covers the cluster
                    (station: arcs leaving it; segment: arcs realising it).
    """
    name: str
    kind: str
    nodes: FrozenSet[int] = field(default_factory=frozenset)
    cover_arcs: Tuple[int, ...] = ()
