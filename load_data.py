# load_data.py
# -*- coding: utf-8 -*-
"""
Reads a transit network from CSV files and returns the immutable records the
graph builder consumes.

Public API:
    load_network(data_root: str, cfg: Config) -> (stations, lines)

This file:
- Parses a single config row (typed Config).
- Reads stations.csv and lines.csv for the chosen network.
- Builds {name -> Station} and {name -> Line} and validates them.

File formats (';' separated, header row, '#' starts a comment):
- stations.csv: name;location        (location may be empty)
- lines.csv:    line;station;time    (one row per stop, stops in travel
                                      order, time = cumulative travel time)
"""

from typing import Dict, Tuple, Optional
import os
import pandas as pd

from data_model import Config, Station, Line, STATION, PROBLEM_TYPES, TRANSFER_NAME
from errors import MalformedNetworkError
from transit_graph import validate_network

# ============================================================================
# Small parsing helpers
# ============================================================================

def _is_missing(x) -> bool:
    if x is None:
        return True
    try:
        return bool(pd.isna(x))
    except (TypeError, ValueError):
        return False

def _as_bool(x, default=False) -> bool:
    """Loose boolean parsing with sensible defaults for CSV strings."""
    if _is_missing(x):
        return default
    s = str(x).strip().lower()
    if s in ("1", "1.0", "true", "yes", "y"): return True
    if s in ("0", "0.0", "false", "no", "n"): return False
    return default

def _as_int(x, default=0) -> int:
    try:
        return int(x)
    except Exception:
        return default

def _as_float(x, default: Optional[float] = 0.0) -> Optional[float]:
    if _is_missing(x):
        return default
    try:
        return float(x)
    except Exception:
        return default

def _as_str(x, default: Optional[str] = None) -> Optional[str]:
    if _is_missing(x):
        return default
    s = str(x).strip()
    return s or default

def _must(path: str) -> str:
    """Fail fast if a required file/dir does not exist."""
    if not os.path.exists(path):
        raise FileNotFoundError(path)
    return path

def _cfg_key(d: dict, name: str) -> str:
    """Case-insensitive lookup of a column name in the config row dict."""
    for k in d.keys():
        if k.lower() == name.lower():
            return k
    raise KeyError(f"Missing '{name}' in config row")

# ============================================================================
# Config row parsing
# ============================================================================

def parse_config_row(cfg_row: dict) -> Config:
    """Parse a raw config.csv row (dict) into a typed Config instance."""
    src = str(cfg_row[_cfg_key(cfg_row, 'source')])
    net = str(cfg_row[_cfg_key(cfg_row, 'network')])

    problem_type = (_as_str(cfg_row.get('problem_type'), STATION) or STATION).lower()
    if problem_type not in PROBLEM_TYPES:
        raise ValueError(f"config: unknown problem_type '{problem_type}' (expected one of {PROBLEM_TYPES})")

    return Config(
        source=src,
        network=net,
        problem_type=problem_type,
        preprocess=_as_bool(cfg_row.get('preprocess'), True),
        change_cost=_as_float(cfg_row.get('change_cost'), 5.0),
        switch_cost=_as_float(cfg_row.get('switch_cost'), 5.0),

        start_station=_as_str(cfg_row.get('start_station')),
        compact=_as_bool(cfg_row.get('compact'), True),

        threads=_as_int(cfg_row.get('threads'), 1),
        time_limit=_as_float(cfg_row.get('time_limit'), None),
        mip_gap=_as_float(cfg_row.get('mip_gap'), None),
        verbose=_as_bool(cfg_row.get('verbose'), False),
        write_model=_as_bool(cfg_row.get('write_model'), False),
    )

# ============================================================================
# Raw file readers (exact formats)
# ============================================================================

def read_stations_csv(path: str) -> pd.DataFrame:
    """stations.csv: name;location"""
    df = pd.read_csv(_must(path), sep=';', comment='#', dtype=str, keep_default_na=False)
    if 'name' not in df.columns:
        raise MalformedNetworkError(f"{path}: missing column 'name'")
    if 'location' not in df.columns:
        df['location'] = ''
    df['name'] = df['name'].str.strip()
    df['location'] = df['location'].str.strip()
    return df[['name', 'location']]

def read_lines_csv(path: str) -> pd.DataFrame:
    """lines.csv: line;station;time (one row per stop, in travel order)"""
    df = pd.read_csv(_must(path), sep=';', comment='#', dtype={'line': str, 'station': str})
    missing = {'line', 'station', 'time'} - set(df.columns)
    if missing:
        raise MalformedNetworkError(f"{path}: missing column(s) {sorted(missing)}")
    df['line'] = df['line'].str.strip()
    df['station'] = df['station'].str.strip()
    try:
        df['time'] = df['time'].astype(float)
    except (TypeError, ValueError) as e:
        raise MalformedNetworkError(f"{path}: non-numeric time value ({e})") from e
    return df[['line', 'station', 'time']]

# ============================================================================
# Builders: immutable network records
# ============================================================================

def build_network(stations_df: pd.DataFrame, lines_df: pd.DataFrame
                  ) -> Tuple[Dict[str, Station], Dict[str, Line]]:
    """
    Turn the raw tables into {name -> Station} and {name -> Line}.

    The set of lines serving a station is derived from lines.csv.
    """
    dup = stations_df['name'][stations_df['name'].duplicated()]
    if len(dup):
        raise MalformedNetworkError(f"Duplicate station name {dup.iloc[0]}")
    empty = stations_df['name'] == ''
    if empty.any():
        raise MalformedNetworkError("Station without name")

    # each line is one contiguous block of rows
    block = (lines_df['line'] != lines_df['line'].shift()).cumsum()
    split = block.groupby(lines_df['line'], sort=False).nunique()
    if (split > 1).any():
        raise MalformedNetworkError(f"Duplicate line name {split[split > 1].index[0]}")

    lines: Dict[str, Line] = {}
    serving: Dict[str, set] = {name: set() for name in stations_df['name']}
    for name, grp in lines_df.groupby('line', sort=False):
        name = str(name)
        if name == TRANSFER_NAME:
            raise MalformedNetworkError(f"Line name {TRANSFER_NAME!r} is reserved for transfer arcs")
        seq = tuple(grp['station'].tolist())
        times = tuple(float(t) for t in grp['time'].tolist())
        for st in seq:
            if st not in serving:
                raise MalformedNetworkError(f"Line {name} references unknown station {st}")
            serving[st].add(name)
        lines[name] = Line(name=name, stations=seq, times=times)

    stations: Dict[str, Station] = {
        str(r['name']): Station(name=str(r['name']), location=str(r['location']),
                                lines=frozenset(serving[str(r['name'])]))
        for _, r in stations_df.iterrows()
    }

    validate_network(stations, lines)
    return stations, lines

# ============================================================================
# Top-level loader
# ============================================================================

def load_network(data_root: str, cfg: Config) -> Tuple[Dict[str, Station], Dict[str, Line]]:
    """
    Read <data_root>/<source>/<network>/{stations,lines}.csv.

    Returns:
        (stations, lines) ready for transit_graph.make_transit_graph
    """
    net_dir = os.path.join(data_root, cfg.source, cfg.network)
    stations_df = read_stations_csv(os.path.join(net_dir, "stations.csv"))
    lines_df = read_lines_csv(os.path.join(net_dir, "lines.csv"))

    stations, lines = build_network(stations_df, lines_df)
    print(f"[load] {cfg.source}/{cfg.network}: {len(stations)} stations, {len(lines)} lines")
    return stations, lines


def load_config_table(data_root: str) -> pd.DataFrame:
    """Data/config.csv as DataFrame (one run per row)."""
    return pd.read_csv(_must(os.path.join(data_root, "Data", "config.csv")), sep=';')
