# log.py
# -*- coding: utf-8 -*-
"""
Result files of a batch of tour runs.

Layout (one folder per call of run.py):

    Results/<YYYY_MM_DD_HH_MM>/
        base_log.csv          config.csv columns + KPI columns, one line per row
        row_000/tour.csv      tour arcs in walk order with cumulative time
        row_000/tour.tex      itinerary table (LaTeX)

Separator is ';' everywhere, same as config.csv.
"""

from __future__ import annotations
import os
from datetime import datetime
from typing import Dict, Any, Sequence
import pandas as pd

from data_model import TransitGraph
from print_tour import save_tex_tour, tour_records


# KPI columns appended to the config columns of base_log.csv
KPI_COLUMNS = [
    "status", "objective", "runtime_s",
    "n_nodes", "n_arcs", "n_clusters", "n_lazy_cuts",
    "tour_arcs", "changes",
]

TOUR_CSV_COLUMNS = ["pos", "arc", "source", "line", "target", "cost", "time"]


class RunBatchLogger:
    """Owns Results/<stamp>/ and everything written below it."""

    def __init__(self, data_root: str, cfg_df: pd.DataFrame, *, stamp: str | None = None):
        self.data_root = data_root
        self.stamp = stamp or datetime.now().strftime("%Y_%m_%d_%H_%M")
        self.out_dir = os.path.join(data_root, "Results", self.stamp)
        os.makedirs(self.out_dir, exist_ok=True)

        cfg_cols = list(cfg_df.columns)
        self.base_columns = cfg_cols + [c for c in KPI_COLUMNS if c not in cfg_cols]
        self.base_log_path = os.path.join(self.out_dir, "base_log.csv")

        # header only; rows are appended as runs finish
        if not os.path.exists(self.base_log_path):
            pd.DataFrame(columns=self.base_columns).to_csv(self.base_log_path, sep=';', index=False)

    def run_dir(self, run_index: int) -> str:
        """row_XXX below the batch folder, created on demand."""
        path = os.path.join(self.out_dir, f"row_{int(run_index):03d}")
        os.makedirs(path, exist_ok=True)
        return path

    # ---------- base_log.csv ----------

    def base_row_template(self, cfg_row: pd.Series) -> Dict[str, Any]:
        """Config values of one row; every KPI starts as None."""
        row = {k: cfg_row.get(k, None) for k in self.base_columns if k not in KPI_COLUMNS}
        row.update({k: None for k in KPI_COLUMNS})
        return row

    def append_base_row(self, row_dict: Dict[str, Any]) -> None:
        pd.DataFrame([row_dict], columns=self.base_columns).to_csv(
            self.base_log_path, sep=';', index=False, mode='a', header=False
        )

    # ---------- per-row files ----------

    def write_tour(self, run_index: int, graph: TransitGraph, tour: Sequence[int]) -> str:
        """row_XXX/tour.csv, one line per arc of the walk."""
        df = pd.DataFrame(tour_records(graph, tour), columns=["source", "line", "target", "cost"])
        df["arc"] = [int(a) for a in tour]
        df["pos"] = range(len(df))
        df["time"] = df["cost"].cumsum()

        path = os.path.join(self.run_dir(run_index), "tour.csv")
        df[TOUR_CSV_COLUMNS].to_csv(path, sep=';', index=False)
        return path

    def write_tex_tour(self, run_index: int, graph: TransitGraph, tour: Sequence[int], **kwargs) -> str:
        """row_XXX/tour.tex; kwargs go to print_tour.tex_tour."""
        return save_tex_tour(graph, tour, os.path.join(self.run_dir(run_index), "tour.tex"), **kwargs)
