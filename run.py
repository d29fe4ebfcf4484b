# run.py
# -*- coding: utf-8 -*-
"""
Solve one covering tour per row of Data/config.csv and write the results to
Results/<stamp>/.

    python run.py [--workers N] [--data-root DIR]

Rows are independent; with --workers > 1 they run in a thread pool and all
logger writes go through one lock.
"""

import os
import time
import traceback
import argparse
import pandas as pd
from concurrent.futures import ThreadPoolExecutor, as_completed
from threading import Lock

from load_data import parse_config_row, load_network, load_config_table
from transit_graph import make_transit_graph
from solve_tour import solve_tour
from print_tour import (
    print_network_summary, print_graph_statistics, print_tour,
    print_tour_locations, rotate_tour, count_changes,
)
from log import RunBatchLogger

# ---------- one config row ----------

def run_one_row(i, cfg_row_dict, data_root, logger, log_lock):
    """
    Load, build, solve and report one config row. Never raises: failures are
    printed and logged with status ERROR (or the backend status).
    """
    tag = f"{cfg_row_dict.get('source')}/{cfg_row_dict.get('network')}@{cfg_row_dict.get('problem_type', 'station')}"
    print(f"\n\n##### RUN {i}: {tag} #####")
    t0 = time.time()

    # KPIs are filled in below; config columns come from the row
    base_row = logger.base_row_template(pd.Series(cfg_row_dict))

    try:
        # ----- 1) Load data -----
        cfg = parse_config_row(cfg_row_dict)
        stations, lines = load_network(data_root, cfg)
        if cfg.verbose:
            print(f"[config] {cfg.to_dict()}")
            print_network_summary(stations, lines)

        # ----- 2) Build graph -----
        graph = make_transit_graph(
            stations, lines,
            change_cost=cfg.change_cost,
            switch_cost=cfg.switch_cost,
            problem_type=cfg.problem_type,
            preprocess=cfg.preprocess,
        )
        print(f"[graph] nodes={graph.V} arcs={graph.A} stations={len(graph.station_nodes)} "
              f"contracted={graph.nodes_removed}")
        if cfg.verbose:
            print_graph_statistics(graph)

        # ----- 3) Solve -----
        backend, solution, artifacts = solve_tour(
            graph,
            threads=cfg.threads,
            time_limit=cfg.time_limit,
            mip_gap=cfg.mip_gap,
            verbose=cfg.verbose,
            write_model=cfg.write_model,
        )
        print(f"[solve] status={solution['status']} candidates={solution['n_candidates']} "
              f"lazy_cuts={solution['n_lazy_cuts']} exclusive={artifacts['exclusive']}")

        # ----- 4) Tour output -----
        start = cfg.start_station
        if start and start not in graph.station_nodes:
            print(f"[WARN] start station '{start}' is not part of the graph, keeping the tour start")
            start = None
        tour = rotate_tour(graph, solution["tour"], start) if start else solution["tour"]

        print_tour(graph, tour, compact=cfg.compact)
        if cfg.verbose:
            print_tour_locations(graph, tour, stations)

        base_row.update({
            "status": solution.get("status"),
            "objective": solution.get("objective"),
            "runtime_s": solution.get("runtime_s"),
            "n_nodes": graph.V,
            "n_arcs": graph.A,
            "n_clusters": len(artifacts.get("clusters") or []),
            "n_lazy_cuts": solution.get("n_lazy_cuts"),
            "tour_arcs": len(tour),
            "changes": count_changes(graph, tour),
        })

        with log_lock:
            logger.write_tour(i, graph, tour)
            logger.write_tex_tour(i, graph, tour, compact=cfg.compact)

        print(
            f"Status={solution.get('status')}  "
            f"Obj={solution.get('objective')}  "
            f"Changes={base_row.get('changes')}  "
            f"Runtime={solution.get('runtime_s')}s"
        )

    except Exception as e:
        traceback.print_exc()
        base_row.update({
            "status": getattr(e, "status", "") or "ERROR",
            "objective": None,
            "runtime_s": round(time.time() - t0, 3),
        })
        print(f"[ERROR] run {i} ({tag}): {e}")

    # Base row IMMER am Ende anhängen (geschützt)
    with log_lock:
        logger.append_base_row(base_row)
    return base_row

# ---------- main ----------

def parse_args(argv=None):
    ap = argparse.ArgumentParser(description="Run transit tour optimisation over config.csv")
    ap.add_argument("--workers", type=int, default=1, help="Anzahl paralleler Läufe (Threads). Standard: 1")
    ap.add_argument("--data-root", type=str, default=".", help="Wurzelverzeichnis (enthält Data/ und Results/)")
    return ap.parse_args(argv)

def main(argv=None):
    args = parse_args(argv)
    data_root = args.data_root
    cfg_df    = load_config_table(data_root)

    # Zentraler Logger (legt einmal den Lauf-Ordner an)
    logger = RunBatchLogger(data_root=data_root, cfg_df=cfg_df)
    print(f"Logging to: {logger.out_dir}")

    # Lock für alle Logger-Schreibzugriffe
    log_lock = Lock()

    # Sequentiell
    if args.workers <= 1 or len(cfg_df) <= 1:
        for i, cfg_row in cfg_df.iterrows():
            run_one_row(i, cfg_row.to_dict(), data_root, logger, log_lock)

    # Parallel (ThreadPool)
    else:
        max_workers = max(1, int(args.workers))
        print(f"Starte parallel mit {max_workers} Worker-Threads…")
        with ThreadPoolExecutor(max_workers=max_workers) as ex:
            futures = []
            for i, cfg_row in cfg_df.iterrows():
                futures.append(
                    ex.submit(run_one_row, i, cfg_row.to_dict(), data_root, logger, log_lock)
                )
            for f in as_completed(futures):
                try:
                    f.result()
                except Exception:
                    traceback.print_exc()

    print(f"\nBase log: {os.path.join(logger.out_dir, 'base_log.csv')}")

if __name__ == "__main__":
    main()
