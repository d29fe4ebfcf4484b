import os

import pandas as pd
import pytest

from log import RunBatchLogger, KPI_COLUMNS
from transit_graph import make_transit_graph
from tests.helpers import make_network, ABC

ABC_TOUR = [0, 1, 8, 2, 3, 5]


@pytest.fixture
def logger(tmp_path):
    cfg_df = pd.DataFrame([
        {"source": "Data", "network": "tiny", "problem_type": "station"},
        {"source": "Data", "network": "tiny", "problem_type": "segment"},
    ])
    return RunBatchLogger(data_root=str(tmp_path), cfg_df=cfg_df, stamp="test")


@pytest.fixture
def graph():
    stations, lines = make_network(ABC)
    return make_transit_graph(stations, lines, 5, 5, preprocess=False)


def test_result_folder_and_base_log_header(logger, tmp_path):
    assert logger.out_dir == os.path.join(str(tmp_path), "Results", "test")
    df = pd.read_csv(logger.base_log_path, sep=';')
    assert list(df.columns) == ["source", "network", "problem_type"] + KPI_COLUMNS
    assert df.empty


def test_base_rows_are_appended(logger):
    row = logger.base_row_template(pd.Series({"source": "Data", "network": "tiny", "problem_type": "station"}))
    assert all(row[k] is None for k in KPI_COLUMNS)
    row.update({"status": "OPTIMAL", "objective": 28.0, "changes": 2})
    logger.append_base_row(row)
    logger.append_base_row(dict(row, status="ERROR", objective=None))

    df = pd.read_csv(logger.base_log_path, sep=';')
    assert df["status"].tolist() == ["OPTIMAL", "ERROR"]
    assert df["objective"].iloc[0] == 28.0
    assert pd.isna(df["objective"].iloc[1])


def test_run_dir_names(logger):
    assert logger.run_dir(3).endswith("row_003")
    assert os.path.isdir(logger.run_dir(7))


def test_tour_csv_has_cumulative_time(logger, graph):
    path = logger.write_tour(0, graph, ABC_TOUR)
    assert path.endswith(os.path.join("row_000", "tour.csv"))

    df = pd.read_csv(path, sep=';')
    assert list(df.columns) == ["pos", "arc", "source", "line", "target", "cost", "time"]
    assert df["arc"].tolist() == ABC_TOUR
    assert df["pos"].tolist() == list(range(6))
    assert df["time"].tolist() == [4.0, 9.0, 14.0, 19.0, 23.0, 28.0]
    assert df["source"].iloc[0] == "A"


def test_tex_tour_is_written(logger, graph):
    path = logger.write_tex_tour(1, graph, ABC_TOUR, compact=True)
    assert path.endswith(os.path.join("row_001", "tour.tex"))
    with open(path, encoding="utf-8") as f:
        assert "\\toprule" in f.read()
