import json

import numpy as np
import pandas as pd
import pytest

from sprfit.exceptions import ConfigError
from sprfit.io import AlignedData, load_aligned_csv, save_fit


def test_aligned_data_validation():
    t = np.array([0.0, 1.0, 2.0])
    with pytest.raises(ConfigError):
        AlignedData((t,), (np.zeros(3), np.zeros(3)), np.array([1.0]), 1.0)
    with pytest.raises(ConfigError):
        AlignedData((t,), (np.zeros(2),), np.array([1.0]), 1.0)
    with pytest.raises(ConfigError):
        AlignedData((t[::-1],), (np.zeros(3),), np.array([1.0]), 1.0)
    with pytest.raises(ConfigError):
        AlignedData((t,), (np.zeros(3),), np.array([0.0]), 1.0)
    with pytest.raises(ConfigError):
        AlignedData((t,), (np.zeros(3),), np.array([1.0]), -1.0)
    with pytest.raises(ConfigError):
        AlignedData((), (), np.array([]), 1.0)


def test_series_may_have_different_times():
    data = AlignedData((np.arange(3.0), np.arange(5.0)), (np.zeros(3), np.zeros(5)), [1.0, 2.0], 62.618)
    assert len(data) == 2
    assert data.n_points == 8
    df = data.to_frame()
    assert list(df.columns) == ["concentration", "time", "response"]
    assert len(df) == 8


def test_load_aligned_csv(tmp_path):
    df = pd.DataFrame({
        "Concentration": [20.0, 20.0, 10.0, 10.0, 10.0, 20.0],
        "Time": [1.0, 0.0, 0.0, 2.0, 1.0, 2.0],
        "RU": [2.0, 0.0, 0.0, 1.5, 1.0, 3.0],
    })
    path = tmp_path / "aligned.csv"
    df.to_csv(path, index=False)

    data = load_aligned_csv(path, 62.618)
    np.testing.assert_array_equal(data.antibodyconcens, [10.0, 20.0])
    np.testing.assert_array_equal(data.times[0], [0.0, 1.0, 2.0])
    np.testing.assert_array_equal(data.refdata[0], [0.0, 1.0, 1.5])
    np.testing.assert_array_equal(data.refdata[1], [0.0, 2.0, 3.0])
    assert data.antigenconcen == 62.618


def test_load_aligned_csv_drops_non_numeric_rows(tmp_path):
    path = tmp_path / "aligned.csv"
    path.write_text("concentration,time,response\n1,0,0\n1,1,x\n1,2,4\n")
    data = load_aligned_csv(path, 1.0)
    np.testing.assert_array_equal(data.times[0], [0.0, 2.0])


def test_load_aligned_csv_missing_columns(tmp_path):
    path = tmp_path / "aligned.csv"
    path.write_text("a,b\n1,2\n")
    with pytest.raises(ConfigError):
        load_aligned_csv(path, 1.0)


def test_save_fit(tmp_path):
    curves = pd.DataFrame({"concentration": [1.0], "time": [0.0], "data": [0.0], "model": [0.0],
                           "model_std": [0.0]})
    paths = save_fit(tmp_path / "out", [0.0, -1.0, 0.5, 10.0, 0.1], 0.25, [1.0, 0.1, 3.16, 12.6, 1.26], curves)
    payload = json.loads(paths["params"].read_text())
    assert payload["fitness"] == 0.25
    assert payload["internal"]["logkoff"] == -1.0
    assert payload["physical"]["reach"] == 12.6
    assert pd.read_csv(paths["curves"]).shape == (1, 5)


def test_save_fit_without_curves(tmp_path):
    paths = save_fit(tmp_path, np.zeros(5), 1.0, np.ones(5), prefix="run1")
    assert set(paths) == {"params"}
    assert paths["params"].name == "run1_params.json"
