from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from loyalty.latent import (
    average_variance_extracted,
    bootstrap_paths,
    composite_reliability,
    cronbach_alpha,
    fit_measurement_block,
    fit_path_model,
    get_construct_blocks,
    get_structural_paths,
    measurement_table,
)
from loyalty.preprocessing import simple_impute

pytestmark = pytest.mark.unit


@pytest.fixture
def sem_data(clean_survey):
    blocks = get_construct_blocks()
    indicators = [c for cols in blocks.values() for c in cols]
    return simple_impute(clean_survey[indicators], indicators, strategy="mean"), blocks


def test_construct_blocks_from_config() -> None:
    blocks = get_construct_blocks()
    assert blocks["loyalty"] == ["loy_1", "loy_2", "loy_3", "loy_4"]
    assert blocks["image"] == ["img_1", "img_2"]
    assert get_structural_paths()["loyalty"] == ["satisfaction", "trust", "image"]


def test_reliability_formulas() -> None:
    loadings = pd.Series([0.7, 0.7, 0.7])
    assert composite_reliability(loadings) == pytest.approx(4.41 / (4.41 + 1.53))
    assert average_variance_extracted(loadings) == pytest.approx(0.49)


def test_cronbach_alpha_needs_enough_rows() -> None:
    assert np.isnan(cronbach_alpha(pd.DataFrame({"a": [1, 2, 3], "b": [1, 2, 3]})))


def test_measurement_block_orients_loadings(sem_data) -> None:
    data, blocks = sem_data
    fit = fit_measurement_block(data[blocks["loyalty"]])

    assert (fit["loadings"] > 0).all()
    assert 0 < fit["variance_explained"] <= 1
    assert fit["kmo"] > 0.5


def test_measurement_block_rejects_missing_values(clean_survey) -> None:
    with pytest.raises(ValueError, match="missing values"):
        fit_measurement_block(clean_survey[["sat_1", "sat_2", "sat_3"]])


def test_fit_path_model_structure(sem_data) -> None:
    data, blocks = sem_data
    result = fit_path_model(data, blocks)

    paths = result["paths"]
    assert len(paths) == 4
    assert set(result["r_squared"]) == {"trust", "loyalty"}
    assert result["scores"].shape == (len(data), 4)

    sat_loy = paths[(paths["source"] == "satisfaction") & (paths["target"] == "loyalty")]
    assert sat_loy["coef"].iloc[0] > 0

    table = measurement_table(result)
    assert len(table) == sum(len(c) for c in blocks.values())
    assert table.loc[table["construct"] == "loyalty", "cronbach_alpha"].iloc[0] > 0.6


def test_bootstrap_paths_intervals(sem_data) -> None:
    data, blocks = sem_data
    boot = bootstrap_paths(data, blocks, n_bootstrap=20, confidence=0.9, n_jobs=1, seed=1)

    assert len(boot) == 4
    assert (boot["ci_lower"] <= boot["ci_upper"]).all()
    assert (boot["n_valid_boots"] <= 20).all()
    assert boot["boot_se"].gt(0).all()
