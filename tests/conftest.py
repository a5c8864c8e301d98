from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from loyalty.preprocessing import clean_dataset


def _likert(latent: np.ndarray, k: int, rng: np.random.Generator) -> np.ndarray:
    noisy = latent + 0.5 * rng.normal(size=latent.shape[0])
    cuts = np.quantile(noisy, np.linspace(0, 1, k + 1)[1:-1])
    return np.digitize(noisy, cuts) + 1


def make_survey(n: int = 300, seed: int = 0, missing_share: float = 0.05) -> pd.DataFrame:
    """
    Parsed survey with the configured codebook: correlated satisfaction,
    trust, image and loyalty blocks, sentinel 9 sprinkled on optional items.
    """
    rng = np.random.default_rng(seed)
    sat = rng.normal(size=n)
    trust = 0.6 * sat + 0.8 * rng.normal(size=n)
    image = rng.normal(size=n)
    loyal = 0.5 * sat + 0.3 * trust + 0.2 * image + 0.7 * rng.normal(size=n)

    df = pd.DataFrame({"ID": np.arange(1, n + 1)})
    for i in range(1, 5):
        df[f"loy_{i}"] = _likert(loyal, 4, rng)
    for i in range(1, 4):
        df[f"sat_{i}"] = _likert(sat, 5, rng)
        df[f"trust_{i}"] = _likert(trust, 4, rng)
    for i in range(1, 3):
        df[f"img_{i}"] = _likert(image, 4, rng)
    df["price"] = rng.integers(1, 5, size=n)
    df["com"] = rng.integers(1, 4, size=n)
    df["freq"] = _likert(loyal, 5, rng)
    df["gen"] = rng.integers(2, 6, size=n)
    df["gender"] = rng.integers(1, 4, size=n)
    df["region"] = rng.integers(1, 5, size=n)

    cols = [c for c in df.columns if c != "ID"]
    df[cols] = df[cols].astype(float)
    for col in ["sat_2", "trust_3", "price", "freq"]:
        hit = rng.random(n) < missing_share
        df.loc[hit, col] = 9.0
    return df


@pytest.fixture
def survey_df() -> pd.DataFrame:
    return make_survey()


@pytest.fixture
def clean_survey(survey_df) -> pd.DataFrame:
    return clean_dataset(survey_df, verbose=False)


@pytest.fixture
def planted_transactions() -> pd.DataFrame:
    """
    100 transactions with one planted rule {a_1, b_1} -> t_1:
      rows  0-39: a, b, t
      rows 40-59: a
      rows 60-79: b, c
      rows 80-99: c, t
    """
    from loyalty.transactions import Item

    a, b, c, t = Item("a", 1), Item("b", 1), Item("c", 1), Item("t", 1)
    table = pd.DataFrame(False, index=pd.RangeIndex(100, name="ID"), columns=[a, b, c, t])
    table.iloc[0:40, [0, 1, 3]] = True
    table.iloc[40:60, [0]] = True
    table.iloc[60:80, [1, 2]] = True
    table.iloc[80:100, [2, 3]] = True
    return table.astype(bool)


@pytest.fixture
def survey_factory():
    return make_survey
