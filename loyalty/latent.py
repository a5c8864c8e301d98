"""
Latent Construct / Path Model Module
=====================================
Composite-based path analysis of loyalty predictors:
measurement model per construct block (one-factor analysis), reliability
and convergent validity, loading-weighted composite scores, and structural
regressions between standardized composites with bootstrapped paths.
"""

import numpy as np
import pandas as pd
from typing import Dict, List, Optional
import warnings

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from pathlib import Path
import statsmodels.api as sm
from factor_analyzer import FactorAnalyzer, calculate_bartlett_sphericity, calculate_kmo
from joblib import Parallel, delayed

from loyalty.config import cfg, get_feature_set, get_output_dir


# ===================================================================
# 1. CONSTRUCT BLOCKS
# ===================================================================

def get_construct_blocks(constructs: Optional[List[str]] = None) -> Dict[str, List[str]]:
    """Return construct -> indicator columns, from the config feature sets."""
    if constructs is None:
        constructs = cfg["sem"]["constructs"]
    return {name: get_feature_set(name) for name in constructs}


def get_structural_paths() -> Dict[str, List[str]]:
    """Return endogenous construct -> list of predictor constructs."""
    return {k: list(v) for k, v in cfg["sem"]["paths"].items()}


# ===================================================================
# 2. MEASUREMENT MODEL
# ===================================================================

def fit_measurement_block(
    items_df: pd.DataFrame,
    method: str = "principal",
) -> Dict:
    """
    One-factor model for a single construct block.

    Loadings are oriented so that their sum is positive.

    Args:
        items_df: Complete (no NaN) indicator columns of one construct.
        method: FactorAnalyzer extraction method.

    Returns:
        Dict with loadings (Series), kmo, bartlett_p, variance_explained.
    """
    if items_df.isna().any().any():
        raise ValueError("Measurement block has missing values; impute or drop first")
    if items_df.shape[1] < 2:
        raise ValueError("A construct block needs at least 2 indicators")

    if items_df.shape[1] >= 3:
        _, kmo_model = calculate_kmo(items_df)
        _, bartlett_p = calculate_bartlett_sphericity(items_df)
    else:
        kmo_model, bartlett_p = np.nan, np.nan

    fa = FactorAnalyzer(n_factors=1, rotation=None, method=method, use_smc=True)
    fa.fit(items_df)

    loadings = fa.loadings_[:, 0]
    if loadings.sum() < 0:
        loadings = -loadings

    return {
        "loadings": pd.Series(loadings, index=items_df.columns),
        "kmo": kmo_model,
        "bartlett_p": bartlett_p,
        "variance_explained": fa.get_factor_variance()[1][0],
    }


def cronbach_alpha(items_df: pd.DataFrame) -> float:
    """Cronbach's alpha for internal consistency."""
    items_complete = items_df.dropna()
    if len(items_complete) < 10 or items_complete.shape[1] < 2:
        return np.nan

    k = items_complete.shape[1]
    item_vars = items_complete.var(axis=0, ddof=1)
    total_var = items_complete.sum(axis=1).var(ddof=1)
    if total_var == 0:
        return np.nan
    return float((k / (k - 1)) * (1 - item_vars.sum() / total_var))


def composite_reliability(loadings: pd.Series) -> float:
    """
    Composite reliability (rho_c).

    rho_c = (sum(lambda))^2 / ((sum(lambda))^2 + sum(1 - lambda^2))
    """
    lam = np.asarray(loadings, dtype=float)
    error_var = np.maximum(1.0 - lam ** 2, 0.0)
    sum_lam = lam.sum()
    return float(sum_lam ** 2 / (sum_lam ** 2 + error_var.sum()))


def average_variance_extracted(loadings: pd.Series) -> float:
    """AVE = mean(lambda^2)."""
    lam = np.asarray(loadings, dtype=float)
    return float(np.mean(lam ** 2))


def composite_scores(items_df: pd.DataFrame, loadings: pd.Series) -> pd.Series:
    """
    Loading-weighted composite of standardized indicators.

    Score_i = sum(lambda_j * z_ij) / sum(|lambda_j|)
    """
    means = items_df.mean()
    stds = items_df.std()
    zero_std_cols = stds[stds == 0].index.tolist()
    if zero_std_cols:
        warnings.warn(f"Constant item(s): {zero_std_cols}. Zero contribution to scores.")
    stds = stds.replace(0, 1)
    z = (items_df - means) / stds

    w = loadings.reindex(items_df.columns).values
    return pd.Series(z.values @ w / np.abs(w).sum(), index=items_df.index)


def fit_measurement_model(
    df: pd.DataFrame,
    blocks: Optional[Dict[str, List[str]]] = None,
) -> Dict:
    """
    Fit every construct block and compute composite scores.

    Returns:
        Dict with `blocks` (construct -> fit dict incl. alpha, rho_c, ave)
        and `scores` (DataFrame, one standardized column per construct).
    """
    if blocks is None:
        blocks = get_construct_blocks()

    fits = {}
    scores = {}
    for name, cols in blocks.items():
        items = df[cols]
        fit = fit_measurement_block(items)
        fit["cronbach_alpha"] = cronbach_alpha(items)
        fit["composite_reliability"] = composite_reliability(fit["loadings"])
        fit["ave"] = average_variance_extracted(fit["loadings"])
        fits[name] = fit

        s = composite_scores(items, fit["loadings"])
        scores[name] = (s - s.mean()) / s.std()

    return {"blocks": fits, "scores": pd.DataFrame(scores, index=df.index)}


def measurement_table(measurement: Dict) -> pd.DataFrame:
    """Tidy loadings + reliability table (one row per indicator)."""
    rows = []
    for name, fit in measurement["blocks"].items():
        for item, lam in fit["loadings"].items():
            rows.append({
                "construct": name,
                "indicator": item,
                "loading": round(float(lam), 4),
                "cronbach_alpha": round(fit["cronbach_alpha"], 4),
                "composite_reliability": round(fit["composite_reliability"], 4),
                "ave": round(fit["ave"], 4),
                "kmo": fit["kmo"],
            })
    return pd.DataFrame(rows)


# ===================================================================
# 3. STRUCTURAL MODEL
# ===================================================================

def fit_structural_model(
    scores: pd.DataFrame,
    paths: Optional[Dict[str, List[str]]] = None,
) -> Dict:
    """
    OLS regression of each endogenous composite on its predictors.

    Returns:
        Dict with `paths` (DataFrame: source, target, coef, se, t, p_value)
        and `r_squared` (target -> R^2).
    """
    if paths is None:
        paths = get_structural_paths()

    rows = []
    r_squared = {}
    for target, sources in paths.items():
        X = sm.add_constant(scores[sources], has_constant="add")
        model = sm.OLS(scores[target], X).fit()
        r_squared[target] = float(model.rsquared)
        for src in sources:
            rows.append({
                "source": src,
                "target": target,
                "coef": float(model.params[src]),
                "se": float(model.bse[src]),
                "t": float(model.tvalues[src]),
                "p_value": float(model.pvalues[src]),
            })

    return {"paths": pd.DataFrame(rows), "r_squared": r_squared}


def fit_path_model(
    df: pd.DataFrame,
    blocks: Optional[Dict[str, List[str]]] = None,
    paths: Optional[Dict[str, List[str]]] = None,
) -> Dict:
    """Measurement + structural model in one call."""
    measurement = fit_measurement_model(df, blocks)
    structural = fit_structural_model(measurement["scores"], paths)
    return {**measurement, **structural}


def _bootstrap_once(df, blocks, paths, seed):
    rng = np.random.RandomState(seed)
    idx = rng.choice(len(df), size=len(df), replace=True)
    sample = df.iloc[idx].reset_index(drop=True)
    try:
        result = fit_path_model(sample, blocks, paths)
    except (ValueError, np.linalg.LinAlgError):
        return None
    return result["paths"]["coef"].values


def bootstrap_paths(
    df: pd.DataFrame,
    blocks: Optional[Dict[str, List[str]]] = None,
    paths: Optional[Dict[str, List[str]]] = None,
    n_bootstrap: Optional[int] = None,
    confidence: Optional[float] = None,
    n_jobs: Optional[int] = None,
    seed: Optional[int] = None,
) -> pd.DataFrame:
    """
    Nonparametric bootstrap of the path coefficients.

    Each replicate refits the measurement and structural models on a
    resample of respondents. Replicates run in parallel via joblib.

    Returns:
        DataFrame with source, target, coef (full sample), boot_mean,
        boot_se, ci_lower, ci_upper, significant, n_valid_boots.
    """
    sem_cfg = cfg["sem"]
    if blocks is None:
        blocks = get_construct_blocks()
    if paths is None:
        paths = get_structural_paths()
    if n_bootstrap is None:
        n_bootstrap = sem_cfg["n_bootstrap"]
    if confidence is None:
        confidence = sem_cfg["confidence"]
    if n_jobs is None:
        n_jobs = cfg["modeling"]["n_jobs"]
    if seed is None:
        seed = cfg["modeling"]["random_seed"]

    full = fit_path_model(df, blocks, paths)["paths"]

    seeds = np.random.RandomState(seed).randint(0, 2**31 - 1, size=n_bootstrap)
    draws = Parallel(n_jobs=n_jobs)(
        delayed(_bootstrap_once)(df, blocks, paths, int(s)) for s in seeds
    )
    draws = [d for d in draws if d is not None]
    if not draws:
        raise ValueError("All bootstrap replicates failed")
    boot = np.vstack(draws)

    alpha = 1 - confidence
    lo = np.percentile(boot, alpha / 2 * 100, axis=0)
    hi = np.percentile(boot, (1 - alpha / 2) * 100, axis=0)

    result = full[["source", "target", "coef"]].copy()
    result["boot_mean"] = boot.mean(axis=0)
    result["boot_se"] = boot.std(axis=0, ddof=1)
    result["ci_lower"] = lo
    result["ci_upper"] = hi
    result["significant"] = (lo > 0) | (hi < 0)
    result["n_valid_boots"] = len(draws)
    return result


# ===================================================================
# 4. FIGURES
# ===================================================================

def plot_path_coefficients(
    boot_df: pd.DataFrame,
    save_dir: Path | None = None,
) -> None:
    """Forest plot of bootstrapped path coefficients with CIs."""
    if save_dir is None:
        save_dir = get_output_dir("figures")

    df = boot_df.sort_values("coef", ascending=True)
    labels = [f"{s} -> {t}" for s, t in zip(df["source"], df["target"])]

    fig, ax = plt.subplots(figsize=(7, max(3, len(df) * 0.5)))
    y_pos = range(len(df))
    ax.errorbar(
        df["coef"], y_pos,
        xerr=[df["coef"] - df["ci_lower"], df["ci_upper"] - df["coef"]],
        fmt="o", color="#4C72B0", ecolor="#999999", capsize=3, markersize=6,
    )
    ax.axvline(0.0, color="red", linestyle="--", alpha=0.7)
    ax.set_yticks(list(y_pos))
    ax.set_yticklabels(labels, fontsize=8)
    ax.set_xlabel("Standardized path coefficient (bootstrap CI)")
    ax.set_title("Structural Paths", fontweight="bold")
    ax.grid(axis="x", alpha=0.3)
    plt.tight_layout()
    plt.savefig(save_dir / "path_coefficients.png", dpi=150, bbox_inches="tight")
    plt.close()
