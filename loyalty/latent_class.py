"""
Latent Class Analysis Module
=============================
Categorical latent class models fitted by EM over recoded survey indicators:
model selection across the number of classes, class assignment,
and class profiles.

Each indicator j with K_j categories has, per class c, a probability vector
p[c, j, :] summing to 1. Responses are one-hot encoded so the class-wise
log-likelihood of every respondent is a single matrix product.
"""

import warnings
import numpy as np
import pandas as pd
from typing import Dict, List, Optional

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from pathlib import Path
from scipy.special import logsumexp

from loyalty.config import cfg, get_feature_labels, get_output_dir


# ===================================================================
# 1. INDICATOR PREPARATION
# ===================================================================

def prepare_lca_indicators(
    df: pd.DataFrame,
    indicators: Optional[List[str]] = None,
) -> tuple[pd.DataFrame, Dict[str, Dict[int, int]]]:
    """
    Listwise-complete indicators re-indexed to 0..K-1 per column.

    Returns:
        (X, category_maps) where category_maps[col] maps the recoded
        category to its 0-based position.
    """
    if indicators is None:
        indicators = cfg["lca"]["indicators"]

    items = df[indicators].dropna()
    n_dropped = len(df) - len(items)
    if n_dropped:
        print(f"LCA: dropped {n_dropped:,} respondents with missing indicators")

    X = pd.DataFrame(index=items.index)
    category_maps = {}
    for col in indicators:
        cats = sorted(int(c) for c in items[col].unique())
        category_maps[col] = {c: i for i, c in enumerate(cats)}
        X[col] = items[col].astype(int).map(category_maps[col])

    return X, category_maps


def _one_hot(X: pd.DataFrame, n_categories: List[int]) -> np.ndarray:
    """Stack per-indicator one-hot blocks into an n x sum(K_j) matrix."""
    blocks = [np.eye(k)[X.iloc[:, j].to_numpy(dtype=int)] for j, k in enumerate(n_categories)]
    return np.hstack(blocks)


def _block_slices(n_categories: List[int]) -> List[slice]:
    edges = np.concatenate([[0], np.cumsum(n_categories)])
    return [slice(int(a), int(b)) for a, b in zip(edges[:-1], edges[1:])]


# ===================================================================
# 2. EM FITTING
# ===================================================================

def _log_joint(D: np.ndarray, class_probs: np.ndarray, item_probs: np.ndarray) -> np.ndarray:
    """log P(class = c) + log P(responses | c), shape n x C."""
    eps = 1e-10
    return np.log(class_probs + eps)[np.newaxis, :] + D @ np.log(item_probs + eps).T


def _m_step(D: np.ndarray, resp: np.ndarray, slices: List[slice]) -> tuple:
    class_counts = resp.sum(axis=0)
    class_probs = class_counts / len(D)
    item_probs = resp.T @ D
    for s in slices:
        block = np.clip(item_probs[:, s], 1e-10, None)
        item_probs[:, s] = block / block.sum(axis=1, keepdims=True)
    return class_probs, item_probs


def fit_lca(
    X: pd.DataFrame,
    n_classes: int,
    n_init: Optional[int] = None,
    max_iter: Optional[int] = None,
    tol: Optional[float] = None,
    seed: Optional[int] = None,
) -> Dict:
    """
    Fit a categorical latent class model with `n_classes` classes.

    Runs `n_init` random starts and keeps the one with the highest
    log-likelihood.

    Returns:
        Dict with class_probs (C,), item_probs (C x sum K_j), n_categories,
        indicators, log_likelihood, n_iter, converged, n_params, aic, bic.
    """
    lca_cfg = cfg["lca"]
    if n_init is None:
        n_init = lca_cfg["n_init"]
    if max_iter is None:
        max_iter = lca_cfg["max_iter"]
    if tol is None:
        tol = lca_cfg["tol"]
    if seed is None:
        seed = cfg["modeling"]["random_seed"]
    if n_classes < 1:
        raise ValueError("n_classes must be >= 1")

    n_categories = [int(X[c].max()) + 1 for c in X.columns]
    slices = _block_slices(n_categories)
    D = _one_hot(X, n_categories)
    n_obs = len(D)

    best = None
    for init in range(n_init):
        rng = np.random.RandomState(seed + init)
        class_probs = rng.dirichlet(np.ones(n_classes))
        item_probs = np.hstack([rng.dirichlet(np.ones(k), size=n_classes) for k in n_categories])

        prev_ll = -np.inf
        converged = False
        for iteration in range(max_iter):
            log_joint = _log_joint(D, class_probs, item_probs)
            ll = float(logsumexp(log_joint, axis=1).sum())
            if abs(ll - prev_ll) < tol:
                converged = True
                break
            prev_ll = ll
            resp = np.exp(log_joint - logsumexp(log_joint, axis=1, keepdims=True))
            class_probs, item_probs = _m_step(D, resp, slices)

        if best is None or ll > best["log_likelihood"]:
            best = {
                "class_probs": class_probs,
                "item_probs": item_probs,
                "log_likelihood": ll,
                "n_iter": iteration + 1,
                "converged": converged,
            }

    if not best["converged"]:
        warnings.warn(f"LCA with {n_classes} classes did not converge in {max_iter} iterations.")

    n_params = (n_classes - 1) + n_classes * sum(k - 1 for k in n_categories)
    best.update({
        "n_classes": n_classes,
        "n_categories": n_categories,
        "indicators": list(X.columns),
        "n_params": n_params,
        "aic": -2 * best["log_likelihood"] + 2 * n_params,
        "bic": -2 * best["log_likelihood"] + n_params * np.log(n_obs),
    })
    return best


def posterior_probs(model: Dict, X: pd.DataFrame) -> np.ndarray:
    """Posterior class-membership probabilities, n x C."""
    D = _one_hot(X[model["indicators"]], model["n_categories"])
    log_joint = _log_joint(D, model["class_probs"], model["item_probs"])
    return np.exp(log_joint - logsumexp(log_joint, axis=1, keepdims=True))


def select_n_classes(
    X: pd.DataFrame,
    k_range: Optional[List[int]] = None,
    **fit_kwargs,
) -> tuple[pd.DataFrame, Dict[int, Dict]]:
    """
    Fit one model per k and compare information criteria.

    Returns:
        (fit_table, models) where fit_table has k, log_likelihood, aic, bic,
        smallest_class_share and `best` marks the minimum-BIC model.
    """
    if k_range is None:
        k_range = cfg["lca"]["k_range"]

    rows = []
    models = {}
    for k in k_range:
        model = fit_lca(X, k, **fit_kwargs)
        labels = posterior_probs(model, X).argmax(axis=1)
        shares = np.bincount(labels, minlength=k) / len(labels)
        rows.append({
            "k": k,
            "log_likelihood": model["log_likelihood"],
            "aic": float(model["aic"]),
            "bic": float(model["bic"]),
            "smallest_class_share": round(float(shares.min()), 4),
            "converged": model["converged"],
        })
        models[k] = model
        print(f"  k={k}: BIC={rows[-1]['bic']:.1f}  smallest class={shares.min():.1%}")

    table = pd.DataFrame(rows)
    table["best"] = table["bic"] == table["bic"].min()
    return table, models


def assign_classes(model: Dict, X: pd.DataFrame) -> pd.DataFrame:
    """Modal class (1-based) and its posterior probability per respondent."""
    proba = posterior_probs(model, X)
    return pd.DataFrame({
        "lca_class": proba.argmax(axis=1) + 1,
        "posterior": proba.max(axis=1),
    }, index=X.index)


def class_profiles(
    df: pd.DataFrame,
    classes: pd.Series,
    indicators: Optional[List[str]] = None,
) -> pd.DataFrame:
    """
    Share of each (indicator, category) within each class.

    Returns long DataFrame: indicator, category, lca_class, share.
    """
    if indicators is None:
        indicators = cfg["lca"]["indicators"]

    joined = df.loc[classes.index, indicators].join(classes.rename("lca_class"))
    frames = []
    for col in indicators:
        ct = pd.crosstab(joined["lca_class"], joined[col], normalize="index")
        long = ct.stack().rename("share").reset_index()
        long.columns = ["lca_class", "category", "share"]
        long.insert(0, "indicator", col)
        frames.append(long)

    return pd.concat(frames, ignore_index=True)


# ===================================================================
# 3. FIGURES
# ===================================================================

def plot_class_profiles(
    profiles: pd.DataFrame,
    save_dir: Path | None = None,
) -> None:
    """One panel per indicator: category shares by class."""
    if save_dir is None:
        save_dir = get_output_dir("figures")

    label_map = get_feature_labels()
    indicators = list(dict.fromkeys(profiles["indicator"]))
    n = len(indicators)
    ncols = 3
    nrows = int(np.ceil(n / ncols))

    fig, axes = plt.subplots(nrows, ncols, figsize=(4 * ncols, 3 * nrows), squeeze=False)
    for ax, col in zip(axes.flat, indicators):
        sub = profiles[profiles["indicator"] == col]
        pivot = sub.pivot(index="lca_class", columns="category", values="share")
        pivot.plot(kind="bar", stacked=True, ax=ax, colormap="Blues", legend=False)
        ax.set_title(label_map.get(col, col), fontsize=9, fontweight="bold")
        ax.set_xlabel("Class")
        ax.set_ylim(0, 1)
    for ax in list(axes.flat)[n:]:
        ax.axis("off")

    plt.tight_layout()
    plt.savefig(save_dir / "lca_class_profiles.png", dpi=150, bbox_inches="tight")
    plt.close()
