"""
EDA Module for the Loyalty Survey
==================================
  - Chi-squared tests of association (with Cramer's V)
  - Kruskal-Wallis tests of loyalty across groups
  - Pairwise Mann-Whitney post-hoc comparisons
  - Figures (contingency heatmaps, loyalty boxplots)
"""

import warnings
from itertools import combinations

import pandas as pd
import numpy as np
import matplotlib
matplotlib.use("Agg")  # non-interactive backend for scripts
import matplotlib.pyplot as plt
import seaborn as sns
from scipy import stats
from pathlib import Path

from loyalty.config import cfg, get_feature_labels, get_output_dir


# ===================================================================
# 1. CHI-SQUARED TEST OF ASSOCIATION
# ===================================================================

def contingency_table(df: pd.DataFrame, row_var: str, col_var: str) -> pd.DataFrame:
    """Observed counts for two categorical variables (rows with NaN excluded)."""
    valid = df[[row_var, col_var]].dropna()
    return pd.crosstab(valid[row_var], valid[col_var])


def cramers_v(chi2: float, n: int, shape: tuple[int, int]) -> float:
    """Cramer's V from a chi-squared statistic."""
    k = min(shape)
    if k <= 1 or n <= 0:
        return 0.0
    return round(float(np.sqrt(chi2 / (n * (k - 1)))), 4)


def chi_square_test(df: pd.DataFrame,
                    row_var: str,
                    col_var: str,
                    min_expected: float | None = None) -> dict:
    """
    Pearson chi-squared test of independence between two categorical variables.

    Warns when more than 20% of the expected counts fall below `min_expected`.

    Returns:
        Dict with chi2, dof, p_value, cramers_v, n, table, expected.
    """
    if min_expected is None:
        min_expected = cfg["eda"]["min_expected"]

    table = contingency_table(df, row_var, col_var)
    if table.shape[0] < 2 or table.shape[1] < 2:
        raise ValueError(
            f"Chi-squared needs >= 2 levels per variable; got {table.shape} for "
            f"{row_var} x {col_var}"
        )

    chi2, p, dof, expected = stats.chi2_contingency(table.values, correction=False)
    n = int(table.values.sum())

    share_low = float((expected < min_expected).mean())
    if share_low > 0.20:
        warnings.warn(
            f"{row_var} x {col_var}: {share_low:.0%} of expected counts < {min_expected}"
        )

    return {
        "row_var": row_var,
        "col_var": col_var,
        "chi2": float(chi2),
        "dof": int(dof),
        "p_value": float(p),
        "cramers_v": cramers_v(chi2, n, table.shape),
        "n": n,
        "share_expected_low": round(share_low, 4),
        "table": table,
        "expected": pd.DataFrame(expected, index=table.index, columns=table.columns),
    }


def all_chi_square_tests(df: pd.DataFrame,
                         pairs: list[tuple[str, str]] | None = None) -> pd.DataFrame:
    """
    Run chi_square_test for each (row_var, col_var) pair.
    Returns tidy DataFrame sorted by Cramer's V descending.
    """
    if pairs is None:
        pairs = [tuple(p) for p in cfg["eda"]["chi_square_pairs"]]

    label_map = get_feature_labels()
    rows = []
    for row_var, col_var in pairs:
        if row_var not in df.columns or col_var not in df.columns:
            continue
        res = chi_square_test(df, row_var, col_var)
        rows.append({
            "variable": row_var,
            "readable_name": label_map.get(row_var, row_var),
            "versus": col_var,
            "chi2": round(res["chi2"], 4),
            "dof": res["dof"],
            "p_value": res["p_value"],
            "cramers_v": res["cramers_v"],
            "n": res["n"],
        })

    result = pd.DataFrame(rows).sort_values("cramers_v", ascending=False)
    result["rank"] = range(1, len(result) + 1)
    return result


# ===================================================================
# 2. KRUSKAL-WALLIS
# ===================================================================

def kruskal_wallis_test(df: pd.DataFrame,
                        value_col: str,
                        group_col: str) -> dict:
    """
    Kruskal-Wallis H test of `value_col` across the levels of `group_col`.

    Effect size: epsilon^2 = H / (n - 1).

    Returns:
        Dict with H, dof, p_value, epsilon_sq, n, group_medians.
    """
    valid = df[[value_col, group_col]].dropna()
    groups = [g[value_col].values for _, g in valid.groupby(group_col)]
    if len(groups) < 2:
        raise ValueError(f"Kruskal-Wallis needs >= 2 groups in '{group_col}'")

    h, p = stats.kruskal(*groups)
    n = len(valid)

    return {
        "value_col": value_col,
        "group_col": group_col,
        "H": float(h),
        "dof": len(groups) - 1,
        "p_value": float(p),
        "epsilon_sq": round(float(h / (n - 1)), 4) if n > 1 else np.nan,
        "n": n,
        "group_medians": valid.groupby(group_col)[value_col].median().to_dict(),
    }


def pairwise_mann_whitney(df: pd.DataFrame,
                          value_col: str,
                          group_col: str) -> pd.DataFrame:
    """Two-sided Mann-Whitney U for every pair of groups, Bonferroni-adjusted."""
    valid = df[[value_col, group_col]].dropna()
    levels = sorted(valid[group_col].unique())
    n_pairs = len(levels) * (len(levels) - 1) // 2

    rows = []
    for a, b in combinations(levels, 2):
        x = valid.loc[valid[group_col] == a, value_col]
        y = valid.loc[valid[group_col] == b, value_col]
        u, p = stats.mannwhitneyu(x, y, alternative="two-sided")
        rows.append({
            "group_a": a,
            "group_b": b,
            "U": float(u),
            "p_value": float(p),
            "p_bonferroni": min(float(p) * n_pairs, 1.0),
            "n_a": len(x),
            "n_b": len(y),
        })

    return pd.DataFrame(rows)


def all_kruskal_tests(df: pd.DataFrame,
                      value_col: str,
                      group_cols: list[str] | None = None) -> pd.DataFrame:
    """Kruskal-Wallis for several grouping variables, sorted by p-value."""
    if group_cols is None:
        group_cols = cfg["eda"]["kruskal_groups"]

    label_map = get_feature_labels()
    rows = []
    for col in group_cols:
        if col not in df.columns:
            continue
        res = kruskal_wallis_test(df, value_col, col)
        rows.append({
            "group": col,
            "readable_name": label_map.get(col, col),
            "H": round(res["H"], 4),
            "dof": res["dof"],
            "p_value": res["p_value"],
            "epsilon_sq": res["epsilon_sq"],
            "n": res["n"],
        })

    return pd.DataFrame(rows).sort_values("p_value").reset_index(drop=True)


# ===================================================================
# 3. FIGURES
# ===================================================================

def plot_contingency_heatmap(table: pd.DataFrame,
                             row_var: str,
                             col_var: str,
                             save_dir: Path | None = None) -> None:
    """Row-percentage heatmap of a contingency table."""
    if save_dir is None:
        save_dir = get_output_dir("figures")

    label_map = get_feature_labels()
    row_pct = table.div(table.sum(axis=1), axis=0) * 100

    fig, ax = plt.subplots(figsize=(6, 4))
    sns.heatmap(row_pct, annot=True, fmt=".1f", cmap="Blues", ax=ax,
                cbar_kws={"label": "Row %"})
    ax.set_xlabel(label_map.get(col_var, col_var))
    ax.set_ylabel(label_map.get(row_var, row_var))
    ax.set_title(f"{label_map.get(row_var, row_var)} x {label_map.get(col_var, col_var)}",
                 fontweight="bold")
    plt.tight_layout()
    plt.savefig(save_dir / f"crosstab_{row_var}_{col_var}.png", dpi=150, bbox_inches="tight")
    plt.close()


def plot_loyalty_by_group(df: pd.DataFrame,
                          value_col: str,
                          group_col: str,
                          save_dir: Path | None = None) -> None:
    """Boxplot of the loyalty score per group level."""
    if save_dir is None:
        save_dir = get_output_dir("figures")

    label_map = get_feature_labels()
    valid = df[[value_col, group_col]].dropna()

    fig, ax = plt.subplots(figsize=(7, 4))
    sns.boxplot(data=valid, x=group_col, y=value_col, color="#4C72B0", ax=ax)
    ax.set_xlabel(label_map.get(group_col, group_col))
    ax.set_ylabel("Loyalty score")
    ax.set_title(f"Loyalty by {label_map.get(group_col, group_col)}", fontweight="bold")
    ax.grid(axis="y", alpha=0.3)
    plt.tight_layout()
    plt.savefig(save_dir / f"loyalty_by_{group_col}.png", dpi=150, bbox_inches="tight")
    plt.close()
