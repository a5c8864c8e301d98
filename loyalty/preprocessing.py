"""
Preprocessing module for the loyalty survey analysis.
Recode tables, category merging, required-column cleaning, and missing-data handling.
"""

import pandas as pd
import numpy as np

from loyalty.config import cfg, SURVEY, get_codebook, get_merges


class RecodeError(ValueError):
    """Raised when a raw code has no entry in its variable's recode table."""


# === 1. RECODE TABLES ===

def build_recode_tables(codebook: dict[str, list[int]] | None = None,
                        merges: dict[str, dict[int, int | None]] | None = None,
                        missing_codes: list[int] | None = None) -> dict[str, dict]:
    """
    Build one total recode table per variable.

    Variables with an explicit merge use it; the rest get an identity table
    over their codebook scale. Sentinel codes always map to None (missing).

    Args:
        codebook: variable -> valid raw codes (default from config).
        merges: variable -> {raw: merged or None} (default from config).
        missing_codes: Sentinel "no answer" codes (default from config).

    Returns:
        Dict variable -> {raw code: merged code or None}.
    """
    if codebook is None:
        codebook = get_codebook()
    if merges is None:
        merges = get_merges()
    if missing_codes is None:
        missing_codes = list(SURVEY.MISSING_CODES)

    tables = {}
    for var, codes in codebook.items():
        if var in merges:
            table = dict(merges[var])
            uncovered = set(codes) - set(table)
            if uncovered:
                raise RecodeError(
                    f"Merge table for '{var}' does not cover codes {sorted(uncovered)}"
                )
        else:
            table = {code: code for code in codes}
        for code in missing_codes:
            table.setdefault(code, None)
        tables[var] = table

    return tables


# === 2. RECODING ===

def recode_variable(values: pd.Series, table: dict) -> pd.Series:
    """
    Map raw codes through a recode table.

    NaN stays NaN; codes mapped to None become NaN. A code absent from the
    table raises RecodeError instead of silently turning into missing.
    """
    observed = values.dropna()
    unknown = sorted(set(observed.astype(float).tolist()) - {float(k) for k in table})
    if unknown:
        raise RecodeError(
            f"Variable '{values.name}' has unmapped code(s) {unknown}; "
            f"table covers {sorted(table)}"
        )

    mapping = {float(k): (np.nan if v is None else float(v)) for k, v in table.items()}
    return values.map(mapping).astype(float)


def apply_recode_tables(df: pd.DataFrame, tables: dict[str, dict]) -> pd.DataFrame:
    """Recode every variable that has a table; other columns pass through (copy)."""
    df_out = df.copy()
    for var, table in tables.items():
        if var in df_out.columns:
            df_out[var] = recode_variable(df_out[var], table)
    return df_out


# === 3. CLEANED DATASET ===

def listwise_delete(df: pd.DataFrame, required: list[str]) -> pd.DataFrame:
    """Drop rows with a missing value in any required column."""
    return df.dropna(subset=[c for c in required if c in df.columns])


def clean_dataset(df: pd.DataFrame,
                  tables: dict[str, dict] | None = None,
                  required: list[str] | None = None,
                  verbose: bool = True) -> pd.DataFrame:
    """
    Recode, then drop respondents missing any required column.

    Optional columns keep NaN as the explicit missing marker so that
    downstream estimators can choose their own handling.

    Args:
        df: Parsed DataFrame (integer codes as float, NaN = blank).
        tables: Recode tables (default: build_recode_tables()).
        required: Columns that must be complete (default from config).
        verbose: Print the row flow.

    Returns:
        Cleaned DataFrame (new object; input untouched).
    """
    if tables is None:
        tables = build_recode_tables()
    if required is None:
        required = list(SURVEY.REQUIRED)

    absent = [c for c in required if c not in df.columns]
    if absent:
        raise ValueError(f"Required columns not in data: {absent}")

    recoded = apply_recode_tables(df, tables)
    cleaned = listwise_delete(recoded, required)

    if verbose:
        print(f"Starting rows: {len(df):,}")
        print(f"After required-column filter: {len(cleaned):,} "
              f"({len(df) - len(cleaned):,} dropped)")

    return cleaned


# === 4. MISSING INDICATOR COLUMNS ===

def add_missing_indicators(df: pd.DataFrame,
                           features: list[str]) -> pd.DataFrame:
    """
    Add binary {feature}_missing indicators.
    Call AFTER recoding but BEFORE imputation.
    """
    df_out = df.copy()
    for col in features:
        if col in df_out.columns and df_out[col].isna().any():
            df_out[f"{col}_missing"] = df_out[col].isna().astype(int)
    return df_out


# === 5. SIMPLE IMPUTATION ===

def simple_impute(df: pd.DataFrame,
                  features: list[str],
                  strategy: str = "mean") -> pd.DataFrame:
    """
    Fill missing values per column.

    Args:
        df: DataFrame.
        features: Columns to fill.
        strategy: "mean" (ordinal codes treated as interval) or "mode".

    Returns:
        Imputed DataFrame (copy).
    """
    if strategy not in ("mean", "mode"):
        raise ValueError(f"Unknown strategy '{strategy}'. Use: mean, mode.")

    df_out = df.copy()
    for col in features:
        if col not in df_out.columns or not df_out[col].isna().any():
            continue

        if strategy == "mean":
            fill_val = df_out[col].mean()
        else:
            modes = df_out[col].mode()
            fill_val = modes.iloc[0] if len(modes) > 0 else 0
        df_out[col] = df_out[col].fillna(fill_val)

    return df_out


def prepare_features(df: pd.DataFrame,
                     features: list[str],
                     missingness_regime: str = "impute_indicator",
                     strategy: str = "mean") -> tuple[pd.DataFrame, list[str]]:
    """
    Apply a missingness regime to the feature columns of a cleaned dataset.

    Returns:
        (df_ready, feature_names) where feature_names include indicator columns.
    """
    available = [f for f in features if f in df.columns]

    if missingness_regime == "listwise":
        df_ready = listwise_delete(df, available)
    elif missingness_regime == "impute_indicator":
        df_ready = add_missing_indicators(df, available)
        indicator_cols = [f"{c}_missing" for c in available if f"{c}_missing" in df_ready.columns]
        df_ready = simple_impute(df_ready, available, strategy=strategy)
        available = available + indicator_cols
    else:
        raise ValueError(f"Unknown regime '{missingness_regime}'.")

    return df_ready, available


# === 6. MISSINGNESS SUMMARY ===

def compute_missingness_rates(df: pd.DataFrame,
                              features: list[str]) -> pd.DataFrame:
    """Per-variable share of missing values, sorted descending."""
    rows = []
    n_total = len(df)
    for col in features:
        if col not in df.columns:
            continue
        n_miss = int(df[col].isna().sum())
        rows.append({
            "variable": col,
            "n_total": n_total,
            "n_missing": n_miss,
            "pct_missing": round(n_miss / n_total * 100, 2) if n_total else np.nan,
        })

    return pd.DataFrame(rows).sort_values("pct_missing", ascending=False)


# === 7. TARGET VARIABLE ===

def loyalty_score(df: pd.DataFrame, items: list[str] | None = None) -> pd.Series:
    """Mean of the loyalty indicator items per respondent."""
    if items is None:
        items = cfg["target"]["items"]
    return df[items].mean(axis=1)


def create_loyalty_target(df: pd.DataFrame,
                          items: list[str] | None = None,
                          threshold: float | None = None) -> pd.Series:
    """
    Binary loyal flag: 1 if the mean loyalty score >= threshold, else 0.
    Rows missing every loyalty item get NaN.
    """
    if threshold is None:
        threshold = cfg["target"]["threshold"]

    score = loyalty_score(df, items)
    y = (score >= threshold).astype(float).where(score.notna())

    n_pos = int((y == 1).sum())
    n_neg = int((y == 0).sum())
    print(f"Loyalty target: 1={n_pos:,}  0={n_neg:,}  NaN={int(y.isna().sum()):,}")
    return y.rename(cfg["target"]["column"])
