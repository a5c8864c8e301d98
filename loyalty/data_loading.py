"""
Data loading module for the loyalty survey analysis.
CSV loading, validated code parsing, survey-design checks, and codebook tables.
"""

import pandas as pd
import numpy as np
from pathlib import Path

from loyalty.config import cfg, SURVEY, get_codebook, get_feature_labels


# === 1. LOAD DATA ===

def load_survey(data_path: str | Path | None = None,
                delimiter: str | None = None) -> pd.DataFrame:
    """
    Load the respondent-level survey file as raw text.

    Every cell is read as a string so that the conversion to numeric codes
    happens in `parse_responses`, where unexpected values fail loudly.

    Args:
        data_path: Path to the delimited file (default from config).
        delimiter: Field delimiter (default from config).

    Returns:
        DataFrame of raw strings, one row per respondent.
    """
    if data_path is None:
        from loyalty.config import PROJECT_ROOT
        data_path = PROJECT_ROOT / cfg["data"]["path"]
    if delimiter is None:
        delimiter = cfg["data"]["delimiter"]

    df = pd.read_csv(data_path, sep=delimiter, dtype=str, keep_default_na=False)

    print(f"Loaded {len(df):,} respondents, {len(df.columns)} variables")
    return df


# === 2. VALIDATED PARSE ===

def parse_responses(df: pd.DataFrame,
                    columns: list[str] | None = None,
                    id_col: str | None = None) -> pd.DataFrame:
    """
    Convert raw response strings to integer codes.

    Blank cells become NaN (native missing). Anything that is not an integer
    literal raises ValueError listing the offending column and values; no
    silent coercion to NaN.

    Args:
        df: Raw DataFrame (strings or numbers).
        columns: Question columns to parse (default: codebook variables present).
        id_col: Respondent id column, kept as-is and checked for duplicates.

    Returns:
        DataFrame with id column + float64 code columns (NaN = no answer given).
    """
    if id_col is None:
        id_col = SURVEY.ID_COL
    if columns is None:
        columns = [c for c in get_codebook() if c in df.columns]

    missing_cols = [c for c in columns if c not in df.columns]
    if missing_cols:
        raise ValueError(f"Columns not in data: {missing_cols}")

    out = pd.DataFrame(index=df.index)
    out[id_col] = df[id_col]

    for col in columns:
        raw = df[col].astype(str).str.strip()
        raw = raw.mask(raw.isin(["", "nan", "NaN", "NA"]))
        parsed = pd.to_numeric(raw, errors="coerce")

        bad = raw.notna() & (parsed.isna() | (parsed != parsed.round()))
        if bad.any():
            examples = sorted(set(raw[bad]))[:5]
            raise ValueError(
                f"Column '{col}' has {int(bad.sum())} non-integer value(s): {examples}"
            )
        out[col] = parsed.astype(float)

    return out


# === 3. SURVEY-DESIGN ASSERTIONS ===

def assert_survey_design(df: pd.DataFrame,
                         id_col: str | None = None,
                         required: list[str] | None = None) -> dict:
    """
    Run non-negotiable survey-design assertions on parsed data.
    Raises AssertionError on failure; returns summary dict.
    """
    if id_col is None:
        id_col = SURVEY.ID_COL
    if required is None:
        required = list(SURVEY.REQUIRED)

    results = {}

    assert id_col in df.columns, f"Id column '{id_col}' not in data"
    assert df[id_col].notna().all(), "Id column has missing values"
    n_dup = int(df[id_col].duplicated().sum())
    assert n_dup == 0, f"{n_dup} duplicated respondent ids"
    results["n_rows"] = len(df)

    absent = [c for c in required if c not in df.columns]
    assert not absent, f"Required columns missing: {absent}"
    results["required"] = list(required)

    codebook = get_codebook()
    missing_codes = set(SURVEY.MISSING_CODES)
    unexpected = {}
    for var, codes in codebook.items():
        if var not in df.columns:
            continue
        observed = set(df[var].dropna().astype(int).unique())
        extra = observed - set(codes) - missing_codes
        if extra:
            unexpected[var] = sorted(extra)
    assert not unexpected, f"Codes outside codebook: {unexpected}"

    print("[OK] All survey-design assertions passed")
    return results


# === 4. CODEBOOK / VARIABLE INFO ===

def get_variable_info(df: pd.DataFrame) -> pd.DataFrame:
    """Create a variable overview with labels, valid codes, and missing counts."""
    codebook = get_codebook()
    labels = get_feature_labels()
    missing_codes = list(SURVEY.MISSING_CODES)

    rows = []
    for var in df.columns:
        if var == SURVEY.ID_COL:
            continue
        vals = df[var]
        rows.append({
            "variable": var,
            "label": labels.get(var, ""),
            "valid_codes": str(codebook.get(var, "")),
            "n_valid": int((vals.notna() & ~vals.isin(missing_codes)).sum()),
            "n_no_answer": int(vals.isin(missing_codes).sum()),
            "n_blank": int(vals.isna().sum()),
            "n_unique": int(vals.nunique()),
        })

    return pd.DataFrame(rows)


# === 5. FREQUENCIES ===

def frequency_table(df: pd.DataFrame,
                    var: str,
                    weights: pd.Series | None = None,
                    exclude_codes: list[float] | None = None) -> pd.DataFrame:
    """
    Frequency distribution for one variable.

    Args:
        df: DataFrame.
        var: Variable name.
        weights: Optional respondent weights (default: all 1).
        exclude_codes: Codes dropped from the denominator (default: sentinel codes).

    Returns:
        DataFrame with value, n, pct (weighted if weights given).
    """
    if exclude_codes is None:
        exclude_codes = list(SURVEY.MISSING_CODES)
    if weights is None:
        weights = pd.Series(1.0, index=df.index)

    mask = df[var].notna() & ~df[var].isin(exclude_codes)
    valid = df.loc[mask, var]
    w = weights[mask]
    total = w.sum()

    rows = []
    for value in sorted(valid.unique()):
        in_val = valid == value
        rows.append({
            "value": value,
            "n": int(in_val.sum()),
            "pct": round(float(w[in_val].sum() / total * 100), 1) if total > 0 else np.nan,
        })

    return pd.DataFrame(rows, columns=["value", "n", "pct"])
