"""
Transaction encoding for association-rule mining.

Turns a cleaned wide survey table (one column per question) into a boolean
transaction table: one row per respondent, one column per observed
(variable, category) pair.
"""

from dataclasses import dataclass

import pandas as pd

from loyalty.config import SURVEY


@dataclass(frozen=True, order=True)
class Item:
    """One response value: question `variable` answered with `category`."""
    variable: str
    category: int

    @property
    def label(self) -> str:
        """Display label, e.g. Item('loy_1', 4) -> 'loy_1_4'."""
        return f"{self.variable}_{self.category}"

    @classmethod
    def from_label(cls, label: str) -> "Item":
        """Inverse of `label`. The category is the part after the last underscore."""
        variable, sep, category = str(label).rpartition("_")
        if not sep or not variable:
            raise ValueError(f"Label '{label}' is not of the form <variable>_<category>")
        try:
            return cls(variable, int(category))
        except ValueError:
            raise ValueError(f"Label '{label}' has a non-integer category '{category}'") from None

    def __str__(self) -> str:
        return self.label


def to_long(df: pd.DataFrame,
            id_col: str | None = None,
            variables: list[str] | None = None) -> pd.DataFrame:
    """
    Wide -> long: one row per respondent x variable with an answer.

    Returns:
        DataFrame with columns [id_col, "variable", "category"] (category int).
    """
    if id_col is None:
        id_col = SURVEY.ID_COL
    if variables is None:
        variables = [c for c in df.columns if c != id_col]

    long = df.melt(id_vars=[id_col], value_vars=variables,
                   var_name="variable", value_name="category")
    long = long.dropna(subset=["category"])
    fractional = long["category"].astype(float) % 1 != 0
    if fractional.any():
        bad = long.loc[fractional, ["variable", "category"]].drop_duplicates()
        raise ValueError(f"Non-integer categories cannot be encoded: {bad.to_numpy().tolist()}")
    long["category"] = long["category"].astype(int)
    return long.reset_index(drop=True)


def drop_degenerate_columns(table: pd.DataFrame, verbose: bool = True) -> pd.DataFrame:
    """Drop columns that are all-True or all-False; they carry no rule information."""
    n_true = table.sum(axis=0)
    constant = (n_true == 0) | (n_true == len(table))
    if verbose and constant.any():
        dropped = [str(c) for c in table.columns[constant]]
        print(f"Dropped {len(dropped)} constant transaction column(s): {dropped}")
    return table.loc[:, ~constant]


def encode_transactions(df: pd.DataFrame,
                        id_col: str | None = None,
                        variables: list[str] | None = None,
                        verbose: bool = True) -> pd.DataFrame:
    """
    Build the one-hot transaction table.

    Pipeline: wide -> long (respondent, variable, category) -> one boolean
    column per Item -> wide keyed by respondent id -> constant columns dropped.

    Rows are sorted by id; columns by (position of the variable in
    `variables`, category). Running it twice on the same input gives the
    same table.

    Args:
        df: Cleaned DataFrame with integer-valued codes (NaN = missing).
        id_col: Respondent id column (default from config).
        variables: Question columns to encode (default: all but the id).
        verbose: Print shape and dropped columns.

    Returns:
        Boolean DataFrame indexed by id with Item column labels.
    """
    if id_col is None:
        id_col = SURVEY.ID_COL
    if variables is None:
        variables = [c for c in df.columns if c != id_col]
    if df[id_col].duplicated().any():
        raise ValueError(f"Duplicated ids in '{id_col}'; transactions need one row per respondent")

    long = to_long(df, id_col, variables)
    long["item"] = [Item(v, c) for v, c in zip(long["variable"], long["category"])]

    position = {var: i for i, var in enumerate(variables)}
    items = sorted(set(long["item"]), key=lambda it: (position[it.variable], it.category))
    ids = sorted(df[id_col].unique())

    counts = pd.crosstab(long[id_col], long["item"])
    table = (counts > 0).reindex(index=ids, columns=items, fill_value=False).astype(bool)
    table.index.name = id_col
    table.columns.name = None

    table = drop_degenerate_columns(table, verbose=verbose)

    if verbose:
        print(f"Transaction table: {table.shape[0]:,} respondents x {table.shape[1]} items")
    return table


def item_counts(table: pd.DataFrame) -> pd.DataFrame:
    """Support count and share per item column."""
    n = len(table)
    counts = table.sum(axis=0)
    return pd.DataFrame({
        "item": [c.label for c in table.columns],
        "variable": [c.variable for c in table.columns],
        "category": [c.category for c in table.columns],
        "count": counts.values.astype(int),
        "support": (counts.values / n) if n else 0.0,
    })
