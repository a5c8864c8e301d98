"""
Association-rule mining on the transaction table.

Frequent itemsets come from mlxtend's apriori; rules are restricted to a
fixed antecedent length and a chosen set of consequent items. Interestingness
measures are recomputed from transaction counts with an explicit measure list,
then two derived metrics (relrisk, modcos) are added.
"""

import warnings
from pathlib import Path

import numpy as np
import pandas as pd
from mlxtend.frequent_patterns import apriori, association_rules
from scipy.stats import fisher_exact

from loyalty.config import cfg
from loyalty.transactions import Item


MEASURES = (
    "count",
    "support",
    "confidence",
    "lift",
    "leverage",
    "cosine",
    "phi",
    "added_value",
    "relative_added_value",
    "doc",
    "fishers_p",
    "significant",
)

DERIVED = ("relrisk", "modcos")

UNDEFINED = "undefined"


class EmptyRuleSetError(ValueError):
    """Raised when mining produces no frequent itemsets or no matching rules."""


# ===================================================================
# 1. MINING
# ===================================================================

def frequent_itemsets(transactions: pd.DataFrame,
                      min_support: float,
                      max_len: int) -> pd.DataFrame:
    """Run apriori; raise EmptyRuleSetError if nothing reaches min_support."""
    if transactions.shape[1] == 0:
        raise EmptyRuleSetError("Transaction table has no item columns")

    itemsets = apriori(transactions, min_support=min_support,
                       use_colnames=True, max_len=max_len)
    if len(itemsets) == 0:
        raise EmptyRuleSetError(f"No frequent itemsets at min_support={min_support}")
    return itemsets


def mine_rules(transactions: pd.DataFrame,
               consequents: list[Item],
               antecedent_len: int,
               min_support: float | None = None,
               min_confidence: float | None = None,
               significance_level: float | None = None,
               adjust: str = "none") -> pd.DataFrame:
    """
    Mine rules `antecedent -> consequent` for the given consequent items.

    Args:
        transactions: Boolean table from `encode_transactions`.
        consequents: Allowed right-hand-side items (one or a small group).
        antecedent_len: Exact number of items on the left-hand side.
        min_support: Minimum rule support (default from config).
        min_confidence: Minimum rule confidence (default from config).
        significance_level: Alpha for the Fisher-test flag (default from config).
        adjust: "none" or "bonferroni" p-value adjustment for the flag.

    Returns:
        DataFrame with antecedent (frozenset of Item), consequent (Item),
        the MEASURES columns and the DERIVED columns.

    Raises:
        EmptyRuleSetError: no itemsets or no rule matches the restrictions.
    """
    rule_cfg = cfg["rules"]
    if min_support is None:
        min_support = rule_cfg["min_support"]
    if min_confidence is None:
        min_confidence = rule_cfg["min_confidence"]
    if significance_level is None:
        significance_level = rule_cfg["significance_level"]
    if antecedent_len < 1:
        raise ValueError("antecedent_len must be >= 1")

    targets = set(consequents)
    absent = [t.label for t in targets if t not in transactions.columns]
    if absent:
        raise EmptyRuleSetError(f"Consequent item(s) not in transaction table: {absent}")

    itemsets = frequent_itemsets(transactions, min_support, max_len=antecedent_len + 1)
    if not (itemsets["itemsets"].apply(len) == antecedent_len + 1).any():
        raise EmptyRuleSetError(
            f"No frequent {antecedent_len + 1}-itemsets at min_support={min_support}"
        )

    raw = association_rules(itemsets, num_itemsets=len(transactions),
                            metric="confidence", min_threshold=min_confidence)

    keep = (
        (raw["consequents"].apply(len) == 1)
        & raw["consequents"].apply(lambda s: next(iter(s)) in targets)
        & (raw["antecedents"].apply(len) == antecedent_len)
    )
    raw = raw[keep]
    if len(raw) == 0:
        raise EmptyRuleSetError(
            f"No rules with {antecedent_len}-item antecedent for "
            f"{sorted(t.label for t in targets)} "
            f"(min_support={min_support}, min_confidence={min_confidence})"
        )

    rules = pd.DataFrame({
        "antecedent": raw["antecedents"].tolist(),
        "consequent": [next(iter(s)) for s in raw["consequents"]],
    })
    rules = interest_measures(rules, transactions,
                              significance_level=significance_level, adjust=adjust)
    rules = add_derived_metrics(rules)

    rules["_order"] = [_rule_key(a, c) for a, c in zip(rules["antecedent"], rules["consequent"])]
    rules = rules.sort_values("_order").drop(columns="_order").reset_index(drop=True)
    return rules


def _rule_key(antecedent, consequent) -> tuple:
    return (consequent.variable, consequent.category,
            tuple(sorted((i.variable, i.category) for i in antecedent)))


# ===================================================================
# 2. INTERESTINGNESS MEASURES
# ===================================================================

def interest_measures(rules: pd.DataFrame,
                      transactions: pd.DataFrame,
                      measures: tuple = MEASURES,
                      significance_level: float | None = None,
                      adjust: str = "none") -> pd.DataFrame:
    """
    Compute the explicit measure list for each rule from transaction counts.

    With n transactions, nX antecedent count, nY consequent count and nXY
    joint count:

        support = nXY/n                confidence = nXY/nX
        lift = confidence/(nY/n)       leverage = nXY/n - (nX/n)(nY/n)
        cosine = nXY/sqrt(nX*nY)       phi = (n*nXY - nX*nY)/sqrt(nX*nY*(n-nX)*(n-nY))
        added_value = confidence - nY/n
        relative_added_value = added_value/(nY/n)
        doc = confidence - (nY-nXY)/(n-nX)
        fishers_p = one-sided Fisher exact test on the 2x2 table
        significant = fishers_p (adjusted) < significance_level

    Undefined values (zero denominators) are NaN. Rules with nXY == 0
    are dropped whichever measures are requested. significance_level
    defaults to the configured value.
    """
    if significance_level is None:
        significance_level = cfg["rules"]["significance_level"]
    unknown = [m for m in measures if m not in MEASURES]
    if unknown:
        raise ValueError(f"Unknown measure(s) {unknown}. Choose from: {list(MEASURES)}.")
    if adjust not in ("none", "bonferroni"):
        raise ValueError(f"Unknown adjust '{adjust}'. Use: none, bonferroni.")

    arr = transactions.to_numpy(dtype=bool)
    col_idx = {item: j for j, item in enumerate(transactions.columns)}
    n = float(arr.shape[0])

    n_x, n_y, n_xy = [], [], []
    for antecedent, consequent in zip(rules["antecedent"], rules["consequent"]):
        x_mask = arr[:, [col_idx[i] for i in antecedent]].all(axis=1)
        y_mask = arr[:, col_idx[consequent]]
        n_x.append(x_mask.sum())
        n_y.append(y_mask.sum())
        n_xy.append((x_mask & y_mask).sum())
    n_x = np.asarray(n_x, dtype=float)
    n_y = np.asarray(n_y, dtype=float)
    n_xy = np.asarray(n_xy, dtype=float)

    with np.errstate(divide="ignore", invalid="ignore"):
        p_y = n_y / n
        support = n_xy / n
        confidence = n_xy / n_x
        values = {
            "count": n_xy.astype(int),
            "support": support,
            "confidence": confidence,
            "lift": confidence / p_y,
            "leverage": support - (n_x / n) * p_y,
            "cosine": n_xy / np.sqrt(n_x * n_y),
            "phi": (n * n_xy - n_x * n_y) / np.sqrt(n_x * n_y * (n - n_x) * (n - n_y)),
            "added_value": confidence - p_y,
            "relative_added_value": (confidence - p_y) / p_y,
            "doc": confidence - (n_y - n_xy) / (n - n_x),
        }

    if "fishers_p" in measures or "significant" in measures:
        p_vals = np.array([
            fisher_exact([[int(xy), int(x - xy)], [int(y - xy), int(n - x - y + xy)]],
                         alternative="greater")[1]
            for x, y, xy in zip(n_x, n_y, n_xy)
        ], dtype=float)
        values["fishers_p"] = p_vals
        p_adj = np.minimum(p_vals * len(p_vals), 1.0) if adjust == "bonferroni" else p_vals
        values["significant"] = p_adj < significance_level

    out = rules[["antecedent", "consequent"]].copy()
    for m in measures:
        v = values[m]
        if m not in ("count", "significant"):
            v = np.where(np.isfinite(v), v, np.nan)
        out[m] = v

    observed = n_xy > 0
    n_zero = int((~observed).sum())
    if n_zero:
        warnings.warn(f"Discarding {n_zero} rule(s) with zero support count.")
    out = out[observed]

    return out.reset_index(drop=True)


def relative_risk(confidence, doc):
    """
    relrisk = confidence / (confidence - doc); NaN where confidence == doc.

    With doc = P(Y|X) - P(Y|not X) this is P(Y|X) / P(Y|not X). It is kept
    as an approximation of relative risk, not a verified estimator.
    """
    confidence = np.asarray(confidence, dtype=float)
    doc = np.asarray(doc, dtype=float)
    denom = confidence - doc
    undefined = np.isclose(denom, 0.0) | np.isnan(denom)
    with np.errstate(divide="ignore", invalid="ignore"):
        rr = np.where(undefined, np.nan, confidence / np.where(undefined, 1.0, denom))
    return rr


def modified_cosine(cosine, support, leverage):
    """modcos = cosine - sqrt(support - leverage); NaN if the radicand is negative."""
    cosine = np.asarray(cosine, dtype=float)
    radicand = np.asarray(support, dtype=float) - np.asarray(leverage, dtype=float)
    with np.errstate(invalid="ignore"):
        return np.where(radicand >= 0, cosine - np.sqrt(np.clip(radicand, 0, None)), np.nan)


def add_derived_metrics(rules: pd.DataFrame) -> pd.DataFrame:
    """Append relrisk and modcos columns (copy)."""
    out = rules.copy()
    out["relrisk"] = relative_risk(out["confidence"], out["doc"])
    out["modcos"] = modified_cosine(out["cosine"], out["support"], out["leverage"])
    return out


# ===================================================================
# 3. PASSES AND ACCUMULATION
# ===================================================================

def mine_per_target(transactions: pd.DataFrame,
                    targets: list[Item],
                    antecedent_len: int,
                    on_empty: str = "raise",
                    **kwargs) -> pd.DataFrame:
    """
    One mining pass per target item; results are accumulated.

    Args:
        on_empty: "raise" propagates EmptyRuleSetError; "skip" prints the
            target and continues.
        **kwargs: Passed to mine_rules.
    """
    if on_empty not in ("raise", "skip"):
        raise ValueError(f"Unknown on_empty '{on_empty}'. Use: raise, skip.")

    frames = []
    for target in targets:
        try:
            frames.append(mine_rules(transactions, [target], antecedent_len, **kwargs))
        except EmptyRuleSetError as e:
            if on_empty == "raise":
                raise
            print(f"  [SKIP] {target.label}: {e}")

    if not frames:
        raise EmptyRuleSetError(f"No rules for any target {[t.label for t in targets]}")
    return accumulate_rules(frames)


def mine_grouped(transactions: pd.DataFrame,
                 targets: list[Item],
                 antecedent_len: int,
                 **kwargs) -> pd.DataFrame:
    """Single mining pass with the whole target group as allowed consequents."""
    return mine_rules(transactions, list(targets), antecedent_len, **kwargs)


def accumulate_rules(frames: list[pd.DataFrame],
                     labels: list[str] | None = None) -> pd.DataFrame:
    """
    Concatenate rule tables; duplicates (same antecedent and consequent) keep
    the first occurrence. `labels` adds a `pass` column naming each source.
    """
    if labels is not None:
        if len(labels) != len(frames):
            raise ValueError("labels must match frames one-to-one")
        frames = [f.assign(**{"pass": lab}) for f, lab in zip(frames, labels)]

    frames = [f for f in frames if len(f)]
    if not frames:
        return pd.DataFrame(columns=["antecedent", "consequent", *MEASURES, *DERIVED])

    combined = pd.concat(frames, ignore_index=True)
    keys = [(frozenset(a), c) for a, c in zip(combined["antecedent"], combined["consequent"])]
    combined = combined[~pd.Series(keys).duplicated().values]
    return combined.reset_index(drop=True)


# ===================================================================
# 4. EXPORT
# ===================================================================

def format_itemset(items) -> str:
    """Render an itemset as '{a_1,b_2}' with labels sorted."""
    return "{" + ",".join(sorted(i.label for i in items)) + "}"


def rules_to_frame(rules: pd.DataFrame) -> pd.DataFrame:
    """Replace Item objects by their labels (lhs/rhs strings) for export."""
    out = rules.copy()
    out.insert(0, "lhs", [format_itemset(a) for a in out["antecedent"]])
    out.insert(1, "rhs", ["{" + c.label + "}" for c in out["consequent"]])
    return out.drop(columns=["antecedent", "consequent"])


def save_rules(rules: pd.DataFrame, path: str | Path) -> Path:
    """Write rules to CSV; undefined metric values are written as 'undefined'."""
    path = Path(path)
    rules_to_frame(rules).to_csv(path, index=False, na_rep=UNDEFINED)
    print(f"Saved {len(rules):,} rules -> {path}")
    return path
