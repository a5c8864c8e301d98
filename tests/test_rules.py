from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from loyalty.config import cfg
from loyalty.rules import (
    DERIVED,
    MEASURES,
    EmptyRuleSetError,
    accumulate_rules,
    add_derived_metrics,
    interest_measures,
    mine_grouped,
    mine_per_target,
    mine_rules,
    modified_cosine,
    relative_risk,
    rules_to_frame,
    save_rules,
)
from loyalty.transactions import Item

pytestmark = pytest.mark.unit

A, B, C, T = Item("a", 1), Item("b", 1), Item("c", 1), Item("t", 1)


# ---- derived metrics ------------------------------------------------------

def test_relative_risk_undefined_when_confidence_equals_doc() -> None:
    assert np.isnan(relative_risk(0.4, 0.4))


def test_relative_risk_value() -> None:
    assert relative_risk(0.6, 0.3) == pytest.approx(2.0)


def test_modified_cosine_value() -> None:
    assert modified_cosine(0.5, 0.2, 0.05) == pytest.approx(0.5 - np.sqrt(0.15))
    assert modified_cosine(0.5, 0.2, 0.05) == pytest.approx(0.1127, abs=1e-4)


def test_modified_cosine_negative_radicand_is_undefined() -> None:
    assert np.isnan(modified_cosine(0.5, 0.1, 0.2))


def test_undefined_relrisk_is_exported_as_marker(tmp_path) -> None:
    rules = pd.DataFrame({
        "antecedent": [frozenset({A, B})],
        "consequent": [T],
        "support": [0.2],
        "confidence": [0.4],
        "leverage": [0.05],
        "cosine": [0.5],
        "doc": [0.4],
    })
    derived = add_derived_metrics(rules)
    assert np.isnan(derived.loc[0, "relrisk"])
    assert derived.loc[0, "modcos"] == pytest.approx(0.5 - np.sqrt(0.15))

    path = save_rules(derived, tmp_path / "rules.csv")
    saved = pd.read_csv(path, keep_default_na=False)
    assert saved.loc[0, "relrisk"] == "undefined"
    assert saved.loc[0, "modcos"] != "undefined"


# ---- mining ---------------------------------------------------------------

def test_mine_rules_restricts_consequent_and_antecedent_length(planted_transactions) -> None:
    rules = mine_rules(planted_transactions, [T], 2, min_support=0.05, min_confidence=0.25)

    assert len(rules) == 1
    assert rules.loc[0, "antecedent"] == frozenset({A, B})
    assert rules.loc[0, "consequent"] == T
    assert list(rules.columns) == ["antecedent", "consequent", *MEASURES, *DERIVED]


def test_mine_rules_measures_from_counts(planted_transactions) -> None:
    rule = mine_rules(planted_transactions, [T], 2, min_support=0.05,
                      min_confidence=0.25).iloc[0]

    assert rule["count"] == 40
    assert rule["support"] == pytest.approx(0.4)
    assert rule["confidence"] == pytest.approx(1.0)
    assert rule["lift"] == pytest.approx(1 / 0.6)
    assert rule["leverage"] == pytest.approx(0.16)
    assert rule["cosine"] == pytest.approx(40 / np.sqrt(40 * 60))
    assert rule["phi"] == pytest.approx(2 / 3)
    assert rule["added_value"] == pytest.approx(0.4)
    assert rule["relative_added_value"] == pytest.approx(0.4 / 0.6)
    assert rule["doc"] == pytest.approx(2 / 3)
    assert rule["relrisk"] == pytest.approx(3.0)
    assert rule["modcos"] == pytest.approx(40 / np.sqrt(2400) - np.sqrt(0.24))
    assert bool(rule["significant"])
    assert rule["fishers_p"] < 0.01


def test_mine_rules_single_item_antecedents(planted_transactions) -> None:
    rules = mine_rules(planted_transactions, [T], 1, min_support=0.05, min_confidence=0.25)

    assert all(len(a) == 1 for a in rules["antecedent"])
    assert set(rules["consequent"]) == {T}
    assert {next(iter(a)) for a in rules["antecedent"]} == {A, B, C}


def test_mine_rules_no_frequent_itemsets_raises(planted_transactions) -> None:
    with pytest.raises(EmptyRuleSetError):
        mine_rules(planted_transactions, [T], 2, min_support=0.9, min_confidence=0.25)


def test_mine_rules_absent_consequent_raises(planted_transactions) -> None:
    with pytest.raises(EmptyRuleSetError, match="not in transaction table"):
        mine_rules(planted_transactions, [Item("zz", 1)], 2, min_support=0.05)


def test_mine_per_target_skip_continues(planted_transactions, capsys) -> None:
    rules = mine_per_target(planted_transactions, [Item("zz", 1), T], 2,
                            on_empty="skip", min_support=0.05, min_confidence=0.25)

    assert set(rules["consequent"]) == {T}
    assert "[SKIP] zz_1" in capsys.readouterr().out


def test_mine_per_target_raise_propagates(planted_transactions) -> None:
    with pytest.raises(EmptyRuleSetError):
        mine_per_target(planted_transactions, [Item("zz", 1), T], 2,
                        on_empty="raise", min_support=0.05)


def test_mine_grouped_allows_every_target(planted_transactions) -> None:
    rules = mine_grouped(planted_transactions, [T, A], 2, min_support=0.05, min_confidence=0.25)

    assert set(rules["consequent"]) <= {T, A}
    assert all(len(a) == 2 for a in rules["antecedent"])
    assert (frozenset({B, T}), A) in set(zip(rules["antecedent"], rules["consequent"]))


# ---- measures / accumulation / export -------------------------------------

def test_interest_measures_drops_zero_count_rules(planted_transactions) -> None:
    rules = pd.DataFrame({
        "antecedent": [frozenset({A, C}), frozenset({A, B})],
        "consequent": [T, T],
    })
    with pytest.warns(UserWarning, match="zero support"):
        out = interest_measures(rules, planted_transactions)

    assert len(out) == 1
    assert out.loc[0, "antecedent"] == frozenset({A, B})


def test_interest_measures_drops_zero_count_without_count_column(planted_transactions) -> None:
    rules = pd.DataFrame({
        "antecedent": [frozenset({A, C}), frozenset({A, B})],
        "consequent": [T, T],
    })
    with pytest.warns(UserWarning, match="zero support"):
        out = interest_measures(rules, planted_transactions, measures=("support", "confidence"))

    assert list(out.columns) == ["antecedent", "consequent", "support", "confidence"]
    assert len(out) == 1
    assert out.loc[0, "support"] == pytest.approx(0.4)


def test_interest_measures_alpha_defaults_to_config(planted_transactions, monkeypatch) -> None:
    rules = pd.DataFrame({"antecedent": [frozenset({A, B})], "consequent": [T]})
    assert bool(interest_measures(rules, planted_transactions).loc[0, "significant"])

    monkeypatch.setitem(cfg["rules"], "significance_level", 0.0)
    assert not interest_measures(rules, planted_transactions).loc[0, "significant"]


def test_interest_measures_rejects_unknown_measure(planted_transactions) -> None:
    rules = pd.DataFrame({"antecedent": [frozenset({A})], "consequent": [T]})
    with pytest.raises(ValueError, match="Unknown measure"):
        interest_measures(rules, planted_transactions, measures=("support", "gini"))


def test_accumulate_rules_deduplicates_and_labels(planted_transactions) -> None:
    kw = dict(min_support=0.05, min_confidence=0.25)
    first = mine_rules(planted_transactions, [T], 2, **kw)
    second = mine_grouped(planted_transactions, [T, A], 2, **kw)

    combined = accumulate_rules([first, second], labels=["pairwise", "grouped"])
    keys = list(zip(combined["antecedent"], combined["consequent"]))

    assert len(keys) == len(set(keys))
    assert combined.loc[0, "pass"] == "pairwise"
    assert (combined["pass"] == "grouped").sum() == len(second) - 1


def test_accumulate_rules_label_mismatch_raises(planted_transactions) -> None:
    with pytest.raises(ValueError, match="labels"):
        accumulate_rules([pd.DataFrame()], labels=["a", "b"])


def test_save_rules_writes_undefined_marker(tmp_path) -> None:
    rules = pd.DataFrame({
        "antecedent": [frozenset({B, A})],
        "consequent": [T],
        "confidence": [0.4],
        "relrisk": [np.nan],
    })
    path = save_rules(rules, tmp_path / "rules.csv")

    text = path.read_text(encoding="utf-8")
    assert "undefined" in text
    assert "{a_1,b_1}" in text
    assert rules_to_frame(rules).loc[0, "rhs"] == "{t_1}"
