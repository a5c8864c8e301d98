from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from loyalty.network import (
    RuleThresholds,
    build_rule_graph,
    edge_widths,
    filter_strong_rules,
    graph_tables,
    plot_rule_network,
)
from loyalty.transactions import Item

pytestmark = pytest.mark.unit

A, B, C, T = Item("sat_1", 3), Item("trust_1", 4), Item("com", 2), Item("loy_1", 4)

THRESHOLDS = RuleThresholds(
    require_significant=True,
    cosine=0.3,
    added_value=0.05,
    phi=0.15,
    confidence=0.25,
)


@pytest.fixture
def five_rules() -> pd.DataFrame:
    return pd.DataFrame({
        "antecedent": [frozenset({A, B}), frozenset({A, C}), frozenset({B, C}),
                       frozenset({A}), frozenset({C})],
        "consequent": [T, T, T, T, T],
        "count": [40, 12, 30, 55, 20],
        "confidence": [0.80, 0.60, 0.70, 0.50, 0.40],
        "cosine": [0.55, 0.45, 0.20, 0.35, 0.40],
        "phi": [0.40, 0.30, 0.25, 0.20, np.nan],
        "added_value": [0.30, 0.10, 0.20, 0.08, 0.06],
        "relative_added_value": [0.60, 0.20, 0.40, 0.16, 0.12],
        "significant": [True, False, True, True, True],
    })


def test_filter_strong_rules_returns_passing_rows_unmodified(five_rules) -> None:
    strong = filter_strong_rules(five_rules, THRESHOLDS)

    assert len(strong) == 2
    pd.testing.assert_frame_equal(strong, five_rules.loc[[0, 3]])


def test_filter_strong_rules_nan_never_passes(five_rules) -> None:
    loose = RuleThresholds(require_significant=False, phi=0.0)
    strong = filter_strong_rules(five_rules, loose)
    assert 4 not in strong.index


def test_filter_strong_rules_missing_column_raises(five_rules) -> None:
    with pytest.raises(ValueError, match="phi"):
        filter_strong_rules(five_rules.drop(columns="phi"), THRESHOLDS)


def test_thresholds_from_config() -> None:
    strong = RuleThresholds.from_config("strong")
    bounds = strong.bounds()

    assert strong.require_significant
    assert bounds["cosine"] == pytest.approx(0.3)
    assert bounds["phi"] == pytest.approx(0.15)
    assert "relative_added_value" not in RuleThresholds.from_config("exploratory").bounds()


def test_thresholds_unknown_scenario_raises() -> None:
    with pytest.raises(ValueError, match="Unknown filter scenario"):
        RuleThresholds.from_config("nope")


def test_build_rule_graph_one_edge_per_rule(five_rules) -> None:
    G = build_rule_graph(five_rules)

    assert G.number_of_edges() == len(five_rules)
    assert set(G.nodes) == {
        "{sat_1_3,trust_1_4}", "{com_2,sat_1_3}", "{com_2,trust_1_4}",
        "sat_1_3", "com_2", "loy_1_4",
    }
    assert G["{sat_1_3,trust_1_4}"]["loy_1_4"]["weight"] == 40
    assert G["{sat_1_3,trust_1_4}"]["loy_1_4"]["rule"] == 0
    assert G["sat_1_3"]["loy_1_4"]["weight"] == 55
    assert G["{com_2,trust_1_4}"]["loy_1_4"]["confidence"] == pytest.approx(0.70)
    assert G.out_degree("loy_1_4") == 0


def test_build_rule_graph_node_attributes(five_rules) -> None:
    G = build_rule_graph(five_rules)

    assert G.nodes["sat_1_3"]["kind"] == "item"
    assert G.nodes["sat_1_3"]["group"] == "sat_1"
    assert G.nodes["com_2"]["category"] == 2
    assert G.nodes["{sat_1_3,trust_1_4}"]["kind"] == "itemset"
    assert G.nodes["{sat_1_3,trust_1_4}"]["group"] == "sat_1+trust_1"


def test_rules_sharing_an_item_keep_separate_edges() -> None:
    a, b, c, t = Item("a", 1), Item("b", 1), Item("c", 1), Item("t", 1)
    rules = pd.DataFrame({
        "antecedent": [frozenset({a, b}), frozenset({a, c})],
        "consequent": [t, t],
        "count": [40, 12],
        "confidence": [0.8, 0.6],
    })
    G = build_rule_graph(rules)

    assert G.number_of_edges() == len(rules)
    assert G["{a_1,b_1}"]["t_1"]["weight"] == 40
    assert G["{a_1,c_1}"]["t_1"]["weight"] == 12


def test_build_rule_graph_rejects_duplicate_rules(five_rules) -> None:
    doubled = pd.concat([five_rules.iloc[:1], five_rules.iloc[:1]], ignore_index=True)
    with pytest.raises(ValueError, match="Duplicate rule"):
        build_rule_graph(doubled)


def test_build_rule_graph_is_deterministic(five_rules) -> None:
    G1 = build_rule_graph(five_rules)
    G2 = build_rule_graph(five_rules.iloc[::-1])

    assert list(G1.nodes) == list(G2.nodes)
    assert list(G1.edges) == list(G2.edges)
    assert list(G1.nodes(data="color")) == list(G2.nodes(data="color"))


def test_nodes_of_one_variable_share_a_group() -> None:
    rules = pd.DataFrame({
        "antecedent": [frozenset({Item("com", 1)}), frozenset({Item("com", 2)})],
        "consequent": [T, T],
        "count": [5, 7],
        "confidence": [0.5, 0.6],
    })
    G = build_rule_graph(rules)

    assert G.nodes["com_1"]["group"] == G.nodes["com_2"]["group"] == "com"
    assert G.nodes["com_1"]["color"] == G.nodes["com_2"]["color"]


def test_edge_widths_proportional_to_count(five_rules) -> None:
    G = build_rule_graph(five_rules)
    widths = edge_widths(G, 1.0, 10.0)

    assert widths[("sat_1_3", "loy_1_4")] == pytest.approx(10.0)
    assert widths[("{sat_1_3,trust_1_4}", "loy_1_4")] == pytest.approx(10.0 * 40 / 55)
    assert (widths[("{sat_1_3,trust_1_4}", "loy_1_4")]
            / widths[("{com_2,trust_1_4}", "loy_1_4")]) == pytest.approx(40 / 30)


def test_edge_widths_floor(five_rules) -> None:
    widths = edge_widths(build_rule_graph(five_rules), 3.0, 10.0)
    assert widths[("{com_2,sat_1_3}", "loy_1_4")] == pytest.approx(3.0)


def test_graph_tables_shapes(five_rules) -> None:
    nodes, edges = graph_tables(build_rule_graph(five_rules))

    assert len(nodes) == 6
    assert len(edges) == len(five_rules)
    assert list(edges.columns) == ["from", "to", "weight", "width", "confidence", "rule"]
    assert sorted(edges["rule"]) == [0, 1, 2, 3, 4]
    assert (edges["to"] == "loy_1_4").all()


def test_empty_rule_set_gives_empty_graph(five_rules, tmp_path) -> None:
    G = build_rule_graph(five_rules.iloc[0:0])
    assert G.number_of_nodes() == 0

    path = tmp_path / "empty.html"
    plot_rule_network(G, save_path=path)
    assert path.exists()


def test_plot_rule_network_writes_html(five_rules, tmp_path) -> None:
    path = tmp_path / "network.html"
    fig = plot_rule_network(build_rule_graph(five_rules), save_path=path)

    assert "<html" in path.read_text(encoding="utf-8")
    assert len(fig.data) >= 4
