"""
Rule filtering and association-network construction.

Strong rules are selected with a conjunctive threshold predicate, turned into
a directed graph with one edge per rule (antecedent -> consequent item), and
rendered as an interactive HTML network.
"""

from dataclasses import dataclass, fields
from pathlib import Path

import networkx as nx
import pandas as pd
import plotly.graph_objects as go

from loyalty.config import get_filter_thresholds, get_feature_labels
from loyalty.rules import format_itemset


# ===================================================================
# 1. THRESHOLD FILTER
# ===================================================================

@dataclass(frozen=True)
class RuleThresholds:
    """Lower bounds for a strong rule. None disables a bound."""
    require_significant: bool = True
    cosine: float | None = None
    relative_added_value: float | None = None
    added_value: float | None = None
    phi: float | None = None
    confidence: float | None = None

    @classmethod
    def from_config(cls, scenario: str = "strong") -> "RuleThresholds":
        return cls(**get_filter_thresholds(scenario))

    def bounds(self) -> dict[str, float]:
        """Measure -> minimum, for the bounds that are set."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "require_significant" and getattr(self, f.name) is not None
        }


def filter_strong_rules(rules: pd.DataFrame,
                        thresholds: RuleThresholds) -> pd.DataFrame:
    """
    Keep rules that pass every bound:
    significant AND cosine >= t AND relative_added_value >= t
    AND added_value >= t AND phi >= t AND confidence >= t.

    Rows are returned unmodified (same columns, same values, original order).
    NaN measures never pass a bound.
    """
    mask = pd.Series(True, index=rules.index)

    if thresholds.require_significant:
        if "significant" not in rules.columns:
            raise ValueError("Rule table has no 'significant' column")
        mask &= rules["significant"].fillna(False).astype(bool)

    for measure, minimum in thresholds.bounds().items():
        if measure not in rules.columns:
            raise ValueError(f"Rule table has no '{measure}' column")
        mask &= rules[measure] >= minimum

    return rules[mask]


# ===================================================================
# 2. GRAPH
# ===================================================================

def _palette(n: int) -> list[str]:
    base = ["#4C72B0", "#D9534F", "#5CB85C", "#F0AD4E", "#9467BD",
            "#8C564B", "#E377C2", "#7F7F7F", "#BCBD22", "#17BECF"]
    return [base[i % len(base)] for i in range(n)]


def _side_node(items, labels: dict) -> tuple[str, dict]:
    """
    Node id and attributes for one side of a rule.

    A single item is its own node, grouped by its variable. A multi-item
    antecedent becomes one itemset node labelled '{a_1,b_2}' and grouped
    by its joined variable names.
    """
    items = sorted(items)
    if len(items) == 1:
        item = items[0]
        return item.label, {
            "kind": "item",
            "variable": item.variable,
            "category": item.category,
            "group": item.variable,
            "label": item.label,
            "title": f"{labels.get(item.variable, item.variable)} = {item.category}",
        }

    node_id = format_itemset(items)
    variables = "+".join(dict.fromkeys(i.variable for i in items))
    return node_id, {
        "kind": "itemset",
        "variable": variables,
        "category": None,
        "group": variables,
        "label": node_id,
        "title": "<br>".join(f"{labels.get(i.variable, i.variable)} = {i.category}" for i in items),
    }


def build_rule_graph(rules: pd.DataFrame) -> nx.DiGraph:
    """
    Directed rule graph from a (filtered) rule table, one edge per rule.

    Each edge runs from the antecedent node to the consequent item and
    carries `weight` (the rule's support count), `confidence` and `rule`
    (the row index). Node attributes `kind`, `variable`, `category`,
    `group`, `label`, `title` and `color` are parsed from the Items.
    """
    labels = get_feature_labels()

    order = sorted(
        range(len(rules)),
        key=lambda k: (rules["consequent"].iloc[k],
                       tuple(sorted(rules["antecedent"].iloc[k]))),
    )

    nodes, edges = {}, []
    for k in order:
        src, src_attrs = _side_node(rules["antecedent"].iloc[k], labels)
        dst, dst_attrs = _side_node([rules["consequent"].iloc[k]], labels)
        nodes[src] = src_attrs
        nodes[dst] = dst_attrs
        edges.append((src, dst, {
            "weight": int(rules["count"].iloc[k]),
            "confidence": float(rules["confidence"].iloc[k]),
            "rule": rules.index[k],
        }))

    groups = sorted({attrs["group"] for attrs in nodes.values()})
    colors = dict(zip(groups, _palette(len(groups))))

    G = nx.DiGraph()
    for node_id in sorted(nodes):
        G.add_node(node_id, **nodes[node_id], color=colors[nodes[node_id]["group"]])
    for u, v, attrs in edges:
        if G.has_edge(u, v):
            raise ValueError(f"Duplicate rule {u} -> {v}; run accumulate_rules first")
        G.add_edge(u, v, **attrs)

    return G


def edge_widths(G: nx.DiGraph, min_width: float = 1.0, max_width: float = 10.0) -> dict:
    """Edge -> display width, proportional to the support count (floored at min_width)."""
    if G.number_of_edges() == 0:
        return {}
    top = max(d["weight"] for _, _, d in G.edges(data=True))
    return {
        (u, v): max(min_width, max_width * d["weight"] / top) if top > 0 else min_width
        for u, v, d in G.edges(data=True)
    }


def graph_tables(G: nx.DiGraph) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Node and edge lists for CSV export."""
    nodes = pd.DataFrame([
        {"id": n, **d} for n, d in G.nodes(data=True)
    ], columns=["id", "kind", "variable", "category", "group", "label", "title", "color"])

    widths = edge_widths(G)
    edges = pd.DataFrame([
        {
            "from": u,
            "to": v,
            "weight": d["weight"],
            "width": round(widths[(u, v)], 3),
            "confidence": d["confidence"],
            "rule": d["rule"],
        }
        for u, v, d in G.edges(data=True)
    ], columns=["from", "to", "weight", "width", "confidence", "rule"])

    return nodes, edges


# ===================================================================
# 3. RENDERING
# ===================================================================

def plot_rule_network(G: nx.DiGraph,
                      save_path: str | Path | None = None,
                      title: str = "Association Rules Network",
                      seed: int = 42) -> go.Figure:
    """Interactive network figure; written as standalone HTML when save_path is set."""
    fig = go.Figure()

    if G.number_of_nodes() == 0:
        fig.add_annotation(text="No rules to display", xref="paper", yref="paper",
                           x=0.5, y=0.5, showarrow=False, font=dict(size=20))
    else:
        pos = nx.spring_layout(G, k=1.5, iterations=100, seed=seed)
        widths = edge_widths(G)

        for u, v, d in G.edges(data=True):
            x0, y0 = pos[u]
            x1, y1 = pos[v]
            fig.add_trace(go.Scatter(
                x=[x0, x1, None], y=[y0, y1, None], mode="lines",
                line=dict(width=widths[(u, v)], color="rgba(125,125,125,0.5)"),
                hoverinfo="text",
                text=f"{u} -> {v}<br>Count: {d['weight']}<br>Confidence: {d['confidence']:.3f}",
                showlegend=False,
            ))
            fig.add_annotation(x=x1, y=y1, ax=x0, ay=y0, xref="x", yref="y",
                               axref="x", ayref="y", showarrow=True, arrowhead=2,
                               arrowsize=1, arrowwidth=1, arrowcolor="rgba(125,125,125,0.6)",
                               text="")

        for group in sorted({d["group"] for _, d in G.nodes(data=True)}):
            members = [n for n, d in G.nodes(data=True) if d["group"] == group]
            fig.add_trace(go.Scatter(
                x=[pos[n][0] for n in members],
                y=[pos[n][1] for n in members],
                mode="markers+text",
                text=[G.nodes[n]["label"] for n in members],
                textposition="top center",
                hovertext=[G.nodes[n]["title"] for n in members],
                hoverinfo="text",
                marker=dict(size=18, color=G.nodes[members[0]]["color"],
                            line=dict(width=1, color="white")),
                name=group,
            ))

    fig.update_layout(
        title=title, hovermode="closest",
        xaxis=dict(showgrid=False, zeroline=False, showticklabels=False),
        yaxis=dict(showgrid=False, zeroline=False, showticklabels=False),
        height=700,
    )

    if save_path is not None:
        fig.write_html(str(save_path), include_plotlyjs="cdn")
        print(f"Saved network -> {save_path}")
    return fig
