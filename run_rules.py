"""
Phase 4 -- Association Rules and Loyalty Network
"""

from loyalty.config import cfg, SURVEY, set_global_seed, get_codebook, get_rule_targets, get_output_dir
from loyalty.data_loading import load_survey, parse_responses
from loyalty.preprocessing import build_recode_tables, clean_dataset
from loyalty.transactions import Item, encode_transactions, item_counts
from loyalty.rules import (
    EmptyRuleSetError,
    mine_per_target,
    mine_grouped,
    accumulate_rules,
    save_rules,
)
from loyalty.network import (
    RuleThresholds,
    filter_strong_rules,
    build_rule_graph,
    graph_tables,
    plot_rule_network,
)

set_global_seed()
print("=" * 65)
print("PHASE 4 -- Association Rules and Loyalty Network")
print("=" * 65)

# ---- 1. Transactions -----------------------------------------------------
print("\n--- Loading, cleaning, encoding ---")
df = clean_dataset(parse_responses(load_survey()), build_recode_tables())

variables = cfg["rules"]["variables"] or [v for v in get_codebook() if v in df.columns]
transactions = encode_transactions(df, SURVEY.ID_COL, variables)

tables_dir = get_output_dir("tables")
figures_dir = get_output_dir("figures")

counts = item_counts(transactions)
counts.to_csv(tables_dir / "item_counts.csv", index=False)

targets = [Item(var, cat) for var, cat in get_rule_targets()]
print(f"Targets: {', '.join(t.label for t in targets)}")

# ---- 2. Mining passes ----------------------------------------------------
frames, labels = [], []
for pass_name, pass_cfg in cfg["rules"]["passes"].items():
    k = pass_cfg["antecedent_len"]
    print(f"\n--- Pass '{pass_name}': {k}-item antecedents "
          f"({'grouped' if pass_cfg['grouped'] else 'per target'}) ---")
    try:
        if pass_cfg["grouped"]:
            rules = mine_grouped(transactions, targets, k)
        else:
            rules = mine_per_target(transactions, targets, k, on_empty="skip")
    except EmptyRuleSetError as e:
        print(f"  [WARN] Pass '{pass_name}' produced no rules: {e}")
        continue
    print(f"  {len(rules):,} rules "
          f"({int(rules['significant'].sum()):,} significant)")
    frames.append(rules)
    labels.append(pass_name)

if not frames:
    raise EmptyRuleSetError("No mining pass produced rules; lower min_support or min_confidence")

all_rules = accumulate_rules(frames, labels)
save_rules(all_rules, tables_dir / "rules_all.csv")

# ---- 3. Filters + network ------------------------------------------------
for scenario in cfg["filters"]:
    thresholds = RuleThresholds.from_config(scenario)
    strong = filter_strong_rules(all_rules, thresholds)
    print(f"\n--- Filter '{scenario}': {len(strong):,} of {len(all_rules):,} rules ---")
    save_rules(strong, tables_dir / f"rules_{scenario}.csv")

    G = build_rule_graph(strong)
    nodes, edges = graph_tables(G)
    nodes.to_csv(tables_dir / f"network_{scenario}_nodes.csv", index=False)
    edges.to_csv(tables_dir / f"network_{scenario}_edges.csv", index=False)
    print(f"  Network: {G.number_of_nodes()} nodes, {G.number_of_edges()} edges")

    plot_rule_network(G, save_path=figures_dir / f"rules_network_{scenario}.html",
                      title=f"Loyalty Association Network ({scenario})")

print("\n" + "=" * 65)
print("PHASE 4 COMPLETE")
print("=" * 65)
