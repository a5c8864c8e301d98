"""
Phase 1 -- Data Preparation, Chi-Squared and Kruskal-Wallis Tests
"""

import pandas as pd

from loyalty.config import cfg, SURVEY, set_global_seed, get_feature_set, get_output_dir
from loyalty.data_loading import load_survey, parse_responses, assert_survey_design, get_variable_info
from loyalty.preprocessing import (
    build_recode_tables,
    clean_dataset,
    compute_missingness_rates,
    create_loyalty_target,
    loyalty_score,
)
from loyalty.eda import (
    chi_square_test,
    all_chi_square_tests,
    all_kruskal_tests,
    pairwise_mann_whitney,
    plot_contingency_heatmap,
    plot_loyalty_by_group,
)

set_global_seed()
print("=" * 65)
print("PHASE 1 -- Data Preparation and Association Tests")
print("=" * 65)

# ---- 1. Load, parse, recode ----------------------------------------------
print("\n--- Loading data ---")
df_raw = load_survey()
df_parsed = parse_responses(df_raw)
assert_survey_design(df_parsed)

tables_dir = get_output_dir("tables")
figures_dir = get_output_dir("figures")

get_variable_info(df_parsed).to_csv(tables_dir / "variable_info.csv", index=False)

print("\n--- Recoding and cleaning ---")
recode_tables = build_recode_tables()
df = clean_dataset(df_parsed, recode_tables)

missingness = compute_missingness_rates(df, get_feature_set("all"))
missingness.to_csv(tables_dir / "missingness.csv", index=False)
print("  Highest missingness after cleaning:")
for _, row in missingness.head(5).iterrows():
    print(f"    {row['variable']:<10s} {row['pct_missing']:5.1f}%")

df[SURVEY.TARGET] = create_loyalty_target(df)
df["loyalty_score"] = loyalty_score(df)

# ---- 2. Chi-squared tests ------------------------------------------------
print("\n--- Chi-squared tests of association ---")
chi_df = all_chi_square_tests(df)
chi_df.to_csv(tables_dir / "chi_square_tests.csv", index=False)

for _, row in chi_df.iterrows():
    sig = " *" if row["p_value"] < 0.05 else ""
    print(f"  {row['readable_name']:<22s} x {row['versus']:<6s} "
          f"chi2={row['chi2']:8.2f}  df={row['dof']}  V={row['cramers_v']:.3f}{sig}")

for row_var, col_var in cfg["eda"]["chi_square_pairs"]:
    if row_var in df.columns and col_var in df.columns:
        res = chi_square_test(df, row_var, col_var)
        plot_contingency_heatmap(res["table"], row_var, col_var, save_dir=figures_dir)
print(f"  -> Contingency heatmaps saved to {figures_dir}/")

# ---- 3. Kruskal-Wallis ---------------------------------------------------
print("\n--- Kruskal-Wallis: loyalty score across groups ---")
kw_df = all_kruskal_tests(df, "loyalty_score")
kw_df.to_csv(tables_dir / "kruskal_wallis_tests.csv", index=False)

posthoc = []
for _, row in kw_df.iterrows():
    sig = " *" if row["p_value"] < 0.05 else ""
    print(f"  {row['readable_name']:<22s} H={row['H']:8.2f}  df={row['dof']}  "
          f"eps2={row['epsilon_sq']:.3f}{sig}")
    plot_loyalty_by_group(df, "loyalty_score", row["group"], save_dir=figures_dir)
    if row["p_value"] < 0.05:
        pw = pairwise_mann_whitney(df, "loyalty_score", row["group"])
        pw.insert(0, "group_col", row["group"])
        posthoc.append(pw)

if posthoc:
    pd.concat(posthoc, ignore_index=True).to_csv(tables_dir / "mann_whitney_posthoc.csv", index=False)
    print("  -> Post-hoc pairwise tests saved.")

print("\n" + "=" * 65)
print("PHASE 1 COMPLETE")
print("=" * 65)
