"""
Phase 3 -- Latent Class Analysis
"""

import pandas as pd

from loyalty.config import SURVEY, set_global_seed, get_output_dir
from loyalty.data_loading import load_survey, parse_responses
from loyalty.preprocessing import build_recode_tables, clean_dataset, create_loyalty_target
from loyalty.latent_class import (
    prepare_lca_indicators,
    select_n_classes,
    assign_classes,
    class_profiles,
    plot_class_profiles,
)

set_global_seed()
print("=" * 65)
print("PHASE 3 -- Latent Class Analysis")
print("=" * 65)

print("\n--- Loading and cleaning ---")
df = clean_dataset(parse_responses(load_survey()), build_recode_tables())
df[SURVEY.TARGET] = create_loyalty_target(df)

X, category_maps = prepare_lca_indicators(df)
print(f"LCA sample: {len(X):,} respondents, {X.shape[1]} indicators")

tables_dir = get_output_dir("tables")

# ---- 1. Model selection ----------------------------------------------------
print("\n--- Fitting models across k ---")
fit_table, models = select_n_classes(X)
fit_table.to_csv(tables_dir / "lca_fit.csv", index=False)

best_k = int(fit_table.loc[fit_table["best"], "k"].iloc[0])
print(f"  Selected k = {best_k} (minimum BIC)")

# ---- 2. Classes and profiles -----------------------------------------------
print("\n--- Class assignment ---")
classes = assign_classes(models[best_k], X)
classes.to_csv(tables_dir / "lca_classes.csv")

sizes = classes["lca_class"].value_counts().sort_index()
for k, n in sizes.items():
    print(f"  Class {k}: {n:,} ({n / len(classes):.1%})  "
          f"mean posterior={classes.loc[classes['lca_class'] == k, 'posterior'].mean():.3f}")

profiles = class_profiles(df, classes["lca_class"])
profiles.to_csv(tables_dir / "lca_profiles.csv", index=False)
plot_class_profiles(profiles)

loyal_by_class = pd.crosstab(classes["lca_class"], df.loc[classes.index, SURVEY.TARGET],
                             normalize="index")
loyal_by_class.to_csv(tables_dir / "lca_loyalty_share.csv")
print("\n  Share loyal per class:")
for k, row in loyal_by_class.iterrows():
    print(f"    Class {k}: {row.get(1.0, 0.0):.1%}")

print("\n" + "=" * 65)
print("PHASE 3 COMPLETE")
print("=" * 65)
