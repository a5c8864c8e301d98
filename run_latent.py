"""
Phase 2 -- Path Model of Loyalty Predictors (measurement + structural)
"""

from loyalty.config import cfg, set_global_seed, get_output_dir
from loyalty.data_loading import load_survey, parse_responses
from loyalty.preprocessing import build_recode_tables, clean_dataset, simple_impute
from loyalty.latent import (
    get_construct_blocks,
    get_structural_paths,
    fit_path_model,
    measurement_table,
    bootstrap_paths,
    plot_path_coefficients,
)

set_global_seed()
print("=" * 65)
print("PHASE 2 -- Path Model of Loyalty Predictors")
print("=" * 65)

# ---- 1. Data ---------------------------------------------------------------
print("\n--- Loading and cleaning ---")
df = clean_dataset(parse_responses(load_survey()), build_recode_tables())

blocks = get_construct_blocks()
paths = get_structural_paths()
indicators = [c for cols in blocks.values() for c in cols]

# Mean imputation for optional indicators; loyalty items are complete by construction
df_sem = simple_impute(df[indicators], indicators, strategy="mean")
print(f"Path-model sample: {len(df_sem):,} respondents, {len(indicators)} indicators")

tables_dir = get_output_dir("tables")

# ---- 2. Measurement + structural model -------------------------------------
print("\n--- Fitting measurement and structural model ---")
result = fit_path_model(df_sem, blocks, paths)

mt = measurement_table(result)
mt.to_csv(tables_dir / "measurement_model.csv", index=False)
for name, fit in result["blocks"].items():
    print(f"  {name:<13s} alpha={fit['cronbach_alpha']:.3f}  "
          f"rho_c={fit['composite_reliability']:.3f}  AVE={fit['ave']:.3f}")
    if fit["ave"] < 0.5:
        print(f"    [WARN] AVE < 0.50 for '{name}'")

for target, r2 in result["r_squared"].items():
    print(f"  R^2({target}) = {r2:.3f}")

# ---- 3. Bootstrap ----------------------------------------------------------
n_boot = cfg["sem"]["n_bootstrap"]
print(f"\n--- Bootstrapping path coefficients ({n_boot} replicates) ---")
boot = bootstrap_paths(df_sem, blocks, paths)
boot.to_csv(tables_dir / "path_coefficients.csv", index=False)

for _, row in boot.iterrows():
    flag = " *" if row["significant"] else ""
    print(f"  {row['source']:>13s} -> {row['target']:<10s} "
          f"b={row['coef']:+.3f}  CI=[{row['ci_lower']:+.3f}, {row['ci_upper']:+.3f}]{flag}")

plot_path_coefficients(boot)
print("  -> Path coefficient figure saved.")

print("\n" + "=" * 65)
print("PHASE 2 COMPLETE")
print("=" * 65)
