"""
Phase 5 -- Random Forest Classification of Loyal Respondents
"""

import json

from loyalty.config import SURVEY, set_global_seed, get_feature_set, get_output_dir
from loyalty.data_loading import load_survey, parse_responses
from loyalty.preprocessing import build_recode_tables, clean_dataset, create_loyalty_target, prepare_features
from loyalty.modeling import (
    create_train_test_split,
    fit_random_forest,
    build_random_forest,
    evaluate_on_test,
    cv_evaluate,
    impurity_importance,
    compute_permutation_importance,
    plot_importances,
)
from loyalty.evaluation import find_optimal_threshold_youden

set_global_seed()
print("=" * 65)
print("PHASE 5 -- Random Forest Classification")
print("=" * 65)

# ---- 1. Load and prepare data -------------------------------------------
print("\n--- Loading data ---")
df = clean_dataset(parse_responses(load_survey()), build_recode_tables())
df[SURVEY.TARGET] = create_loyalty_target(df)
df = df[df[SURVEY.TARGET].notna()]

print("\n--- Preparing features (impute_indicator) ---")
df_ready, feature_names = prepare_features(df, get_feature_set("predictors"),
                                           missingness_regime="impute_indicator")
X = df_ready[feature_names]
y = df_ready[SURVEY.TARGET].astype(int)

print(f"Design matrix: {X.shape[0]} rows x {X.shape[1]} features")
print(f"Prevalence: {y.mean():.3f}")

# ---- 2. Train/test split -------------------------------------------------
print("\n--- Stratified train/test split ---")
X_train, X_test, y_train, y_test = create_train_test_split(X, y)
print(f"Train: {len(y_train):,} (prevalence {y_train.mean():.3f})")
print(f"Test:  {len(y_test):,} (prevalence {y_test.mean():.3f})")

figures_dir = get_output_dir("figures")
tables_dir = get_output_dir("tables")
reports_dir = get_output_dir("reports")

# ---- 3. Cross-validation -------------------------------------------------
print("\n--- Cross-validation on the training split ---")
cv_res = cv_evaluate(build_random_forest(), X_train, y_train, model_name="RandomForest")
print(f"  ROC-AUC {cv_res['roc_auc_mean']:.3f} +/- {cv_res['roc_auc_std']:.3f}  "
      f"BalAcc {cv_res['balanced_accuracy_mean']:.3f}  F1 {cv_res['f1_mean']:.3f}")

# ---- 4. Fit + test -------------------------------------------------------
print("\n--- Fitting random forest ---")
rf = fit_random_forest(X_train, y_train)

youden = find_optimal_threshold_youden(y_train, rf.predict_proba(X_train)[:, 1])
results = {}
for name, thr in [("default", 0.5), ("youden", youden)]:
    res = evaluate_on_test(rf, X_test, y_test, threshold=thr, model_name="RandomForest")
    res["confusion"].to_csv(tables_dir / f"rf_confusion_{name}.csv")
    res.pop("confusion")
    results[name] = res
    print(f"  [{name} @ {thr:.2f}] AUC={res['roc_auc']:.3f}  "
          f"BalAcc={res['balanced_accuracy']:.3f}  F1={res['f1']:.3f}")

with open(reports_dir / "model_metrics.json", "w", encoding="utf-8") as f:
    json.dump({"cv": cv_res, "test": results}, f, indent=2, default=float)

# ---- 5. Importances ------------------------------------------------------
print("\n--- Feature importance ---")
imp = impurity_importance(rf, feature_names)
imp.to_csv(tables_dir / "rf_impurity_importance.csv", index=False)
plot_importances(imp, "importance", name="random_forest")

perm = compute_permutation_importance(rf, X_test, y_test)
perm.to_csv(tables_dir / "rf_permutation_importance.csv", index=False)
plot_importances(perm, "importance_mean", name="random_forest")

print("  Top 5 (permutation):")
for _, row in perm.head(5).iterrows():
    print(f"    {row['rank']:>2d}. {row['feature']:<20s} {row['importance_mean']:+.4f}")

print("\n" + "=" * 65)
print("PHASE 5 COMPLETE")
print("=" * 65)
