"""
Modeling module for the loyalty survey.

Random forest classification of loyal vs. non-loyal respondents:
stratified split, cross-validation, test evaluation, and feature importance.
"""

import numpy as np
import pandas as pd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from pathlib import Path
from sklearn.ensemble import RandomForestClassifier
from sklearn.inspection import permutation_importance
from sklearn.model_selection import StratifiedKFold, cross_validate, train_test_split

from loyalty.config import cfg, get_feature_labels, get_output_dir
from loyalty.evaluation import compute_all_metrics, confusion_table


# ===================================================================
# 1. SPLITS
# ===================================================================

def create_train_test_split(X, y,
                            test_size: float | None = None,
                            random_state: int | None = None):
    """Stratified train/test split respecting config."""
    if test_size is None:
        test_size = cfg["modeling"]["test_size"]
    if random_state is None:
        random_state = cfg["modeling"]["random_seed"]

    return train_test_split(
        X, y,
        test_size=test_size,
        random_state=random_state,
        stratify=y,
    )


def create_cv_folds(n_splits: int | None = None,
                    random_state: int | None = None) -> StratifiedKFold:
    """Stratified K-fold cross-validation."""
    if n_splits is None:
        n_splits = cfg["modeling"]["cv_folds"]
    if random_state is None:
        random_state = cfg["modeling"]["random_seed"]

    return StratifiedKFold(n_splits=n_splits, shuffle=True, random_state=random_state)


# ===================================================================
# 2. RANDOM FOREST
# ===================================================================

def build_random_forest(seed: int | None = None, **overrides) -> RandomForestClassifier:
    """RandomForestClassifier with hyperparameters from config (overridable)."""
    if seed is None:
        seed = cfg["modeling"]["random_seed"]

    params = dict(cfg["modeling"]["random_forest"])
    params.update(overrides)
    params.setdefault("n_jobs", cfg["modeling"]["n_jobs"])

    return RandomForestClassifier(random_state=seed, **params)


def fit_random_forest(X_train, y_train, seed: int | None = None, **overrides) -> RandomForestClassifier:
    """Fit a random forest on the training split."""
    model = build_random_forest(seed=seed, **overrides)
    model.fit(X_train, y_train)
    return model


def evaluate_on_test(model, X_test, y_test, threshold: float = 0.5,
                     model_name: str = "Model") -> dict:
    """Test-set metrics at a fixed probability threshold."""
    y_prob = model.predict_proba(X_test)[:, 1]
    y_pred = (y_prob >= threshold).astype(int)

    metrics = compute_all_metrics(y_test, y_prob, y_pred, threshold_name=f"{threshold:.2f}")
    metrics["model"] = model_name
    metrics["confusion"] = confusion_table(y_test, y_pred)
    return metrics


def cv_evaluate(model, X, y, cv=None, model_name: str = "Model") -> dict:
    """
    Cross-validated ROC-AUC, balanced accuracy and F1.

    Returns:
        Dict with mean and std per metric.
    """
    if cv is None:
        cv = create_cv_folds()

    scores = cross_validate(
        model, X, y, cv=cv,
        scoring=["roc_auc", "balanced_accuracy", "f1"],
    )

    result = {"model": model_name, "n_folds": cv.get_n_splits()}
    for metric in ["roc_auc", "balanced_accuracy", "f1"]:
        vals = scores[f"test_{metric}"]
        result[f"{metric}_mean"] = round(float(np.mean(vals)), 4)
        result[f"{metric}_std"] = round(float(np.std(vals)), 4)
    return result


# ===================================================================
# 3. FEATURE IMPORTANCE
# ===================================================================

def impurity_importance(model, feature_names: list[str]) -> pd.DataFrame:
    """Mean decrease in impurity, sorted descending."""
    df = pd.DataFrame({
        "feature": feature_names,
        "importance": model.feature_importances_,
    }).sort_values("importance", ascending=False)
    df["rank"] = range(1, len(df) + 1)
    return df.reset_index(drop=True)


def compute_permutation_importance(model, X, y, n_repeats=10, random_state=42):
    """Drop in ROC-AUC when each feature is permuted."""
    perm_imp = permutation_importance(
        model, X, y,
        n_repeats=n_repeats,
        random_state=random_state,
        scoring='roc_auc'
    )

    importance_df = pd.DataFrame({
        'feature': X.columns if hasattr(X, 'columns') else [f'X{i}' for i in range(X.shape[1])],
        'importance_mean': perm_imp.importances_mean,
        'importance_std': perm_imp.importances_std
    }).sort_values('importance_mean', ascending=False)

    importance_df['rank'] = range(1, len(importance_df) + 1)

    return importance_df.reset_index(drop=True)


# ===================================================================
# 4. FIGURES
# ===================================================================

def plot_importances(
    imp_df: pd.DataFrame,
    value_col: str = "importance",
    top_n: int = 20,
    save_dir: Path | None = None,
    name: str = "random_forest",
) -> None:
    """Horizontal bar chart of the top feature importances."""
    if save_dir is None:
        save_dir = get_output_dir("figures")

    label_map = get_feature_labels()
    df = imp_df.head(top_n).sort_values(value_col, ascending=True)

    fig, ax = plt.subplots(figsize=(8, max(4, len(df) * 0.35)))
    ax.barh(range(len(df)), df[value_col].values, color="#4C72B0", edgecolor="white")
    ax.set_yticks(range(len(df)))
    ax.set_yticklabels([label_map.get(f, f) for f in df["feature"]], fontsize=8)
    ax.set_xlabel(value_col.replace("_", " ").capitalize())
    ax.set_title(f"Feature Importance: {name}", fontweight="bold")
    ax.grid(axis="x", alpha=0.3)
    plt.tight_layout()
    plt.savefig(save_dir / f"importance_{name}_{value_col}.png", dpi=150, bbox_inches="tight")
    plt.close()
