"""
Evaluation Module for the Loyalty Survey
Classification metrics with optional respondent weights.
"""

import pandas as pd
import numpy as np
from sklearn.metrics import (
    roc_auc_score, accuracy_score, precision_score, recall_score, f1_score,
    balanced_accuracy_score, brier_score_loss, confusion_matrix, roc_curve,
)


def find_optimal_threshold_youden(y_true, y_prob):
    """Threshold maximizing Youden's J = TPR - FPR."""
    fpr, tpr, thresholds = roc_curve(y_true, y_prob)
    j = tpr - fpr
    best = int(np.argmax(j))
    return float(min(thresholds[best], 1.0))


def compute_all_metrics(y_true, y_prob, y_pred, weights=None, threshold_name='default'):
    """
    Compute the standard set of binary classification metrics.

    Returns:
        Dict of metric name -> value (ROC-AUC is NaN when only one class is present).
    """
    y_true = np.asarray(y_true).astype(int)
    y_pred = np.asarray(y_pred).astype(int)
    y_prob = np.asarray(y_prob, dtype=float)

    metrics = {
        'threshold': threshold_name,
        'n': int(len(y_true)),
        'prevalence': float(np.average(y_true, weights=weights)),
        'accuracy': accuracy_score(y_true, y_pred, sample_weight=weights),
        'balanced_accuracy': balanced_accuracy_score(y_true, y_pred, sample_weight=weights),
        'precision': precision_score(y_true, y_pred, sample_weight=weights, zero_division=0),
        'recall': recall_score(y_true, y_pred, sample_weight=weights, zero_division=0),
        'f1': f1_score(y_true, y_pred, sample_weight=weights, zero_division=0),
        'brier': brier_score_loss(y_true, y_prob, sample_weight=weights),
    }

    if len(np.unique(y_true)) > 1:
        metrics['roc_auc'] = roc_auc_score(y_true, y_prob, sample_weight=weights)
    else:
        metrics['roc_auc'] = np.nan

    return metrics


def confusion_table(y_true, y_pred, labels=(0, 1)) -> pd.DataFrame:
    """Confusion matrix as a labelled DataFrame (rows = true, columns = predicted)."""
    cm = confusion_matrix(np.asarray(y_true).astype(int), np.asarray(y_pred).astype(int),
                          labels=list(labels))
    return pd.DataFrame(
        cm,
        index=[f"true_{l}" for l in labels],
        columns=[f"pred_{l}" for l in labels],
    )
