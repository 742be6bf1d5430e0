# ABOUTME: Scores the engine's predicted correctness against observed responses.
# ABOUTME: Computes discrimination and calibration metrics overall, per subject and per probability bin.

from typing import Callable, Dict, Iterable, Mapping

import numpy as np
import pandas as pd
from sklearn.metrics import average_precision_score, brier_score_loss, roc_auc_score

CALIBRATION_COLUMNS = ["bin", "count", "mean_predicted", "observed_rate", "gap"]


def _auc(y_true: pd.Series, y_pred: pd.Series) -> float:
    # Needs both classes; a single-class slice scores 0.0.
    if y_true.nunique() < 2:
        return 0.0
    return float(roc_auc_score(y_true, y_pred))


def calibration_table(predictions: pd.DataFrame, num_bins: int = 10) -> pd.DataFrame:
    """
    Reliability diagram data: equal-width probability bins over [0, 1].

    One row per non-empty bin with the number of responses, the mean predicted
    P(correct), the observed correct rate and their absolute gap. P = 1.0
    falls in the last bin.
    """
    if predictions is None or len(predictions) == 0:
        return pd.DataFrame(columns=CALIBRATION_COLUMNS)

    frame = pd.DataFrame(
        {
            "y_true": predictions["y_true"].astype(float).to_numpy(),
            "y_pred": predictions["y_pred"].astype(float).clip(0.0, 1.0).to_numpy(),
        }
    )
    frame["bin"] = np.minimum((frame["y_pred"] * num_bins).astype(int), num_bins - 1)
    table = (
        frame.groupby("bin")
        .agg(count=("y_true", "size"), mean_predicted=("y_pred", "mean"), observed_rate=("y_true", "mean"))
        .reset_index()
    )
    table["gap"] = (table["observed_rate"] - table["mean_predicted"]).abs()
    return table[CALIBRATION_COLUMNS]


def _calibration_ece(y_true: pd.Series, y_pred: pd.Series) -> float:
    table = calibration_table(pd.DataFrame({"y_true": y_true, "y_pred": y_pred}))
    if table.empty:
        return np.nan
    return float((table["count"] * table["gap"]).sum() / table["count"].sum())


METRICS: Dict[str, Callable[[pd.Series, pd.Series], float]] = {
    "auc": _auc,
    "average_precision": lambda y, p: float(average_precision_score(y, p)),
    "calibration_ece": _calibration_ece,
    "brier": lambda y, p: float(brier_score_loss(y, p)),
}
SUPPORTED_METRICS = tuple(METRICS)


def evaluate_predictions(predictions: pd.DataFrame, metrics: Iterable[str] = SUPPORTED_METRICS) -> Mapping[str, float]:
    """
    Evaluate predicted correctness using the requested metric names.

    Parameters
    ----------
    predictions : pd.DataFrame
        Expected columns: ['y_true', 'y_pred'] where 'y_pred' is the model's
        P(correct), plus optional metadata such as 'subject_id' or 'item_id'.
    metrics : Iterable[str]
        Any of 'auc', 'average_precision', 'calibration_ece', 'brier'.
    """

    metrics = list(metrics)
    unknown = [m for m in metrics if m not in METRICS]
    if unknown:
        raise ValueError(f"Unsupported metric '{unknown[0]}'. Expected one of: {', '.join(SUPPORTED_METRICS)}.")
    if predictions is None or len(predictions) == 0:
        return {metric: np.nan for metric in metrics}

    y_true = predictions["y_true"].astype(float)
    y_pred = predictions["y_pred"].astype(float).clip(0.0, 1.0)
    return {metric: METRICS[metric](y_true, y_pred) for metric in metrics}


def evaluate_by_subject(predictions: pd.DataFrame, metrics: Iterable[str] = ("auc", "brier")) -> pd.DataFrame:
    """Metric slices per ``subject_id`` with the number of responses behind each."""
    metrics = list(metrics)
    columns = ["subject_id", "n_responses", *metrics]
    if predictions is None or len(predictions) == 0:
        return pd.DataFrame(columns=columns)

    rows = []
    for subject_id, group in predictions.groupby("subject_id", sort=True):
        rows.append({"subject_id": subject_id, "n_responses": len(group), **evaluate_predictions(group, metrics)})
    return pd.DataFrame(rows, columns=columns)
