# ABOUTME: Converts between canonical records and pandas frames for ingestion and reporting.
# ABOUTME: Loads and validates item banks, quarantining malformed rows, and aggregates response features.

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Tuple

import pandas as pd

from .schemas import InvalidItemError, Item, ResponseEvent

logger = logging.getLogger(__name__)

ITEM_COLUMNS = ["item_id", "subject_id", "difficulty", "discrimination", "guessing", "skill_ids", "category"]
RESPONSE_COLUMNS = ["student_id", "item_id", "subject_id", "correct", "time_taken_seconds", "voluntary", "timestamp", "skill_ids"]


def load_item_bank(frame: pd.DataFrame) -> Tuple[List[Item], pd.DataFrame]:
    """
    Validate item-bank rows into Items.

    Rows that cannot be used for estimation (missing ids, non-numeric or
    out-of-range parameters) are returned in a quarantine frame with an
    ``error`` column instead of raising, so NaN never reaches theta estimation.
    Duplicate item ids keep their first occurrence.
    """
    if frame is None or frame.empty:
        return [], pd.DataFrame(columns=[*ITEM_COLUMNS, "error"])

    items: List[Item] = []
    seen = set()
    quarantined = []
    for record in frame.to_dict(orient="records"):
        record = {k: (None if _is_missing(v) else v) for k, v in record.items()}
        try:
            item = Item.from_record(record)
        except InvalidItemError as exc:
            quarantined.append({**record, "error": str(exc)})
            continue
        if item.item_id in seen:
            quarantined.append({**record, "error": f"Duplicate item_id {item.item_id}."})
            continue
        seen.add(item.item_id)
        items.append(item)

    if quarantined:
        logger.warning("Quarantined %d of %d item-bank row(s)", len(quarantined), len(frame))
    return items, pd.DataFrame(quarantined, columns=[*frame.columns, "error"])


def _is_missing(value) -> bool:
    if isinstance(value, (list, tuple, dict)):
        return False
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def items_to_frame(items: Iterable[Item]) -> pd.DataFrame:
    rows = [
        {
            "item_id": item.item_id,
            "subject_id": item.subject_id,
            "difficulty": item.difficulty,
            "discrimination": item.discrimination,
            "guessing": item.guessing,
            "skill_ids": list(item.skill_ids),
            "category": item.category,
        }
        for item in items
    ]
    return pd.DataFrame(rows, columns=ITEM_COLUMNS)


def history_to_frame(events: Iterable[ResponseEvent], student_id: Optional[str] = None) -> pd.DataFrame:
    """Flatten response events into the canonical response frame."""
    rows = [
        {
            "student_id": student_id,
            "item_id": e.item_id,
            "subject_id": e.subject_id,
            "correct": bool(e.correct),
            "time_taken_seconds": float(e.time_taken_seconds),
            "voluntary": bool(e.voluntary),
            "timestamp": e.timestamp,
            "skill_ids": list(e.skill_ids),
        }
        for e in events
    ]
    return pd.DataFrame(rows, columns=RESPONSE_COLUMNS)


def frame_to_history(frame: pd.DataFrame) -> List[ResponseEvent]:
    if frame is None or frame.empty:
        return []
    events = []
    for record in frame.to_dict(orient="records"):
        record = {k: (None if _is_missing(v) else v) for k, v in record.items()}
        if isinstance(record.get("timestamp"), pd.Timestamp):
            record["timestamp"] = record["timestamp"].to_pydatetime()
        events.append(ResponseEvent.from_dict(record))
    return events


def build_response_features(events: Iterable[ResponseEvent]) -> pd.DataFrame:
    """
    Aggregate response events into per-subject engagement features.

    One row per subject: attempt count, accuracy, average and median time,
    voluntary rate, attempts in the final 24 hours and the time span covered.
    """
    columns = [
        "subject_id",
        "total_attempts",
        "correct_rate",
        "avg_time_seconds",
        "median_time_seconds",
        "voluntary_rate",
        "attempts_last_24h",
        "first_ts",
        "last_ts",
    ]
    df = history_to_frame(events)
    if df.empty:
        return pd.DataFrame(columns=columns)

    df["time_taken_seconds"] = pd.to_numeric(df["time_taken_seconds"], errors="coerce")
    # Ensure timestamp is datetime for window calculations.
    if not pd.api.types.is_datetime64_any_dtype(df["timestamp"]):
        df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True, errors="coerce")

    grouped_rows = []
    for subject_id, subject_df in df.groupby("subject_id", sort=False):
        total_attempts = len(subject_df)
        times = subject_df["time_taken_seconds"].dropna()
        first_ts = subject_df["timestamp"].min()
        last_ts = subject_df["timestamp"].max()
        if pd.isna(last_ts):
            attempts_last_24h = total_attempts
        else:
            window_start = last_ts - pd.Timedelta(hours=24)
            attempts_last_24h = int(subject_df[subject_df["timestamp"] >= window_start].shape[0])

        grouped_rows.append(
            {
                "subject_id": subject_id,
                "total_attempts": total_attempts,
                "correct_rate": float(subject_df["correct"].mean()),
                "avg_time_seconds": float(times.mean()) if not times.empty else float("nan"),
                "median_time_seconds": float(times.median()) if not times.empty else float("nan"),
                "voluntary_rate": float(subject_df["voluntary"].mean()),
                "attempts_last_24h": attempts_last_24h,
                "first_ts": first_ts,
                "last_ts": last_ts,
            }
        )

    return pd.DataFrame(grouped_rows, columns=columns)
