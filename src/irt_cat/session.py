# ABOUTME: Drives a multi-subject adaptive test as immutable session values.
# ABOUTME: Selects items round-robin, records responses, applies stopping rules and supports resume.

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from src.bkt.tracker import BktParams, skills_from_history
from src.common.config import EngineConfig, StoppingConfig, engine_config_from_dict, validate_question_bounds
from src.common.schemas import AbilityState, Item, ResponseEvent, SkillState, clamp

from .estimation import update_ability_estimate
from .selection import choose_next, selection_rng, unused_items

logger = logging.getLogger(__name__)

EXHAUSTED_ITEM_POOL = "exhausted_item_pool"
MAX_QUESTIONS_REACHED = "max_questions_reached"
SUFFICIENT_CONFIDENCE = "sufficient_confidence"
ALL_SUBJECTS_COMPLETE = "all_subjects_complete"
TIME_LIMIT_REACHED = "time_limit_reached"


class SessionPhase(str, Enum):
    INITIALIZING = "initializing"
    SELECTING = "selecting"
    AWAITING_RESPONSE = "awaiting_response"
    UPDATING = "updating"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class SubjectState:
    """Per-subject progress inside a session."""

    subject_id: str
    min_questions: int
    max_questions: int
    answered: int = 0
    correct: int = 0
    ability: AbilityState = field(default_factory=AbilityState)
    skills: Mapping[str, SkillState] = field(default_factory=dict)
    accuracy: float = 0.0
    standard_error: float = 1.0
    confidence: float = 0.0
    is_complete: bool = False
    completion_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "min_questions": self.min_questions,
            "max_questions": self.max_questions,
            "answered": self.answered,
            "correct": self.correct,
            "ability": self.ability.to_dict(),
            "skills": {k: v.to_dict() for k, v in self.skills.items()},
            "accuracy": self.accuracy,
            "standard_error": self.standard_error,
            "confidence": self.confidence,
            "is_complete": self.is_complete,
            "completion_reason": self.completion_reason,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SubjectState":
        return cls(
            subject_id=str(data["subject_id"]),
            min_questions=int(data["min_questions"]),
            max_questions=int(data["max_questions"]),
            answered=int(data.get("answered", 0)),
            correct=int(data.get("correct", 0)),
            ability=AbilityState.from_dict(data.get("ability") or {}),
            skills={k: SkillState.from_dict(v) for k, v in (data.get("skills") or {}).items()},
            accuracy=float(data.get("accuracy", 0.0)),
            standard_error=float(data.get("standard_error", 1.0)),
            confidence=float(data.get("confidence", 0.0)),
            is_complete=bool(data.get("is_complete", False)),
            completion_reason=data.get("completion_reason"),
        )


@dataclass(frozen=True)
class SessionComplete:
    """Terminal marker returned by ``select_next_item``."""

    reason: str
    abilities: Mapping[str, AbilityState] = field(default_factory=dict)


@dataclass(frozen=True)
class SessionState:
    """
    Complete, serializable state of one running test.

    Every operation returns a new value; callers thread it forward. The
    response ``history`` is the source of truth: ability and skill states are
    recomputed from it, and ``rebuild_session`` can replay it from scratch.
    """

    subject_ids: Tuple[str, ...]
    subjects: Mapping[str, SubjectState]
    config: EngineConfig = field(default_factory=EngineConfig)
    phase: SessionPhase = SessionPhase.INITIALIZING
    used_item_ids: Tuple[str, ...] = ()
    history: Tuple[Tuple[ResponseEvent, Item], ...] = ()
    pending_item: Optional[Item] = None
    cursor: int = 0
    step: int = 0
    seed: int = 0
    grade: Optional[int] = None
    discovery: bool = False
    time_limit_seconds: Optional[float] = None
    remaining_time_seconds: Optional[float] = None
    paused: bool = False
    completion_reason: Optional[str] = None

    @property
    def is_terminated(self) -> bool:
        return self.phase is SessionPhase.TERMINATED

    def subject_history(self, subject_id: str) -> List[Tuple[ResponseEvent, Item]]:
        return [(event, item) for event, item in self.history if event.subject_id == subject_id]

    def abilities(self) -> Dict[str, AbilityState]:
        return {sid: self.subjects[sid].ability for sid in self.subject_ids}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_ids": list(self.subject_ids),
            "subjects": {sid: s.to_dict() for sid, s in self.subjects.items()},
            "config": self.config.to_dict(),
            "phase": self.phase.value,
            "used_item_ids": list(self.used_item_ids),
            "history": [{"event": e.to_dict(), "item": i.to_dict()} for e, i in self.history],
            "pending_item": None if self.pending_item is None else self.pending_item.to_dict(),
            "cursor": self.cursor,
            "step": self.step,
            "seed": self.seed,
            "grade": self.grade,
            "discovery": self.discovery,
            "time_limit_seconds": self.time_limit_seconds,
            "remaining_time_seconds": self.remaining_time_seconds,
            "paused": self.paused,
            "completion_reason": self.completion_reason,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SessionState":
        pending = data.get("pending_item")
        return cls(
            subject_ids=tuple(data["subject_ids"]),
            subjects={sid: SubjectState.from_dict(s) for sid, s in data["subjects"].items()},
            config=engine_config_from_dict(data.get("config")),
            phase=SessionPhase(data.get("phase", SessionPhase.SELECTING.value)),
            used_item_ids=tuple(data.get("used_item_ids", ())),
            history=tuple(
                (ResponseEvent.from_dict(h["event"]), Item.from_dict(h["item"])) for h in data.get("history", ())
            ),
            pending_item=None if pending is None else Item.from_dict(pending),
            cursor=int(data.get("cursor", 0)),
            step=int(data.get("step", 0)),
            seed=int(data.get("seed", 0)),
            grade=data.get("grade"),
            discovery=bool(data.get("discovery", False)),
            time_limit_seconds=data.get("time_limit_seconds"),
            remaining_time_seconds=data.get("remaining_time_seconds"),
            paused=bool(data.get("paused", False)),
            completion_reason=data.get("completion_reason"),
        )


def binomial_stats(correct: int, answered: int) -> Tuple[float, float, float]:
    """
    Accuracy (%), binomial standard error and confidence for a subject.

    se = sqrt(p (1 - p) / n), confidence = round(100 (1 - 2 se)) clamped to [0, 100].
    """
    n = max(0, answered)
    if n == 0:
        return 0.0, 1.0, 0.0
    p = clamp(correct / n, 0.0, 1.0)
    se = math.sqrt(p * (1.0 - p) / max(1, n))
    confidence = clamp(float(round(100.0 * (1.0 - 2.0 * se))), 0.0, 100.0)
    return p * 100.0, se, confidence


def should_stop(answered: int, correct: int, min_questions: int, max_questions: int, stopping: StoppingConfig) -> Tuple[bool, Optional[str]]:
    """Never stop before ``min_questions``; always stop at ``max_questions``."""
    if answered >= max_questions:
        return True, MAX_QUESTIONS_REACHED
    if answered < min_questions:
        return False, None
    _, se, confidence = binomial_stats(correct, answered)
    if confidence >= stopping.confidence_stop_at or se <= stopping.se_stop_at:
        return True, SUFFICIENT_CONFIDENCE
    return False, None


def start_session(
    subject_ids: Sequence[str],
    config: Optional[EngineConfig] = None,
    grade: Optional[int] = None,
    discovery: bool = False,
    seed: int = 0,
    time_limit_seconds: Optional[float] = None,
) -> SessionState:
    """Create a fresh session; question bounds come from ``config.stopping``."""
    config = config or EngineConfig()
    subject_ids = tuple(dict.fromkeys(str(s) for s in subject_ids))
    if not subject_ids:
        raise ValueError("A session needs at least one subject.")
    stopping = config.stopping
    validate_question_bounds(stopping.min_questions, stopping.max_questions)
    if time_limit_seconds is not None and time_limit_seconds <= 0:
        raise ValueError(f"time_limit_seconds must be positive, got {time_limit_seconds}.")

    subjects = {
        sid: SubjectState(subject_id=sid, min_questions=stopping.min_questions, max_questions=stopping.max_questions)
        for sid in subject_ids
    }
    logger.info("Starting session over %d subject(s) (seed=%d, discovery=%s)", len(subject_ids), seed, discovery)
    return SessionState(
        subject_ids=subject_ids,
        subjects=subjects,
        config=config,
        phase=SessionPhase.SELECTING,
        seed=seed,
        grade=grade,
        discovery=discovery,
        time_limit_seconds=time_limit_seconds,
        remaining_time_seconds=time_limit_seconds,
    )


def _terminate(session: SessionState, reason: str) -> SessionState:
    logger.info("Session terminated: %s", reason)
    return replace(session, phase=SessionPhase.TERMINATED, pending_item=None, completion_reason=reason)


def _with_subject(session: SessionState, subject: SubjectState) -> SessionState:
    subjects = dict(session.subjects)
    subjects[subject.subject_id] = subject
    return replace(session, subjects=subjects)


def _complete(session: SessionState) -> SessionComplete:
    return SessionComplete(reason=session.completion_reason or ALL_SUBJECTS_COMPLETE, abilities=session.abilities())


def select_next_item(session: SessionState, pool: Iterable[Item]) -> Tuple[SessionState, Union[Item, SessionComplete]]:
    """
    Serve the next item, or SessionComplete once every subject is done.

    The selected id is appended to ``used_item_ids`` in the returned state
    before the item is handed out. Calling again while a response is pending
    returns the same item unchanged, so UI retries never consume the pool.
    """
    if session.paused:
        raise ValueError("Cannot select an item while the session is paused; resume it first.")
    if session.is_terminated:
        return session, _complete(session)
    if session.phase is SessionPhase.AWAITING_RESPONSE and session.pending_item is not None:
        return session, session.pending_item
    if session.remaining_time_seconds is not None and session.remaining_time_seconds <= 0:
        session = _terminate(session, TIME_LIMIT_REACHED)
        return session, _complete(session)

    pool = list(pool)
    n = len(session.subject_ids)
    for offset in range(n):
        index = (session.cursor + offset) % n
        sid = session.subject_ids[index]
        subject = session.subjects[sid]
        if subject.is_complete:
            continue

        available = unused_items((i for i in pool if i.subject_id == sid), session.used_item_ids)
        if not available:
            logger.info("Item pool exhausted for subject %s after %d answer(s)", sid, subject.answered)
            session = _with_subject(
                session, replace(subject, is_complete=True, completion_reason=EXHAUSTED_ITEM_POOL)
            )
            continue

        rng = selection_rng(session.seed, session.step)
        item = choose_next(
            subject.ability.theta,
            available,
            subject.answered,
            session.config.selection,
            rng,
            discovery=session.discovery,
        )
        session = replace(
            session,
            used_item_ids=session.used_item_ids + (item.item_id,),
            pending_item=item,
            phase=SessionPhase.AWAITING_RESPONSE,
            cursor=(index + 1) % n,
            step=session.step + 1,
        )
        logger.debug("Selected item %s for subject %s (theta=%.3f)", item.item_id, sid, subject.ability.theta)
        return session, item

    session = _terminate(session, ALL_SUBJECTS_COMPLETE)
    return session, _complete(session)


def _sanitize_seconds(value: Any) -> float:
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return 0.0
    return seconds if math.isfinite(seconds) and seconds > 0 else 0.0


def _apply_response(session: SessionState, event: ResponseEvent, item: Item) -> SessionState:
    subject = session.subjects[event.subject_id]
    history = session.history + ((event, item),)
    session = replace(session, history=history, phase=SessionPhase.UPDATING, pending_item=None)

    subject_history = session.subject_history(event.subject_id)
    ability = update_ability_estimate(subject_history, session.config.irt, session.grade)
    skills = skills_from_history((e for e, _ in subject_history), BktParams.from_config(session.config.bkt))

    answered = subject.answered + 1
    correct = subject.correct + (1 if event.correct else 0)
    accuracy, se, confidence = binomial_stats(correct, answered)
    done, reason = should_stop(answered, correct, subject.min_questions, subject.max_questions, session.config.stopping)

    session = _with_subject(
        session,
        replace(
            subject,
            answered=answered,
            correct=correct,
            ability=ability,
            skills=skills,
            accuracy=accuracy,
            standard_error=se,
            confidence=confidence,
            is_complete=subject.is_complete or done,
            completion_reason=subject.completion_reason or reason,
        ),
    )
    if done:
        logger.info("Subject %s complete after %d answer(s): %s", event.subject_id, answered, reason)

    if session.remaining_time_seconds is not None:
        session = replace(session, remaining_time_seconds=max(0.0, session.remaining_time_seconds - event.time_taken_seconds))
        if session.remaining_time_seconds <= 0:
            return _terminate(session, TIME_LIMIT_REACHED)
    if all(s.is_complete for s in session.subjects.values()):
        return _terminate(session, ALL_SUBJECTS_COMPLETE)
    return replace(session, phase=SessionPhase.SELECTING)


def record_response(
    session: SessionState,
    item: Item,
    correct: bool,
    time_taken_seconds: float,
    voluntary: bool = False,
    timestamp: Optional[datetime] = None,
) -> SessionState:
    """
    Record the answer to the pending item and return the updated session.

    Recomputes the subject's ability and skill states from history, then
    applies the stopping rule. Answering anything but the pending item raises.
    """
    if session.paused:
        raise ValueError("Cannot record a response while the session is paused; resume it first.")
    if session.phase is not SessionPhase.AWAITING_RESPONSE or session.pending_item is None:
        raise ValueError("No item is awaiting a response.")
    if item.item_id != session.pending_item.item_id:
        raise ValueError(f"Item {item.item_id} is not the pending item {session.pending_item.item_id}.")

    event = ResponseEvent(
        item_id=item.item_id,
        subject_id=item.subject_id,
        correct=bool(correct),
        time_taken_seconds=_sanitize_seconds(time_taken_seconds),
        voluntary=bool(voluntary),
        timestamp=timestamp,
        skill_ids=item.skill_ids,
    )
    return _apply_response(session, event, session.pending_item)


def pause_session(session: SessionState, remaining_time_seconds: Optional[float] = None) -> SessionState:
    """Freeze a session; the pending item (if any) is served again after resume."""
    if session.is_terminated:
        raise ValueError("Cannot pause a terminated session.")
    remaining = session.remaining_time_seconds if remaining_time_seconds is None else max(0.0, float(remaining_time_seconds))
    logger.info("Session paused with %s second(s) remaining", remaining)
    return replace(session, paused=True, remaining_time_seconds=remaining)


def resume_session(data: Union[SessionState, Mapping[str, Any]]) -> SessionState:
    """Resume from a live value or from the dict produced by ``SessionState.to_dict``."""
    session = data if isinstance(data, SessionState) else SessionState.from_dict(data)
    return replace(session, paused=False)


def rebuild_session(
    subject_ids: Sequence[str],
    history: Sequence[Tuple[ResponseEvent, Item]],
    config: Optional[EngineConfig] = None,
    grade: Optional[int] = None,
    discovery: bool = False,
    seed: int = 0,
    time_limit_seconds: Optional[float] = None,
) -> SessionState:
    """
    Reconstruct a session by replaying its response history.

    Only the append-only history is needed: used items, counters, ability and
    skill states are all re-derived from it.
    """
    session = start_session(subject_ids, config, grade, discovery, seed, time_limit_seconds)
    for event, item in history:
        if event.subject_id not in session.subjects:
            raise ValueError(f"Response for unknown subject {event.subject_id}.")
        if event.item_id in session.used_item_ids:
            raise ValueError(f"Item {event.item_id} appears twice in the history.")
        if session.is_terminated:
            raise ValueError(f"Response for item {event.item_id} was recorded after the session ended ({session.completion_reason}).")
        if session.subjects[event.subject_id].is_complete:
            raise ValueError(f"Response for item {event.item_id} was recorded after subject {event.subject_id} completed.")
        index = session.subject_ids.index(event.subject_id)
        session = replace(
            session,
            used_item_ids=session.used_item_ids + (event.item_id,),
            cursor=(index + 1) % len(session.subject_ids),
            step=session.step + 1,
        )
        session = _apply_response(session, event, item)
    return session


def session_statistics(session: SessionState) -> Dict[str, Any]:
    """Summary of a (usually finished) session, overall and per subject."""

    def summarize(pairs: Sequence[Tuple[ResponseEvent, Item]]) -> Dict[str, Any]:
        n = len(pairs)
        correct = sum(1 for e, _ in pairs if e.correct)
        total_time = sum(e.time_taken_seconds for e, _ in pairs)
        return {
            "questions_answered": n,
            "correct_count": correct,
            "incorrect_count": n - correct,
            "accuracy": correct / n * 100.0 if n else 0.0,
            "total_time_seconds": total_time,
            "avg_time_per_question": total_time / n if n else 0.0,
            "avg_difficulty": sum(i.difficulty for _, i in pairs) / n if n else 0.0,
        }

    per_subject = {}
    for sid in session.subject_ids:
        subject = session.subjects[sid]
        stats = summarize(session.subject_history(sid))
        stats.update(
            {
                "theta": subject.ability.theta,
                "standard_error": subject.ability.standard_error,
                "ability_confidence": subject.ability.confidence,
                "stopping_confidence": subject.confidence,
                "is_complete": subject.is_complete,
                "completion_reason": subject.completion_reason,
            }
        )
        per_subject[sid] = stats

    overall = summarize(session.history)
    overall.update(
        {
            "phase": session.phase.value,
            "completion_reason": session.completion_reason,
            "subjects": per_subject,
        }
    )
    return overall
