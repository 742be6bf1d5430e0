# ABOUTME: Ranks subjects and degrees for a student from ability, interest and potential.
# ABOUTME: Applies interest filtering, category diversification and localized reasoning tables.

from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterable, List, Mapping, Optional

from src.irt_cat.estimation import theta_to_percentage

from .bandit import SubjectBandit, SubjectSignals, calculate_learning_potential
from .config import RecommendationConfig
from .interest import INTEREST_REASONS, interest_reason_key
from .schemas import AbilityState, InterestProfile, SubjectScore, clamp

logger = logging.getLogger(__name__)

FIT_REASONS: Dict[str, Dict[str, str]] = {
    "strength_and_passion": {
        "en": "You excel in this subject and show strong passion for it",
        "ar": "أنت متفوق في هذا الموضوع وتظهر شغفًا قويًا به",
        "he": "אתה מצטיין בנושא זה ומראה תשוקה חזקה אליו",
    },
    "high_potential": {
        "en": "You have exceptional potential for growth in this area",
        "ar": "لديك إمكانات استثنائية للنمو في هذا المجال",
        "he": "יש לך פוטנציאל יוצא דופן לצמיחה בתחום זה",
    },
    "strong_interest": {
        "en": "Your strong interest makes this an ideal learning path",
        "ar": "اهتمامك القوي يجعل هذا مسارًا مثاليًا للتعلم",
        "he": "העניין החזק שלך הופך את זה למסלול למידה אידיאלי",
    },
    "natural_talent": {
        "en": "You demonstrate natural ability in this subject",
        "ar": "تظهر قدرة طبيعية في هذا الموضوع",
        "he": "אתה מפגין יכולת טבעית בנושא זה",
    },
    "growth_opportunity": {
        "en": "Great opportunity to develop your skills and interest",
        "ar": "فرصة رائعة لتطوير مهاراتك واهتمامك",
        "he": "הזדמנות מצוינת לפתח את הכישורים והעניין שלך",
    },
    "balanced_fit": {
        "en": "This subject aligns well with your profile",
        "ar": "هذا الموضوع يتماشى بشكل جيد مع ملفك الشخصي",
        "he": "נושא זה מתאים היטב לפרופיל שלך",
    },
}


def fit_type(ability_score: float, interest_score: float, potential_score: float) -> str:
    if ability_score >= 70 and interest_score >= 70:
        return "strength_and_passion"
    if potential_score >= 75:
        return "high_potential"
    if interest_score >= 70:
        return "strong_interest"
    if ability_score >= 70:
        return "natural_talent"
    if interest_score >= 50 and potential_score >= 60:
        return "growth_opportunity"
    return "balanced_fit"


def _reasoning(kind: str, profile: Optional[InterestProfile]) -> Dict[str, str]:
    reasoning = {"type": kind, **FIT_REASONS[kind]}
    if profile is not None and profile.has_data:
        key = interest_reason_key(profile.interest_score, profile.accuracy, profile.avg_time_per_question)
        reasoning["interest_reason"] = key
        reasoning.update({f"interest_{lang}": text for lang, text in INTEREST_REASONS[key].items()})
    return reasoning


def _ability_available(state: Optional[AbilityState]) -> bool:
    return state is not None and state.n_responses > 0 and math.isfinite(state.theta)


def _potential_value(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    value = float(value)
    return clamp(value, 0.0, 100.0) if math.isfinite(value) else None


def diversify(scores: List[SubjectScore], limit: int) -> List[SubjectScore]:
    """
    Cap each category at ceil(limit / 3) in a first pass, then backfill.

    Backfilling keeps the list full when there are too few categories, so the
    cap only reorders which subjects make the cut.
    """
    cap = max(1, math.ceil(limit / 3))
    picked: List[SubjectScore] = []
    skipped: List[SubjectScore] = []
    counts: Dict[str, int] = {}
    for score in scores:
        if len(picked) >= limit:
            break
        if counts.get(score.category, 0) < cap:
            picked.append(score)
            counts[score.category] = counts.get(score.category, 0) + 1
        else:
            skipped.append(score)
    for score in skipped:
        if len(picked) >= limit:
            break
        picked.append(score)
    return picked


def recommend(
    abilities: Mapping[str, AbilityState],
    interests: Mapping[str, InterestProfile],
    potentials: Optional[Mapping[str, float]] = None,
    options: Optional[RecommendationConfig] = None,
    categories: Optional[Mapping[str, str]] = None,
) -> List[SubjectScore]:
    """
    Rank subjects for one student.

    Parameters
    ----------
    abilities : Mapping[str, AbilityState]
        Final ability per subject; states with no responses count as missing.
    interests : Mapping[str, InterestProfile]
        Interest profile per subject; profiles with no attempts count as missing.
    potentials : Mapping[str, float], optional
        Potential scores (0-100). When absent for a subject with both ability
        and interest data, potential is derived from them.
    options : RecommendationConfig, optional
        Weights, ``limit``, ``min_interest`` and ``diversify``.
    categories : Mapping[str, str], optional
        Category per subject used for diversification.

    Returns
    -------
    List[SubjectScore] ranked best first. Missing signals use the
    below-neutral default and are flagged through ``*_available``.
    """
    options = options or RecommendationConfig()
    potentials = potentials or {}
    categories = categories or {}
    default_pct = options.missing_signal_default * 100.0
    bandit = SubjectBandit(options)

    subject_ids = list(dict.fromkeys([*abilities, *interests, *potentials, *categories]))
    if not subject_ids:
        return []

    signals: List[SubjectSignals] = []
    profiles: Dict[str, Optional[InterestProfile]] = {}
    for sid in subject_ids:
        ability = abilities.get(sid)
        profile = interests.get(sid)
        profiles[sid] = profile
        has_ability = _ability_available(ability)
        has_interest = profile is not None and profile.has_data

        ability_pct = theta_to_percentage(ability.theta) if has_ability else None
        interest_pct = clamp(profile.interest_score, 0.0, 100.0) if has_interest else None
        confidence = ability.confidence if has_ability else 0.0

        potential_pct = _potential_value(potentials.get(sid))
        if potential_pct is None and ability_pct is not None and interest_pct is not None:
            potential_pct = calculate_learning_potential(ability_pct, interest_pct, confidence=confidence)

        attempts = max(ability.n_responses if has_ability else 0, profile.questions_attempted if has_interest else 0)
        signals.append(
            SubjectSignals(
                subject_id=sid,
                category=str(categories.get(sid) or "unknown"),
                ability=None if ability_pct is None else ability_pct / 100.0,
                interest=None if interest_pct is None else interest_pct / 100.0,
                potential=None if potential_pct is None else potential_pct / 100.0,
                confidence=confidence,
                attempts=attempts,
            )
        )

    scored: List[SubjectScore] = []
    for s in signals:
        arm = bandit.score(s)
        ability_score = arm.ability * 100.0
        interest_score = arm.interest * 100.0
        potential_score = arm.potential * 100.0
        kind = fit_type(ability_score, interest_score, potential_score)
        scored.append(
            SubjectScore(
                subject_id=s.subject_id,
                category=s.category,
                ability_score=ability_score,
                interest_score=interest_score,
                potential_score=potential_score,
                recommendation_score=arm.score,
                confidence=s.confidence,
                ability_available=s.ability is not None,
                interest_available=s.interest is not None,
                potential_available=s.potential is not None,
                attempts=s.attempts,
                fit_type=kind,
                reasoning=_reasoning(kind, profiles[s.subject_id]),
                components=arm.components(),
            )
        )

    limit = max(1, options.limit)
    filtered = [s for s in scored if s.interest_score >= options.min_interest]
    if len(filtered) < limit:
        relaxed = options.min_interest * 0.7
        logger.debug("Only %d subject(s) pass min_interest=%.1f; relaxing to %.1f", len(filtered), options.min_interest, relaxed)
        filtered = [s for s in scored if s.interest_score >= relaxed]

    filtered.sort(key=lambda s: (-s.recommendation_score, s.subject_id))
    if options.diversify:
        filtered = diversify(filtered, limit)
    ranked = [score.ranked(index + 1) for index, score in enumerate(filtered[:limit])]
    logger.info("Ranked %d of %d subject(s); %.0f%% default used for missing signals", len(ranked), len(scored), default_pct)
    return ranked


def subject_affinities(scores: Iterable[SubjectScore]) -> Dict[str, float]:
    """Affinity (0-1) for subjects backed by real ability or interest data."""
    return {s.subject_id: s.components["affinity"] for s in scores if s.data_available}


def recommend_degrees(
    affinities: Mapping[str, float],
    degree_weights: Mapping[str, Mapping[str, float]],
    limit: int = 5,
    missing_affinity: float = 0.35,
) -> List[Dict[str, Any]]:
    """
    Rank degrees by the weighted mean affinity of their subjects.

    Subjects without an affinity use ``missing_affinity`` rather than a
    neutral 0.5. Non-positive weights are ignored and the score is divided by
    the sum of the remaining weights, so the weight scale does not matter.
    Each result carries its top three contributing subjects.
    """
    scored: List[Dict[str, Any]] = []
    for degree_id, weights in degree_weights.items():
        total = 0.0
        weight_sum = 0.0
        contributions = []
        for subject_id, raw_weight in weights.items():
            weight = float(raw_weight or 0.0)
            if not math.isfinite(weight) or weight <= 0:
                continue
            value = affinities.get(subject_id)
            affinity = value if value is not None and math.isfinite(value) else missing_affinity
            contribution = weight * affinity
            total += contribution
            weight_sum += weight
            contributions.append(
                {
                    "subject_id": subject_id,
                    "weight": weight,
                    "affinity": affinity,
                    "contribution": contribution,
                    "affinity_available": value is not None,
                }
            )
        if weight_sum <= 0:
            continue
        contributions.sort(key=lambda c: (-c["contribution"], c["subject_id"]))
        scored.append({"degree_id": degree_id, "score": total / weight_sum, "top_subjects": contributions[:3]})

    scored.sort(key=lambda d: (-d["score"], d["degree_id"]))
    return scored[: int(clamp(limit, 1, 20))]
