"""
Compatibility scoring: a deterministic ranking signal between two profiles.

Pure functions only: scores are recomputed on every query and never
persisted.
"""

from __future__ import annotations

from typing import Iterable, Optional

from .models import SkillProfile

SAME_INSTITUTION_BONUS = 20
SAME_REGION_BONUS = 15
SKILL_MATCH_BONUS = 10
HIGH_RATING_BONUS = 10
HIGH_RATING_THRESHOLD = 4.0
MAX_SCORE = 100


def _normalize(name: str) -> str:
    return name.strip().lower()


def matching_skills(viewer: SkillProfile, candidate: SkillProfile) -> list[str]:
    """Viewer's offered skills that the candidate needs (case-insensitive)."""
    needed = {_normalize(s.name) for s in candidate.needed_skills}
    return [s.name for s in viewer.offered_skills if _normalize(s.name) in needed]


def compatibility_score(viewer: SkillProfile, candidate: SkillProfile) -> int:
    """
    Score ``candidate`` from ``viewer``'s point of view, in [0, 100].

    +20 same institution, +15 same region, +10 per viewer offered skill the
    candidate needs, +10 when the viewer's mean rating is above 4.0.
    """
    score = 0
    if viewer.institution and viewer.institution == candidate.institution:
        score += SAME_INSTITUTION_BONUS
    if viewer.region and viewer.region == candidate.region:
        score += SAME_REGION_BONUS
    score += SKILL_MATCH_BONUS * len(matching_skills(viewer, candidate))
    if viewer.rating.mean > HIGH_RATING_THRESHOLD:
        score += HIGH_RATING_BONUS
    return max(0, min(score, MAX_SCORE))


def rank_candidates(
    viewer: SkillProfile,
    candidates: Iterable[SkillProfile],
    limit: Optional[int] = None,
) -> list[tuple[SkillProfile, int]]:
    """
    ``(candidate, score)`` pairs, best first.

    Ties break on the candidate's rating mean, then profile id, so the
    order is stable across queries. The viewer and inactive profiles are
    skipped.
    """
    scored = [
        (c, compatibility_score(viewer, c))
        for c in candidates
        if c.profile_id != viewer.profile_id and c.is_active
    ]
    scored.sort(key=lambda pair: (-pair[1], -pair[0].rating.mean, pair[0].profile_id))
    return scored[:limit] if limit is not None else scored


def suggest_partners(
    viewer: SkillProfile,
    candidates: Iterable[SkillProfile],
    limit: int = 10,
) -> list[tuple[SkillProfile, int]]:
    """Candidates offering at least one skill the viewer needs, ranked."""
    needed = {_normalize(s.name) for s in viewer.needed_skills}
    offering = [
        c for c in candidates
        if any(_normalize(s.name) in needed for s in c.offered_skills)
    ]
    return rank_candidates(viewer, offering, limit=limit)
