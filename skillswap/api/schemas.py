"""
Pydantic request/response models for the SkillSwap API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


# ============ Profiles ============

class OfferedSkillIn(BaseModel):
    name: str
    category: str
    level: str
    description: str = ""


class NeededSkillIn(BaseModel):
    name: str
    category: str
    urgency: str
    description: str = ""


class CreateProfileRequest(BaseModel):
    profile_id: Optional[str] = None
    display_name: str
    institution: str = ""
    region: str = ""
    town: str = ""
    offered_skills: list[OfferedSkillIn] = Field(default_factory=list)
    needed_skills: list[NeededSkillIn] = Field(default_factory=list)
    role: str = "user"


class SuggestionResponse(BaseModel):
    profile_id: str
    display_name: str
    institution: str
    region: str
    rating_mean: float
    rating_count: int
    compatibility_score: int
    matching_skills: list[str] = Field(default_factory=list)


# ============ Exchanges ============

class SkillDescriptorIn(BaseModel):
    name: str
    category: str
    description: str
    estimated_hours: float
    urgency: Optional[str] = None
    level: Optional[str] = None


class ProposeExchangeRequest(BaseModel):
    requester_id: str
    provider_id: str
    requested_skill: SkillDescriptorIn
    offered_skill: SkillDescriptorIn
    deadline: datetime
    meeting_preference: str
    title: str = ""
    location: Optional[dict[str, str]] = None
    tags: list[str] = Field(default_factory=list)


class TransitionRequest(BaseModel):
    actor_id: str
    status: str
    reason: Optional[str] = None


class MessageRequest(BaseModel):
    actor_id: str
    text: str


class TaskRequest(BaseModel):
    actor_id: str
    description: str


class ActorRequest(BaseModel):
    actor_id: str


class SatisfactionRequest(BaseModel):
    actor_id: str
    satisfied: bool
    notes: Optional[str] = None


# ============ Disputes ============

class DisputeRequest(BaseModel):
    actor_id: str
    reason: str


class ResolveRequest(BaseModel):
    resolver_id: str
    outcome: str
    resolution: str


# ============ Reviews ============

class SkillRatingIn(BaseModel):
    skill: str
    rating: int
    comment: str = ""


class SubmitReviewRequest(BaseModel):
    reviewer_id: str
    rating: int
    was_successful: bool
    would_recommend: bool
    comment: Optional[str] = None
    detailed_ratings: Optional[dict[str, Optional[int]]] = None
    skills_reviewed: list[SkillRatingIn] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)


class ModerateReviewRequest(BaseModel):
    moderator_id: str
    status: str
    reason: Optional[str] = None


class ReviewReplyRequest(BaseModel):
    actor_id: str
    content: str
    is_public: bool = True


class Envelope(BaseModel):
    success: bool = True
    message: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
