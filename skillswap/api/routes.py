"""
API endpoints for the SkillSwap exchange engine.

Thin HTTP glue: every handler delegates to one engine operation. Engine
errors are turned into JSON responses by the handler installed with
``install_error_handlers``. The acting profile arrives in the request body;
authentication happens in front of this service.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from skillswap.builder import BarterEngine
from skillswap.core.errors import NotFound, SkillSwapError
from skillswap.core.matching import matching_skills, suggest_partners
from skillswap.core.models import (
    Exchange,
    NeededSkill,
    OfferedSkill,
    ProfileRole,
    Review,
    SkillProfile,
    generate_id,
    parse_enum,
    to_record,
)
from skillswap.core.progress import completion_percentage
from skillswap.infra.event_pusher import exchange_channel, profile_channel

from .schemas import (
    ActorRequest,
    CreateProfileRequest,
    DisputeRequest,
    Envelope,
    MessageRequest,
    ModerateReviewRequest,
    ProposeExchangeRequest,
    ResolveRequest,
    ReviewReplyRequest,
    SatisfactionRequest,
    SubmitReviewRequest,
    SuggestionResponse,
    TaskRequest,
    TransitionRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")
ws_router = APIRouter()


# ============ Helpers ============

def _engine(request: Request) -> BarterEngine:
    return request.app.state.engine


def _exchange_payload(engine: BarterEngine, exchange: Exchange) -> dict[str, Any]:
    data = to_record(exchange)
    data["overall_progress"] = completion_percentage(exchange.progress)
    data["is_overdue"] = engine.exchanges.is_overdue(exchange)
    return data


def _review_payload(review: Review) -> dict[str, Any]:
    data = to_record(review)
    data["average_detailed_rating"] = review.average_detailed_rating
    data["is_comprehensive"] = review.is_comprehensive
    return data


async def _profile_or_404(engine: BarterEngine, profile_id: str) -> SkillProfile:
    profile = await engine.store.get_profile(profile_id)
    if profile is None:
        raise NotFound(f"Profile {profile_id} not found")
    return profile


def install_error_handlers(app: FastAPI) -> None:
    """Map the engine's error taxonomy onto HTTP responses."""

    @app.exception_handler(SkillSwapError)
    async def _handle_engine_error(request: Request, exc: SkillSwapError):
        if exc.http_status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        else:
            logger.warning(
                "Rejected %s %s (%s): %s",
                request.method, request.url.path, exc.kind, exc.message,
            )
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


# ============ Profile Endpoints ============

@router.post("/profiles", response_model=Envelope, status_code=201)
async def save_profile(req: CreateProfileRequest, request: Request):
    engine = _engine(request)
    profile = SkillProfile(
        profile_id=req.profile_id or generate_id("usr"),
        display_name=req.display_name,
        institution=req.institution.strip(),
        region=req.region.strip(),
        town=req.town.strip(),
        offered_skills=[
            OfferedSkill.create(s.name, s.category, s.level, s.description)
            for s in req.offered_skills
        ],
        needed_skills=[
            NeededSkill.create(s.name, s.category, s.urgency, s.description)
            for s in req.needed_skills
        ],
        role=parse_enum(ProfileRole, req.role, "role"),
    )
    saved = await engine.store.save_profile(profile)
    return Envelope(message="Profile saved", data={"profile": to_record(saved)})


@router.get("/profiles/{profile_id}", response_model=Envelope)
async def get_profile(profile_id: str, request: Request):
    profile = await _profile_or_404(_engine(request), profile_id)
    return Envelope(data={"profile": to_record(profile)})


@router.post("/profiles/{profile_id}/deactivate", response_model=Envelope)
async def deactivate_profile(profile_id: str, request: Request):
    if not await _engine(request).store.deactivate_profile(profile_id):
        raise NotFound(f"Profile {profile_id} not found")
    return Envelope(message="Profile deactivated")


@router.get("/profiles/{profile_id}/suggestions", response_model=list[SuggestionResponse])
async def get_suggestions(
    profile_id: str, request: Request, limit: Optional[int] = Query(None, ge=1),
):
    engine = _engine(request)
    viewer = await _profile_or_404(engine, profile_id)
    candidates = await engine.store.list_profiles(active_only=True)
    ranked = suggest_partners(
        viewer, candidates, limit=limit if limit is not None else engine.config.suggestion_limit,
    )
    return [
        SuggestionResponse(
            profile_id=c.profile_id,
            display_name=c.display_name,
            institution=c.institution,
            region=c.region,
            rating_mean=c.rating.mean,
            rating_count=c.rating.count,
            compatibility_score=score,
            matching_skills=matching_skills(viewer, c),
        )
        for c, score in ranked
    ]


@router.get("/profiles/{profile_id}/exchanges", response_model=Envelope)
async def list_profile_exchanges(
    profile_id: str,
    request: Request,
    role: str = "all",
    status: Optional[str] = None,
):
    engine = _engine(request)
    exchanges = await engine.exchanges.list_for_profile(profile_id, role=role, status=status)
    return Envelope(data={"exchanges": [_exchange_payload(engine, e) for e in exchanges]})


@router.get("/profiles/{profile_id}/reviews", response_model=Envelope)
async def list_profile_reviews(profile_id: str, request: Request):
    engine = _engine(request)
    profile = await _profile_or_404(engine, profile_id)
    reviews = await engine.reputation.reviews_for(profile_id)
    return Envelope(data={
        "rating": to_record(profile.rating),
        "reviews": [_review_payload(r) for r in reviews],
    })


# ============ Exchange Endpoints ============

@router.post("/exchanges", response_model=Envelope, status_code=201)
async def propose_exchange(req: ProposeExchangeRequest, request: Request):
    engine = _engine(request)
    exchange = await engine.exchanges.propose(
        requester_id=req.requester_id,
        provider_id=req.provider_id,
        requested_skill=req.requested_skill.model_dump(),
        offered_skill=req.offered_skill.model_dump(),
        deadline=req.deadline,
        meeting_preference=req.meeting_preference,
        title=req.title,
        location=req.location,
        tags=req.tags,
    )
    return Envelope(
        message="Exchange proposed",
        data={"exchange": _exchange_payload(engine, exchange)},
    )


@router.get("/exchanges/{exchange_id}", response_model=Envelope)
async def get_exchange(exchange_id: str, request: Request):
    engine = _engine(request)
    exchange = await engine.exchanges.get(exchange_id)
    return Envelope(data={"exchange": _exchange_payload(engine, exchange)})


@router.put("/exchanges/{exchange_id}/status", response_model=Envelope)
async def update_status(exchange_id: str, req: TransitionRequest, request: Request):
    engine = _engine(request)
    exchange = await engine.exchanges.transition(
        exchange_id, req.actor_id, req.status, reason=req.reason,
    )
    return Envelope(
        message="Status updated",
        data={"exchange": _exchange_payload(engine, exchange)},
    )


@router.post("/exchanges/{exchange_id}/messages", response_model=Envelope, status_code=201)
async def append_message(exchange_id: str, req: MessageRequest, request: Request):
    message = await _engine(request).exchanges.append_message(
        exchange_id, req.actor_id, req.text,
    )
    return Envelope(message="Message added", data={"message": to_record(message)})


@router.put("/exchanges/{exchange_id}/satisfaction", response_model=Envelope)
async def record_satisfaction(
    exchange_id: str, req: SatisfactionRequest, request: Request,
):
    engine = _engine(request)
    exchange = await engine.exchanges.record_satisfaction(
        exchange_id, req.actor_id, req.satisfied, notes=req.notes,
    )
    return Envelope(data={"exchange": _exchange_payload(engine, exchange)})


@router.post("/exchanges/{exchange_id}/tasks", response_model=Envelope, status_code=201)
async def add_task(exchange_id: str, req: TaskRequest, request: Request):
    task = await _engine(request).progress.add_task(
        exchange_id, req.actor_id, req.description,
    )
    return Envelope(message="Task added", data={"task": to_record(task)})


@router.put("/exchanges/{exchange_id}/tasks/{task_id}/complete", response_model=Envelope)
async def complete_task(
    exchange_id: str, task_id: str, req: ActorRequest, request: Request,
):
    percentage = await _engine(request).progress.complete_task(
        exchange_id, req.actor_id, task_id,
    )
    return Envelope(data={"overall_progress": percentage})


# ============ Dispute Endpoints ============

@router.post("/exchanges/{exchange_id}/dispute", response_model=Envelope)
async def raise_dispute(exchange_id: str, req: DisputeRequest, request: Request):
    engine = _engine(request)
    exchange = await engine.disputes.raise_dispute(exchange_id, req.actor_id, req.reason)
    return Envelope(
        message="Dispute raised",
        data={"exchange": _exchange_payload(engine, exchange)},
    )


@router.post("/exchanges/{exchange_id}/resolve", response_model=Envelope)
async def resolve_dispute(exchange_id: str, req: ResolveRequest, request: Request):
    engine = _engine(request)
    exchange = await engine.disputes.resolve(
        exchange_id, req.resolver_id, req.outcome, req.resolution,
    )
    return Envelope(
        message="Dispute resolved",
        data={"exchange": _exchange_payload(engine, exchange)},
    )


# ============ Review Endpoints ============

@router.post("/exchanges/{exchange_id}/reviews", response_model=Envelope, status_code=201)
async def submit_review(exchange_id: str, req: SubmitReviewRequest, request: Request):
    review = await _engine(request).reputation.submit_review(
        exchange_id,
        req.reviewer_id,
        req.rating,
        was_successful=req.was_successful,
        would_recommend=req.would_recommend,
        comment=req.comment,
        detailed_ratings=req.detailed_ratings,
        skills_reviewed=[s.model_dump() for s in req.skills_reviewed],
        tags=req.tags,
    )
    return Envelope(message="Review submitted", data={"review": _review_payload(review)})


@router.put("/reviews/{review_id}/moderate", response_model=Envelope)
async def moderate_review(review_id: str, req: ModerateReviewRequest, request: Request):
    review = await _engine(request).reputation.moderate(
        review_id, req.moderator_id, req.status, reason=req.reason,
    )
    return Envelope(
        message=f"Review {review.moderation.status.value}",
        data={"review": _review_payload(review)},
    )


@router.post("/reviews/{review_id}/response", response_model=Envelope, status_code=201)
async def reply_to_review(review_id: str, req: ReviewReplyRequest, request: Request):
    review = await _engine(request).reputation.respond(
        review_id, req.actor_id, req.content, is_public=req.is_public,
    )
    return Envelope(data={"review": _review_payload(review)})


@router.post("/reviews/{review_id}/helpful", response_model=Envelope)
async def mark_review_helpful(review_id: str, request: Request):
    review = await _engine(request).reputation.mark_helpful(review_id)
    return Envelope(data={"helpful_votes": review.helpful_votes})


# ============ Reporting ============

@router.get("/reports/exchanges", response_model=Envelope)
async def exchange_report(request: Request):
    report = await _engine(request).store.exchange_report()
    return Envelope(data=report)


# ============ WebSocket ============

@ws_router.websocket("/ws/exchanges/{exchange_id}")
async def exchange_ws(websocket: WebSocket, exchange_id: str):
    state = websocket.app.state
    if await state.engine.store.get_exchange(exchange_id) is None:
        await websocket.close(code=4004, reason="Exchange not found")
        return

    channels = state.channels
    connection_id = await channels.connect(websocket, exchange_channel(exchange_id))
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await channels.disconnect(connection_id)


@ws_router.websocket("/ws/profiles/{profile_id}")
async def profile_ws(websocket: WebSocket, profile_id: str):
    state = websocket.app.state
    if await state.engine.store.get_profile(profile_id) is None:
        await websocket.close(code=4004, reason="Profile not found")
        return

    channels = state.channels
    connection_id = await channels.connect(websocket, profile_channel(profile_id))
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await channels.disconnect(connection_id)
