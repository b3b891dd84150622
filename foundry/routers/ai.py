from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from foundry.auth.dependencies import require_admin
from foundry.db.deps import get_session
from foundry.llm.client import LLMClient, LLMClientConfigError, LLMTimeoutError, LLMUpstreamError
from foundry.schemas.ai import (
    AdminChatRequest,
    AdminChatResponse,
    ApplyActionsRequest,
    ApplyActionsResponse,
    ImageGenerateRequest,
    ImageGenerateResponse,
    PricingRefreshRequest,
)
from foundry.services import admin_chat, ai_pricing, ai_usage
from foundry.services.admin_actions import AdminActionError, apply_actions
from foundry.services.ai_pricing import PricingError
from foundry.services.images import ImageGenerator, ImageKeyMissingError, ImageRequest

router = APIRouter(prefix="/ai", tags=["ai"], dependencies=[Depends(require_admin)])
logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes"}
_SSE_HEADERS = {"Cache-Control": "no-cache, no-transform", "X-Accel-Buffering": "no"}


@router.post("/chat")
def admin_chat_turn(
    payload: AdminChatRequest,
    stream: Optional[str] = None,
    session: Session = Depends(get_session),
):
    try:
        plan = admin_chat.plan_chat(session, payload)
    except admin_chat.ChatKeyMissingError as exc:
        return AdminChatResponse(assistantMessage=str(exc), actions=[])

    if (stream or "").strip().lower() not in _TRUTHY:
        return admin_chat.run_chat(session, plan, client_factory=LLMClient)

    try:
        events = admin_chat.open_chat_stream(plan, client_factory=LLMClient)
    except LLMTimeoutError as exc:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=admin_chat.TIMEOUT_MESSAGE) from exc
    except (LLMUpstreamError, LLMClientConfigError) as exc:
        logger.warning("Admin chat stream could not be opened", extra={"model": plan.model, "error": str(exc)})
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return StreamingResponse(events, media_type="text/event-stream", headers=_SSE_HEADERS)


@router.post("/image-generate", response_model=ImageGenerateResponse)
def generate_image(payload: ImageGenerateRequest, session: Session = Depends(get_session)):
    request = ImageRequest(
        prompt=payload.prompt,
        model=payload.model,
        size=payload.size,
        quality=payload.quality,
        background=payload.background,
        output_format=payload.outputFormat,
        filename_hint=payload.filenameHint,
    )
    try:
        image = ImageGenerator(session).generate(request)
    except ImageKeyMissingError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except (LLMTimeoutError, LLMUpstreamError) as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return image.to_payload()


@router.get("/usage")
def usage_report(session: Session = Depends(get_session)):
    return ai_usage.build_usage_report(ai_usage.load_usage_doc(session), ai_pricing.get_pricing(session))


@router.get("/pricing")
def get_pricing(session: Session = Depends(get_session)):
    return ai_pricing.get_pricing(session)


@router.post("/pricing/refresh")
def refresh_pricing(
    payload: Optional[PricingRefreshRequest] = Body(default=None),
    session: Session = Depends(get_session),
):
    payload = payload or PricingRefreshRequest()
    try:
        pricing = ai_pricing.refresh_pricing(session, pricing_text=payload.pricingText, models=payload.models)
    except PricingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    return pricing


@router.post("/actions/apply", response_model=ApplyActionsResponse)
def apply_admin_actions(payload: ApplyActionsRequest, session: Session = Depends(get_session)):
    try:
        results = apply_actions(session, payload.actions)
    except AdminActionError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_detail()) from exc
    return ApplyActionsResponse(applied=len(results), results=results)
