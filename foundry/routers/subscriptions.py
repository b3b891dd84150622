from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Response, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from foundry.auth.dependencies import AuthContext, require_admin
from foundry.db.deps import get_session
from foundry.schemas.forms import SubscribeRequest, UnsubscribeRequest
from foundry.services import subscribers as subscriber_service

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.post("")
def subscribe(
    payload: SubscribeRequest,
    response: Response,
    session: Session = Depends(get_session),
):
    _record, created = subscriber_service.subscribe(session, payload)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return {"ok": True}


@router.get("")
def list_subscriptions(
    _auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return subscriber_service.list_subscribers(session)


def _unsubscribe(session: Session, email: Optional[str]) -> PlainTextResponse:
    cleaned = (email or "").strip()
    if not cleaned:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email is required")
    subscriber_service.unsubscribe(session, cleaned)
    return PlainTextResponse(subscriber_service.UNSUBSCRIBED_MESSAGE)


@router.get("/unsubscribe")
def unsubscribe_link(email: Optional[str] = None, session: Session = Depends(get_session)):
    return _unsubscribe(session, email)


@router.post("/unsubscribe")
def unsubscribe(
    email: Optional[str] = None,
    payload: Optional[UnsubscribeRequest] = Body(default=None),
    session: Session = Depends(get_session),
):
    return _unsubscribe(session, email or (payload.email if payload else None))
