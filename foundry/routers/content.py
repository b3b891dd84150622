from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from foundry.auth.dependencies import AuthContext, require_admin
from foundry.db.deps import get_session
from foundry.services import content as content_service
from foundry.services.content import ContentValidationError, PlatformInUseError

router = APIRouter(tags=["content"])

_NOT_FOUND = {"platform": "Platform not found", "topic": "Topic not found", "news": "News not found"}


def validation_http_error(exc: ContentValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={"message": str(exc), "issues": exc.issues},
    )


def _get_item(session: Session, kind: str, item_id: str) -> dict[str, Any]:
    item = content_service.get_content(session, kind, item_id)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND[kind])
    return item


def _upsert_item(session: Session, kind: str, payload: dict[str, Any], item_id: Optional[str] = None) -> dict[str, Any]:
    if item_id:
        payload = {**payload, "id": item_id}
    try:
        return content_service.upsert_content(session, kind, payload)
    except ContentValidationError as exc:
        raise validation_http_error(exc) from exc


def _delete_item(session: Session, kind: str, item_id: str) -> Response:
    try:
        deleted = content_service.delete_content(session, kind, item_id)
    except PlatformInUseError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_NOT_FOUND[kind])
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Platforms


@router.get("/platforms")
def list_platforms(session: Session = Depends(get_session)):
    return content_service.list_content(session, "platform")


@router.get("/platforms/{platform_id}")
def get_platform(platform_id: str, session: Session = Depends(get_session)):
    return _get_item(session, "platform", platform_id)


@router.post("/platforms")
@router.put("/platforms")
def upsert_platform(
    payload: dict[str, Any] = Body(...),
    _auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return _upsert_item(session, "platform", payload)


@router.post("/platforms/{platform_id}")
@router.put("/platforms/{platform_id}")
def upsert_platform_by_id(
    platform_id: str,
    payload: dict[str, Any] = Body(...),
    _auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return _upsert_item(session, "platform", payload, platform_id)


@router.delete("/platforms/{platform_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_platform(
    platform_id: str,
    _auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return _delete_item(session, "platform", platform_id)


# Topics


@router.get("/topics")
def list_topics(session: Session = Depends(get_session)):
    return content_service.list_content(session, "topic")


@router.get("/topics/{topic_id}")
def get_topic(topic_id: str, session: Session = Depends(get_session)):
    return _get_item(session, "topic", topic_id)


@router.post("/topics")
@router.put("/topics")
def upsert_topic(
    payload: dict[str, Any] = Body(...),
    _auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return _upsert_item(session, "topic", payload)


@router.post("/topics/{topic_id}")
@router.put("/topics/{topic_id}")
def upsert_topic_by_id(
    topic_id: str,
    payload: dict[str, Any] = Body(...),
    _auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return _upsert_item(session, "topic", payload, topic_id)


@router.delete("/topics/{topic_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_topic(
    topic_id: str,
    _auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return _delete_item(session, "topic", topic_id)


# News


@router.get("/news")
def list_news(
    platformId: Optional[str] = None,
    topic: Optional[str] = None,
    session: Session = Depends(get_session),
):
    return content_service.list_news(session, platform_id=platformId, topic=topic)


@router.get("/news/{news_id}")
def get_news(news_id: str, session: Session = Depends(get_session)):
    return _get_item(session, "news", news_id)


@router.post("/news")
@router.put("/news")
def upsert_news(
    payload: dict[str, Any] = Body(...),
    _auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return _upsert_item(session, "news", payload)


@router.post("/news/{news_id}")
@router.put("/news/{news_id}")
def upsert_news_by_id(
    news_id: str,
    payload: dict[str, Any] = Body(...),
    _auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return _upsert_item(session, "news", payload, news_id)


@router.delete("/news/{news_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_news(
    news_id: str,
    _auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return _delete_item(session, "news", news_id)
