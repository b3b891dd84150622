from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from foundry.db.enums import ContainerEnum
from foundry.db.repositories.documents import DocumentsRepository
from foundry.schemas.content import Subscriber, dump_document
from foundry.schemas.forms import SubscribeRequest

logger = logging.getLogger(__name__)

UNSUBSCRIBED_MESSAGE = "You have been unsubscribed. You can re-subscribe any time from the site."


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _dedupe(items: list[str]) -> list[str]:
    return list(dict.fromkeys(item for item in items if item))


def subscribers_repo(session: Session) -> DocumentsRepository:
    return DocumentsRepository(session, ContainerEnum.subscribers)


def subscribe(session: Session, request: SubscribeRequest) -> tuple[dict[str, Any], bool]:
    """Create or refresh a subscriber. Returns the record and whether it was new."""
    repo = subscribers_repo(session)
    email = normalize_email(str(request.email))
    existing = repo.get(email)
    now = _now_iso()
    platform_ids = _dedupe(request.platformIds or [])
    subscribe_all = True if request.subscribeAll is None else request.subscribeAll

    record: dict[str, Any] = {
        "id": email,
        "email": email,
        "subscribeAll": subscribe_all,
        "platformIds": platform_ids,
        "status": "active",
        "unsubscribeToken": (existing or {}).get("unsubscribeToken") or str(uuid.uuid4()),
        "createdAt": (existing or {}).get("createdAt") or now,
        "updatedAt": now,
    }
    if existing and existing.get("mailerLiteId"):
        record["mailerLiteId"] = existing["mailerLiteId"]

    repo.upsert(record)
    logger.info(
        "Subscribed",
        extra={"platform_ids": platform_ids, "subscribe_all": subscribe_all, "is_new": existing is None},
    )
    return record, existing is None


def unsubscribe(session: Session, email: str) -> bool:
    repo = subscribers_repo(session)
    normalized = normalize_email(email)
    existing = repo.get(normalized)
    if existing is None:
        return False
    repo.upsert({**existing, "status": "unsubscribed", "updatedAt": _now_iso()})
    logger.info("Unsubscribed subscriber")
    return True


def list_subscribers(session: Session) -> list[dict[str, Any]]:
    valid: list[dict[str, Any]] = []
    invalid = 0
    for document in subscribers_repo(session).list():
        try:
            valid.append(dump_document(Subscriber.model_validate(document)))
        except ValidationError:
            invalid += 1
    if invalid:
        logger.warning("Some subscriber records failed validation", extra={"invalid_count": invalid})
    return valid


def active_subscribers(session: Session) -> list[dict[str, Any]]:
    return [s for s in list_subscribers(session) if s.get("status") != "unsubscribed"]


def filter_recipients(
    subscribers: list[dict[str, Any]],
    target_platform_ids: list[str],
    send_to_all: Optional[bool],
) -> list[dict[str, Any]]:
    to_all = (not target_platform_ids) if send_to_all is None else send_to_all
    targets = set(target_platform_ids)

    def _matches(subscriber: dict[str, Any]) -> bool:
        if subscriber.get("status") == "unsubscribed":
            return False
        if to_all or subscriber.get("subscribeAll"):
            return True
        return bool(targets.intersection(subscriber.get("platformIds") or []))

    return [s for s in subscribers if _matches(s)]


def subscriber_counts(session: Session) -> dict[str, int]:
    subscribers = list_subscribers(session)
    unsubscribed = sum(1 for s in subscribers if s.get("status") == "unsubscribed")
    return {
        "active": len(subscribers) - unsubscribed,
        "unsubscribed": unsubscribed,
        "total": len(subscribers),
    }
