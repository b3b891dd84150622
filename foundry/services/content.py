from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Literal, Optional

from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from foundry.db.enums import ContainerEnum
from foundry.db.repositories.documents import DocumentsRepository
from foundry.schemas.content import NewsPost, Platform, Topic, dump_document, format_validation_errors

logger = logging.getLogger(__name__)

ContentKind = Literal["platform", "topic", "news"]

_CONTENT_TYPES: dict[str, tuple[ContainerEnum, type[BaseModel]]] = {
    "platform": (ContainerEnum.platforms, Platform),
    "topic": (ContainerEnum.topics, Topic),
    "news": (ContainerEnum.news, NewsPost),
}

PLATFORM_IN_USE_MESSAGE = "Cannot delete platform with existing news references. Remove related news first."


class ContentValidationError(ValueError):
    def __init__(self, kind: str, issues: list[dict[str, str]]) -> None:
        fields = ", ".join(issue["field"] for issue in issues) or "(unknown)"
        super().__init__(f"Invalid {kind}: {fields}")
        self.kind = kind
        self.issues = issues


class PlatformInUseError(RuntimeError):
    def __init__(self, platform_id: str) -> None:
        super().__init__(PLATFORM_IN_USE_MESSAGE)
        self.platform_id = platform_id


def _content_type(kind: str) -> tuple[ContainerEnum, type[BaseModel]]:
    try:
        return _CONTENT_TYPES[kind]
    except KeyError as exc:
        raise ValueError(f"Unknown content kind: {kind}") from exc


def repository_for(session: Session, kind: str) -> DocumentsRepository:
    container, _model = _content_type(kind)
    return DocumentsRepository(session, container)


def validate_content(kind: str, payload: Any) -> dict[str, Any]:
    _container, model = _content_type(kind)
    try:
        return dump_document(model.model_validate(payload))
    except ValidationError as exc:
        raise ContentValidationError(kind, format_validation_errors(exc)) from exc


def list_content(
    session: Session,
    kind: str,
    predicate: Optional[Callable[[dict[str, Any]], bool]] = None,
) -> list[dict[str, Any]]:
    _container, model = _content_type(kind)
    repo = repository_for(session, kind)
    documents = repo.query(predicate) if predicate else repo.list()
    items: list[dict[str, Any]] = []
    invalid = 0
    for document in documents:
        try:
            items.append(dump_document(model.model_validate(document)))
        except ValidationError:
            invalid += 1
    if invalid:
        logger.warning(
            "Skipping stored content failing validation",
            extra={"kind": kind, "invalid_count": invalid},
        )
    return items


def get_content(session: Session, kind: str, item_id: str) -> Optional[dict[str, Any]]:
    return repository_for(session, kind).get(item_id)


def upsert_content(session: Session, kind: str, payload: Any) -> dict[str, Any]:
    document = validate_content(kind, payload)
    saved = repository_for(session, kind).upsert(document)
    logger.info("Upserted content", extra={"kind": kind, "item_id": saved["id"]})
    return saved


def _list_contains(doc: dict[str, Any], key: str, value: str) -> bool:
    items = doc.get(key)
    return isinstance(items, list) and value in items


def platform_has_news(session: Session, platform_id: str) -> bool:
    news_repo = DocumentsRepository(session, ContainerEnum.news)
    return news_repo.exists(lambda doc: _list_contains(doc, "platformIds", platform_id))


def delete_content(session: Session, kind: str, item_id: str) -> bool:
    if kind == "platform" and platform_has_news(session, item_id):
        raise PlatformInUseError(item_id)
    deleted = repository_for(session, kind).delete(item_id)
    logger.info("Deleted content", extra={"kind": kind, "item_id": item_id, "deleted": deleted})
    return deleted


def list_news(session: Session, platform_id: Optional[str] = None, topic: Optional[str] = None) -> list[dict[str, Any]]:
    def _matches(doc: dict[str, Any]) -> bool:
        if platform_id and not _list_contains(doc, "platformIds", platform_id):
            return False
        if topic and not _list_contains(doc, "topics", topic):
            return False
        return True

    return list_content(session, "news", _matches if (platform_id or topic) else None)
