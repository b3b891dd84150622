"""Apply admin actions proposed by the assistant, one at a time and in order.

Each action is committed before the next starts. A failure stops the batch and
leaves earlier actions in place; the raised error reports how many were applied.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol, Sequence

from sqlalchemy.orm import Session

from foundry.llm.client import LLMTimeoutError, LLMUpstreamError
from foundry.schemas.ai import (
    AppliedAction,
    ConfigMergeAction,
    ContentDeleteAction,
    ContentUpsertAction,
    MediaGenerateAction,
)
from foundry.services import content as content_service
from foundry.services import site_config
from foundry.services.config_patch import normalize_links, set_path
from foundry.services.content import ContentValidationError, PlatformInUseError
from foundry.services.images import ImageGenerator, ImageKeyMissingError, ImageRequest, StoredImage

logger = logging.getLogger(__name__)


class AdminActionError(Exception):
    status_code = 400

    def __init__(self, message: str, *, index: int = 0, applied: int = 0) -> None:
        super().__init__(message)
        self.message = message
        self.index = index
        self.applied = applied

    def to_detail(self) -> dict[str, Any]:
        return {"message": self.message, "index": self.index, "applied": self.applied}


class ActionValidationError(AdminActionError):
    status_code = 422

    def __init__(self, message: str, issues: list[dict[str, str]], **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.issues = issues

    def to_detail(self) -> dict[str, Any]:
        return {**super().to_detail(), "issues": self.issues}


class ActionConflictError(AdminActionError):
    status_code = 409


class MediaTargetNotFoundError(AdminActionError):
    status_code = 404


class MediaActionInputError(AdminActionError):
    status_code = 400


class MediaGenerationError(AdminActionError):
    status_code = 502


class ImageGeneratorProtocol(Protocol):
    def generate(self, request: ImageRequest) -> StoredImage: ...


class ActionApplier:
    def __init__(self, session: Session, *, image_generator: Optional[ImageGeneratorProtocol] = None) -> None:
        self.session = session
        self._image_generator = image_generator

    def _images(self) -> ImageGeneratorProtocol:
        if self._image_generator is None:
            self._image_generator = ImageGenerator(self.session)
        return self._image_generator

    def apply_all(self, actions: Sequence[Any]) -> list[AppliedAction]:
        results: list[AppliedAction] = []
        for index, action in enumerate(actions):
            try:
                results.append(self.apply(index, action))
            except AdminActionError as exc:
                exc.index = index
                exc.applied = len(results)
                logger.warning(
                    "Admin action failed",
                    extra={"index": index, "action_type": getattr(action, "type", None), "applied": len(results)},
                )
                raise
        logger.info("Applied admin actions", extra={"applied": len(results)})
        return results

    def apply(self, index: int, action: Any) -> AppliedAction:
        if isinstance(action, ConfigMergeAction):
            return self._config_merge(index, action)
        if isinstance(action, ContentUpsertAction):
            return self._content_upsert(index, action)
        if isinstance(action, ContentDeleteAction):
            return self._content_delete(index, action)
        if isinstance(action, MediaGenerateAction):
            return self._media_generate(index, action)
        raise TypeError(f"Unhandled admin action {type(action).__name__}")

    def _config_merge(self, index: int, action: ConfigMergeAction) -> AppliedAction:
        try:
            site_config.merge_site_config(self.session, action.value)
        except ContentValidationError as exc:
            raise ActionValidationError(str(exc), exc.issues) from exc
        return AppliedAction(index=index, type=action.type, target=site_config.CONFIG_ID)

    def _content_upsert(self, index: int, action: ContentUpsertAction) -> AppliedAction:
        value = dict(action.value)
        if action.kind in ("platform", "news") and "links" in value:
            value["links"] = normalize_links(value.get("links"))
        try:
            saved = content_service.upsert_content(self.session, action.kind, value)
        except ContentValidationError as exc:
            raise ActionValidationError(str(exc), exc.issues) from exc
        return AppliedAction(index=index, type=action.type, target=saved["id"])

    def _content_delete(self, index: int, action: ContentDeleteAction) -> AppliedAction:
        try:
            deleted = content_service.delete_content(self.session, action.kind, action.id)
        except PlatformInUseError as exc:
            raise ActionConflictError(str(exc)) from exc
        return AppliedAction(
            index=index,
            type=action.type,
            target=action.id,
            detail=None if deleted else "not found",
        )

    def _media_generate(self, index: int, action: MediaGenerateAction) -> AppliedAction:
        payload = action.value
        prompt = payload.prompt.strip()
        field = payload.field.strip()
        if not prompt:
            raise MediaActionInputError("media.generate requires a non-empty prompt")
        if not field:
            raise MediaActionInputError("media.generate requires a non-empty field path")

        item: Optional[dict[str, Any]] = None
        if payload.targetType != "config":
            target_id = (payload.targetId or "").strip()
            if not target_id:
                raise MediaActionInputError(f"media.generate for a {payload.targetType} requires targetId")
            item = content_service.get_content(self.session, payload.targetType, target_id)
            if item is None:
                raise MediaTargetNotFoundError(f"{payload.targetType} '{target_id}' not found")

        try:
            image = self._images().generate(
                ImageRequest(
                    prompt=prompt,
                    size=payload.size,
                    quality=payload.quality,
                    background=payload.background,
                    filename_hint=prompt[:64],
                )
            )
        except ImageKeyMissingError as exc:
            raise MediaActionInputError(str(exc)) from exc
        except (LLMTimeoutError, LLMUpstreamError) as exc:
            raise MediaGenerationError(str(exc)) from exc

        try:
            if item is None:
                current = site_config.get_stored_config(self.session) or {"id": site_config.CONFIG_ID}
                site_config.write_site_config(self.session, set_path(current, field, image.blob_url))
                target = site_config.CONFIG_ID
            else:
                updated = set_path(dict(item), field, image.blob_url)
                saved = content_service.upsert_content(self.session, payload.targetType, updated)
                target = saved["id"]
        except ValueError as exc:
            if isinstance(exc, ContentValidationError):
                raise ActionValidationError(str(exc), exc.issues) from exc
            raise MediaActionInputError(str(exc)) from exc

        logger.info(
            "Placed generated image",
            extra={"target_type": payload.targetType, "target": target, "field": field},
        )
        return AppliedAction(index=index, type=action.type, target=target, detail=image.blob_url)


def apply_actions(
    session: Session,
    actions: Sequence[Any],
    *,
    image_generator: Optional[ImageGeneratorProtocol] = None,
) -> list[AppliedAction]:
    return ActionApplier(session, image_generator=image_generator).apply_all(actions)
