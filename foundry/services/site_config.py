from __future__ import annotations

import logging
from copy import deepcopy
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from foundry.db.enums import ContainerEnum
from foundry.db.repositories.documents import DocumentsRepository
from foundry.schemas.content import SiteConfig, dump_document, format_validation_errors
from foundry.services.config_patch import deep_merge
from foundry.services.content import ContentValidationError

logger = logging.getLogger(__name__)

CONFIG_ID = "global"

DEFAULT_SITE_CONFIG: dict[str, Any] = {
    "id": CONFIG_ID,
    "siteName": "Foundry",
    "palette": {"primary": "#005b50"},
    "theme": {"active": "theme1"},
    "contact": {"enabled": False},
}


def _config_repo(session: Session) -> DocumentsRepository:
    return DocumentsRepository(session, ContainerEnum.config)


def validate_site_config(payload: Any) -> dict[str, Any]:
    try:
        return dump_document(SiteConfig.model_validate(payload))
    except ValidationError as exc:
        raise ContentValidationError("config", format_validation_errors(exc)) from exc


def get_stored_config(session: Session, config_id: str = CONFIG_ID) -> Optional[dict[str, Any]]:
    """Raw stored config, secrets included."""
    return _config_repo(session).get(config_id)


def load_site_config(session: Session) -> dict[str, Any]:
    """Validated config with secrets, falling back to a bare ``{"id": "global"}``."""
    stored = get_stored_config(session)
    if stored is None:
        return {"id": CONFIG_ID}
    try:
        return dump_document(SiteConfig.model_validate(stored))
    except ValidationError:
        logger.warning("Stored site config failed validation; using an empty config")
        return {"id": CONFIG_ID}


def _nested(config: dict[str, Any], *keys: str) -> dict[str, Any]:
    cursor: Any = config
    for key in keys:
        cursor = cursor.get(key) if isinstance(cursor, dict) else None
    return cursor if isinstance(cursor, dict) else {}


def openai_settings(config: dict[str, Any]) -> dict[str, Any]:
    return _nested(config, "ai", "adminAssistant", "openai")


def sanitize_site_config(config: dict[str, Any]) -> dict[str, Any]:
    safe = deepcopy(config)

    email_settings = safe.get("emailSettings")
    if isinstance(email_settings, dict):
        stored_key = email_settings.pop("mailerLiteApiKey", None)
        email_settings["hasMailerLiteApiKey"] = bool(stored_key)

    assistant = _nested(safe, "ai", "adminAssistant")
    if assistant:
        openai = assistant.get("openai") if isinstance(assistant.get("openai"), dict) else {}
        stored_key = openai.pop("apiKey", None)
        openai.pop("clearApiKey", None)
        openai["hasApiKey"] = bool(stored_key)
        assistant["openai"] = openai
    return safe


def get_public_site_config(session: Session) -> dict[str, Any]:
    stored = get_stored_config(session)
    if stored is None:
        return dict(DEFAULT_SITE_CONFIG)
    try:
        config = dump_document(SiteConfig.model_validate(stored))
    except ValidationError:
        logger.warning("Stored site config failed validation; serving defaults")
        return dict(DEFAULT_SITE_CONFIG)
    return sanitize_site_config(config)


def _merge_secrets(existing: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    next_config = {**existing, **incoming}

    existing_email = _nested(existing, "emailSettings")
    incoming_email = _nested(incoming, "emailSettings")
    email_settings = {**existing_email, **incoming_email}
    if not incoming_email.get("mailerLiteApiKey"):
        email_settings.pop("mailerLiteApiKey", None)
        if existing_email.get("mailerLiteApiKey"):
            email_settings["mailerLiteApiKey"] = existing_email["mailerLiteApiKey"]
    if email_settings.get("mailerLiteApiKey"):
        email_settings["hasMailerLiteApiKey"] = True
    if existing_email or incoming_email:
        next_config["emailSettings"] = email_settings

    if "ai" in existing or "ai" in incoming:
        existing_ai = _nested(existing, "ai")
        incoming_ai = _nested(incoming, "ai")
        existing_openai = openai_settings(existing)
        incoming_openai = openai_settings(incoming)

        openai = {**existing_openai, **incoming_openai}
        wants_clear = bool(incoming_openai.get("clearApiKey"))
        has_new_key = bool(str(incoming_openai.get("apiKey") or "").strip())
        if wants_clear:
            openai.pop("apiKey", None)
        elif not has_new_key:
            openai.pop("apiKey", None)
            if existing_openai.get("apiKey"):
                openai["apiKey"] = existing_openai["apiKey"]
        openai.pop("clearApiKey", None)
        openai["hasApiKey"] = bool(openai.get("apiKey"))

        next_config["ai"] = {
            **existing_ai,
            **incoming_ai,
            "adminAssistant": {
                **_nested(existing_ai, "adminAssistant"),
                **_nested(incoming_ai, "adminAssistant"),
                "openai": openai,
            },
        }
    return next_config


def save_site_config(session: Session, payload: Any) -> dict[str, Any]:
    """Validate and store a full config, keeping stored secrets unless replaced or cleared."""
    incoming = validate_site_config(payload)
    config_id = incoming.get("id") or CONFIG_ID
    incoming["id"] = config_id
    existing = get_stored_config(session, config_id) or {}
    next_config = _merge_secrets(existing, incoming)
    next_config["id"] = config_id
    saved = _config_repo(session).upsert(next_config)
    logger.info("Upserted site config", extra={"config_id": config_id})
    return saved


def merge_site_config(session: Session, patch: dict[str, Any]) -> dict[str, Any]:
    """Deep-merge ``patch`` into the stored config and write the result.

    The stored document already carries its secrets, so the merge result is
    written as is. A ``null`` in the patch removes the key.
    """
    base = get_stored_config(session) or {"id": CONFIG_ID}
    return write_site_config(session, deep_merge(base, patch))


def write_site_config(session: Session, config: dict[str, Any]) -> dict[str, Any]:
    """Store an already-assembled config as is, after schema validation."""
    document = validate_site_config(config)
    document["id"] = CONFIG_ID
    return _config_repo(session).upsert(document)
