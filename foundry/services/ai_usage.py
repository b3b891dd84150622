from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from foundry.db.enums import ContainerEnum
from foundry.db.repositories.documents import DocumentsRepository
from foundry.llm.client import ChatUsage

logger = logging.getLogger(__name__)

STATS_ID = "stats-ai"
LAST_DAYS_WINDOW = 30
_MODEL_KEY_RE = re.compile(r"[^a-z0-9.-]+")

_BUCKET_FIELDS = ("promptTokens", "completionTokens", "totalTokens", "requests")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def empty_bucket() -> dict[str, int]:
    return {name: 0 for name in _BUCKET_FIELDS}


def _empty_usage_doc() -> dict[str, Any]:
    return {
        "id": STATS_ID,
        "type": "ai-usage",
        "updatedAt": _now_iso(),
        "days": {},
        "totals": {"models": {}, "images": {}},
    }


def _repo(session: Session) -> DocumentsRepository:
    return DocumentsRepository(session, ContainerEnum.config)


def load_usage_doc(session: Session) -> dict[str, Any]:
    doc = _repo(session).get(STATS_ID)
    if not doc:
        return _empty_usage_doc()
    doc.setdefault("days", {})
    totals = doc.setdefault("totals", {})
    totals.setdefault("models", {})
    totals.setdefault("images", {})
    return doc


def _apply(target: dict[str, int], usage: ChatUsage) -> None:
    target["promptTokens"] = int(target.get("promptTokens", 0)) + usage.prompt_tokens
    target["completionTokens"] = int(target.get("completionTokens", 0)) + usage.completion_tokens
    target["totalTokens"] = int(target.get("totalTokens", 0)) + usage.total_tokens
    target["requests"] = int(target.get("requests", 0)) + 1


def _record(session: Session, kind: str, model: str, usage: ChatUsage, timestamp: Optional[datetime]) -> None:
    model_key = (model or "").strip()
    if not model_key:
        return
    moment = timestamp or datetime.now(timezone.utc)
    day = moment.astimezone(timezone.utc).date().isoformat()

    doc = load_usage_doc(session)
    day_buckets = doc["days"].setdefault(day, {"models": {}, "images": {}})
    _apply(day_buckets.setdefault(kind, {}).setdefault(model_key, empty_bucket()), usage)
    _apply(doc["totals"][kind].setdefault(model_key, empty_bucket()), usage)
    doc["updatedAt"] = _now_iso()
    _repo(session).upsert(doc)


def record_chat_usage(
    session: Session, model: str, usage: ChatUsage, timestamp: Optional[datetime] = None
) -> None:
    _record(session, "models", model, usage, timestamp)


def record_image_usage(
    session: Session, model: str, usage: ChatUsage, timestamp: Optional[datetime] = None
) -> None:
    _record(session, "images", model, usage, timestamp)


def safely_record_usage(session: Session, kind: str, model: str, usage: ChatUsage) -> None:
    """Record usage; storage failures are logged and never reach the caller."""
    try:
        if kind == "images":
            record_image_usage(session, model, usage)
        else:
            record_chat_usage(session, model, usage)
    except Exception:  # noqa: BLE001
        session.rollback()
        logger.exception("Failed to record AI usage", extra={"model": model, "kind": kind})


def normalize_model_key(name: str) -> str:
    return _MODEL_KEY_RE.sub("-", name.strip().lower()).strip("-")


def find_pricing(model: str, pricing: dict[str, Any]) -> Optional[dict[str, Any]]:
    if model in pricing:
        return pricing[model]
    normalized = normalize_model_key(model)
    if normalized in pricing:
        return pricing[normalized]
    # Dated snapshots such as gpt-4o-2024-08-06 fall back to the base model price.
    suffix_index = normalized.find("-20")
    if suffix_index > 0:
        trimmed = normalized[:suffix_index]
        if trimmed in pricing:
            return pricing[trimmed]
    return None


def cost_for_usage(usage: dict[str, Any], price: Optional[dict[str, Any]]) -> Optional[float]:
    if not price:
        return None
    input_cost = (usage.get("promptTokens", 0) / 1_000_000) * float(price.get("inputUsdPerMillion", 0))
    output_cost = (usage.get("completionTokens", 0) / 1_000_000) * float(price.get("outputUsdPerMillion", 0))
    return round(input_cost + output_cost, 6)


def summarize_models(buckets: dict[str, dict[str, Any]], pricing: dict[str, Any]) -> dict[str, Any]:
    by_model: dict[str, Any] = {}
    totals = empty_bucket()
    total_cost = 0.0
    cost_known = True
    for model, usage in buckets.items():
        cost = cost_for_usage(usage, find_pricing(model, pricing))
        if cost is None:
            cost_known = False
        else:
            total_cost += cost
        summary = {name: int(usage.get(name, 0)) for name in _BUCKET_FIELDS}
        for name in _BUCKET_FIELDS:
            totals[name] += summary[name]
        by_model[model] = {**summary, "costUsd": cost}
    return {
        "models": by_model,
        "totals": {**totals, "costUsd": round(total_cost, 6) if cost_known else None},
    }


def _window_start(today: date) -> date:
    return today - timedelta(days=LAST_DAYS_WINDOW - 1)


def _collect_recent(days: dict[str, Any], kind: str, since: date) -> dict[str, dict[str, int]]:
    collected: dict[str, dict[str, int]] = {}
    for day, buckets in days.items():
        try:
            day_date = date.fromisoformat(day)
        except ValueError:
            continue
        if day_date < since:
            continue
        for model, usage in (buckets.get(kind) or {}).items():
            target = collected.setdefault(model, empty_bucket())
            for name in _BUCKET_FIELDS:
                target[name] += int(usage.get(name, 0))
    return collected


def build_usage_report(
    usage_doc: dict[str, Any],
    pricing_settings: Optional[dict[str, Any]],
    today: Optional[date] = None,
) -> dict[str, Any]:
    pricing_settings = pricing_settings or {}
    pricing = pricing_settings.get("models") or {}
    since = _window_start(today or datetime.now(timezone.utc).date())
    days = usage_doc.get("days") or {}
    totals = usage_doc.get("totals") or {}

    pricing_payload: dict[str, Any] = {"source": pricing_settings.get("source") or "manual", "models": pricing}
    if pricing_settings.get("updatedAt"):
        pricing_payload["updatedAt"] = pricing_settings["updatedAt"]

    return {
        "updatedAt": usage_doc.get("updatedAt"),
        "pricing": pricing_payload,
        "allTime": {
            "models": summarize_models(totals.get("models") or {}, pricing),
            "images": summarize_models(totals.get("images") or {}, pricing),
        },
        "last30Days": {
            "models": summarize_models(_collect_recent(days, "models", since), pricing),
            "images": summarize_models(_collect_recent(days, "images", since), pricing),
        },
    }
