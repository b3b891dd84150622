"""Newsletter sends: recipient filtering, template hydration and batched delivery."""

from __future__ import annotations

import concurrent.futures
import logging
import re
import time
from collections.abc import Callable
from datetime import datetime, timezone
from email.utils import formataddr
from typing import Any, Optional, TypeVar

from pydantic import ValidationError
from sqlalchemy.orm import Session

from foundry.config import settings
from foundry.db.enums import ContainerEnum
from foundry.db.repositories.documents import DocumentsRepository
from foundry.schemas.content import NewsPost, Platform, dump_document
from foundry.schemas.forms import EmailSendRequest
from foundry.services import site_config
from foundry.services.email_sender import EmailSender
from foundry.services.mailerlite import MailerLiteClient, resolve_api_key
from foundry.services.subscribers import active_subscribers, filter_recipients

logger = logging.getLogger(__name__)

STATS_ID = "email-stats"
MAX_BATCH_SIZE = 490
NO_MATCH_MESSAGE = "No subscribers matched filter"

DEFAULT_TEMPLATE = """
  <div style="font-family: Arial, sans-serif; color: #0f172a; background: #f8fafc; padding: 24px;">
    <h2 style="margin: 0 0 12px; color: #0f172a;">New update: {{newsTitle}}</h2>
    {{newsSection}}
    <p style="font-size: 12px; color: #475569; margin-top: 24px;">
      <a href="{{manageUrl}}" style="color: #0f172a; font-weight: 600;">Manage preferences</a>&nbsp;&middot;&nbsp;
      <a href="{{unsubscribeUrl}}" style="color: #ef4444; font-weight: 600;">Unsubscribe</a>
    </p>
  </div>
"""

_PARAGRAPH_SPLIT_RE = re.compile(r"\n{2,}")

T = TypeVar("T")


class NewsletterConfigError(RuntimeError):
    pass


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# Stats


def _stats_repo(session: Session) -> DocumentsRepository:
    return DocumentsRepository(session, ContainerEnum.config)


def get_email_stats(session: Session) -> dict[str, Any]:
    stats = _stats_repo(session).get(STATS_ID)
    if stats:
        return stats
    return {"id": STATS_ID, "totalSent": 0, "totalFailed": 0, "totalCampaigns": 0}


def update_email_stats(
    session: Session,
    *,
    total_sent: int = 0,
    total_failed: int = 0,
    total_campaigns: int = 0,
    last_sent_at: Optional[str] = None,
    last_error: Optional[str] = None,
) -> dict[str, Any]:
    existing = get_email_stats(session)
    stats = {
        **existing,
        "id": STATS_ID,
        "totalSent": int(existing.get("totalSent") or 0) + total_sent,
        "totalFailed": int(existing.get("totalFailed") or 0) + total_failed,
        "totalCampaigns": int(existing.get("totalCampaigns") or 0) + total_campaigns,
    }
    if last_sent_at:
        stats["lastSentAt"] = last_sent_at
    if last_error is not None:
        stats["lastError"] = last_error
    return _stats_repo(session).upsert(stats)


def record_send_failure(session: Session, message: str) -> None:
    try:
        update_email_stats(session, total_failed=1, last_error=message, last_sent_at=_now_iso())
    except Exception:  # noqa: BLE001
        session.rollback()
        logger.exception("Failed to record email send failure")


# Templates


def chunk(items: list[T], size: int) -> list[list[T]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def hydrate_template(template: str, values: dict[str, str]) -> str:
    output = template
    for key, value in values.items():
        output = output.replace(f"{{{{{key}}}}}", value)
    return output


def build_news_url(base_url: str, news: Optional[dict[str, Any]]) -> str:
    if not base_url or not news:
        return ""
    return f"{base_url.rstrip('/')}/news/{news['id']}"


def to_paragraphs(text: Optional[str]) -> str:
    trimmed = (text or "").strip()
    if not trimmed:
        return ""
    paragraphs = [p.strip() for p in _PARAGRAPH_SPLIT_RE.split(trimmed) if p.strip()]
    return "".join(
        f'<p style="margin: 10px 0; color:#1f2937;">{p.replace(chr(10), "<br />")}</p>' for p in paragraphs
    )


def build_news_section(news: Optional[dict[str, Any]], platforms: list[dict[str, Any]], news_url: str) -> str:
    if not news:
        return ""

    image = ""
    if news.get("imageUrl") and news_url:
        alt = news.get("imageAlt") or news.get("title", "")
        image = (
            f'<a href="{news_url}"><img src="{news["imageUrl"]}" alt="{alt}" '
            'style="width:100%;max-width:640px;border-radius:12px;'
            'box-shadow:0 6px 20px rgba(0,0,0,0.12);margin: 12px 0;" /></a>'
        )

    platform_line = ""
    if platforms:
        names = ", ".join(p.get("name") or p["id"] for p in platforms)
        plural = "" if len(platforms) == 1 else "s"
        platform_line = (
            f'<div style="margin: 6px 0 0; color:#475569; font-size: 13px;">Related platform{plural}: {names}</div>'
        )

    meta_parts = []
    if news.get("type"):
        meta_parts.append(f'<span style="display:inline-block;margin-right:8px;">{news["type"]}</span>')
    if news.get("status"):
        meta_parts.append(f'<span style="display:inline-block;margin-right:8px;">{news["status"]}</span>')
    if news.get("publishDate"):
        meta_parts.append(f'<span style="display:inline-block;">{news["publishDate"]}</span>')
    meta = " &middot; ".join(meta_parts)
    meta_block = (
        '<div style="font-size: 12px; color:#64748b; text-transform: uppercase; letter-spacing: .08em;">'
        f"{meta}</div>"
        if meta
        else ""
    )

    links = ""
    news_links = {label: url for label, url in (news.get("links") or {}).items() if url}
    if news_links:
        buttons = "".join(
            f'<a href="{url}" style="display:inline-block;padding:10px 14px;margin:6px 6px 0 0;'
            "background:#0f172a;color:#e2e8f0;text-decoration:none;border-radius:10px;"
            f'font-size:13px;font-weight:600;">{label}</a>'
            for label, url in news_links.items()
        )
        links = f'<div style="margin-top: 14px;">{buttons}</div>'

    read_more = ""
    if news_url:
        read_more = (
            f'<p style="margin: 16px 0 0;"><a href="{news_url}" '
            'style="color: #0f172a; font-weight: 700;">Read the full update</a></p>'
        )

    body = "".join(
        [
            meta_block,
            platform_line,
            image,
            to_paragraphs(news.get("summary")),
            to_paragraphs(news.get("content")),
            links,
            read_more,
        ]
    )
    return f'<div style="background:#fff;border:1px solid #e2e8f0;border-radius:16px;padding:16px;margin:16px 0;">{body}</div>'


# Sending


def _load_valid(session: Session, container: ContainerEnum, model: type, doc_id: str) -> Optional[dict[str, Any]]:
    document = DocumentsRepository(session, container).get(doc_id)
    if document is None:
        return None
    try:
        return dump_document(model.model_validate(document))
    except ValidationError:
        logger.warning("Skipping invalid document", extra={"container": container.value, "doc_id": doc_id})
        return None


class NewsletterSender:
    def __init__(
        self,
        session: Session,
        *,
        email_sender_factory: Callable[[], EmailSender] = EmailSender,
        mailerlite_factory: Callable[[str], MailerLiteClient] = MailerLiteClient,
    ) -> None:
        self.session = session
        self._email_sender_factory = email_sender_factory
        self._mailerlite_factory = mailerlite_factory

    def _sync_recipients(self, api_key: Optional[str], emails: list[str]) -> None:
        if not api_key:
            logger.warning("MailerLite API key not configured; skipping subscriber sync")
            return
        client = self._mailerlite_factory(api_key)
        try:
            with concurrent.futures.ThreadPoolExecutor(max_workers=settings.MAILERLITE_MAX_WORKERS) as executor:
                futures = {executor.submit(client.upsert_subscriber, email): email for email in emails}
                for future in concurrent.futures.as_completed(futures):
                    try:
                        future.result()
                    except Exception as exc:  # noqa: BLE001
                        logger.warning("Failed to upsert subscriber in MailerLite", extra={"error": str(exc)})
        finally:
            client.close()

    def send(self, request: EmailSendRequest) -> dict[str, Any]:
        config = site_config.load_site_config(self.session)
        email_settings = config.get("emailSettings") or {}

        from_email = email_settings.get("fromEmail") or settings.SMTP_SENDER_EMAIL or ""
        if not from_email:
            raise NewsletterConfigError("Missing fromEmail (set Admin > Email settings or SMTP_SENDER_EMAIL env var)")
        sender = formataddr((email_settings["fromName"], from_email)) if email_settings.get("fromName") else from_email
        batch_size = min(email_settings.get("batchSize") or MAX_BATCH_SIZE, MAX_BATCH_SIZE)

        news = _load_valid(self.session, ContainerEnum.news, NewsPost, request.newsId) if request.newsId else None
        platforms: list[dict[str, Any]] = []
        for platform_id in (news or {}).get("platformIds") or []:
            platform = _load_valid(self.session, ContainerEnum.platforms, Platform, platform_id)
            if platform:
                platforms.append(platform)

        recipients = filter_recipients(
            active_subscribers(self.session),
            request.platformIds or [],
            request.sendToAll,
        )
        if not recipients:
            return {"ok": True, "message": NO_MATCH_MESSAGE, "campaigns": [], "total": 0}

        email_sender = self._email_sender_factory()

        base_url = (settings.PUBLIC_SITE_URL or "").rstrip("/")
        manage_url = email_settings.get("manageUrl") or f"{base_url}/subscribe"
        news_url = build_news_url(base_url, news) or manage_url or base_url or "#"
        unsubscribe_url = manage_url or base_url or "#"

        subject = (
            request.subject
            or email_settings.get("templateSubject")
            or (f"Foundry update: {news['title']}" if news else "New update from Foundry")
        )
        html = hydrate_template(
            request.html or email_settings.get("templateHtml") or DEFAULT_TEMPLATE,
            {
                "newsTitle": (news or {}).get("title") or "New update",
                "newsUrl": news_url,
                "manageUrl": manage_url,
                "unsubscribeUrl": unsubscribe_url,
                "platformNames": ", ".join(p.get("name") or p["id"] for p in platforms),
                "newsSummary": (news or {}).get("summary") or "",
                "newsContent": (news or {}).get("content") or "",
                "imageUrl": (news or {}).get("imageUrl") or "",
                "newsSection": build_news_section(news, platforms, news_url),
            },
        )

        mailerlite_key = resolve_api_key(email_settings)
        campaign_ids: list[str] = []
        total_sent = 0
        for batch_number, emails in enumerate(chunk([r["email"] for r in recipients], batch_size), start=1):
            self._sync_recipients(mailerlite_key, emails)
            provider_id = email_sender.send(
                sender=sender,
                subject=subject,
                html=html,
                bcc=emails,
                headers={"X-Foundry-Send": f"batch-{batch_number}"},
            )
            campaign_ids.append(provider_id or f"smtp-{int(time.time() * 1000)}-{batch_number}")
            total_sent += len(emails)

        message = (
            f"Queued {len(campaign_ids)} campaign(s) across {len(recipients)} subscribers "
            f"(batch size {batch_size})."
        )
        logger.info(message)

        try:
            update_email_stats(self.session, total_sent=total_sent, total_campaigns=1, last_sent_at=_now_iso())
        except Exception:  # noqa: BLE001
            self.session.rollback()
            logger.exception("Failed to update email stats")

        return {"ok": True, "campaigns": campaign_ids, "total": len(recipients), "message": message}


def email_dashboard_stats(session: Session, counts: dict[str, int]) -> dict[str, Any]:
    stats = get_email_stats(session)
    return {
        **counts,
        "totalSent": int(stats.get("totalSent") or 0),
        "totalFailed": int(stats.get("totalFailed") or 0),
        "totalCampaigns": int(stats.get("totalCampaigns") or 0),
        "lastSentAt": stats.get("lastSentAt"),
    }
