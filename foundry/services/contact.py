from __future__ import annotations

import logging
import secrets
import string
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from foundry.config import settings
from foundry.db.enums import ContainerEnum
from foundry.db.repositories.documents import DocumentsRepository
from foundry.schemas.forms import ContactRequest
from foundry.services import site_config
from foundry.services.email_sender import EmailSender, EmailSendError
from foundry.services.newsletter import hydrate_template

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT_TEMPLATE = "Contact form: {{subject}}"
DEFAULT_SUBMISSION_LIMIT = 50
MAX_SUBMISSION_LIMIT = 200
_ID_ALPHABET = string.ascii_lowercase + string.digits


class ContactError(RuntimeError):
    status_code = 400


class ContactConfigError(ContactError):
    status_code = 500


class ContactDeliveryError(ContactError):
    status_code = 502


def make_submission_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"contact-{int(time.time() * 1000)}-{suffix}"


def _safe(value: Optional[str]) -> str:
    return value.replace("<", "&lt;").replace(">", "&gt;") if value else ""


def build_contact_html(submission: dict[str, Any]) -> str:
    rows = [
        f'<p style="margin: 4px 0;"><strong>Name:</strong> {_safe(submission.get("name"))}</p>',
        f'<p style="margin: 4px 0;"><strong>Email:</strong> {_safe(submission.get("email"))}</p>',
    ]
    for label, key in (("Company", "company"), ("Phone", "phone"), ("Subject", "subject"), ("Page", "pageUrl")):
        if submission.get(key):
            rows.append(f'<p style="margin: 4px 0;"><strong>{label}:</strong> {_safe(submission[key])}</p>')
    return (
        '<div style="font-family: Arial, sans-serif; color: #0f172a; background: #f8fafc; padding: 24px;">'
        '<h2 style="margin: 0 0 12px; color: #0f172a;">New contact request</h2>'
        + "".join(rows)
        + '<div style="margin-top: 16px; padding: 12px; background: #ffffff; border-radius: 12px; '
        'border: 1px solid #e2e8f0;">'
        '<div style="font-size: 12px; text-transform: uppercase; letter-spacing: .08em; color: #64748b;">Message</div>'
        f'<p style="margin-top: 8px; color: #1f2937; white-space: pre-line;">{_safe(submission.get("message"))}</p>'
        "</div></div>"
    )


def _repo(session: Session) -> DocumentsRepository:
    return DocumentsRepository(session, ContainerEnum.contact_submissions)


def submit_contact(
    session: Session,
    request: ContactRequest,
    *,
    email_sender_factory: Callable[[], EmailSender] = EmailSender,
) -> dict[str, Any]:
    config = site_config.load_site_config(session)
    contact_settings = config.get("contact") or {}
    if not contact_settings.get("enabled"):
        raise ContactError("Contact form is disabled.")
    recipient = str(contact_settings.get("recipientEmail") or "").strip()
    if not recipient:
        raise ContactError("Contact recipient email is not configured.")
    from_email = (config.get("emailSettings") or {}).get("fromEmail") or settings.SMTP_SENDER_EMAIL or ""
    if not from_email:
        raise ContactConfigError("Missing fromEmail (set Admin > Email settings or SMTP_SENDER_EMAIL).")

    submission: dict[str, Any] = {
        **request.model_dump(mode="json", exclude_none=True),
        "id": make_submission_id(),
        "createdAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "status": "new",
    }
    subject = hydrate_template(
        contact_settings.get("subjectTemplate") or DEFAULT_SUBJECT_TEMPLATE,
        {
            "name": submission["name"],
            "email": submission["email"],
            "subject": submission.get("subject") or "New message",
        },
    )

    repo = _repo(session)
    repo.upsert(submission)
    try:
        email_sender_factory().send(
            sender=from_email,
            subject=subject,
            html=build_contact_html(submission),
            to=[recipient],
            reply_to=(submission["email"], submission["name"]),
            headers={"X-Foundry-Contact": submission["id"]},
        )
    except EmailSendError as exc:
        logger.exception("Contact email failed", extra={"submission_id": submission["id"]})
        repo.upsert({**submission, "status": "failed"})
        raise ContactDeliveryError("Failed to send contact email.") from exc

    repo.upsert({**submission, "status": "sent"})
    logger.info("Contact submission sent", extra={"submission_id": submission["id"]})
    return {"ok": True, "id": submission["id"]}


def list_submissions(session: Session, limit: int = DEFAULT_SUBMISSION_LIMIT) -> list[dict[str, Any]]:
    bounded = min(max(limit, 1), MAX_SUBMISSION_LIMIT)
    submissions = _repo(session).list()
    submissions.sort(key=lambda item: str(item.get("createdAt") or ""), reverse=True)
    return submissions[:bounded]
