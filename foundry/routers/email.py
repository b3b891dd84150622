from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from foundry.auth.dependencies import AuthContext, require_admin
from foundry.db.deps import get_session
from foundry.schemas.forms import EmailSendRequest, EmailSendResponse, EmailStatsResponse
from foundry.services import newsletter
from foundry.services.email_sender import EmailSender, EmailSendError
from foundry.services.mailerlite import MailerLiteClient, MailerLiteError
from foundry.services.subscribers import subscriber_counts

router = APIRouter(prefix="/email", tags=["email"])
logger = logging.getLogger(__name__)


@router.post("/send", response_model=EmailSendResponse)
def send_newsletter(
    payload: EmailSendRequest,
    _auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    sender = newsletter.NewsletterSender(
        session,
        email_sender_factory=EmailSender,
        mailerlite_factory=MailerLiteClient,
    )
    try:
        return sender.send(payload)
    except (newsletter.NewsletterConfigError, EmailSendError, MailerLiteError) as exc:
        logger.error("Newsletter send failed", extra={"error": str(exc)})
        newsletter.record_send_failure(session, str(exc))
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc


@router.get("/stats", response_model=EmailStatsResponse)
def email_stats(
    _auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return newsletter.email_dashboard_stats(session, subscriber_counts(session))
