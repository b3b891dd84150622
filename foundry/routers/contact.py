from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from foundry.auth.dependencies import AuthContext, require_admin
from foundry.db.deps import get_session
from foundry.schemas.forms import ContactRequest
from foundry.services import contact as contact_service
from foundry.services.contact import ContactError
from foundry.services.email_sender import EmailSender

router = APIRouter(prefix="/contact", tags=["contact"])


@router.post("")
def submit_contact(payload: ContactRequest, session: Session = Depends(get_session)):
    try:
        return contact_service.submit_contact(session, payload, email_sender_factory=EmailSender)
    except ContactError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc


@router.get("/submissions")
def list_submissions(
    limit: int = contact_service.DEFAULT_SUBMISSION_LIMIT,
    _auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    return contact_service.list_submissions(session, limit)
