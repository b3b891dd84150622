from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from foundry.auth.dependencies import AuthContext, require_admin
from foundry.db.deps import get_session
from foundry.routers.content import validation_http_error
from foundry.services import site_config
from foundry.services.content import ContentValidationError

router = APIRouter(prefix="/config", tags=["config"])


@router.get("")
def get_config(session: Session = Depends(get_session)):
    return site_config.get_public_site_config(session)


@router.post("")
@router.put("")
def save_config(
    payload: dict[str, Any] = Body(...),
    _auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
):
    try:
        saved = site_config.save_site_config(session, payload)
    except ContentValidationError as exc:
        raise validation_http_error(exc) from exc
    return site_config.sanitize_site_config(saved)
