import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from fastapi import Depends, HTTPException, Request, status

from foundry.config import settings


logger = logging.getLogger("auth.deps")


@dataclass
class AuthContext:
    user_id: str
    user_details: str = ""
    identity_provider: str = ""
    roles: list[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return settings.ADMIN_ROLE in self.roles


def decode_client_principal(encoded: Optional[str]) -> Optional[dict[str, Any]]:
    if not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded).decode("utf-8")
        principal = json.loads(decoded)
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError):
        logger.info("Ignoring undecodable client principal header")
        return None
    if not isinstance(principal, dict):
        return None
    return principal


def get_current_user(request: Request) -> AuthContext:
    principal = decode_client_principal(request.headers.get(settings.PRINCIPAL_HEADER))
    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    raw_roles = principal.get("userRoles") or []
    roles = [str(role) for role in raw_roles if isinstance(role, str)] if isinstance(raw_roles, list) else []
    context = AuthContext(
        user_id=str(principal.get("userId") or ""),
        user_details=str(principal.get("userDetails") or ""),
        identity_provider=str(principal.get("identityProvider") or ""),
        roles=roles,
    )
    logger.debug("AuthContext built", extra={"user_id": context.user_id, "roles": roles})
    return context


def require_admin(auth: AuthContext = Depends(get_current_user)) -> AuthContext:
    if not auth.is_admin:
        logger.warning(
            "Admin route requested without administrator role",
            extra={"user_id": auth.user_id, "roles": auth.roles},
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return auth
