from dataclasses import dataclass
import logging
from typing import Any, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.auth.clerk import verify_clerk_token
from app.config import settings


bearer_scheme = HTTPBearer(auto_error=False)
logger = logging.getLogger("auth.deps")


@dataclass
class AuthContext:
    user_id: str
    role: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == settings.ADMIN_ROLE_VALUE


def _role_from_claims(claims: dict[str, Any]) -> Optional[str]:
    claim = settings.ADMIN_ROLE_CLAIM
    role = claims.get(claim)
    if role is None:
        # Clerk session tokens commonly nest custom claims under metadata.
        for container in ("metadata", "public_metadata", "publicMetadata"):
            nested = claims.get(container)
            if isinstance(nested, dict) and nested.get(claim) is not None:
                role = nested.get(claim)
                break
    return str(role) if role is not None else None


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> AuthContext:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")

    claims = verify_clerk_token(credentials.credentials)
    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token claims")

    role = _role_from_claims(claims)
    logger.debug("AuthContext built", extra={"sub": user_id, "role": role})
    return AuthContext(user_id=user_id, role=role)


def require_admin(auth: AuthContext = Depends(get_current_user)) -> AuthContext:
    if not auth.is_admin:
        logger.warning("Admin role required", extra={"sub": auth.user_id, "role": auth.role})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return auth
