from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ...application.services.admin_auth_service import AdminAuthService
from ...core.dependencies import get_admin_auth_service
from ...domain.models import Admin

_bearer_scheme = HTTPBearer(auto_error=False)


def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    admin_service: AdminAuthService = Depends(get_admin_auth_service),
) -> Admin:
    """Resolve the back-office admin behind the bearer token, or answer 401."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token ausente.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return admin_service.get_current_admin(credentials.credentials)
