from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import HTTPException, status
from jose import JWTError, jwt
from passlib.context import CryptContext

from ...domain.models import Admin
from ...domain.ports.persistence import AdminRepository

logger = logging.getLogger(__name__)


class AdminAuthService:
    """Manages back-office administrator accounts and bearer tokens."""

    def __init__(
        self,
        persistence: AdminRepository,
        secret_key: str,
        token_exp_minutes: int = 1440,
        algorithm: str = "HS256",
    ) -> None:
        if not secret_key:
            raise RuntimeError("ADMIN_TOKEN_SECRET não configurado.")
        if secret_key == "change-me":
            logger.warning(
                "ADMIN_TOKEN_SECRET está usando o valor padrão. Configure um segredo seguro em produção."
            )
        self._persistence = persistence
        self._secret_key = secret_key
        self._token_exp_minutes = token_exp_minutes
        self._algorithm = algorithm
        self._pwd = CryptContext(schemes=["bcrypt"], deprecated="auto")

    # ------------------------------------------------------------------
    def ensure_default_admin(self, email: Optional[str], password: Optional[str]) -> Optional[Admin]:
        if not email or not password:
            return None
        existing = self._persistence.get_admin_by_email(email.lower())
        if existing:
            return existing
        logger.info("Creating default administrator account for %s", email)
        return self._persistence.create_admin(email=email.lower(), password_hash=self._pwd.hash(password))

    def authenticate(self, email: str, password: str) -> str:
        admin = self._persistence.get_admin_by_email(email.strip().lower())
        if not admin or not admin.is_active:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Credenciais inválidas.")
        if not self._pwd.verify(password, admin.password_hash):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Credenciais inválidas.")
        return self._create_token(admin)

    def verify_token(self, token: str) -> Admin:
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except JWTError as exc:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token inválido.") from exc
        subject = payload.get("sub")
        try:
            admin_id = int(subject)
        except (TypeError, ValueError) as exc:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token inválido.") from exc
        admin = self._persistence.get_admin_by_id(admin_id)
        if not admin:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Administrador não encontrado.")
        return admin

    def get_current_admin(self, token: str) -> Admin:
        admin = self.verify_token(token)
        if not admin.is_active:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Administrador desativado.")
        return admin

    def _create_token(self, admin: Admin) -> str:
        now = datetime.now(tz=timezone.utc)
        expire = now + timedelta(minutes=self._token_exp_minutes)
        payload = {"sub": str(admin.id), "email": admin.email, "exp": expire}
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)
