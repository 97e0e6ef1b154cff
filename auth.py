import time
from dataclasses import dataclass
from typing import Optional

import bcrypt
from itsdangerous import BadData, URLSafeTimedSerializer
from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from errors import (
    IdentityNotFound,
    InvalidCredential,
    MisconfiguredSigningSecret,
    MissingCredential,
)
from models import User


@dataclass(frozen=True)
class Identity:
    user_id: int


class CredentialValidator:
    """Issues and verifies signed bearer tokens.

    Tokens carry ``sub`` (the user id), ``email`` and ``exp`` claims. Every
    call to :meth:`validate` re-verifies the signature and expiry; nothing is
    cached between calls.
    """

    def __init__(
        self,
        secret: Optional[str],
        scheme: str = "Bearer",
        ttl_minutes: int = 60,
    ) -> None:
        self.secret = secret
        self.scheme = scheme
        self.ttl_minutes = ttl_minutes

    @classmethod
    def from_settings(cls) -> "CredentialValidator":
        settings = get_settings()
        return cls(
            secret=settings.token_secret,
            scheme=settings.token_scheme,
            ttl_minutes=settings.token_ttl_minutes,
        )

    def _serializer(self) -> URLSafeTimedSerializer:
        if not self.secret:
            raise MisconfiguredSigningSecret(
                "Token signing secret is not configured"
            )
        return URLSafeTimedSerializer(self.secret, salt="access-token")

    def issue(self, user_id: int, email: str) -> str:
        serializer = self._serializer()
        expiry = int(time.time()) + self.ttl_minutes * 60
        return serializer.dumps({"sub": user_id, "email": email, "exp": expiry})

    def strip_scheme(self, header: str) -> str:
        prefix = f"{self.scheme} "
        if header.startswith(prefix):
            return header[len(prefix):]
        return header

    def validate(self, header: Optional[str]) -> Identity:
        if not header:
            raise MissingCredential("Authorization header missing")

        token = self.strip_scheme(header)
        serializer = self._serializer()
        try:
            claims = serializer.loads(token, max_age=self.ttl_minutes * 60)
        except BadData as exc:
            raise InvalidCredential("Invalid or expired token") from exc

        if not isinstance(claims, dict):
            raise InvalidCredential("Invalid token payload")
        expiry = claims.get("exp")
        if not isinstance(expiry, int) or int(time.time()) > expiry:
            raise InvalidCredential("Invalid or expired token")

        subject = claims.get("sub")
        if not isinstance(subject, int) or isinstance(subject, bool):
            raise InvalidCredential("Invalid token payload: missing user identifier")
        return Identity(user_id=subject)


class IdentityResolver:
    def __init__(self, session: Session) -> None:
        self.session = session

    def resolve(self, identity: Identity) -> User:
        user = self.session.scalar(
            select(User).where(User.id == identity.user_id, User.deleted_at.is_(None))
        )
        if not user:
            raise IdentityNotFound("User not found")
        return user


def authenticate(
    session: Session, validator: CredentialValidator, credential: Optional[str]
) -> User:
    identity = validator.validate(credential)
    return IdentityResolver(session).resolve(identity)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
