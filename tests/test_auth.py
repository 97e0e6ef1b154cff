import time

import pytest
from itsdangerous import URLSafeTimedSerializer
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from auth import CredentialValidator, Identity, IdentityResolver
from context import RequestContext
from database import Base
from errors import (
    AlreadyExists,
    IdentityNotFound,
    InvalidCredential,
    MisconfiguredSigningSecret,
    MissingCredential,
)
from models import User
from results import Err, Ok
from schemas import LoginIn, RegisterIn
from services import AuthService

SECRET = "test-secret"


def test_validate_returns_identity_for_issued_token() -> None:
    validator = CredentialValidator(SECRET)
    token = validator.issue(42, "ann@example.com")

    assert validator.validate(f"Bearer {token}") == Identity(user_id=42)


def test_validate_accepts_token_without_scheme() -> None:
    validator = CredentialValidator(SECRET)
    token = validator.issue(7, "bob@example.com")

    assert validator.validate(token).user_id == 7


@pytest.mark.parametrize("header", [None, ""])
def test_missing_header_is_rejected(header) -> None:
    with pytest.raises(MissingCredential):
        CredentialValidator(SECRET).validate(header)


def test_missing_header_wins_over_missing_secret() -> None:
    with pytest.raises(MissingCredential):
        CredentialValidator(None).validate(None)


def test_unset_secret_is_a_server_error() -> None:
    token = CredentialValidator(SECRET).issue(1, "ann@example.com")

    with pytest.raises(MisconfiguredSigningSecret):
        CredentialValidator(None).validate(f"Bearer {token}")
    with pytest.raises(MisconfiguredSigningSecret):
        CredentialValidator("").issue(1, "ann@example.com")


def test_token_signed_with_other_secret_is_invalid() -> None:
    token = CredentialValidator("another-secret").issue(1, "ann@example.com")

    with pytest.raises(InvalidCredential):
        CredentialValidator(SECRET).validate(f"Bearer {token}")


def test_expired_token_is_invalid() -> None:
    validator = CredentialValidator(SECRET, ttl_minutes=-1)
    token = validator.issue(1, "ann@example.com")

    with pytest.raises(InvalidCredential):
        validator.validate(f"Bearer {token}")


@pytest.mark.parametrize("header", ["Bearer not-a-token", "Bearer ", "garbage"])
def test_malformed_token_is_invalid(header: str) -> None:
    with pytest.raises(InvalidCredential):
        CredentialValidator(SECRET).validate(header)


def test_scheme_prefix_is_case_sensitive() -> None:
    validator = CredentialValidator(SECRET)
    token = validator.issue(1, "ann@example.com")

    with pytest.raises(InvalidCredential):
        validator.validate(f"bearer {token}")


def test_token_without_subject_is_invalid() -> None:
    serializer = URLSafeTimedSerializer(SECRET, salt="access-token")
    token = serializer.dumps({"email": "ann@example.com", "exp": int(time.time()) + 60})

    with pytest.raises(InvalidCredential):
        CredentialValidator(SECRET).validate(f"Bearer {token}")


def test_request_context_extracts_authorization_header() -> None:
    assert RequestContext.extract({"authorization": "Bearer abc"}).credential == (
        "Bearer abc"
    )
    assert RequestContext.extract({"Authorization": "Bearer xyz"}).credential == (
        "Bearer xyz"
    )
    assert RequestContext.extract({}).credential is None
    assert RequestContext.extract({"authorization": ""}).credential is None


def test_resolver_skips_soft_deleted_accounts() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        live = User(email="live@example.com", password_hash="x")
        gone = User(email="gone@example.com", password_hash="x")
        session.add_all([live, gone])
        session.commit()
        gone.deleted_at = gone.created_at
        session.commit()

        resolver = IdentityResolver(session)
        assert resolver.resolve(Identity(user_id=live.id)).email == "live@example.com"
        with pytest.raises(IdentityNotFound):
            resolver.resolve(Identity(user_id=gone.id))
        with pytest.raises(IdentityNotFound):
            resolver.resolve(Identity(user_id=9999))


def test_register_then_login_issues_usable_token() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    validator = CredentialValidator(SECRET)

    with Session(engine) as session:
        service = AuthService(session, validator)
        user = service.register(
            RegisterIn(email="Ann@Example.com", password="secret123")
        ).unwrap()
        assert user.email == "ann@example.com"
        assert user.password_hash != "secret123"

        result = service.login(LoginIn(email="ann@example.com", password="secret123"))
        assert isinstance(result, Ok)
        assert validator.validate(f"Bearer {result.value}").user_id == user.id

        current = service.current_user(f"Bearer {result.value}").unwrap()
        assert current.id == user.id


def test_register_rejects_duplicate_email() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = AuthService(session, CredentialValidator(SECRET))
        service.register(RegisterIn(email="ann@example.com", password="secret123"))

        result = service.register(
            RegisterIn(email="ann@example.com", password="other-pass")
        )
        assert isinstance(result, Err)
        assert isinstance(result.error, AlreadyExists)


def test_login_rejects_wrong_password_and_unknown_email() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = AuthService(session, CredentialValidator(SECRET))
        service.register(RegisterIn(email="ann@example.com", password="secret123"))

        wrong = service.login(LoginIn(email="ann@example.com", password="nope-nope"))
        unknown = service.login(LoginIn(email="zed@example.com", password="secret123"))
        assert isinstance(wrong.error, InvalidCredential)
        assert isinstance(unknown.error, InvalidCredential)
