import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from fastapi import Depends, Header
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from .config import SESSION_TTL_HOURS
from .database import get_db
from .errors import AuthenticationError, ConflictError, PermissionDeniedError
from .models import AuthSession, Profile, VendorProfile, utcnow

logger = structlog.get_logger(__name__)

# Password hashing
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@dataclass
class CurrentSession:
    """The signed-in caller, resolved once per request and passed to handlers."""

    token: str
    profile: Profile
    vendor_profile: Optional[VendorProfile]

    @property
    def role(self) -> str:
        return self.profile.role


def signup(db: Session, email: str, password: str, full_name: Optional[str], role: str) -> Profile:
    email = email.lower()
    if db.query(Profile).filter(Profile.email == email).first():
        raise ConflictError("Email already registered")
    profile = Profile(
        email=email,
        full_name=full_name,
        role=role,
        password_hash=hash_password(password),
    )
    db.add(profile)
    db.commit()
    db.refresh(profile)
    logger.info("auth.signup", profile_id=profile.id, role=role)
    return profile


def signin(db: Session, email: str, password: str) -> AuthSession:
    profile = db.query(Profile).filter(Profile.email == email.lower()).first()
    if not profile or not verify_password(password, profile.password_hash):
        raise AuthenticationError("Invalid credentials")
    session = AuthSession(
        token=secrets.token_urlsafe(32),
        profile_id=profile.id,
        expires_at=utcnow() + timedelta(hours=SESSION_TTL_HOURS),
    )
    db.add(session)
    db.commit()
    db.refresh(session)
    logger.info("auth.signin", profile_id=profile.id)
    return session


def signout(db: Session, token: str) -> None:
    session = db.get(AuthSession, token)
    if session and session.revoked_at is None:
        session.revoked_at = utcnow()
        db.commit()
        logger.info("auth.signout", profile_id=session.profile_id)


def seed_admin(db: Session, email: str, password: str) -> Profile:
    """Create the admin profile if it does not exist yet."""
    email = email.lower()
    profile = db.query(Profile).filter(Profile.email == email).first()
    if profile:
        if profile.role != "admin":
            profile.role = "admin"
            db.commit()
        return profile
    profile = Profile(email=email, full_name="Administrator", role="admin",
                      password_hash=hash_password(password))
    db.add(profile)
    db.commit()
    logger.info("auth.admin_seeded", profile_id=profile.id)
    return profile


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthenticationError("Missing bearer token")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Missing bearer token")
    return token.strip()


def get_current_session(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> CurrentSession:
    token = _bearer_token(authorization)
    session = db.get(AuthSession, token)
    if session is None or session.revoked_at is not None:
        raise AuthenticationError("Session is not valid")
    if _aware(session.expires_at) <= utcnow():
        raise AuthenticationError("Session has expired")
    profile = session.profile
    return CurrentSession(token=token, profile=profile, vendor_profile=profile.vendor_profile)


def require_role(*roles: str):
    """Dependency factory: only callers whose profile role is in ``roles`` pass."""

    def dependency(current: CurrentSession = Depends(get_current_session)) -> CurrentSession:
        if current.role not in roles:
            raise PermissionDeniedError(f"Requires role: {', '.join(roles)}")
        return current

    return dependency
