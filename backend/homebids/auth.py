"""Authentication (identity provider) and role permissions."""
from datetime import timedelta
from typing import Optional
import logging
import time
from uuid import UUID
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from .config import settings
from .database import get_db
from .domain_errors import Forbidden, Unauthenticated, ValidationError
from .models import User

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
logger = logging.getLogger(__name__)

# Bearer token scheme; a missing header is reported by get_current_user.
optional_security = HTTPBearer(auto_error=False)

SIGN_UP_ROLES = {"homeowner", "contractor", "property_manager"}


def _credentials_error(detail: str = "Could not validate credentials") -> Unauthenticated:
    # Rendered as problem details with a WWW-Authenticate: Bearer header.
    return Unauthenticated(detail)


def validate_new_password(*, new_password: str, email: str | None = None) -> None:
    """Server-side password policy validation."""
    pwd = (new_password or "").strip("\n")
    if len(pwd) < settings.PASSWORD_MIN_LENGTH:
        raise ValidationError(
            f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters",
            code="WEAK_PASSWORD",
        )
    if len(pwd) > settings.PASSWORD_MAX_LENGTH:
        raise ValidationError(
            f"Password must be at most {settings.PASSWORD_MAX_LENGTH} characters",
            code="WEAK_PASSWORD",
        )
    if email and pwd.lower() == email.lower():
        raise ValidationError("Password must not match email", code="WEAK_PASSWORD")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password against hash."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except Exception:
        # Invalid/corrupted hash should not crash sign-in flow.
        logger.exception("Password verification failed due to invalid hash format")
        return False


def get_password_hash(password: str) -> str:
    """Hash password."""
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token."""
    to_encode = data.copy()
    now = int(time.time())
    if expires_delta:
        exp = now + int(expires_delta.total_seconds())
    else:
        exp = now + int(settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES) * 60
    to_encode.update({"exp": exp, "iat": now, "type": "access"})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode JWT token, applying the configured clock-skew leeway."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        raise _credentials_error()

    now = int(time.time())
    try:
        exp_int = int(payload["exp"])
    except (KeyError, TypeError, ValueError):
        raise _credentials_error()
    if now > exp_int + int(settings.JWT_LEEWAY_SECONDS):
        raise _credentials_error("Token expired")

    iat = payload.get("iat")
    if iat is not None:
        try:
            iat_int = int(iat)
        except (TypeError, ValueError):
            raise _credentials_error()
        # Reject tokens issued far in the future (clock skew / malicious tokens).
        if iat_int > now + int(settings.JWT_LEEWAY_SECONDS):
            raise _credentials_error()
    return payload


def _parse_token_subject(payload: dict) -> UUID:
    """Parse and validate JWT subject as UUID."""
    sub = payload.get("sub")
    if not sub:
        raise _credentials_error()
    try:
        return UUID(str(sub))
    except ValueError:
        raise _credentials_error()


def _assert_token_not_revoked(user: User, payload: dict) -> None:
    try:
        token_ver = int(payload.get("ver", 0))
    except (TypeError, ValueError):
        raise _credentials_error()
    if user.token_version != token_ver:
        raise _credentials_error("Token has been revoked")


def resolve_user(db: Session, token: str) -> User:
    """Resolve the active user a bearer token was issued to."""
    payload = decode_token(token)
    if payload.get("type") != "access":
        raise _credentials_error("Invalid token type")

    user_id = _parse_token_subject(payload)
    user = db.query(User).filter(User.id == user_id, User.is_active == True).first()
    if user is None:
        raise _credentials_error("User not found or inactive")

    _assert_token_not_revoked(user, payload)
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_security),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user."""
    if credentials is None:
        raise _credentials_error("Authentication required")
    return resolve_user(db, credentials.credentials)


def sign_up(db: Session, *, email: str, password: str, metadata: dict[str, str] | None = None) -> User:
    """Register a new account; metadata carries full_name and role."""
    metadata = metadata or {}
    email = email.strip().lower()
    validate_new_password(new_password=password, email=email)

    role = metadata.get("role", "homeowner")
    if role not in SIGN_UP_ROLES:
        raise ValidationError(f"Unsupported role: {role}", code="INVALID_ROLE")

    if db.query(User).filter(User.email == email).first():
        raise ValidationError("Email already registered", code="EMAIL_TAKEN")

    user = User(
        email=email,
        password_hash=get_password_hash(password),
        full_name=metadata.get("full_name"),
        role=role,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent sign-up for the same email.
        db.rollback()
        raise ValidationError("Email already registered", code="EMAIL_TAKEN")
    logger.info("auth.sign_up user=%s role=%s", user.id, role)
    return user


def sign_in(db: Session, *, email: str, password: str) -> tuple[User, str]:
    """Verify credentials and issue an access token."""
    email = (email or "").strip().lower()
    user = db.query(User).filter(User.email == email, User.is_active == True).first()
    if not user or not verify_password(password, user.password_hash):
        raise _credentials_error("Invalid email or password")
    token = create_access_token({"sub": str(user.id), "ver": user.token_version})
    return user, token


def sign_out(db: Session, *, user: User) -> None:
    """Revoke every token issued so far (token_version bump)."""
    user.token_version += 1
    db.commit()


# Permission checks
class PermissionChecker:
    """Check user permissions based on role."""

    def __init__(self, required_permission: str):
        self.required_permission = required_permission

    def __call__(self, current_user: User = Depends(get_current_user)):
        """Check if user has required permission."""
        if not check_permission(current_user, self.required_permission):
            raise Forbidden(
                f"Permission denied: {self.required_permission} required",
                code="PERMISSION_DENIED",
            )
        return current_user


# Role permissions matrix
ROLE_PERMISSIONS = {
    "admin": {
        "canPostProjects": True,
        "canBid": False,
    },
    "homeowner": {
        "canPostProjects": True,
        "canBid": False,
    },
    "property_manager": {
        "canPostProjects": True,
        "canBid": False,
    },
    "contractor": {
        "canPostProjects": False,
        "canBid": True,
    },
}


def check_permission(user: User, permission: str) -> bool:
    """Check if user has specific permission."""
    permissions = ROLE_PERMISSIONS.get(user.role, {})
    return permissions.get(permission, False)
