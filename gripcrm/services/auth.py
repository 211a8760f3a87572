"""
Accounts: registration, login, email verification and password reset.

Verification and reset tokens are random UUIDs stored on the user row.
They are delivered by email only and never logged.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple, Union

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth.security import create_access_token, get_password_hash, verify_password
from ..config import Settings, settings as default_settings
from ..models.models import ActivityType, User, ensure_utc
from .activity import ActivityRecorder, BoundActivityRecorder
from .errors import AuthError, ConflictError, PermissionDeniedError, ValidationError
from .notifications import Notifier


logger = structlog.get_logger(__name__)

DUPLICATE_USER = "User already exists with this email"
BAD_CREDENTIALS = "Invalid email or password"
MIN_PASSWORD_LENGTH = 6


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class AuthService:
    def __init__(
        self,
        db: Session,
        notifier: Optional[Notifier] = None,
        activity: Optional[Union[ActivityRecorder, BoundActivityRecorder]] = None,
        config: Optional[Settings] = None,
    ):
        self.db = db
        self.notifier = notifier
        self.activity = activity
        self.config = config or default_settings

    def _by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == _normalize_email(email)).first()

    def register(self, email: str, name: str, password: str) -> Tuple[User, str]:
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError("Password must be at least 6 characters long")
        if self._by_email(email):
            raise ConflictError(DUPLICATE_USER)
        verified = bool(self.config.auto_verify_users or not self.config.require_email_verification)
        user = User(
            email=_normalize_email(email),
            name=name.strip(),
            password_hash=get_password_hash(password),
            is_verified=verified,
            verification_token=None if verified else str(uuid.uuid4()),
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(DUPLICATE_USER)
        self.db.refresh(user)
        logger.info("user_registered", user_id=str(user.id), verified=user.is_verified)
        if self.notifier is not None and not user.is_verified:
            try:
                self.notifier.send_verification_email(user)
            except Exception as e:
                logger.warning("verification_email_failed", user_id=str(user.id), error=str(e))
        return user, create_access_token(user)

    def login(self, email: str, password: str) -> Tuple[User, str]:
        user = self._by_email(email)
        if not user or not verify_password(password, user.password_hash):
            logger.info("login_failed")
            raise AuthError(BAD_CREDENTIALS)
        if self.config.require_email_verification and not user.is_verified:
            raise PermissionDeniedError("Please verify your email before logging in")
        if self.activity is not None:
            self.activity.record(user.id, ActivityType.LOGIN, "User logged in")
        return user, create_access_token(user)

    def verify_email(self, token: str) -> User:
        user = self.db.query(User).filter(User.verification_token == token).first() if token else None
        if not user:
            raise ValidationError("Invalid verification token")
        user.is_verified = True
        user.verification_token = None
        self.db.commit()
        logger.info("user_verified", user_id=str(user.id))
        return user

    def request_password_reset(self, email: str) -> None:
        user = self._by_email(email)
        if not user:
            # Unknown emails are not revealed
            return
        user.reset_token = str(uuid.uuid4())
        user.reset_token_expires = datetime.now(timezone.utc) + timedelta(
            seconds=self.config.password_reset_ttl_seconds
        )
        self.db.commit()
        logger.info("password_reset_requested", user_id=str(user.id))
        if self.notifier is not None:
            try:
                self.notifier.send_password_reset_email(user)
            except Exception as e:
                logger.warning("password_reset_email_failed", user_id=str(user.id), error=str(e))

    def reset_password(self, token: str, new_password: str) -> User:
        if len(new_password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError("Password must be at least 6 characters long")
        user = self.db.query(User).filter(User.reset_token == token).first() if token else None
        expires = ensure_utc(user.reset_token_expires) if user else None
        if not user or not expires or expires < datetime.now(timezone.utc):
            raise ValidationError("Invalid or expired reset token")
        user.password_hash = get_password_hash(new_password)
        user.reset_token = None
        user.reset_token_expires = None
        self.db.commit()
        logger.info("password_reset_completed", user_id=str(user.id))
        return user

    def check_password(self, user: User, password: str) -> None:
        if not password:
            raise ValidationError("Password confirmation required")
        if not verify_password(password, user.password_hash):
            raise AuthError("Invalid password")
