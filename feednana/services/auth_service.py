# services/auth_service.py
import logging
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from feednana.config import Settings, get_settings
from feednana.exceptions import AuthenticationError, ValidationError
from feednana.models.database import User
from feednana.models.upload_models import AuthResult, UserOut
from feednana.services.session_service import hash_password, sign_jwt, verify_password

logger = logging.getLogger(__name__)

MIN_USERNAME_LENGTH = 3
MAX_USERNAME_LENGTH = 20
MIN_PASSWORD_LENGTH = 4


class AuthService:
    """Account registration and password login; both hand back a signed JWT."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def _result(self, user: User) -> AuthResult:
        return AuthResult(user=UserOut.model_validate(user), token=sign_jwt(user.id, self.settings))

    def register(self, db: Session, username: str, display_name: str, email: str, password: str) -> AuthResult:
        if not MIN_USERNAME_LENGTH <= len(username) <= MAX_USERNAME_LENGTH:
            raise ValidationError(
                f"Username must be between {MIN_USERNAME_LENGTH} and {MAX_USERNAME_LENGTH} characters"
            )
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        # Usernames and emails are unique regardless of case
        existing = db.scalar(
            select(User).where(
                or_(func.lower(User.username) == username.lower(), func.lower(User.email) == email.lower())
            )
        )
        if existing:
            if existing.username.lower() == username.lower():
                raise ValidationError("Username already taken")
            raise ValidationError("Email already registered")

        user = User(
            username=username,
            display_name=display_name,
            email=email,
            password_hash=hash_password(password),
        )
        db.add(user)
        db.commit()
        logger.info(f"Registered user {user.id} ({username})")
        return self._result(user)

    def login(self, db: Session, username: str, password: str) -> AuthResult:
        user = db.scalar(select(User).where(func.lower(User.username) == username.lower()))
        if not user:
            raise AuthenticationError("Invalid username or password")
        if user.banned:
            raise AuthenticationError("This account has been banned")
        if not verify_password(password, user.password_hash):
            raise AuthenticationError("Invalid username or password")
        return self._result(user)
