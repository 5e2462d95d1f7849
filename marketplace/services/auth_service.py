from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

from flask_jwt_extended import create_access_token, create_refresh_token, decode_token
from sqlalchemy import func
from sqlalchemy.orm import Session
from werkzeug.exceptions import BadRequest, Conflict, Unauthorized
from werkzeug.security import check_password_hash, generate_password_hash

from marketplace.config import Config
from marketplace.models import User, UserRole, UserStatus, as_utc, utcnow
from marketplace.observability import increment_counter, record_event
from marketplace.utils import parse_text

GENERIC_RESET_MESSAGE = "If the email exists, a password reset link has been sent"


def normalize_email(email: Optional[str]) -> str:
    return parse_text(email, "email").lower()


def validate_password(password: Optional[str], config: type[Config] = Config) -> str:
    if not isinstance(password, str) or len(password) < config.MIN_PASSWORD_LENGTH:
        raise BadRequest(f"Password must be at least {config.MIN_PASSWORD_LENGTH} characters")
    return password


class AuthService:
    """Registration, credential checks and token lifecycle."""

    def __init__(self, db_session: Session, config: type[Config] = Config) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)

    def register(
        self,
        email: str,
        password: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> Dict[str, Any]:
        email = normalize_email(email)
        if not email or "@" not in email:
            raise BadRequest("A valid email is required")
        validate_password(password, self.config)
        if self._find_by_email(email) is not None:
            raise Conflict("Email already registered")

        user = User(
            email=email,
            password_hash=generate_password_hash(password),
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            status=UserStatus.ACTIVE,
        )
        user.roles = [UserRole.CUSTOMER]
        self.db.add(user)
        self.db.flush()

        tokens = self._issue_tokens(user)
        self.db.commit()
        increment_counter("users_registered_total")
        record_event("user_registered", {"user_id": user.userID})
        self.logger.info("User %s registered", user.userID)
        return {"user": user, **tokens}

    def login(self, email: str, password: str) -> Dict[str, Any]:
        user = self._find_by_email(normalize_email(email))
        if user is None or not password or not check_password_hash(user.password_hash, password):
            increment_counter("auth_login_failures_total")
            raise Unauthorized("Invalid credentials")
        if not user.is_active:
            increment_counter("auth_login_failures_total")
            raise Unauthorized("Account is inactive")

        tokens = self._issue_tokens(user)
        self.db.commit()
        increment_counter("auth_logins_total")
        self.logger.info("User %s logged in", user.userID)
        return {"user": user, **tokens}

    def refresh(self, user: User) -> Dict[str, Any]:
        """Rotate both tokens; the presented refresh token was already matched against the stored one."""
        tokens = self._issue_tokens(user)
        self.db.commit()
        return tokens

    def logout(self, user: User) -> None:
        user.refresh_token_jti = None
        self.db.commit()
        self.logger.info("User %s logged out", user.userID)

    def forgot_password(self, email: str) -> str:
        user = self._find_by_email(normalize_email(email))
        if user is not None and user.is_active:
            user.reset_password_token = secrets.token_urlsafe(32)
            user.reset_password_expires = utcnow() + timedelta(
                minutes=self.config.PASSWORD_RESET_TOKEN_MINUTES
            )
            self.db.commit()
            # Delivery is out of scope; operators can pick the token up from the logs.
            self.logger.info(
                "Password reset requested for user %s",
                user.userID,
                extra={"reset_token": user.reset_password_token},
            )
        return GENERIC_RESET_MESSAGE

    def reset_password(self, token: str, new_password: str) -> None:
        if not token:
            raise BadRequest("Invalid or expired reset token")
        user = self.db.query(User).filter(User.reset_password_token == token).first()
        expires = as_utc(user.reset_password_expires) if user else None
        if user is None or expires is None or expires < utcnow():
            raise BadRequest("Invalid or expired reset token")

        validate_password(new_password, self.config)
        user.password_hash = generate_password_hash(new_password)
        user.reset_password_token = None
        user.reset_password_expires = None
        user.refresh_token_jti = None
        self.db.commit()
        self.logger.info("Password reset for user %s", user.userID)

    def _issue_tokens(self, user: User) -> Dict[str, str]:
        access_token = create_access_token(identity=user)
        refresh_token = create_refresh_token(identity=user)
        user.refresh_token_jti = decode_token(refresh_token)["jti"]
        return {"access_token": access_token, "refresh_token": refresh_token}

    def _find_by_email(self, email: str) -> Optional[User]:
        if not email:
            return None
        return self.db.query(User).filter(func.lower(User.email) == email).first()
