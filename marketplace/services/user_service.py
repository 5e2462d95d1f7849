from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session
from werkzeug.exceptions import BadRequest, NotFound
from werkzeug.security import check_password_hash, generate_password_hash

from marketplace.config import Config
from marketplace.models import User, UserRole, UserStatus
from marketplace.observability import increment_counter
from marketplace.services.auth_service import validate_password
from marketplace.services.pagination import PageResult, paginate
from marketplace.utils import parse_enum

PROFILE_FIELDS = ("first_name", "last_name", "phone")


class UserService:
    def __init__(self, db_session: Session, config: type[Config] = Config) -> None:
        self.db = db_session
        self.config = config
        self.logger = logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Self service
    # ------------------------------------------------------------------
    def update_profile(self, user: User, changes: Dict[str, Any]) -> User:
        for field in PROFILE_FIELDS:
            if field in changes:
                setattr(user, field, changes[field])
        self.db.commit()
        return user

    def change_password(self, user: User, current_password: str, new_password: str) -> None:
        if not current_password or not check_password_hash(user.password_hash, current_password):
            raise BadRequest("Current password is incorrect")
        validate_password(new_password, self.config)
        user.password_hash = generate_password_hash(new_password)
        self.db.commit()
        self.logger.info("Password changed for user %s", user.userID)

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------
    def list_users(
        self,
        page: int,
        limit: int,
        search: Optional[str] = None,
        role: Optional[str] = None,
        status: Optional[str] = None,
    ) -> PageResult:
        query = self.db.query(User)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(
                or_(
                    User.email.ilike(pattern),
                    User.first_name.ilike(pattern),
                    User.last_name.ilike(pattern),
                )
            )
        if role:
            role_value = parse_enum(UserRole, role, "role").value
            query = query.filter(User._roles.like(f"%{role_value}%"))
        if status:
            query = query.filter(User.status == parse_enum(UserStatus, status, "status"))
        return paginate(query.order_by(User.created_at.desc(), User.userID.desc()), page, limit)

    def get_user(self, user_id: int) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    def admin_update(self, user_id: int, changes: Dict[str, Any]) -> User:
        user = self.get_user(user_id)
        for field in PROFILE_FIELDS:
            if field in changes:
                setattr(user, field, changes[field])
        if "roles" in changes:
            roles = changes["roles"]
            if not isinstance(roles, list) or not roles:
                raise BadRequest("roles must be a non-empty list")
            user.roles = [parse_enum(UserRole, role, "roles") for role in roles]
        if "status" in changes:
            user.status = parse_enum(UserStatus, changes["status"], "status")
            if user.status == UserStatus.INACTIVE:
                user.refresh_token_jti = None
        self.db.commit()
        increment_counter("admin_user_updates_total")
        return user

    def soft_delete(self, user_id: int) -> User:
        user = self.get_user(user_id)
        user.status = UserStatus.INACTIVE
        user.refresh_token_jti = None
        self.db.commit()
        self.logger.info("User %s deactivated", user_id)
        return user
