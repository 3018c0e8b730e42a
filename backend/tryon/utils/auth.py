from __future__ import annotations

from flask import abort, g, request

from tryon.errors import Unauthorized
from tryon.extensions import db
from tryon.models import User
from tryon.utils.jwt_utils import get_bearer_token, user_id_from_token


def current_user() -> User | None:
    uid = user_id_from_token(get_bearer_token(request.headers.get("Authorization", "")))
    if uid is None:
        return None
    user = db.session.get(User, uid)
    if user is not None:
        g.auth_user_id = int(user.id)
        g.auth_role = user.normalized_role
    return user


def require_user() -> User:
    user = current_user()
    if user is None:
        abort(401, description="Authentication required")
    return user


def role_of(user: User | None) -> str:
    if user is None:
        return "guest"
    return user.normalized_role


def is_admin(user: User | None) -> bool:
    return role_of(user) == "admin"


def require_role(user: User, *roles: str) -> None:
    if is_admin(user) or role_of(user) in roles:
        return
    raise Unauthorized(f"{role_of(user)} may not perform this action", role=role_of(user))


def require_admin(user: User) -> None:
    if not is_admin(user):
        raise Unauthorized("Admin required", role=role_of(user))
