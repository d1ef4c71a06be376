"""Caller identity for API routes.

Session handling lives in front of this service; requests arrive with the
authenticated user's id in ``X-User-Id``.
"""

from fastapi import Depends, Header

from tutor.database import get_async_conn
from tutor.errors import ForbiddenError, UnauthorizedError
from tutor.models import Role, User


async def load_user(user_id: int | None) -> User | None:
    if user_id is None:
        return None
    conn = await get_async_conn()
    try:
        row = await conn.execute("SELECT * FROM users WHERE id = ?", (user_id,))
        user = await row.fetchone()
        return User(**dict(user)) if user else None
    finally:
        await conn.close()


async def current_user(x_user_id: int | None = Header(default=None)) -> User:
    user = await load_user(x_user_id)
    if user is None:
        raise UnauthorizedError("Unauthorized")
    return user


def require_role(role: Role):
    async def _dependency(user: User = Depends(current_user)) -> User:
        if user.role != role.value:
            raise ForbiddenError(f"Unauthorized - {role.value.capitalize()} access required")
        return user

    return _dependency


current_admin = require_role(Role.ADMIN)
current_teacher = require_role(Role.TEACHER)
current_student = require_role(Role.STUDENT)
