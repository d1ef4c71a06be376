import logging
import sqlite3

from fastapi import APIRouter, Depends

from tutor.auth import current_admin
from tutor.database import get_async_conn
from tutor.errors import ConflictError, NotFoundError, ValidationError
from tutor.models import Role, User
from tutor.schemas import UserCreate, UserUpdate
from tutor.services.codes import generate_teacher_code

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["users"])


async def _get_user_or_404(conn, user_id: int) -> dict:
    row = await conn.execute("SELECT * FROM users WHERE id = ?", (user_id,))
    user = await row.fetchone()
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    return dict(user)


@router.post("/users", status_code=201)
async def create_user(body: UserCreate, admin: User = Depends(current_admin)) -> dict:
    """Create a user. Teachers are issued a ``TEACH###`` code."""
    conn = await get_async_conn()
    try:
        teacher_code = None
        if body.role == Role.TEACHER.value:
            teacher_code = await generate_teacher_code(conn)
        try:
            cursor = await conn.execute(
                "INSERT INTO users (email, name, role, teacher_code) VALUES (?, ?, ?, ?)",
                (body.email.lower(), body.name, body.role, teacher_code),
            )
            await conn.commit()
        except sqlite3.IntegrityError:
            raise ConflictError(f"User '{body.email}' already exists", code="duplicate_user")
        row = await conn.execute(
            "SELECT * FROM users WHERE id = ?", (cursor.lastrowid,)
        )
        user = dict(await row.fetchone())
        logger.info(f"Admin {admin.id} created {body.role} {user['id']}")
        return user
    finally:
        await conn.close()


@router.get("/users")
async def list_users(admin: User = Depends(current_admin)) -> list[dict]:
    conn = await get_async_conn()
    try:
        rows = await conn.execute("SELECT * FROM users ORDER BY id")
        return [dict(row) for row in await rows.fetchall()]
    finally:
        await conn.close()


@router.put("/users/{user_id}")
async def update_user(
    user_id: int, body: UserUpdate, admin: User = Depends(current_admin)
) -> dict:
    """Partial update. Becoming a teacher issues a code if the user has none;
    leaving the teacher role clears it."""
    conn = await get_async_conn()
    try:
        user = await _get_user_or_404(conn, user_id)
        fields = {
            k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None
        }
        if "email" in fields:
            fields["email"] = fields["email"].lower()
        if "role" in fields:
            if fields["role"] == Role.TEACHER.value:
                if not user["teacher_code"]:
                    fields["teacher_code"] = await generate_teacher_code(conn)
            else:
                fields["teacher_code"] = None
        if not fields:
            return user
        assignments = ", ".join(f"{column} = ?" for column in fields)
        try:
            await conn.execute(
                f"UPDATE users SET {assignments} WHERE id = ?",
                (*fields.values(), user_id),
            )
            await conn.commit()
        except sqlite3.IntegrityError:
            raise ConflictError(
                f"Email '{fields.get('email')}' already exists", code="duplicate_user"
            )
        logger.info(f"Admin {admin.id} updated user {user_id} ({', '.join(fields)})")
        return await _get_user_or_404(conn, user_id)
    finally:
        await conn.close()


@router.delete("/users/{user_id}")
async def delete_user(user_id: int, admin: User = Depends(current_admin)) -> dict:
    """Delete a user with everything they own (courses, enrollments, chat sessions)."""
    if user_id == admin.id:
        raise ValidationError("You cannot delete your own account")
    conn = await get_async_conn()
    try:
        await _get_user_or_404(conn, user_id)
        row = await conn.execute(
            """SELECT
                 (SELECT COUNT(*) FROM courses WHERE teacher_id = ?) AS courses,
                 (SELECT COUNT(*) FROM enrollments WHERE student_id = ?) AS enrollments,
                 (SELECT COUNT(*) FROM chat_sessions WHERE student_id = ?) AS chat_sessions""",
            (user_id, user_id, user_id),
        )
        counts = dict(await row.fetchone())
        await conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        await conn.commit()
        logger.info(f"Admin {admin.id} deleted user {user_id} ({counts})")
        return {"success": True, "deleted": counts}
    finally:
        await conn.close()
