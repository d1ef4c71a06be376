"""Human-readable unique codes for lessons, courses and teachers."""

import random
import re
import string
import time

import aiosqlite

LESSON_CODE_ATTEMPTS = 10
COURSE_CODE_ATTEMPTS = 20
TEACHER_CODE_ATTEMPTS = 10

COURSE_CODE_CHARSET = string.ascii_uppercase + string.digits
COURSE_CODE_LENGTH = 7

_TEACHER_CODE_RE = re.compile(r"^TEACH(\d{3})$")


async def _exists(conn: aiosqlite.Connection, sql: str, value: str) -> bool:
    row = await conn.execute(sql, (value,))
    return await row.fetchone() is not None


async def generate_lesson_code(conn: aiosqlite.Connection) -> str:
    """Return an unused code like ``LESSON007``.

    After ten collisions falls back to the last six digits of the current
    millisecond timestamp, then to that plus a random two-digit suffix.
    """
    sql = "SELECT 1 FROM lessons WHERE lesson_code = ?"
    for _ in range(LESSON_CODE_ATTEMPTS):
        code = f"LESSON{random.randrange(1000):03d}"
        if not await _exists(conn, sql, code):
            return code

    timestamp = str(int(time.time() * 1000))[-6:]
    fallback = f"LESSON{timestamp}"
    if not await _exists(conn, sql, fallback):
        return fallback
    return f"{fallback}{random.randrange(100)}"


async def generate_course_code(conn: aiosqlite.Connection) -> str:
    sql = "SELECT 1 FROM courses WHERE course_code = ?"
    for _ in range(COURSE_CODE_ATTEMPTS):
        code = "".join(random.choices(COURSE_CODE_CHARSET, k=COURSE_CODE_LENGTH))
        if not await _exists(conn, sql, code):
            return code
    raise RuntimeError("Failed to generate unique course code after maximum attempts")


async def generate_teacher_code(conn: aiosqlite.Connection) -> str:
    """Return an unused ``TEACH###`` code (001-999).

    Random picks first; if those keep colliding, the lowest free number.
    """
    sql = "SELECT 1 FROM users WHERE teacher_code = ?"
    for _ in range(TEACHER_CODE_ATTEMPTS):
        code = f"TEACH{random.randint(1, 999):03d}"
        if not await _exists(conn, sql, code):
            return code

    rows = await conn.execute(
        "SELECT teacher_code FROM users WHERE teacher_code IS NOT NULL"
    )
    used = set()
    for row in await rows.fetchall():
        match = _TEACHER_CODE_RE.match(row["teacher_code"])
        if match:
            used.add(int(match.group(1)))

    for number in range(1, 1000):
        if number not in used:
            return f"TEACH{number:03d}"
    raise RuntimeError("No available teacher codes (all 999 are taken)")
