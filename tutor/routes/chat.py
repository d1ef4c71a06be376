import json
import logging
import sqlite3

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from tutor.auth import load_user
from tutor.chat import hub
from tutor.config import settings
from tutor.database import get_async_conn, to_db_timestamp, utcnow
from tutor.deps import get_tutor_service
from tutor.errors import AppError
from tutor.models import Role
from tutor.routes.student import get_own_chat_session
from tutor.services.tutor import TutorService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])

MAX_MESSAGE_LENGTH = 5000


# ==================================================================
# WebSocket endpoint
# ==================================================================


@router.websocket("/ws/chat/{chat_session_id}")
async def chat_websocket(
    websocket: WebSocket,
    chat_session_id: int,
    user_id: int | None = None,
    tutor: TutorService = Depends(get_tutor_service),
) -> None:
    """Real-time channel for one chat session.

    Client sends ``{"type": "send_message", "content": "..."}``. Every socket
    in the session's room receives ``receive_message`` for the student's
    message and then for the tutor's reply. Problems are reported to the
    sender only, as ``message_error`` with a machine-readable code.
    """
    await websocket.accept()

    user = await load_user(user_id)
    if user is None or user.role != Role.STUDENT.value:
        await _send_error(websocket, "Access denied", "ACCESS_DENIED")
        await websocket.close(code=1008)
        return

    conn = await get_async_conn()
    try:
        chat_session = await get_own_chat_session(conn, chat_session_id, user.id)
    except AppError as e:
        await _send_error(websocket, e.message, e.code.upper())
        await websocket.close(code=1008)
        return
    finally:
        await conn.close()

    hub.join(chat_session_id, websocket)
    await websocket.send_json({"type": "joined", "chat_session_id": chat_session_id})

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except ValueError:
                await _send_error(websocket, "Message must be JSON", "INVALID_MESSAGE")
                continue
            if not isinstance(data, dict) or data.get("type") != "send_message":
                await _send_error(websocket, "Unknown event", "INVALID_MESSAGE")
                continue

            content = data.get("content")
            if not isinstance(content, str) or not content.strip():
                await _send_error(websocket, "Message content is required", "INVALID_MESSAGE")
                continue
            if len(content) > MAX_MESSAGE_LENGTH:
                await _send_error(websocket, "Message is too long", "INVALID_MESSAGE")
                continue

            await _handle_message(websocket, chat_session, content, tutor)
    except WebSocketDisconnect:
        pass
    finally:
        hub.leave(chat_session_id, websocket)


# ==================================================================
# Internal helpers
# ==================================================================


async def _send_error(websocket: WebSocket, error: str, code: str, **extra) -> None:
    await websocket.send_json({"type": "message_error", "error": error, "code": code, **extra})


async def _insert_message(conn, chat_session_id: int, role: str, content: str) -> dict:
    cursor = await conn.execute(
        "INSERT INTO messages (chat_session_id, role, content, created_at) "
        "VALUES (?, ?, ?, ?)",
        (chat_session_id, role, content, to_db_timestamp(utcnow())),
    )
    await conn.commit()
    return {
        "id": cursor.lastrowid,
        "chat_session_id": chat_session_id,
        "role": role,
        "content": content,
    }


async def _handle_message(
    websocket: WebSocket, chat_session: dict, content: str, tutor: TutorService
) -> None:
    """Persist, broadcast, generate the tutor reply, persist, broadcast."""
    session_id = chat_session["id"]
    conn = await get_async_conn()
    try:
        limit = settings.max_messages_per_chat
        if limit is not None:
            row = await conn.execute(
                "SELECT COUNT(*) AS n FROM messages WHERE chat_session_id = ?",
                (session_id,),
            )
            count = (await row.fetchone())["n"]
            if count >= limit:
                logger.info(f"Chat session {session_id} hit message limit ({count}/{limit})")
                await _send_error(
                    websocket,
                    "Message limit reached for this chat session",
                    "LIMIT_REACHED",
                    limit=limit,
                )
                return

        rows = await conn.execute(
            "SELECT role, content FROM messages WHERE chat_session_id = ? "
            "ORDER BY created_at DESC, id DESC LIMIT ?",
            (session_id, settings.chat_history_limit),
        )
        history = [dict(row) for row in reversed(await rows.fetchall())]

        try:
            user_message = await _insert_message(conn, session_id, "user", content)
            await hub.broadcast(session_id, {"type": "receive_message", **user_message})

            row = await conn.execute(
                "SELECT title, summary, raw_transcript FROM lessons WHERE id = ?",
                (chat_session["lesson_id"],),
            )
            lesson = await row.fetchone()
            if not lesson:
                await _send_error(websocket, "Lesson not found", "SESSION_NOT_FOUND")
                return

            try:
                reply = await tutor.reply(dict(lesson), history, content)
            except Exception as e:
                logger.error(
                    f"Tutor reply failed for chat session {session_id}: {e}", exc_info=True
                )
                await _send_error(websocket, "Failed to generate response", "GENERATION_FAILED")
                return
            if not reply:
                await _send_error(websocket, "Failed to generate response", "GENERATION_FAILED")
                return

            assistant_message = await _insert_message(conn, session_id, "assistant", reply)
            await hub.broadcast(session_id, {"type": "receive_message", **assistant_message})
        except sqlite3.IntegrityError:
            # The session (or its lesson) was deleted while the socket was open.
            logger.warning(f"Chat session {session_id} disappeared mid-conversation")
            await _send_error(websocket, "Chat session not found", "SESSION_NOT_FOUND")
    finally:
        await conn.close()
