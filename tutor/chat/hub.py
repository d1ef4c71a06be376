import logging

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ChatHub:
    """In-memory registry of WebSocket rooms, one per chat session.

    Broadcasts are at-most-once: a socket that fails a send is dropped from
    its room and the message is not retried. Clients that were offline
    reload history over REST.
    """

    def __init__(self) -> None:
        # chat_session_id -> connected sockets
        self._rooms: dict[int, list[WebSocket]] = {}

    def join(self, room_id: int, websocket: WebSocket) -> None:
        self._rooms.setdefault(room_id, []).append(websocket)
        logger.info(f"Socket joined chat room {room_id} ({len(self._rooms[room_id])} connected)")

    def leave(self, room_id: int, websocket: WebSocket) -> None:
        sockets = self._rooms.get(room_id)
        if not sockets:
            return
        if websocket in sockets:
            sockets.remove(websocket)
        if not sockets:
            del self._rooms[room_id]
        logger.info(f"Socket left chat room {room_id}")

    def connections(self, room_id: int) -> int:
        return len(self._rooms.get(room_id, []))

    async def broadcast(self, room_id: int, message: dict) -> None:
        """Send a JSON message to every socket in the room."""
        for ws in list(self._rooms.get(room_id, [])):
            try:
                await ws.send_json(message)
            except Exception as e:
                logger.warning(f"Dropping socket from room {room_id}: {e}")
                self.leave(room_id, ws)


hub = ChatHub()
