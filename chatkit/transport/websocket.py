"""WebSocket front door for chat clients.

Protocol (JSON text frames):

    client -> server
        {"type": "hello", "username": ..., "password": ..., "register": false}
        {"type": "public", "body": ...}
        {"type": "private", "to": ..., "body": ...}
        {"type": "history", "with": ...}     # omit "with" for the public feed
        {"type": "search", "query": ...}
        {"type": "online"}

    server -> client
        {"type": "welcome", "session_id": ..., "identity": ..., "online": [...]}
        {"type": "ack", "message": {...}}
        {"type": "message", "destination": "public" | "private", "message": {...}}
        {"type": "history", "with": ..., "messages": [...]}
        {"type": "users", "users": [...]}
        {"type": "online", "users": [...]}
        {"type": "error", "error": <code>, "detail": ...}

The first frame must be ``hello``; every later frame is handled in arrival order.
"""

import asyncio
import json
import logging
from typing import Annotated, Any, Literal

import uuid_utils
from pydantic import Field, TypeAdapter, ValidationError
from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from chatkit.accounts.base import AccountStore
from chatkit.errors import ChatError
from chatkit.models.chat_message import ChatMessage, OutboundEnvelope
from chatkit.models.types import PUBLIC_CHANNEL, CompactBaseModel
from chatkit.router import Router
from chatkit.sessions.session import Session

logger = logging.getLogger(__name__)

DEFAULT_HANDSHAKE_TIMEOUT = 10.0


class HelloFrame(CompactBaseModel):
    type: Literal["hello"]
    username: str
    password: str
    # Create the account first instead of logging in
    new_account: bool = Field(default=False, alias="register")


class PublicFrame(CompactBaseModel):
    type: Literal["public"]
    body: str


class PrivateFrame(CompactBaseModel):
    type: Literal["private"]
    to: str
    body: str


class HistoryFrame(CompactBaseModel):
    type: Literal["history"]
    peer: str = Field(default=PUBLIC_CHANNEL, alias="with")


class SearchFrame(CompactBaseModel):
    type: Literal["search"]
    query: str = ""


class OnlineFrame(CompactBaseModel):
    type: Literal["online"]


ClientFrame = Annotated[
    HelloFrame | PublicFrame | PrivateFrame | HistoryFrame | SearchFrame | OnlineFrame,
    Field(discriminator="type"),
]
_client_frame = TypeAdapter(ClientFrame)


def _encode(frame: dict[str, Any]) -> str:
    return json.dumps(frame, separators=(",", ":"))


def _error(code: str, detail: str) -> dict[str, Any]:
    return {"type": "error", "error": code, "detail": detail}


def _message_view(message: ChatMessage) -> dict[str, Any]:
    return message.model_dump(exclude_unset=False)


class WebSocketTransport:
    """Session transport writing delivery frames to one client connection."""

    def __init__(self, connection: ServerConnection) -> None:
        self._connection = connection

    async def send(self, envelope: OutboundEnvelope) -> None:
        await self._connection.send(
            _encode(
                {
                    "type": "message",
                    "destination": envelope.destination.value,
                    "message": _message_view(envelope.payload),
                }
            )
        )

    async def close(self) -> None:
        await self._connection.close()


class ChatWebSocketServer:
    def __init__(
        self,
        router: Router,
        accounts: AccountStore,
        *,
        host: str = "127.0.0.1",
        port: int = 8765,
        idle_timeout: float | None = None,
        handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
    ) -> None:
        self.router = router
        self.accounts = accounts
        self.host = host
        self.port = port
        self.idle_timeout = idle_timeout
        self.handshake_timeout = handshake_timeout
        self._server: Server | None = None

    @property
    def bound_port(self) -> int:
        """The port actually listened on (useful when started with port 0)."""
        if self._server is None:
            raise RuntimeError("Server is not started")
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        self._server = await serve(self._handle, self.host, self.port)
        logger.info("Chat WebSocket server listening on %s:%d", self.host, self.bound_port)

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        if self._server is None:
            raise RuntimeError("Server failed to start")
        await self._server.serve_forever()

    async def stop(self) -> None:
        await self.router.close_all_sessions()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def _handle(self, connection: ServerConnection) -> None:
        session = await self._handshake(connection)
        if session is None:
            return
        reason = "client disconnected"
        try:
            reason = await self._read_loop(connection, session)
        except Exception:
            logger.exception("Connection handler for session %s failed", session.session_id)
            reason = "connection error"
        finally:
            await self.router.close_session(session, reason=reason)

    async def _handshake(self, connection: ServerConnection) -> Session | None:
        """Authenticate the first frame. Returns the new active session, or None."""
        try:
            raw = await asyncio.wait_for(connection.recv(), self.handshake_timeout)
            hello = _client_frame.validate_json(raw)
        except (asyncio.TimeoutError, ConnectionClosed):
            return None
        except ValidationError as exc:
            detail = f"Invalid hello frame: {exc.error_count()} error(s)"
            await self._reject(connection, "bad_frame", detail)
            return None
        if not isinstance(hello, HelloFrame):
            await self._reject(connection, "handshake_required", "First frame must be 'hello'")
            return None

        try:
            if hello.new_account:
                identity = await self.accounts.create_account(hello.username, hello.password)
            else:
                identity = await self.accounts.authenticate(hello.username, hello.password)
        except ChatError as exc:
            await self._reject(connection, exc.code, str(exc))
            return None

        session_id = uuid_utils.uuid7().hex
        online = sorted({*self.router.registry.online_identities(), identity})
        try:
            await connection.send(
                _encode(
                    {
                        "type": "welcome",
                        "session_id": session_id,
                        "identity": identity,
                        "online": online,
                    }
                )
            )
        except ConnectionClosed:
            return None
        return self.router.open_session(
            identity, WebSocketTransport(connection), session_id=session_id
        )

    async def _reject(self, connection: ServerConnection, code: str, detail: str) -> None:
        logger.info("Rejected connection: %s (%s)", code, detail)
        try:
            await connection.send(_encode(_error(code, detail)))
        except ConnectionClosed:
            return
        await connection.close()

    async def _read_loop(self, connection: ServerConnection, session: Session) -> str:
        """Handle frames until the connection ends. Returns the close reason."""
        while True:
            try:
                if self.idle_timeout is None:
                    raw = await connection.recv()
                else:
                    raw = await asyncio.wait_for(connection.recv(), self.idle_timeout)
            except asyncio.TimeoutError:
                return "idle timeout"
            except ConnectionClosed:
                return "client disconnected"
            if session.is_closed:
                return session.close_reason or "closed"

            reply = await self.handle_frame(session, raw)
            try:
                await connection.send(_encode(reply))
            except ConnectionClosed:
                return "client disconnected"

    async def handle_frame(self, session: Session, raw: str | bytes) -> dict[str, Any]:
        """Process one inbound frame on behalf of ``session`` and build the reply."""
        try:
            frame = _client_frame.validate_json(raw)
        except ValidationError as exc:
            return _error("bad_frame", f"Invalid frame: {exc.error_count()} error(s)")

        try:
            if isinstance(frame, PublicFrame):
                message = await self.router.accept_public(session.identity, frame.body)
                return {"type": "ack", "message": _message_view(message)}
            if isinstance(frame, PrivateFrame):
                message = await self.router.send_private(session.identity, frame.to, frame.body)
                return {"type": "ack", "message": _message_view(message)}
            if isinstance(frame, HistoryFrame):
                if frame.peer == PUBLIC_CHANNEL:
                    messages = await self.router.fetch_public_history()
                else:
                    messages = await self.router.fetch_history(session.identity, frame.peer)
                return {
                    "type": "history",
                    "with": frame.peer,
                    "messages": [_message_view(m) for m in messages],
                }
            if isinstance(frame, SearchFrame):
                return {"type": "users", "users": await self.accounts.search(frame.query)}
            if isinstance(frame, OnlineFrame):
                return {"type": "online", "users": self.router.registry.online_identities()}
        except ChatError as exc:
            return _error(exc.code, str(exc))
        return _error("unexpected_frame", f"Frame type {frame.type!r} is not allowed here")
