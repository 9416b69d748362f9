# shared/socket_bus.py
# Newline-delimited JSON über TCP zwischen den Shard-Prozessen.
# Envelope: {"type": str, "payload": dict, "secret": str, "request_id": str}
# Antwort:  {"ok": bool, "data": Any} bzw. {"ok": false, "error": str}
import asyncio
import json
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

log = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], Awaitable[Any]]


class SocketServer:
    def __init__(self, host: str = "127.0.0.1", port: int = 45678, secret: str = ""):
        self.host = host
        self.port = port
        self.secret = secret
        self._server: Optional[asyncio.base_events.Server] = None
        self._handlers: Dict[str, Handler] = {}

    def add_handler(self, msg_type: str, handler: Handler) -> None:
        self._handlers[msg_type] = handler

    @property
    def bound_port(self) -> Optional[int]:
        if not self._server or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    async def _reply(self, writer: asyncio.StreamWriter, out: Dict[str, Any]) -> None:
        writer.write(json.dumps(out).encode("utf-8") + b"\n")
        await writer.drain()

    async def _handle_conn(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        try:
            raw = await reader.readline()
            if not raw:
                return
            try:
                msg = json.loads(raw.decode("utf-8"))
            except ValueError:
                await self._reply(writer, {"ok": False, "error": "bad_json"})
                return

            if not isinstance(msg, dict) or msg.get("secret") != self.secret:
                log.warning("SocketServer: Auth fehlgeschlagen von %s", writer.get_extra_info("peername"))
                await self._reply(writer, {"ok": False, "error": "auth_failed"})
                return

            mtype = msg.get("type")
            handler = self._handlers.get(mtype)
            if not handler:
                await self._reply(writer, {"ok": False, "error": f"no_handler:{mtype}"})
                return

            try:
                res = await handler(msg.get("payload") or {})
                out = {"ok": True, "data": res}
            except Exception as e:
                log.exception("handler error (%s)", mtype)
                out = {"ok": False, "error": str(e)}
            await self._reply(writer, out)
        finally:
            try:
                writer.close()
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass

    async def start(self):
        self._server = await asyncio.start_server(self._handle_conn, self.host, self.port)
        sock = ", ".join(str(s.getsockname()) for s in self._server.sockets)
        log.info("SocketServer listening on %s (secret set: %s)", sock, bool(self.secret))

    async def stop(self):
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None


class SocketClient:
    def __init__(self, host: str = "127.0.0.1", port: int = 45678, secret: str = ""):
        self.host = host
        self.port = port
        self.secret = secret

    async def send(self, msg_type: str, payload: Dict[str, Any], timeout: float = 5.0) -> Dict[str, Any]:
        reader, writer = await asyncio.wait_for(asyncio.open_connection(self.host, self.port), timeout=timeout)
        req = {"type": msg_type, "payload": payload, "secret": self.secret, "request_id": str(uuid.uuid4())}
        try:
            writer.write(json.dumps(req).encode("utf-8") + b"\n")
            await writer.drain()
            raw = await asyncio.wait_for(reader.readline(), timeout=timeout)
        finally:
            try:
                writer.close()
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
        try:
            return json.loads(raw.decode("utf-8")) if raw else {"ok": False, "error": "no_response"}
        except ValueError:
            return {"ok": False, "error": "bad_json_response"}
