import asyncio
import logging
from pathlib import Path

import anyio
from starlette.requests import ClientDisconnect
from starlette.types import Send

from streams_common.errors import ArtifactIOError, ClientDisconnected

logger = logging.getLogger(__name__)

KEEPALIVE = b"\n"


class ResponseChannel:
    """
    The open HTTP response. The status line is committed lazily and at most
    once, by whoever gets there first (heartbeat, streamer, error path).
    """

    def __init__(self, send: Send):
        self._send = send
        self.headers_sent = False
        self.status: int | None = None
        self.finished = False
        self.closed = False
        self.payload_started = False
        self.bytes_sent = 0

    async def start(self, status: int, content_type: str) -> bool:
        if self.headers_sent:
            return False
        self.headers_sent = True
        self.status = status
        await self._emit({
            "type": "http.response.start",
            "status": status,
            "headers": [(b"content-type", content_type.encode("latin-1"))],
        })
        return True

    async def write(self, data: bytes):
        if self.finished:
            raise RuntimeError("response_already_finished")
        await self._emit({"type": "http.response.body", "body": data, "more_body": True})
        self.bytes_sent += len(data)

    async def end(self, data: bytes = b""):
        if self.finished:
            return
        self.finished = True
        await self._emit({"type": "http.response.body", "body": data, "more_body": False})
        self.bytes_sent += len(data)

    async def _emit(self, message: dict):
        if self.closed:
            raise ClientDisconnected("connection closed")
        try:
            await self._send(message)
        except (OSError, ClientDisconnect) as e:
            self.closed = True
            raise ClientDisconnected(str(e) or "connection closed") from e


class Heartbeat:
    """
    Keeps bytes moving while the pipeline runs so proxies do not drop an
    idle connection. Commits 200 on the first beat; after that the status
    can no longer change, only the body text.
    """

    def __init__(self, channel: ResponseChannel, content_type: str, interval: float, on_disconnect=None):
        self.channel = channel
        self.content_type = content_type
        self.interval = interval
        self.on_disconnect = on_disconnect
        self.beats = 0
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    def start(self):
        self._task = asyncio.create_task(self._loop())

    async def stop(self):
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def _loop(self):
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
                return
            except asyncio.TimeoutError:
                pass
            try:
                await self.channel.start(200, self.content_type)
                await self.channel.write(KEEPALIVE)
            except ClientDisconnected:
                logger.info("heartbeat: client gone after %d beats", self.beats)
                if self.on_disconnect is not None:
                    self.on_disconnect()
                return
            self.beats += 1


async def stream_file(channel: ResponseChannel, path: Path, content_type: str, chunk_size: int = 64 * 1024):
    try:
        f = await anyio.open_file(path, "rb")
    except OSError as e:
        raise ArtifactIOError(path, e.strerror or str(e)) from e

    async with f:
        await channel.start(200, content_type)
        channel.payload_started = True
        while True:
            try:
                chunk = await f.read(chunk_size)
            except OSError as e:
                raise ArtifactIOError(path, e.strerror or str(e)) from e
            if not chunk:
                break
            await channel.write(chunk)
    await channel.end()
