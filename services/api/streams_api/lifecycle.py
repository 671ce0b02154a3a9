"""
Request lifecycle for one pipeline job.

    Idle -> Admitted -> Staging -> Running -> Streaming -> Done
                         \-----------\-----------\-> Failed | Cancelled

The lifecycle is an ASGI response so it owns `send` (status committed late,
possibly by the heartbeat) and `receive` (client disconnect turns into
cancellation of the running stage).
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field

from starlette.requests import Request
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from streams_common.config import HEARTBEAT_INTERVAL, STREAM_CHUNK_SIZE
from streams_common.errors import BusyError, PipelineCancelled, StreamsError
from streams_common.gate import ConcurrencyGate
from streams_common.utils import new_job_id
from streams_worker.pipeline import PipelineExecutor
from streams_worker.runner import CancelToken
from streams_worker.schemas import PipelineConfig

from .channel import Heartbeat, ResponseChannel, stream_file
from .staging import stage_input

logger = logging.getLogger(__name__)

TEXT = "text/plain; charset=utf-8"


@dataclass
class PipelineJob:
    executor: PipelineExecutor
    job_id: str = field(default_factory=new_job_id)
    token: CancelToken = field(default_factory=CancelToken)
    state: str = "admitted"
    started_at: float = field(default_factory=time.time)

    @property
    def process(self):
        return self.executor.runner.process

    @property
    def stage(self):
        run = self.executor.last_run
        if run is not None and run.job_id == self.job_id:
            return run.current
        return None

    def cancel(self, reason: str):
        self.token.cancel(reason)


class PipelineResponse(Response):
    def __init__(self, request: Request, cfg: PipelineConfig, executor: PipelineExecutor,
                 gate: ConcurrencyGate, heartbeat_interval: float = HEARTBEAT_INTERVAL,
                 chunk_size: int = STREAM_CHUNK_SIZE):
        super().__init__(media_type=cfg.content_type)
        self.request = request
        self.cfg = cfg
        self.executor = executor
        self.gate = gate
        self.heartbeat_interval = heartbeat_interval
        self.chunk_size = chunk_size
        self.job: PipelineJob | None = None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        channel = ResponseChannel(send)

        job = PipelineJob(self.executor)
        if not self.gate.try_acquire(job):
            logger.info("[Busy]")
            await self._reply_error(channel, BusyError())
            return
        self.job = job

        watcher = None
        try:
            logger.info("[Starting] job=%s method=%s params=%s", job.job_id, self.request.method,
                        self.cfg.model_dump(by_alias=True))
            job.state = "staging"
            self.executor.work_dir.mkdir(parents=True, exist_ok=True)
            size = await stage_input(self.request, self.executor.mask_path)
            logger.debug("job=%s mask %d bytes", job.job_id, size)

            watcher = asyncio.create_task(self._watch_disconnect(receive, channel, job))

            logger.info("[Responding] job=%s", job.job_id)
            job.state = "running"
            result = await self._run_pipeline(channel, job)

            job.token.raise_if_cancelled()
            job.state = "streaming"
            await stream_file(channel, result, self.cfg.content_type, self.chunk_size)
            job.state = "done"
        except Exception as e:
            await self._finalize(channel, job, e)
        finally:
            if watcher is not None:
                watcher.cancel()
                try:
                    await watcher
                except asyncio.CancelledError:
                    pass
            self.gate.release()
            logger.info("[Done] job=%s state=%s status=%s bytes=%d %.1fs", job.job_id, job.state,
                        channel.status, channel.bytes_sent, time.time() - job.started_at)

    async def _run_pipeline(self, channel: ResponseChannel, job: PipelineJob):
        heartbeat = Heartbeat(
            channel, self.cfg.content_type, self.heartbeat_interval,
            on_disconnect=lambda: job.cancel("client disconnected"),
        )
        heartbeat.start()
        try:
            return await self.executor.run(self.executor.mask_path, self.cfg, job.token, job_id=job.job_id)
        finally:
            await heartbeat.stop()

    async def _watch_disconnect(self, receive: Receive, channel: ResponseChannel, job: PipelineJob):
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                if channel.finished:
                    return
                logger.info("[Closed] job=%s state=%s pid=%s", job.job_id, job.state,
                            job.process.pid if job.process is not None else None)
                channel.closed = True
                job.cancel("client disconnected")
                return

    async def _finalize(self, channel: ResponseChannel, job: PipelineJob, exc: Exception):
        if channel.closed or job.token.cancelled or isinstance(exc, PipelineCancelled):
            job.state = "cancelled"
            logger.info("Connection closed prematurely job=%s stage=%s", job.job_id, job.stage)
            return

        job.state = "failed"
        if isinstance(exc, StreamsError) and exc.status_code < 500:
            logger.info("job=%s rejected (%s): %s", job.job_id, exc.status_code, exc)
        elif isinstance(exc, StreamsError):
            logger.error("job=%s failed: %s", job.job_id, exc)
        else:
            logger.exception("job=%s crashed", job.job_id)

        if channel.finished:
            return
        if channel.payload_started:
            # part of the payload is out; appending an error text would corrupt it
            try:
                await channel.end()
            except PipelineCancelled:
                logger.info("job=%s client gone while ending a broken payload", job.job_id)
            return
        await self._reply_error(channel, exc)

    async def _reply_error(self, channel: ResponseChannel, exc: Exception):
        status = exc.status_code if isinstance(exc, StreamsError) else 500
        try:
            # no-op when the heartbeat already committed 200; the text still goes into the body
            await channel.start(status, TEXT)
            await channel.end(str(exc).encode("utf-8"))
        except PipelineCancelled:
            logger.info("client gone before the %s reply could be sent", status)
