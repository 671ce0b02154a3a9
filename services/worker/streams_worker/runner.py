import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from pathlib import Path

from streams_common.errors import ArtifactIOError, CommandFailedError, PipelineCancelled
from streams_common.utils import tail_text

logger = logging.getLogger(__name__)


class CancelToken:
    """Set once when the client goes away; stages watch it and stop their process."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason = ""

    def cancel(self, reason: str = "cancelled"):
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self):
        await self._event.wait()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise PipelineCancelled(self.reason)


@dataclass
class StageResult:
    returncode: int
    stdout: str = ""


class StageRunner:
    """
    Runs one external command (no shell) and waits for it while watching the
    cancel token. On cancellation the process gets SIGTERM and is reaped
    before PipelineCancelled is raised.
    """

    def __init__(self, cwd: Path | str | None = None, env: dict | None = None):
        self.cwd = cwd
        self.env = env
        self.process: asyncio.subprocess.Process | None = None

    async def execute(self, args, token: CancelToken, stdout_path: Path | None = None) -> StageResult:
        token.raise_if_cancelled()
        args = [str(a) for a in args]
        logger.debug("$ %s", " ".join(args))

        out_file = None
        try:
            if stdout_path is not None:
                try:
                    out_file = open(stdout_path, "wb")
                except OSError as e:
                    raise ArtifactIOError(stdout_path, e.strerror or str(e)) from e
            try:
                proc = await asyncio.create_subprocess_exec(
                    *args,
                    cwd=self.cwd,
                    env=self.env,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=out_file if out_file is not None else asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    # own process group, so cancelling reaches whatever the tool spawns
                    start_new_session=True,
                )
            except OSError as e:
                raise CommandFailedError(args, None, str(e)) from e

            self.process = proc
            try:
                stdout, stderr = await self._communicate(proc, token)
            finally:
                self.process = None
        finally:
            if out_file is not None:
                out_file.close()

        out = (stdout or b"").decode("utf-8", errors="replace")
        err = (stderr or b"").decode("utf-8", errors="replace")
        if proc.returncode != 0:
            raise CommandFailedError(args, proc.returncode, tail_text(err or out))
        return StageResult(returncode=proc.returncode, stdout=out)

    async def _communicate(self, proc: asyncio.subprocess.Process, token: CancelToken):
        work = asyncio.ensure_future(proc.communicate())
        cancelled = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait({work, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            # the surrounding task was torn down; do not leave the tool running
            await self._terminate(proc, work)
            raise
        finally:
            if not cancelled.done():
                cancelled.cancel()

        if work in done:
            return work.result()

        logger.info("Terminating pid=%s (%s)", proc.pid, token.reason)
        await self._terminate(proc, work)
        raise PipelineCancelled(token.reason)

    async def _terminate(self, proc: asyncio.subprocess.Process, work: asyncio.Future):
        # the tool leads its own session, so its pid is the process group id
        # even after the leader itself has exited
        try:
            os.killpg(proc.pid, signal.SIGTERM)
        except ProcessLookupError:
            pass
        except PermissionError as e:
            logger.warning("Could not signal process group %s: %s", proc.pid, e)
            if proc.returncode is None:
                proc.terminate()
        try:
            await proc.wait()
        finally:
            # stray pipe holders must not keep the stage alive
            work.cancel()
