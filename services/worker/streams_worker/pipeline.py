import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from streams_common.errors import (
    AreaTooLargeError, ArtifactIOError, CommandFailedError, PipelineCancelled, StageFailedError, StreamsError,
)

from .runner import CancelToken, StageRunner
from .schemas import PipelineConfig
from .stages import MASK, STAGES, Stage, StageContext, final_artifact

logger = logging.getLogger(__name__)


@dataclass
class PipelineRun:
    job_id: str
    stages: list[str]
    token: CancelToken
    index: int = -1
    status: str = "running"
    artifacts: dict[str, Path] = field(default_factory=dict)
    timings: dict[str, float] = field(default_factory=dict)
    area: float | None = None
    error: str | None = None

    @property
    def current(self) -> str | None:
        if 0 <= self.index < len(self.stages):
            return self.stages[self.index]
        return None


class PipelineExecutor:
    """
    Drives the stage table against the working directory, one stage at a
    time, stopping at the first failure. Nothing is retried: a tool that
    fails on a given mask fails again on the same mask.
    """

    def __init__(self, work_dir: Path, runner: StageRunner | None = None,
                 stages: tuple = STAGES, context: StageContext | None = None):
        self.work_dir = Path(work_dir)
        self.runner = runner or StageRunner(cwd=self.work_dir)
        self.stages = stages
        self.context = context or StageContext.from_env()
        self.last_run: PipelineRun | None = None

    @property
    def mask_path(self) -> Path:
        return self.work_dir / MASK

    def plan(self, cfg: PipelineConfig) -> list[Stage]:
        return [s for s in self.stages if s.when(cfg)]

    async def run(self, mask: Path, cfg: PipelineConfig, token: CancelToken, job_id: str = "") -> Path:
        if not Path(mask).is_file():
            raise ArtifactIOError(mask, "mask artifact missing")

        plan = self.plan(cfg)
        run = PipelineRun(job_id=job_id, stages=[s.name for s in plan], token=token)
        run.artifacts[MASK] = Path(mask)
        self.last_run = run

        for i, stage in enumerate(plan):
            run.index = i
            try:
                token.raise_if_cancelled()
                await self._run_stage(run, stage, cfg, token)
            except PipelineCancelled:
                run.status = "cancelled"
                logger.info("job=%s cancelled during %s", job_id, stage.name)
                raise
            except StreamsError as e:
                run.status = "failed"
                run.error = str(e)
                raise

        run.status = "done"
        return self.work_dir / final_artifact(cfg)

    async def _run_stage(self, run: PipelineRun, stage: Stage, cfg: PipelineConfig, token: CancelToken):
        args = stage.build(cfg, self.context)
        stdout_path = self.work_dir / stage.stdout if stage.stdout else None

        logger.info("job=%s stage %d/%d %s", run.job_id, run.index + 1, len(run.stages), stage.name)
        t0 = time.monotonic()
        try:
            result = await self.runner.execute(args, token, stdout_path=stdout_path)
        except CommandFailedError as e:
            logger.error("job=%s stage %s failed: %s", run.job_id, stage.name, e)
            raise StageFailedError(stage.name, str(e)) from e
        finally:
            run.timings[stage.name] = round(time.monotonic() - t0, 3)

        if stage.check is not None:
            try:
                run.area = stage.check(result.stdout, self.context)
            except AreaTooLargeError as e:
                logger.info("job=%s area=%s exceeds ceiling=%s", run.job_id, e.area, e.ceiling)
                raise
            logger.info("job=%s area=%s", run.job_id, run.area)

        for name in stage.outputs:
            run.artifacts[name] = self.work_dir / name
        logger.debug("job=%s stage %s done in %.3fs", run.job_id, stage.name, run.timings[stage.name])
