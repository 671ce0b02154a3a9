"""Run the pipeline on a local mask file, without the HTTP server."""
import argparse
import asyncio
import logging
import shutil
import signal
import sys
from pathlib import Path

from pydantic import ValidationError as ConfigError

from streams_common.config import WORK_DIR
from streams_common.errors import ArtifactIOError, PipelineCancelled, StreamsError
from streams_common.logs import init_logging
from streams_common.utils import new_job_id

from .pipeline import PipelineExecutor
from .runner import CancelToken
from .schemas import PipelineConfig

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Extract a stream network for a GeoJSON mask.")
    p.add_argument("mask", type=Path, help="GeoJSON polygon delimiting the area of interest")
    p.add_argument("-o", "--output", type=Path, required=True, help="where to copy the result")
    p.add_argument("--work-dir", type=Path, default=WORK_DIR)
    p.add_argument("--threshold")
    p.add_argument("--pixel-size")
    p.add_argument("--min-len")
    p.add_argument("--simplify-tolerance")
    p.add_argument("--to-osm", action="store_true")
    return p.parse_args(argv)


def config_from_args(args) -> PipelineConfig:
    params = {
        "threshold": args.threshold,
        "pixel-size": args.pixel_size,
        "min-len": args.min_len,
        "simplify-tolerance": args.simplify_tolerance,
    }
    params = {k: v for k, v in params.items() if v}
    if args.to_osm:
        params["to-osm"] = "1"
    return PipelineConfig.from_query(params)


def copy_artifact(src: Path, dst: Path):
    try:
        shutil.copyfile(src, dst)
    except OSError as e:
        raise ArtifactIOError(src, e.strerror or str(e)) from e


async def run_once(args, executor: PipelineExecutor | None = None) -> Path:
    cfg = config_from_args(args)
    executor = executor or PipelineExecutor(args.work_dir)
    try:
        executor.work_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ArtifactIOError(executor.work_dir, e.strerror or str(e)) from e
    if args.mask.resolve() != executor.mask_path.resolve():
        copy_artifact(args.mask, executor.mask_path)

    token = CancelToken()
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, token.cancel, "interrupted")
    try:
        result = await executor.run(executor.mask_path, cfg, token, job_id=new_job_id())
    finally:
        loop.remove_signal_handler(signal.SIGINT)

    copy_artifact(result, args.output)
    return args.output


def main(argv=None) -> int:
    init_logging()
    args = parse_args(argv)
    try:
        out = asyncio.run(run_once(args))
    except ConfigError as e:
        logger.error("invalid parameters: %s", e)
        return 2
    except PipelineCancelled:
        logger.warning("interrupted")
        return 130
    except StreamsError as e:
        logger.error("%s", e)
        return 1
    logger.info("wrote %s", out)
    return 0


if __name__ == "__main__":
    sys.exit(main())
