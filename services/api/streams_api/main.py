import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError as ConfigError

from streams_common.config import HOST, PORT, WORK_DIR
from streams_common.errors import MethodNotAllowedError, StreamsError, UnsupportedMediaTypeError
from streams_common.gate import gate
from streams_common.logs import init_logging
from streams_common.utils import media_type_of
from streams_worker.pipeline import PipelineExecutor
from streams_worker.schemas import PipelineConfig

from .lifecycle import PipelineResponse

init_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("work_dir=%s dem=%s", app.state.executor.work_dir, app.state.executor.context.dem_path)
    yield


app = FastAPI(title="Stream Extractor", version="0.1.0", lifespan=lifespan)
app.state.gate = gate
app.state.executor = PipelineExecutor(WORK_DIR)

ACCEPTED_BODY_TYPES = {"application/json", "application/geo+json"}


@app.get("/health")
def health():
    job = app.state.gate.holder
    return {
        "ok": True,
        "busy": app.state.gate.busy,
        "job": {"id": job.job_id, "state": job.state, "stage": job.stage} if job else None,
    }


def check_request_shape(request: Request):
    if request.method not in ("GET", "POST"):
        raise MethodNotAllowedError(request.method)
    if request.method == "POST" and media_type_of(request.headers.get("content-type")) not in ACCEPTED_BODY_TYPES:
        raise UnsupportedMediaTypeError()


@app.api_route("/", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def streams(request: Request):
    try:
        check_request_shape(request)
        cfg = PipelineConfig.from_query(request.query_params)
    except StreamsError as e:
        return PlainTextResponse(str(e), status_code=e.status_code)
    except ConfigError as e:
        msg = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        return PlainTextResponse(f"Invalid parameters: {msg}", status_code=400)
    return PipelineResponse(request, cfg, executor=app.state.executor, gate=app.state.gate)


def main():
    uvicorn.run(app, host=HOST, port=PORT, log_config=None)


if __name__ == "__main__":
    main()
