from pathlib import Path

import anyio
from starlette.requests import ClientDisconnect, Request

from streams_common.errors import (
    ArtifactIOError, ClientDisconnected, MethodNotAllowedError, MissingInputError,
)


async def stage_input(request: Request, path: Path) -> int:
    """
    Write the mask to `path` and return its size. POST bodies are copied
    chunk by chunk as they arrive; GET takes the `mask` query parameter.
    The file is closed when this returns.
    """
    if request.method == "POST":
        written = 0
        try:
            async with await anyio.open_file(path, "wb") as f:
                async for chunk in request.stream():
                    if chunk:
                        await f.write(chunk)
                        written += len(chunk)
        except ClientDisconnect as e:
            raise ClientDisconnected("client disconnected during upload") from e
        except OSError as e:
            raise ArtifactIOError(path, e.strerror or str(e)) from e
        if not written:
            raise MissingInputError("Empty request body.")
        return written

    if request.method == "GET":
        mask = request.query_params.get("mask")
        if not mask:
            raise MissingInputError()
        data = mask.encode("utf-8")
        try:
            async with await anyio.open_file(path, "wb") as f:
                await f.write(data)
        except OSError as e:
            raise ArtifactIOError(path, e.strerror or str(e)) from e
        return len(data)

    raise MethodNotAllowedError(request.method)
