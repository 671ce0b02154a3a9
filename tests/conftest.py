"""
Shared fixtures. External GIS tools are never spawned here: pipeline tests
use FakeRunner, which records the argv it would have run and writes the
artifacts a real tool would have produced.
"""
import asyncio
import json
import os
from pathlib import Path

import pytest

os.environ.setdefault("DEM_PATH", "/data/dem.tif")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from streams_common.errors import CommandFailedError, PipelineCancelled  # noqa: E402
from streams_worker.pipeline import PipelineExecutor  # noqa: E402
from streams_worker.runner import StageResult  # noqa: E402
from streams_worker.stages import StageContext  # noqa: E402

SMALL_MASK = json.dumps({
    "type": "FeatureCollection",
    "features": [{
        "type": "Feature",
        "properties": {},
        "geometry": {
            "type": "Polygon",
            "coordinates": [[[19.0, 48.7], [19.01, 48.7], [19.01, 48.71], [19.0, 48.71], [19.0, 48.7]]],
        },
    }],
})

RESULT_GEOJSON = json.dumps({
    "type": "FeatureCollection",
    "features": [{
        "type": "Feature",
        "properties": {"waterway": "stream", "source": "test DEM"},
        "geometry": {"type": "LineString", "coordinates": [[19.001, 48.701], [19.002, 48.703]]},
    }],
}).encode("utf-8")

RESULT_OSM = b'<?xml version="1.0" encoding="UTF-8"?>\n<osm version="0.6"><way id="-1"><tag k="waterway" v="stream"/></way></osm>\n'


def ogrinfo_output(area) -> str:
    return (
        "INFO: Open of `mask.geojson'\n"
        "      using driver `GeoJSON' successful.\n\n"
        "Layer name: SELECT\n"
        "OGRFeature(SELECT):0\n"
        f"  area (Real) = {area}\n\n"
    )


class FakeRunner:
    """
    Stands in for StageRunner. Calls are 1-based: fail_at=3 makes the third
    command exit non-zero, hold_at=3 parks the third command until
    `release` is set or the token is cancelled.
    """

    def __init__(self, area="1234567.5", fail_at=None, hold_at=None, delay=0.0):
        self.area = area
        self.fail_at = fail_at
        self.hold_at = hold_at
        self.delay = delay
        self.calls = []
        self.cancelled_at = None
        self.process = None
        self._started = None
        self._release = None

    @property
    def started(self) -> asyncio.Event:
        if self._started is None:
            self._started = asyncio.Event()
        return self._started

    @property
    def release(self) -> asyncio.Event:
        if self._release is None:
            self._release = asyncio.Event()
        return self._release

    @property
    def tools(self):
        return [c[0] for c in self.calls]

    async def execute(self, args, token, stdout_path=None):
        token.raise_if_cancelled()
        args = [str(a) for a in args]
        self.calls.append(args)
        n = len(self.calls)

        if self.hold_at == n:
            self.started.set()
            waiters = [asyncio.ensure_future(self.release.wait()), asyncio.ensure_future(token.wait())]
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            for w in waiters:
                w.cancel()
            if token.cancelled:
                self.cancelled_at = n
                raise PipelineCancelled(token.reason)

        if self.delay:
            await asyncio.sleep(self.delay)

        if self.fail_at == n:
            raise CommandFailedError(args, 1, f"ERROR 1: {args[0]} could not process input")

        stdout = ""
        if args[0] == "ogrinfo":
            stdout = ogrinfo_output(self.area) if self.area is not None else "Layer name: SELECT\n"
        if stdout_path is not None:
            Path(stdout_path).write_bytes(RESULT_OSM if args[0] == "geojsontoosm" else RESULT_GEOJSON)
        return StageResult(0, stdout)


@pytest.fixture
def context():
    return StageContext(
        dem_path="/data/dem.tif",
        epsg=8353,
        area_ceiling=200_000_000,
        grass_batch_job="/opt/streams/grass_batch_job.sh",
        source_tag="test DEM",
    )


@pytest.fixture
def make_executor(tmp_path, context):
    def _make(runner=None, **kwargs):
        runner = runner or FakeRunner(**kwargs)
        return PipelineExecutor(tmp_path / "work", runner=runner, context=context)
    return _make


@pytest.fixture
def mask_file(tmp_path):
    work = tmp_path / "work"
    work.mkdir(parents=True, exist_ok=True)
    p = work / "mask.geojson"
    p.write_text(SMALL_MASK, encoding="utf-8")
    return p
