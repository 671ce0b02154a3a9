"""
The fixed stage table.

Every stage is one external tool run inside the working directory, so
artifacts are plain file names. A stage reads only artifacts produced by an
earlier stage (or the mask), which is what makes the chain strictly
sequential.
"""
from dataclasses import dataclass
from typing import Callable, Sequence

from streams_common import config as settings

from .area import area_sql, check_area
from .schemas import PipelineConfig

MASK = "mask.geojson"
RESULT_GEOJSON = "result.geojson"
RESULT_OSM = "result.osm"


@dataclass(frozen=True)
class StageContext:
    dem_path: str
    epsg: int
    area_ceiling: float
    grass_batch_job: str
    source_tag: str

    @classmethod
    def from_env(cls) -> "StageContext":
        return cls(
            dem_path=settings.DEM_PATH,
            epsg=settings.WORKING_EPSG,
            area_ceiling=settings.AREA_CEILING,
            grass_batch_job=settings.GRASS_BATCH_JOB,
            source_tag=settings.OUTPUT_SOURCE_TAG,
        )


@dataclass(frozen=True)
class Stage:
    name: str
    build: Callable[[PipelineConfig, StageContext], Sequence[str]]
    outputs: tuple = ()
    # artifact that receives the tool's stdout
    stdout: str | None = None
    # inspects stdout once the tool exits 0; raises to stop the pipeline
    check: Callable[[str, StageContext], object] | None = None
    when: Callable[[PipelineConfig], bool] = lambda cfg: True


def _clip(cfg: PipelineConfig, ctx: StageContext):
    args = ["gdalwarp", "-overwrite", "-of", "GTiff", "-dstnodata", "-9999",
            "-cutline", MASK, "-crop_to_cutline"]
    if cfg.pixel_size:
        args += ["-tr", str(cfg.pixel_size), str(cfg.pixel_size)]
    return args + [ctx.dem_path, "cropped.tif"]


def _measure(cfg: PipelineConfig, ctx: StageContext):
    return ["ogrinfo", "-q", "-dialect", "SQLite", "-sql", area_sql(ctx.epsg), MASK]


def _area_check(stdout: str, ctx: StageContext):
    return check_area(stdout, ctx.area_ceiling)


def _whitebox(tool: str, *params: str):
    return ["whitebox_tools", "--wd=.", f"--run={tool}", *params]


def _tag(cfg: PipelineConfig, ctx: StageContext):
    return ["jq", "--arg", "source", ctx.source_tag,
            '.features[].properties = {waterway: "stream", source: $source}',
            "simplified.geojson"]


STAGES = (
    Stage("clip", _clip, outputs=("cropped.tif",)),
    Stage("measure_area", _measure, check=_area_check),
    Stage(
        "flow_accumulation",
        lambda cfg, ctx: _whitebox(
            "FlowAccumulationFullWorkflow", "--dem=cropped.tif", "--out_dem=dem.tif",
            "--out_pntr=pointer.tif", "--out_accum=accum.tif",
        ),
        outputs=("dem.tif", "pointer.tif", "accum.tif"),
    ),
    Stage(
        "extract_streams",
        lambda cfg, ctx: _whitebox(
            "ExtractStreams", "--flow_accum=accum.tif", f"--threshold={cfg.threshold}", "--output=streams.tif",
        ),
        outputs=("streams.tif",),
    ),
    Stage(
        "remove_short_streams",
        lambda cfg, ctx: _whitebox(
            "RemoveShortStreams", "--d8_pntr=pointer.tif", "--streams=streams.tif",
            "--output=long_streams.tif", f"--min_length={cfg.min_len}",
        ),
        outputs=("long_streams.tif",),
    ),
    Stage(
        "clean_streams",
        lambda cfg, ctx: ["gdal_calc.py", "--overwrite", "--calc", "(A==1)*1", "-A", "long_streams.tif",
                          "--outfile", "long_streams_clean.tif"],
        outputs=("long_streams_clean.tif",),
    ),
    Stage(
        "vectorize",
        lambda cfg, ctx: _whitebox(
            "RasterStreamsToVector", "--streams=long_streams_clean.tif", "--d8_pntr=pointer.tif", "--output=streams",
        ),
        outputs=("streams.shp",),
    ),
    Stage(
        "assign_srs",
        lambda cfg, ctx: ["ogr2ogr", "-a_srs", f"EPSG:{ctx.epsg}", "streams8.shp", "streams.shp"],
        outputs=("streams8.shp",),
    ),
    Stage(
        "smooth",
        lambda cfg, ctx: ["grass", "--tmp-location", f"EPSG:{ctx.epsg}", "--exec", "sh", ctx.grass_batch_job],
        outputs=("smooth.gpkg",),
    ),
    Stage(
        "simplify",
        lambda cfg, ctx: ["ogr2ogr", "-simplify", str(cfg.simplify_tolerance), "-t_srs", "EPSG:4326",
                          "simplified.geojson", "smooth.gpkg"],
        outputs=("simplified.geojson",),
    ),
    Stage("tag", _tag, outputs=(RESULT_GEOJSON,), stdout=RESULT_GEOJSON),
    Stage(
        "to_osm",
        lambda cfg, ctx: ["geojsontoosm", RESULT_GEOJSON],
        outputs=(RESULT_OSM,),
        stdout=RESULT_OSM,
        when=lambda cfg: cfg.to_osm,
    ),
)


def final_artifact(cfg: PipelineConfig) -> str:
    return RESULT_OSM if cfg.to_osm else RESULT_GEOJSON
