from streams_worker.schemas import PipelineConfig
from streams_worker.stages import STAGES, final_artifact


def stage(name):
    return next(s for s in STAGES if s.name == name)


def test_stage_order():
    assert [s.name for s in STAGES] == [
        "clip", "measure_area", "flow_accumulation", "extract_streams", "remove_short_streams",
        "clean_streams", "vectorize", "assign_srs", "smooth", "simplify", "tag", "to_osm",
    ]


def test_clip_without_pixel_size(context):
    args = stage("clip").build(PipelineConfig(), context)
    assert args == [
        "gdalwarp", "-overwrite", "-of", "GTiff", "-dstnodata", "-9999",
        "-cutline", "mask.geojson", "-crop_to_cutline", "/data/dem.tif", "cropped.tif",
    ]


def test_clip_with_pixel_size(context):
    args = stage("clip").build(PipelineConfig.from_query({"pixel-size": "2"}), context)
    i = args.index("-tr")
    assert args[i + 1:i + 3] == ["2.0", "2.0"]
    assert args[-2:] == ["/data/dem.tif", "cropped.tif"]


def test_measure_stage_is_checked(context):
    s = stage("measure_area")
    assert s.check is not None
    args = s.build(PipelineConfig(), context)
    assert args[:5] == ["ogrinfo", "-q", "-dialect", "SQLite", "-sql"]
    assert "ST_Transform(geometry, 8353)" in args[5]
    assert args[-1] == "mask.geojson"


def test_parameters_reach_their_tools(context):
    cfg = PipelineConfig.from_query({"threshold": "777", "min-len": "12", "simplify-tolerance": "0.25"})
    assert "--threshold=777" in stage("extract_streams").build(cfg, context)
    assert "--min_length=12" in stage("remove_short_streams").build(cfg, context)
    simplify = stage("simplify").build(cfg, context)
    assert simplify[simplify.index("-simplify") + 1] == "0.25"
    assert simplify[-2:] == ["simplified.geojson", "smooth.gpkg"]


def test_grass_runs_batch_job_in_working_crs(context):
    args = stage("smooth").build(PipelineConfig(), context)
    assert args == ["grass", "--tmp-location", "EPSG:8353", "--exec", "sh", "/opt/streams/grass_batch_job.sh"]


def test_tag_injects_waterway_and_source(context):
    s = stage("tag")
    args = s.build(PipelineConfig(), context)
    assert args[:4] == ["jq", "--arg", "source", "test DEM"]
    assert 'waterway: "stream"' in args[4]
    assert s.stdout == "result.geojson"


def test_osm_conversion_only_when_flag_set():
    s = stage("to_osm")
    assert not s.when(PipelineConfig())
    assert s.when(PipelineConfig.from_query({"to-osm": "1"}))
    assert s.stdout == "result.osm"


def test_final_artifact():
    assert final_artifact(PipelineConfig()) == "result.geojson"
    assert final_artifact(PipelineConfig.from_query({"to-osm": "1"})) == "result.osm"
