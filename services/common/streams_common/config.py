import os
from pathlib import Path

DEM_PATH = os.getenv("DEM_PATH", "/media/martin/OSM/___LIDAR_UGKK_DEM5_0_JTSK03_1cm.tif")
WORK_DIR = Path(os.getenv("WORK_DIR", "."))
GRASS_BATCH_JOB = os.getenv(
    "GRASS_BATCH_JOB", str(Path(__file__).resolve().parents[3] / "scripts" / "grass_batch_job.sh")
)

# square metres in WORKING_EPSG
AREA_CEILING = float(os.getenv("AREA_CEILING", "200000000"))
WORKING_EPSG = int(os.getenv("WORKING_EPSG", "8353"))
OUTPUT_SOURCE_TAG = os.getenv("OUTPUT_SOURCE_TAG", "ÚGKK SR DMR 5.0")

HEARTBEAT_INTERVAL = float(os.getenv("HEARTBEAT_INTERVAL", "10"))
STREAM_CHUNK_SIZE = int(os.getenv("STREAM_CHUNK_SIZE", str(64 * 1024)))

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8080"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
