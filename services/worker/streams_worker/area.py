"""
Area of the mask as reported by ``ogrinfo``.

The measure stage runs::

    ogrinfo -q -dialect SQLite -sql "SELECT SUM(ST_Area(ST_Transform(geometry, <epsg>))) AS area FROM mask" mask.geojson

and with ``-q`` GDAL prints one feature block in which the aggregated
column appears as::

      area (Real) = 123456.789

That line is the whole contract. Anything that does not yield a positive
finite number (no line, empty value, NULL for an empty layer, zero) counts
as "cannot be determined", which the pipeline treats the same as too large.
"""
import math
import re

from streams_common.errors import AreaTooLargeError

AREA_RE = re.compile(r"area \(Real\) = ([\d.]+(?:[eE][+-]?\d+)?)")


def area_sql(epsg: int, layer: str = "mask") -> str:
    return f"SELECT SUM(ST_Area(ST_Transform(geometry, {epsg}))) AS area FROM {layer}"


def parse_area(text: str) -> float | None:
    m = AREA_RE.search(text or "")
    if not m:
        return None
    try:
        value = float(m.group(1))
    except ValueError:
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def check_area(text: str, ceiling: float) -> float:
    area = parse_area(text)
    if area is None or area > ceiling:
        raise AreaTooLargeError(area, ceiling)
    return area
