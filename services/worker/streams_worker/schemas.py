from typing import Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

FALSE_WORDS = {"", "0", "false", "no", "off"}


class PipelineConfig(BaseModel):
    """Request-scoped knobs, parsed once and never changed while the pipeline runs."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    threshold: int = Field(default=20000, gt=0, description="Flow accumulation cutoff for stream cells.")
    pixel_size: float | None = Field(default=None, gt=0, alias="pixel-size", description="Resample the DEM to this resolution.")
    min_len: int = Field(default=50, ge=0, alias="min-len", description="Shorter stream segments are dropped.")
    simplify_tolerance: float = Field(default=1.5, ge=0, alias="simplify-tolerance")
    to_osm: bool = Field(default=False, alias="to-osm", description="Convert the result to OSM XML.")

    @field_validator("to_osm", mode="before")
    @classmethod
    def _flag(cls, v):
        if isinstance(v, str):
            return v.strip().lower() not in FALSE_WORDS
        return bool(v)

    @classmethod
    def from_query(cls, params: Mapping[str, str]) -> "PipelineConfig":
        values = {}
        for name in ("threshold", "pixel-size", "min-len", "simplify-tolerance"):
            v = params.get(name)
            if v:
                values[name] = v
        if "to-osm" in params:
            values["to-osm"] = params.get("to-osm")
        return cls.model_validate(values)

    @property
    def content_type(self) -> str:
        return "application/xml" if self.to_osm else "application/geo+json"
