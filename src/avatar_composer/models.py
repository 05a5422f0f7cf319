from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class ExportRequest(BaseModel):
    part_uris: list[str] = Field(
        default_factory=list,
        description="S3 URIs or absolute local paths of the part assets, in priority order",
    )
    avatar_config: Dict[str, Optional[str]] = Field(
        default_factory=dict,
        description="Slot name to asset name, resolved against the assets directory",
    )
    output_uri: Optional[str] = Field(
        default=None,
        description="Optional S3 URI or directory where the exported assets should be stored",
    )
    animations: Optional[list[str]] = Field(
        default=None,
        description="Names of the merged animation clips to export; all when omitted",
    )

    @field_validator("part_uris")
    @classmethod
    def validate_part_uris(cls, value: list[str]) -> list[str]:
        if any(not uri for uri in value):
            msg = "part_uris must not contain empty entries"
            raise ValueError(msg)
        return value

    @model_validator(mode="after")
    def validate_parts_given(self) -> "ExportRequest":
        if self.part_uris and self.avatar_config:
            msg = "Provide either part_uris or avatar_config, not both"
            raise ValueError(msg)
        return self


class ExportArtifact(BaseModel):
    uri: str
    content_type: str


class ExportResponse(BaseModel):
    status: str
    artifacts: list[ExportArtifact]
    animations: list[str] = Field(default_factory=list)
    outline: Optional[str] = None
