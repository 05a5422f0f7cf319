from __future__ import annotations

from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Optional
from uuid import uuid4

from loguru import logger

from avatar_composer.composer.exporter import GLTFExporter, dump_document
from avatar_composer.composer.loader import PartLoader
from avatar_composer.composer.pipeline import export_avatar
from avatar_composer.composer.state import AvatarState
from avatar_composer.composer.types import SceneNode
from avatar_composer.config import AppSettings, get_settings
from avatar_composer.models import ExportArtifact, ExportRequest, ExportResponse
from avatar_composer.services.sinks import (
    GLB_CONTENT_TYPE,
    GLTF_CONTENT_TYPE,
    create_s3_client,
    is_s3_uri,
    sink_for,
    split_s3_uri,
)


class AvatarExportService:
    """Coordinate loading, composing and exporting avatars."""

    def __init__(
        self,
        settings: Optional[AppSettings] = None,
        loader: Optional[PartLoader] = None,
        exporter: Optional[GLTFExporter] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.loader = loader or PartLoader()
        self.exporter = exporter or GLTFExporter()
        self._s3_client = None

    def export(self, request: ExportRequest) -> ExportResponse:
        logger.info(
            "Starting avatar export for {count} part(s)",
            count=len(request.part_uris) or len(request.avatar_config) + 1,
        )

        with TemporaryDirectory(prefix="avatar-composer-") as temp_dir:
            working_dir = Path(temp_dir)
            state = self._build_state(request, working_dir)
            result = export_avatar(state, request.animations)

        destination_uri = request.output_uri or self._default_output_uri(uuid4().hex)
        sink = sink_for(destination_uri, self.settings.work_dir / "artifacts", self.settings.aws_region)
        artifacts: list[ExportArtifact] = [
            sink.write(self.settings.document_filename, dump_document(result.document), GLTF_CONTENT_TYPE),
            sink.write(self.settings.export_filename, result.glb, GLB_CONTENT_TYPE),
        ]
        logger.info("Export complete with {count} artifact(s)", count=len(artifacts))

        return ExportResponse(
            status="COMPLETED",
            artifacts=artifacts,
            animations=result.clip_names,
            outline=result.outline,
        )

    def _default_output_uri(self, job_id: str) -> Optional[str]:
        bucket = self.settings.output_bucket
        if not bucket:
            return None
        return f"s3://{bucket}/avatars/{job_id}"

    # Internal helpers -------------------------------------------------

    def _build_state(self, request: ExportRequest, working_dir: Path) -> AvatarState:
        state = AvatarState(exporter=self.exporter)
        if request.part_uris:
            for index, uri in enumerate(request.part_uris):
                state.set_part(f"part_{index}", self._load_uri(uri, working_dir))
            return state

        state.base_part = self._load_asset(self.settings.default_avatar)
        state.apply_avatar_config(request.avatar_config, self._load_asset)
        return state

    def _load_asset(self, asset_name: str) -> SceneNode:
        path = self.settings.assets_dir / f"{asset_name}.glb"
        return self.loader.load_path(path, name=asset_name)

    def _load_uri(self, uri: str, working_dir: Path) -> SceneNode:
        return self.loader.load_path(self._materialise_input(uri, working_dir))

    def _materialise_input(self, uri: str, working_dir: Path) -> Path:
        if is_s3_uri(uri):
            bucket, key = split_s3_uri(uri)
            destination = working_dir / f"{uuid4().hex[:8]}-{Path(key).name}"
            logger.debug("Downloading part from {uri} to {destination}", uri=uri, destination=destination)
            self._s3().download_file(bucket, key, str(destination))
            return destination

        # Assume local path otherwise
        path = Path(uri)
        if not path.exists():
            msg = f"Input path does not exist: {uri}"
            raise FileNotFoundError(msg)
        if path.is_dir():
            msg = "Input path must be a file, not a directory"
            raise IsADirectoryError(msg)
        return path

    def _s3(self):
        if self._s3_client is None:
            self._s3_client = create_s3_client(self.settings.aws_region)
        return self._s3_client


__all__ = [
    "AvatarExportService",
]
