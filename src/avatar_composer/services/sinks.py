from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from avatar_composer.models import ExportArtifact

GLB_CONTENT_TYPE = "model/gltf-binary"
GLTF_CONTENT_TYPE = "model/gltf+json"


def is_s3_uri(uri: str) -> bool:
    return uri.startswith("s3://")


def split_s3_uri(uri: str) -> tuple[str, str]:
    parsed = urlparse(uri)
    if parsed.scheme != "s3" or not parsed.netloc:
        msg = f"Invalid S3 URI: {uri}"
        raise ValueError(msg)
    key = parsed.path.lstrip("/")
    return parsed.netloc, key


class ArtifactSink(ABC):
    """Destination for exported avatar files."""

    @abstractmethod
    def write(self, filename: str, payload: bytes, content_type: str) -> ExportArtifact:
        """Store ``payload`` as ``filename`` and describe where it went."""


class LocalDirectorySink(ArtifactSink):
    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def write(self, filename: str, payload: bytes, content_type: str) -> ExportArtifact:
        self.directory.mkdir(parents=True, exist_ok=True)
        target_path = self.directory / filename
        logger.debug("Writing artifact {path} ({size} bytes)", path=target_path, size=len(payload))
        target_path.write_bytes(payload)
        return ExportArtifact(uri=str(target_path), content_type=content_type)


class S3Sink(ArtifactSink):
    def __init__(self, destination_uri: str, client) -> None:
        self.bucket, key_prefix = split_s3_uri(destination_uri)
        if key_prefix and not key_prefix.endswith("/"):
            key_prefix = f"{key_prefix}/"
        self.key_prefix = key_prefix
        self.client = client

    def write(self, filename: str, payload: bytes, content_type: str) -> ExportArtifact:
        target_key = f"{self.key_prefix}{filename}"
        logger.debug("Uploading artifact to s3://{bucket}/{key}", bucket=self.bucket, key=target_key)
        try:
            self.client.put_object(Bucket=self.bucket, Key=target_key, Body=payload, ContentType=content_type)
        except (BotoCoreError, ClientError) as exc:
            logger.error("Upload to s3://{bucket}/{key} failed: {exc}", bucket=self.bucket, key=target_key, exc=exc)
            raise
        return ExportArtifact(uri=f"s3://{self.bucket}/{target_key}", content_type=content_type)


class LogSink(ArtifactSink):
    """Writes nothing; logs what would have been written."""

    def write(self, filename: str, payload: bytes, content_type: str) -> ExportArtifact:
        logger.info("{filename} ({content_type}): {size} bytes", filename=filename, content_type=content_type, size=len(payload))
        logger.debug("{filename} contents: {payload}", filename=filename, payload=payload[:2048])
        return ExportArtifact(uri=f"log://{filename}", content_type=content_type)


def create_s3_client(region: str):
    try:
        return boto3.client("s3", region_name=region)
    except (BotoCoreError, ClientError) as exc:  # pragma: no cover - boto specific
        logger.error("Unable to create S3 client: {exc}", exc=exc)
        raise


def sink_for(destination_uri: Optional[str], default_dir: Path, region: str) -> ArtifactSink:
    """Pick the sink for ``destination_uri``: S3, a local directory, or ``default_dir``."""
    if destination_uri and is_s3_uri(destination_uri):
        return S3Sink(destination_uri, create_s3_client(region))
    if destination_uri == "log://":
        return LogSink()
    return LocalDirectorySink(Path(destination_uri) if destination_uri else default_dir)


__all__ = [
    "ArtifactSink",
    "GLB_CONTENT_TYPE",
    "GLTF_CONTENT_TYPE",
    "LocalDirectorySink",
    "LogSink",
    "S3Sink",
    "create_s3_client",
    "is_s3_uri",
    "sink_for",
    "split_s3_uri",
]
