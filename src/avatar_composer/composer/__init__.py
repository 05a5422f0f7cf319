"""
Avatar Composer

Core pipeline for merging avatar parts (body, hair, outfits) into a single
rigged avatar sharing one skeleton, and exporting it as glTF/GLB.
"""

from avatar_composer.composer.composer import compose_avatar
from avatar_composer.composer.exporter import GLTFExporter
from avatar_composer.composer.loader import PartLoader
from avatar_composer.composer.pipeline import AvatarExport, export_avatar
from avatar_composer.composer.state import AvatarState
from avatar_composer.composer.types import ComposedAvatar, ExportOptions

__all__ = [
    "AvatarExport",
    "AvatarState",
    "ComposedAvatar",
    "ExportOptions",
    "GLTFExporter",
    "PartLoader",
    "compose_avatar",
    "export_avatar",
]
