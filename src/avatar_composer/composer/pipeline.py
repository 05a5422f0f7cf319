"""
Avatar export pipeline

Main entry point for turning an avatar state into exportable assets.

Workflow:
1. Compose the state's parts into one avatar
2. Log the composed outline
3. Select the animation clips to include
4. Serialize as glTF JSON, then as GLB, under one exporter acquisition
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from loguru import logger

from avatar_composer.composer.composer import compose_avatar
from avatar_composer.composer.locator import describe_node
from avatar_composer.composer.state import AvatarState
from avatar_composer.composer.types import AnimationClip, ComposedAvatar, ExportOptions


@dataclass
class AvatarExport:
    """Both serializations of one composed avatar."""

    document: Dict[str, Any]
    glb: bytes
    clip_names: List[str] = field(default_factory=list)
    outline: str = ""


def select_animations(avatar: ComposedAvatar, names: Optional[Sequence[str]] = None) -> List[AnimationClip]:
    """Merged clips to export; all of them when ``names`` is None."""
    if names is None:
        return list(avatar.animations)
    wanted = set(names)
    return [clip for clip in avatar.animations if clip.name in wanted]


def export_avatar(state: AvatarState, animation_names: Optional[Sequence[str]] = None) -> AvatarExport:
    """
    Compose and serialize the avatar described by ``state``.

    Args:
        state: Selected parts and the exporter to use
        animation_names: Clip names to include, or None for every merged clip

    Returns:
        AvatarExport with the JSON document and the GLB bytes

    Raises:
        AvatarError subclasses from composition or serialization
    """
    avatar = compose_avatar(state.parts())
    outline = describe_node(avatar.scene)
    logger.debug("Composed avatar:\n{outline}", outline=outline)

    animations = select_animations(avatar, animation_names)
    with state.exporter.acquire() as exporter:
        document = exporter.parse(avatar.scene, ExportOptions(binary=False, animations=animations))
        glb = exporter.parse(avatar.scene, ExportOptions(binary=True, animations=animations))

    logger.info(
        "Exported avatar with {clips} clip(s), GLB size {size} bytes",
        clips=len(animations),
        size=len(glb),
    )
    return AvatarExport(
        document=document,
        glb=glb,
        clip_names=[clip.name for clip in animations],
        outline=outline,
    )
