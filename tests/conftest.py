from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional, Sequence

import numpy as np
import pytest

from avatar_composer.composer.exporter import GLTFExporter
from avatar_composer.composer.locator import find_child_by_name
from avatar_composer.composer.metadata import GLTF_EXTENSIONS_KEY, HUBS_COMPONENTS_EXTENSION
from avatar_composer.composer.types import (
    AnimationClip,
    Bone,
    ExportOptions,
    Geometry,
    KeyframeTrack,
    Material,
    Mesh,
    SceneNode,
    Skeleton,
    SkinnedMesh,
)

DEFAULT_BONES = ("Root", "Spine", "Head", "HairAnchor")


def make_geometry(max_joint: int) -> Geometry:
    joints = np.zeros((3, 4), dtype=np.uint16)
    joints[:, 0] = [min(i, max_joint) for i in range(3)]
    joints[2, 0] = max_joint
    weights = np.zeros((3, 4), dtype=np.float32)
    weights[:, 0] = 1.0
    return Geometry(
        positions=np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]], dtype=np.float32),
        normals=np.array([[0.0, 0.0, 1.0]] * 3, dtype=np.float32),
        indices=np.array([0, 1, 2], dtype=np.uint32),
        joints=joints,
        weights=weights,
    )


def make_clip(name: str, node_name: str = "Root") -> AnimationClip:
    track = KeyframeTrack(
        node_name=node_name,
        path="rotation",
        times=np.array([0.0, 1.0], dtype=np.float32),
        values=np.array([[0.0, 0.0, 0.0, 1.0], [0.0, 0.7071068, 0.0, 0.7071068]], dtype=np.float32),
    )
    return AnimationClip(name=name, tracks=[track])


def make_part(
    name: str,
    bone_names: Sequence[str] = DEFAULT_BONES,
    clips: Iterable[AnimationClip] = (),
    hubs: Optional[dict] = None,
    scene_data: Optional[dict] = None,
    max_joint: Optional[int] = None,
    with_mesh: bool = True,
    with_scene: bool = True,
    with_avatar_root: bool = True,
) -> SceneNode:
    """Build part -> Scene -> AvatarRoot -> (bone chain, skinned mesh)."""
    part = SceneNode(name=name)
    scene = SceneNode(name="Scene" if with_scene else f"{name}_scene", user_data=dict(scene_data or {}))
    scene.animations = list(clips)
    avatar_root = SceneNode(name="AvatarRoot" if with_avatar_root else f"{name}_root")
    if hubs is not None:
        avatar_root.user_data = {GLTF_EXTENSIONS_KEY: {HUBS_COMPONENTS_EXTENSION: dict(hubs)}}

    bones = []
    parent = avatar_root
    for index, bone_name in enumerate(bone_names):
        bone = Bone(name=bone_name, translation=(0.0, 0.1 * index, 0.0))
        parent.add(bone)
        bones.append(bone)
        parent = bone

    if with_mesh:
        skeleton = Skeleton(bones=bones)
        mesh = SkinnedMesh(
            name=f"{name}_mesh",
            geometry=make_geometry(len(bone_names) - 1 if max_joint is None else max_joint),
            material=Material(name=f"{name}_material", base_color_factor=(0.8, 0.6, 0.5, 1.0)),
        )
        mesh.bind(skeleton)
        avatar_root.add(mesh)
    else:
        geometry = make_geometry(0)
        geometry.joints = geometry.weights = None
        avatar_root.add(Mesh(name=f"{name}_prop", geometry=geometry))

    scene.add(avatar_root)
    part.add(scene)
    return part


def part_skeleton(part: SceneNode) -> Skeleton:
    for node in part.traverse():
        if isinstance(node, SkinnedMesh):
            return node.skeleton
    raise AssertionError("part has no skinned mesh")


def write_part_glb(path: Path, part: SceneNode) -> Path:
    scene = find_child_by_name(part, "Scene")
    path.write_bytes(GLTFExporter().parse(scene, ExportOptions(binary=True, animations=scene.animations)))
    return path


@pytest.fixture
def body_part() -> SceneNode:
    return make_part(
        "body",
        clips=[make_clip("Idle"), make_clip("Wave", node_name="Spine")],
        hubs={"loop-animation": {"clip": "Idle"}, "scale-audio-feedback": {"minScale": 1.0}},
        scene_data={"author": "body"},
    )


@pytest.fixture
def hair_part() -> SceneNode:
    return make_part(
        "hair",
        bone_names=("Root", "Spine", "Head", "HairAnchor"),
        clips=[make_clip("Idle", node_name="Head"), make_clip("Bounce", node_name="HairAnchor")],
        hubs={"loop-animation": {"clip": "Bounce"}, "morph-audio-feedback": {"name": "mouth"}},
        scene_data={"author": "hair", "license": "CC0"},
    )
