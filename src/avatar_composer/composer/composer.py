"""
Avatar Composer Module

Merges several avatar parts into one scene graph that shares a single
skeleton, so every part deforms together once exported.

Workflow:
1. Locate "Scene", "AvatarRoot" and skinned meshes in each part
2. Clone the first Scene, merge user_data and animation clips into it
3. Clone the first AvatarRoot, merge hubs components into it
4. Clone every skinned mesh, clone one skeleton, rebind all meshes to it
5. Assemble Scene -> AvatarRoot -> (root bone, meshes)
"""

from typing import List, Sequence

from loguru import logger

from avatar_composer.composer.errors import MissingRequiredNodeError, MissingSkeletonSourceError
from avatar_composer.composer.locator import (
    AVATAR_ROOT_NODE_NAME,
    SCENE_NODE_NAME,
    LocatedParts,
    locate_parts,
)
from avatar_composer.composer.metadata import combine_hubs_components, merge_user_data
from avatar_composer.composer.skeleton import clone_skeleton
from avatar_composer.composer.types import ComposedAvatar, SceneNode, SkinnedMesh


def add_non_duplicate_animation_clips(target: SceneNode, source: SceneNode) -> int:
    """Append clips of ``source`` whose names ``target`` doesn't have yet.

    Returns the number of clips added.
    """
    names = {clip.name for clip in target.animations}
    added = 0
    for clip in source.animations:
        if clip.name in names:
            continue
        target.animations.append(clip)
        names.add(clip.name)
        added += 1
    return added


def _merge_scenes(scenes: Sequence[SceneNode]) -> SceneNode:
    cloned_scene = scenes[0].clone()
    cloned_scene.animations = []
    for scene in scenes:
        merge_user_data(cloned_scene.user_data, scene.user_data)
        add_non_duplicate_animation_clips(cloned_scene, scene)
    return cloned_scene


def _merge_avatar_roots(avatar_roots: Sequence[SceneNode]) -> SceneNode:
    cloned_root = avatar_roots[0].clone()
    for avatar_root in avatar_roots:
        cloned_root.user_data = combine_hubs_components(cloned_root.user_data, avatar_root.user_data)
    return cloned_root


def _check_located(located: LocatedParts) -> None:
    if not located.scenes:
        raise MissingRequiredNodeError(f"No avatar part contains a {SCENE_NODE_NAME!r} node")
    if not located.avatar_roots:
        raise MissingRequiredNodeError(f"No avatar part contains an {AVATAR_ROOT_NODE_NAME!r} node")
    if not located.skinned_meshes:
        raise MissingSkeletonSourceError("No avatar part contains a skinned mesh to take the skeleton from")


def compose_avatar(parts: Sequence[SceneNode]) -> ComposedAvatar:
    """
    Compose avatar parts into one exportable avatar.

    The inputs are only read. Geometry, materials and animation clips are
    shared with the inputs; every scene node of the result is new.

    Args:
        parts: Root nodes of the loaded avatar parts, in priority order

    Returns:
        ComposedAvatar rooted at a clone of the first part's Scene

    Raises:
        MissingRequiredNodeError: No part has a Scene or AvatarRoot node
        MissingSkeletonSourceError: No part has a skinned mesh
        StructuralPreconditionError: The source skeleton is malformed or a
            mesh references bones the shared skeleton doesn't have
    """
    located = locate_parts(parts)
    _check_located(located)

    cloned_scene = _merge_scenes(located.scenes)
    cloned_avatar_root = _merge_avatar_roots(located.avatar_roots)

    cloned_meshes: List[SkinnedMesh] = [mesh.clone() for mesh in located.skinned_meshes]
    skeleton = clone_skeleton(cloned_meshes[0])
    for mesh in cloned_meshes:
        mesh.bind(skeleton)

    cloned_scene.add(cloned_avatar_root)
    cloned_avatar_root.add(skeleton.root)
    for mesh in cloned_meshes:
        cloned_avatar_root.add(mesh)

    logger.info(
        "Composed {parts} part(s) into {meshes} skinned mesh(es), {bones} bone(s), {clips} clip(s)",
        parts=len(parts),
        meshes=len(cloned_meshes),
        bones=len(skeleton.bones),
        clips=len(cloned_scene.animations),
    )

    return ComposedAvatar(
        scene=cloned_scene,
        avatar_root=cloned_avatar_root,
        skeleton=skeleton,
        skinned_meshes=cloned_meshes,
    )
