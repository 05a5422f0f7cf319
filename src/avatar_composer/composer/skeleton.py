"""
Skeleton Cloner Module

Copies the skeleton bound to a skinned mesh into a fully independent bone
hierarchy. The clone keeps the original bone order, which is the index space
the skin joint data refers to.
"""

from typing import Dict, List

from avatar_composer.composer.errors import StructuralPreconditionError
from avatar_composer.composer.types import Bone, Skeleton, SkinnedMesh


def validate_skeleton(skeleton: Skeleton) -> None:
    """
    Check that ``bones[0]`` is the root and every bone hangs off it.

    Raises:
        StructuralPreconditionError: If the bone list is empty, the first bone
            has a parent inside the skeleton, or a bone can't be reached from
            the first bone through bone parents.
    """
    bones = skeleton.bones
    if not bones:
        raise StructuralPreconditionError("Skeleton has no bones")

    members = {id(bone) for bone in bones}
    root = bones[0]
    if root.parent is not None and id(root.parent) in members:
        raise StructuralPreconditionError(
            f"First bone {root.name!r} is not the skeleton root (parent {root.parent.name!r} is a skeleton bone)"
        )

    for bone in bones[1:]:
        if bone.parent is None or id(bone.parent) not in members:
            raise StructuralPreconditionError(
                f"Bone {bone.name!r} is not connected to root bone {root.name!r}"
            )


def clone_skeleton(skinned_mesh: SkinnedMesh) -> Skeleton:
    """
    Clone the skeleton bound to ``skinned_mesh``.

    Args:
        skinned_mesh: Mesh whose skeleton is the merge source

    Returns:
        New Skeleton sharing no Bone with the source

    Raises:
        StructuralPreconditionError: If the mesh is unbound or the skeleton
            is malformed.
    """
    source = skinned_mesh.skeleton
    if source is None:
        raise StructuralPreconditionError(f"Mesh {skinned_mesh.name!r} is not bound to a skeleton")
    validate_skeleton(source)

    bone_clones: Dict[Bone, Bone] = {bone: bone.clone() for bone in source.bones}

    # Rebuild parent/child links from the original tree only.
    for node in source.root.traverse():
        if not isinstance(node, Bone):
            continue
        clone = bone_clones.get(node)
        if clone is None:
            continue
        for child in node.children:
            child_clone = bone_clones.get(child)
            if child_clone is not None:
                clone.add(child_clone)

    bones: List[Bone] = [bone_clones[bone] for bone in source.bones]
    return Skeleton(bones=bones, bone_inverses=[matrix.copy() for matrix in source.bone_inverses])
