from __future__ import annotations

import numpy as np
import pytest

from avatar_composer.composer.errors import StructuralPreconditionError
from avatar_composer.composer.skeleton import clone_skeleton
from avatar_composer.composer.types import Bone, SceneNode, Skeleton, SkinnedMesh

from conftest import make_geometry, make_part, part_skeleton


def _mesh_for(part: SceneNode) -> SkinnedMesh:
    return next(node for node in part.traverse() if isinstance(node, SkinnedMesh))


def _parent_names(skeleton: Skeleton) -> list:
    return [bone.parent.name if isinstance(bone.parent, Bone) else None for bone in skeleton.bones]


def test_clone_twice_shares_no_bones_but_matches_structure(body_part):
    mesh = _mesh_for(body_part)
    source = mesh.skeleton

    first = clone_skeleton(mesh)
    second = clone_skeleton(mesh)

    source_ids = {id(bone) for bone in source.bones}
    first_ids = {id(bone) for bone in first.bones}
    second_ids = {id(bone) for bone in second.bones}
    assert not first_ids & second_ids
    assert not first_ids & source_ids

    for skeleton in (first, second):
        assert [bone.name for bone in skeleton.bones] == [bone.name for bone in source.bones]
        assert [bone.translation for bone in skeleton.bones] == [bone.translation for bone in source.bones]
        assert _parent_names(skeleton) == _parent_names(source)
    assert first.root.parent is None


def test_clone_preserves_non_hierarchical_bone_order():
    root = Bone(name="Root")
    spine = Bone(name="Spine")
    head = Bone(name="Head")
    root.add(spine)
    spine.add(head)
    mesh = SkinnedMesh(name="mesh", geometry=make_geometry(2))
    mesh.bind(Skeleton(bones=[root, head, spine]))

    clone = clone_skeleton(mesh)

    assert [bone.name for bone in clone.bones] == ["Root", "Head", "Spine"]
    assert clone.bones[1].parent is clone.bones[2]
    assert clone.bones[2].parent is clone.bones[0]


def test_mutating_clone_leaves_source_untouched(body_part):
    mesh = _mesh_for(body_part)
    clone = clone_skeleton(mesh)

    clone.bones[1].translation = (5.0, 5.0, 5.0)
    clone.bones[1].user_data["tag"] = "changed"
    clone.bones[2].parent.remove(clone.bones[2])
    clone.bone_inverses[0][0, 3] = 42.0

    source = mesh.skeleton
    assert source.bones[1].translation == (0.0, 0.1, 0.0)
    assert "tag" not in source.bones[1].user_data
    assert source.bones[2].parent is source.bones[1]
    assert source.bone_inverses[0][0, 3] == 0.0


def test_clone_ignores_non_bone_children_of_bones(body_part):
    mesh = _mesh_for(body_part)
    mesh.skeleton.bones[2].add(SceneNode(name="HatAttachment"))

    clone = clone_skeleton(mesh)

    assert [child.name for child in clone.bones[2].children] == ["HairAnchor"]
    assert all(isinstance(child, Bone) for child in clone.bones[2].children)


def test_clone_copies_inverse_bind_matrices():
    part = make_part("body")
    source = part_skeleton(part)
    source.bone_inverses[1] = np.diag([2.0, 2.0, 2.0, 1.0])

    clone = clone_skeleton(_mesh_for(part))

    np.testing.assert_array_equal(clone.bone_inverses[1], source.bone_inverses[1])
    assert clone.bone_inverses[1] is not source.bone_inverses[1]


def test_unbound_mesh_is_rejected():
    with pytest.raises(StructuralPreconditionError):
        clone_skeleton(SkinnedMesh(name="loose", geometry=make_geometry(0)))


def test_empty_skeleton_is_rejected():
    mesh = SkinnedMesh(name="mesh")
    mesh.skeleton = Skeleton(bones=[])
    with pytest.raises(StructuralPreconditionError):
        clone_skeleton(mesh)


def test_first_bone_must_be_root():
    root = Bone(name="Root")
    spine = Bone(name="Spine")
    root.add(spine)
    mesh = SkinnedMesh(name="mesh", geometry=make_geometry(1))
    mesh.bind(Skeleton(bones=[spine, root]))

    with pytest.raises(StructuralPreconditionError, match="not the skeleton root"):
        clone_skeleton(mesh)


def test_disconnected_bone_is_rejected():
    root = Bone(name="Root")
    stray = Bone(name="Stray")
    SceneNode(name="Elsewhere").add(stray)
    mesh = SkinnedMesh(name="mesh", geometry=make_geometry(1))
    mesh.bind(Skeleton(bones=[root, stray]))

    with pytest.raises(StructuralPreconditionError, match="not connected"):
        clone_skeleton(mesh)


def test_duplicate_bones_are_rejected():
    root = Bone(name="Root")
    with pytest.raises(StructuralPreconditionError):
        Skeleton(bones=[root, root])
