from __future__ import annotations

import copy

import pytest

from avatar_composer.composer.composer import add_non_duplicate_animation_clips, compose_avatar
from avatar_composer.composer.errors import (
    MissingRequiredNodeError,
    MissingSkeletonSourceError,
    StructuralPreconditionError,
)
from avatar_composer.composer.locator import find_child_by_name
from avatar_composer.composer.metadata import GLTF_EXTENSIONS_KEY, HUBS_COMPONENTS_EXTENSION
from avatar_composer.composer.types import SceneNode, SkinnedMesh

from conftest import make_clip, make_part, part_skeleton


def _node_ids(root: SceneNode) -> set:
    return {id(node) for node in root.traverse()}


def test_single_part_keeps_bone_order(body_part):
    avatar = compose_avatar([body_part])

    source = part_skeleton(body_part)
    assert [bone.name for bone in avatar.skeleton.bones] == [bone.name for bone in source.bones]
    assert all(mesh.skeleton is avatar.skeleton for mesh in avatar.skinned_meshes)


def test_composed_avatar_shares_no_nodes_with_inputs(body_part, hair_part):
    avatar = compose_avatar([body_part, hair_part])

    output_ids = _node_ids(avatar.scene)
    assert not output_ids & _node_ids(body_part)
    assert not output_ids & _node_ids(hair_part)


def test_composed_meshes_share_geometry_and_material(body_part):
    avatar = compose_avatar([body_part])

    source_mesh = next(node for node in body_part.traverse() if isinstance(node, SkinnedMesh))
    assert avatar.skinned_meshes[0].geometry is source_mesh.geometry
    assert avatar.skinned_meshes[0].material is source_mesh.material


def test_assembly_layout(body_part, hair_part):
    avatar = compose_avatar([body_part, hair_part])

    assert avatar.scene.name == "Scene"
    assert avatar.scene.children == [avatar.avatar_root]
    assert avatar.avatar_root.children[0] is avatar.skeleton.root
    assert avatar.avatar_root.children[1:] == avatar.skinned_meshes
    assert [mesh.name for mesh in avatar.skinned_meshes] == ["body_mesh", "hair_mesh"]


def test_duplicate_clip_names_keep_first_occurrence(body_part, hair_part):
    body_idle = body_part.children[0].animations[0]

    avatar = compose_avatar([body_part, hair_part])

    assert [clip.name for clip in avatar.animations] == ["Idle", "Wave", "Bounce"]
    assert avatar.animations[0] is body_idle


def test_clip_dedup_also_applies_within_a_part():
    part = make_part("body", clips=[make_clip("Idle"), make_clip("Idle", node_name="Head")])
    first = part.children[0].animations[0]

    avatar = compose_avatar([part])

    assert avatar.animations == [first]


def test_add_non_duplicate_animation_clips_counts_additions():
    target = SceneNode(name="Scene", animations=[make_clip("Idle")])
    source = SceneNode(name="Scene", animations=[make_clip("Idle"), make_clip("Run")])

    assert add_non_duplicate_animation_clips(target, source) == 1
    assert [clip.name for clip in target.animations] == ["Idle", "Run"]


def test_scene_user_data_is_shallow_merged_last_wins(body_part, hair_part):
    avatar = compose_avatar([body_part, hair_part])

    assert avatar.scene.user_data == {"author": "hair", "license": "CC0"}


def test_hubs_components_are_shallow_merged_later_part_wins(body_part, hair_part):
    avatar = compose_avatar([body_part, hair_part])

    components = avatar.avatar_root.user_data[GLTF_EXTENSIONS_KEY][HUBS_COMPONENTS_EXTENSION]
    assert components == {
        "loop-animation": {"clip": "Bounce"},
        "scale-audio-feedback": {"minScale": 1.0},
        "morph-audio-feedback": {"name": "mouth"},
    }


def test_inputs_are_not_mutated(body_part):
    bare = make_part("bare")
    before_body = copy.deepcopy(find_child_by_name(body_part, "AvatarRoot").user_data)
    before_children = len(find_child_by_name(body_part, "AvatarRoot").children)

    compose_avatar([body_part, bare])

    assert find_child_by_name(bare, "AvatarRoot").user_data == {}
    assert find_child_by_name(body_part, "AvatarRoot").user_data == before_body
    assert len(find_child_by_name(body_part, "AvatarRoot").children) == before_children
    assert len(body_part.children[0].animations) == 2


def test_part_without_avatar_root_still_contributes_mesh_and_scene():
    body = make_part("body")
    partial = make_part("partial", with_avatar_root=False, scene_data={"partial": True})

    avatar = compose_avatar([body, partial])

    assert avatar.scene.user_data == {"partial": True}
    assert [mesh.name for mesh in avatar.skinned_meshes] == ["body_mesh", "partial_mesh"]


def test_no_skinned_mesh_fails_without_output():
    with pytest.raises(MissingSkeletonSourceError):
        compose_avatar([make_part("a", with_mesh=False), make_part("b", with_mesh=False)])


def test_no_scene_fails():
    with pytest.raises(MissingRequiredNodeError, match="Scene"):
        compose_avatar([make_part("a", with_scene=False)])


def test_no_avatar_root_fails():
    with pytest.raises(MissingRequiredNodeError, match="AvatarRoot"):
        compose_avatar([make_part("a", with_avatar_root=False)])


def test_no_parts_fails():
    with pytest.raises(MissingRequiredNodeError):
        compose_avatar([])


def test_larger_skeleton_rebinds_smaller_part():
    part_b = make_part("b", bone_names=("Root", "Spine", "Head", "HairAnchor"))
    part_a = make_part("a", bone_names=("Root", "Spine", "Head"))

    avatar = compose_avatar([part_b, part_a])

    assert [bone.name for bone in avatar.skeleton.bones] == ["Root", "Spine", "Head", "HairAnchor"]
    assert [mesh.skeleton for mesh in avatar.skinned_meshes] == [avatar.skeleton, avatar.skeleton]


def test_out_of_range_joint_indices_fail_rebinding():
    part_a = make_part("a", bone_names=("Root", "Spine", "Head"))
    part_b = make_part("b", bone_names=("Root", "Spine", "Head", "HairAnchor"))

    with pytest.raises(StructuralPreconditionError, match="bone index 3"):
        compose_avatar([part_a, part_b])
