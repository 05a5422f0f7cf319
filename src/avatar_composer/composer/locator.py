"""
Part Locator Module

Finds the conventional anchor nodes ("Scene" and "AvatarRoot") and the
skinned meshes inside loaded avatar parts.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Type, TypeVar

from avatar_composer.composer.types import SceneNode, SkinnedMesh

SCENE_NODE_NAME = "Scene"
AVATAR_ROOT_NODE_NAME = "AvatarRoot"

NodeT = TypeVar("NodeT", bound=SceneNode)


@dataclass
class LocatedParts:
    """Anchor nodes found across a set of parts, in part order."""

    scenes: List[SceneNode] = field(default_factory=list)
    avatar_roots: List[SceneNode] = field(default_factory=list)
    skinned_meshes: List[SkinnedMesh] = field(default_factory=list)


def find_child_by_name(root: SceneNode, name: str) -> Optional[SceneNode]:
    """Return the first node named ``name`` in a pre-order walk from ``root``."""
    for node in root.traverse():
        if node.name == name:
            return node
    return None


def find_children_by_type(root: SceneNode, node_cls: Type[NodeT]) -> List[NodeT]:
    return [node for node in root.traverse() if isinstance(node, node_cls)]


def locate_parts(parts: Sequence[SceneNode]) -> LocatedParts:
    """
    Locate merge anchors in each part.

    Parts missing a "Scene" or "AvatarRoot" node are left out of that merge
    pass rather than rejected.

    Args:
        parts: Root nodes of the loaded avatar parts

    Returns:
        LocatedParts with scenes, avatar roots and all skinned meshes
    """
    located = LocatedParts()
    for part in parts:
        scene = find_child_by_name(part, SCENE_NODE_NAME)
        if scene is not None:
            located.scenes.append(scene)

        avatar_root = find_child_by_name(part, AVATAR_ROOT_NODE_NAME)
        if avatar_root is not None:
            located.avatar_roots.append(avatar_root)

        located.skinned_meshes.extend(find_children_by_type(part, SkinnedMesh))
    return located


def describe_node(root: SceneNode, indent: str = "  ") -> str:
    """Render an indented ``name (Type)`` outline of a tree."""
    lines: List[str] = []

    def _describe(node: SceneNode, depth: int) -> None:
        label = node.name or "<unnamed>"
        lines.append(f"{indent * depth}{label} ({node.node_type})")
        for child in node.children:
            _describe(child, depth + 1)

    _describe(root, 0)
    return "\n".join(lines)
