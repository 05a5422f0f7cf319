"""
Data models and types for the Avatar Composer.

The scene graph here is intentionally small: just enough of a node tree,
skeleton and skinned mesh model to merge avatar parts and write them back
out as glTF.
"""

import copy
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple, Union

import numpy as np

from avatar_composer.composer.errors import StructuralPreconditionError

# Open-ended metadata carried in ``user_data`` and glTF extras/extensions.
MetadataValue = Union[str, int, float, bool, None, List["MetadataValue"], Dict[str, "MetadataValue"]]
Metadata = Dict[str, MetadataValue]

IDENTITY_TRANSLATION: Tuple[float, float, float] = (0.0, 0.0, 0.0)
IDENTITY_ROTATION: Tuple[float, float, float, float] = (0.0, 0.0, 0.0, 1.0)
IDENTITY_SCALE: Tuple[float, float, float] = (1.0, 1.0, 1.0)


@dataclass(eq=False)
class SceneNode:
    """A node in the avatar scene graph.

    Nodes compare and hash by identity. A node has at most one parent;
    attaching it somewhere else detaches it first.
    """

    name: str = ""
    translation: Tuple[float, float, float] = IDENTITY_TRANSLATION
    rotation: Tuple[float, float, float, float] = IDENTITY_ROTATION
    scale: Tuple[float, float, float] = IDENTITY_SCALE
    user_data: Metadata = field(default_factory=dict)
    animations: List["AnimationClip"] = field(default_factory=list)
    children: List["SceneNode"] = field(default_factory=list, repr=False)
    parent: Optional["SceneNode"] = field(default=None, repr=False)

    node_type = "Object3D"

    def add(self, child: "SceneNode") -> "SceneNode":
        """Attach ``child`` as the last child of this node."""
        if child is self:
            raise ValueError(f"Node {self.name!r} can't be added as a child of itself")
        if child.parent is not None:
            child.parent.remove(child)
        child.parent = self
        self.children.append(child)
        return self

    def remove(self, child: "SceneNode") -> "SceneNode":
        for index, existing in enumerate(self.children):
            if existing is child:
                del self.children[index]
                child.parent = None
                break
        return self

    def traverse(self) -> Iterator["SceneNode"]:
        """Yield this node and all descendants, depth first, pre-order."""
        yield self
        for child in self.children:
            yield from child.traverse()

    def clone(self) -> "SceneNode":
        """Shallow clone: scalar state and a private copy of ``user_data``, no children."""
        duplicate = copy.copy(self)
        duplicate.user_data = copy.deepcopy(self.user_data)
        duplicate.animations = list(self.animations)
        duplicate.children = []
        duplicate.parent = None
        return duplicate


@dataclass(eq=False)
class Bone(SceneNode):
    node_type = "Bone"


@dataclass(eq=False)
class Material:
    """PBR material subset carried through to the exported asset."""

    name: str = ""
    base_color_factor: Tuple[float, float, float, float] = (1.0, 1.0, 1.0, 1.0)
    metallic_factor: float = 0.0
    roughness_factor: float = 1.0
    double_sided: bool = False


@dataclass(eq=False)
class Geometry:
    """Vertex data for one primitive.

    ``joints`` and ``weights`` are (N, 4) arrays; joint values index into the
    bone sequence of whatever skeleton the owning mesh is bound to.
    """

    positions: np.ndarray
    normals: Optional[np.ndarray] = None
    uvs: Optional[np.ndarray] = None
    indices: Optional[np.ndarray] = None
    joints: Optional[np.ndarray] = None
    weights: Optional[np.ndarray] = None

    def max_joint_index(self) -> int:
        """Highest bone index referenced by a non-zero weight, or -1."""
        if self.joints is None or len(self.joints) == 0:
            return -1
        joints = np.asarray(self.joints)
        if self.weights is not None:
            joints = joints[np.asarray(self.weights) > 0.0]
        if joints.size == 0:
            return -1
        return int(joints.max())


@dataclass(eq=False)
class Mesh(SceneNode):
    geometry: Optional[Geometry] = None
    material: Optional[Material] = None

    node_type = "Mesh"


@dataclass(eq=False)
class Skeleton:
    """Ordered bones of a rig.

    The order is the index space used by skin joint data and must never be
    shuffled. ``bone_inverses`` is index-aligned with ``bones`` and holds
    row-major 4x4 inverse bind matrices.
    """

    bones: List[Bone]
    bone_inverses: List[np.ndarray] = field(default_factory=list)

    def __post_init__(self) -> None:
        seen = set()
        for bone in self.bones:
            if id(bone) in seen:
                raise StructuralPreconditionError(
                    f"Skeleton lists bone {bone.name!r} more than once"
                )
            seen.add(id(bone))

        if not self.bone_inverses:
            self.bone_inverses = [np.identity(4) for _ in self.bones]
        elif len(self.bone_inverses) != len(self.bones):
            raise StructuralPreconditionError(
                f"Skeleton has {len(self.bones)} bones but {len(self.bone_inverses)} inverse bind matrices"
            )

    @property
    def root(self) -> Bone:
        return self.bones[0]


@dataclass(eq=False)
class SkinnedMesh(Mesh):
    skeleton: Optional[Skeleton] = field(default=None, repr=False)

    node_type = "SkinnedMesh"

    def bind(self, skeleton: Skeleton) -> None:
        """Bind to ``skeleton``.

        Only index range is checked: the skeleton may carry more bones than
        this mesh was authored against.
        """
        max_index = self.geometry.max_joint_index() if self.geometry is not None else -1
        if max_index >= len(skeleton.bones):
            raise StructuralPreconditionError(
                f"Mesh {self.name!r} references bone index {max_index} "
                f"but the skeleton only has {len(skeleton.bones)} bones"
            )
        self.skeleton = skeleton


@dataclass(eq=False)
class KeyframeTrack:
    """Sampled values for one animated property of one node."""

    node_name: str
    path: str  # "translation", "rotation" or "scale"
    times: np.ndarray
    values: np.ndarray
    interpolation: str = "LINEAR"

    @property
    def value_size(self) -> int:
        return 4 if self.path == "rotation" else 3


@dataclass(eq=False)
class AnimationClip:
    name: str
    tracks: List[KeyframeTrack] = field(default_factory=list)
    duration: float = -1.0

    def __post_init__(self) -> None:
        if self.duration < 0:
            ends = [float(track.times[-1]) for track in self.tracks if len(track.times)]
            self.duration = max(ends) if ends else 0.0


@dataclass
class ComposedAvatar:
    """Result of merging avatar parts; every node is owned by this avatar."""

    scene: SceneNode
    avatar_root: SceneNode
    skeleton: Skeleton
    skinned_meshes: List[SkinnedMesh] = field(default_factory=list)

    @property
    def animations(self) -> List[AnimationClip]:
        return self.scene.animations


@dataclass
class ExportOptions:
    """Per-export configuration."""

    binary: bool = False
    animations: List[AnimationClip] = field(default_factory=list)
