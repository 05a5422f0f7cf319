"""
Part Loader Module

Reads glTF 2.0 assets (GLB containers or JSON with embedded data URIs) into
avatar part scene graphs.
"""

from __future__ import annotations

import io
import struct
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pygltflib
from loguru import logger
from pygltflib import BufferFormat
from scipy.spatial.transform import Rotation

from avatar_composer.composer.errors import PartLoadError
from avatar_composer.composer.locator import SCENE_NODE_NAME
from avatar_composer.composer.metadata import GLTF_EXTENSIONS_KEY
from avatar_composer.composer.types import (
    AnimationClip,
    Bone,
    Geometry,
    KeyframeTrack,
    Material,
    Mesh,
    Metadata,
    SceneNode,
    Skeleton,
    SkinnedMesh,
)

GLB_MAGIC = b"glTF"

COMPONENT_DTYPES = {
    pygltflib.BYTE: np.int8,
    pygltflib.UNSIGNED_BYTE: np.uint8,
    pygltflib.SHORT: np.int16,
    pygltflib.UNSIGNED_SHORT: np.uint16,
    pygltflib.UNSIGNED_INT: np.uint32,
    pygltflib.FLOAT: np.float32,
}

TYPE_WIDTHS = {
    pygltflib.SCALAR: 1,
    pygltflib.VEC2: 2,
    pygltflib.VEC3: 3,
    pygltflib.VEC4: 4,
    pygltflib.MAT2: 4,
    pygltflib.MAT3: 9,
    pygltflib.MAT4: 16,
}


def parse_gltf(data: bytes) -> pygltflib.GLTF2:
    """Parse GLB or glTF JSON bytes into a pygltflib document."""
    try:
        if data[:4] == GLB_MAGIC:
            gltf = pygltflib.GLTF2.load_binary_from_file_object(io.BytesIO(data))
        else:
            gltf = pygltflib.GLTF2.from_json(data.decode("utf-8"), infer_missing=True)
    except (AttributeError, ValueError, KeyError, TypeError, UnicodeDecodeError, struct.error) as exc:
        raise PartLoadError(f"Unable to parse glTF asset: {exc}") from exc
    if gltf is None:
        raise PartLoadError("Unable to parse glTF asset: malformed GLB container")
    return gltf


def decompose_matrix(matrix: Sequence[float]):
    """Split a column-major glTF matrix into translation, rotation, scale."""
    m = np.asarray(matrix, dtype=np.float64).reshape(4, 4).T
    basis = m[:3, :3]
    scale = np.linalg.norm(basis, axis=0)
    if np.linalg.det(basis) < 0:
        scale[0] = -scale[0]
    safe_scale = np.where(scale == 0, 1.0, scale)
    rotation = tuple(float(v) for v in Rotation.from_matrix(basis / safe_scale).as_quat())
    translation = tuple(float(v) for v in m[:3, 3])
    return translation, rotation, tuple(float(v) for v in scale)


class _PartBuilder:
    """Converts one parsed glTF document into a part tree."""

    def __init__(self, gltf: pygltflib.GLTF2, name: str) -> None:
        self.gltf = gltf
        self.name = name
        self.blob = self._load_blob()
        self.nodes: List[SceneNode] = []
        self.materials: Dict[int, Material] = {}
        self.geometries: Dict[Tuple[int, int], Geometry] = {}
        self.pending_binds: List[Tuple[SkinnedMesh, int]] = []

    def _load_blob(self) -> bytes:
        buffers = self.gltf.buffers or []
        if not buffers:
            return b""
        if len(buffers) > 1:
            raise PartLoadError(f"Asset {self.name!r} uses {len(buffers)} buffers; only one is supported")
        uri = buffers[0].uri
        if uri and uri.startswith("data:"):
            self.gltf.convert_buffers(BufferFormat.BINARYBLOB)
        elif uri:
            raise PartLoadError(f"Asset {self.name!r} references external buffer {uri!r}")
        return self.gltf.binary_blob() or b""

    # Accessors ---------------------------------------------------------

    def read_accessor(self, index: int) -> np.ndarray:
        accessor = self.gltf.accessors[index]
        dtype = COMPONENT_DTYPES[accessor.componentType]
        width = TYPE_WIDTHS[accessor.type]
        if accessor.bufferView is None:
            return np.zeros((accessor.count, width), dtype=dtype)

        view = self.gltf.bufferViews[accessor.bufferView]
        offset = (view.byteOffset or 0) + (accessor.byteOffset or 0)
        item_size = np.dtype(dtype).itemsize * width
        stride = view.byteStride or item_size
        try:
            if stride == item_size:
                data = np.frombuffer(
                    self.blob, dtype=dtype, count=accessor.count * width, offset=offset
                ).reshape(accessor.count, width)
            else:
                rows = [
                    np.frombuffer(self.blob, dtype=dtype, count=width, offset=offset + row * stride)
                    for row in range(accessor.count)
                ]
                data = np.stack(rows) if rows else np.zeros((0, width), dtype=dtype)
        except ValueError as exc:
            raise PartLoadError(f"Accessor {index} of {self.name!r} runs past its buffer") from exc

        if accessor.normalized and np.issubdtype(dtype, np.integer):
            return data.astype(np.float32) / float(np.iinfo(dtype).max)
        return data.copy()

    # Metadata ----------------------------------------------------------

    @staticmethod
    def _user_data(extras, extensions) -> Metadata:
        user_data: Metadata = dict(extras) if isinstance(extras, dict) else {}
        if extensions:
            user_data[GLTF_EXTENSIONS_KEY] = dict(extensions)
        return user_data

    # Meshes ------------------------------------------------------------

    def _material(self, index: Optional[int]) -> Optional[Material]:
        if index is None:
            return None
        if index not in self.materials:
            material_def = self.gltf.materials[index]
            pbr = material_def.pbrMetallicRoughness
            material = Material(name=material_def.name or "", double_sided=bool(material_def.doubleSided))
            if pbr is not None:
                if pbr.baseColorFactor is not None:
                    material.base_color_factor = tuple(float(v) for v in pbr.baseColorFactor)
                if pbr.metallicFactor is not None:
                    material.metallic_factor = float(pbr.metallicFactor)
                if pbr.roughnessFactor is not None:
                    material.roughness_factor = float(pbr.roughnessFactor)
            self.materials[index] = material
        return self.materials[index]

    def _geometry(self, mesh_index: int, primitive_index: int) -> Geometry:
        key = (mesh_index, primitive_index)
        if key in self.geometries:
            return self.geometries[key]

        primitive = self.gltf.meshes[mesh_index].primitives[primitive_index]
        attributes = primitive.attributes
        if attributes.POSITION is None:
            raise PartLoadError(f"Mesh {mesh_index} of {self.name!r} has a primitive without POSITION")

        geometry = Geometry(positions=self.read_accessor(attributes.POSITION).astype(np.float32))
        if attributes.NORMAL is not None:
            geometry.normals = self.read_accessor(attributes.NORMAL).astype(np.float32)
        if attributes.TEXCOORD_0 is not None:
            geometry.uvs = self.read_accessor(attributes.TEXCOORD_0).astype(np.float32)
        if attributes.JOINTS_0 is not None:
            geometry.joints = self.read_accessor(attributes.JOINTS_0).astype(np.uint16)
        if attributes.WEIGHTS_0 is not None:
            geometry.weights = self.read_accessor(attributes.WEIGHTS_0).astype(np.float32)
        if primitive.indices is not None:
            geometry.indices = self.read_accessor(primitive.indices).reshape(-1).astype(np.uint32)

        self.geometries[key] = geometry
        return geometry

    def _mesh_node(self, name: str, mesh_index: int, primitive_index: int, skin: Optional[int]) -> Mesh:
        primitive = self.gltf.meshes[mesh_index].primitives[primitive_index]
        geometry = self._geometry(mesh_index, primitive_index)
        material = self._material(primitive.material)
        if skin is None:
            return Mesh(name=name, geometry=geometry, material=material)

        mesh = SkinnedMesh(name=name, geometry=geometry, material=material)
        self.pending_binds.append((mesh, skin))
        return mesh

    # Nodes -------------------------------------------------------------

    def _build_node(self, index: int, joint_indices: set) -> SceneNode:
        node_def = self.gltf.nodes[index]
        name = node_def.name or f"node_{index}"
        mesh_def = self.gltf.meshes[node_def.mesh] if node_def.mesh is not None else None

        if index in joint_indices:
            node: SceneNode = Bone(name=name)
        elif mesh_def is not None and len(mesh_def.primitives) == 1:
            node = self._mesh_node(name, node_def.mesh, 0, node_def.skin)
        else:
            node = SceneNode(name=name)

        if node_def.matrix is not None:
            node.translation, node.rotation, node.scale = decompose_matrix(node_def.matrix)
        else:
            if node_def.translation is not None:
                node.translation = tuple(float(v) for v in node_def.translation)
            if node_def.rotation is not None:
                node.rotation = tuple(float(v) for v in node_def.rotation)
            if node_def.scale is not None:
                node.scale = tuple(float(v) for v in node_def.scale)
        node.user_data = self._user_data(node_def.extras, node_def.extensions)

        # Meshes that couldn't become the node itself hang below it, one per primitive.
        if mesh_def is not None and not isinstance(node, Mesh):
            for primitive_index in range(len(mesh_def.primitives)):
                node.add(self._mesh_node(f"{name}_{primitive_index}", node_def.mesh, primitive_index, node_def.skin))
        return node

    def _build_skeleton(self, skin_index: int) -> Skeleton:
        skin = self.gltf.skins[skin_index]
        bones = [self.nodes[joint] for joint in skin.joints]
        inverses: List[np.ndarray] = []
        if skin.inverseBindMatrices is not None:
            matrices = self.read_accessor(skin.inverseBindMatrices).astype(np.float64)
            inverses = [row.reshape(4, 4).T.copy() for row in matrices]
        return Skeleton(bones=bones, bone_inverses=inverses)

    def _build_clip(self, index: int) -> AnimationClip:
        animation = self.gltf.animations[index]
        tracks: List[KeyframeTrack] = []
        for channel in animation.channels:
            target = channel.target
            if target.node is None or target.path not in ("translation", "rotation", "scale"):
                continue
            sampler = animation.samplers[channel.sampler]
            tracks.append(
                KeyframeTrack(
                    node_name=self.nodes[target.node].name,
                    path=target.path,
                    times=self.read_accessor(sampler.input).reshape(-1).astype(np.float32),
                    values=self.read_accessor(sampler.output).astype(np.float32),
                    interpolation=sampler.interpolation or "LINEAR",
                )
            )
        return AnimationClip(name=animation.name or f"animation_{index}", tracks=tracks)

    def _build_scene(self) -> SceneNode:
        scenes = self.gltf.scenes or []
        if not scenes:
            raise PartLoadError(f"Asset {self.name!r} has no scenes")
        scene_def = scenes[self.gltf.scene or 0]
        scene_name = scene_def.name or SCENE_NODE_NAME
        roots = [self.nodes[index] for index in scene_def.nodes or []]

        # Assets written by this package keep the Scene as their single root node.
        if len(roots) == 1 and roots[0].name == scene_name:
            scene = roots[0]
            scene.user_data.update(self._user_data(scene_def.extras, scene_def.extensions))
            return scene

        scene = SceneNode(name=scene_name, user_data=self._user_data(scene_def.extras, scene_def.extensions))
        for root in roots:
            scene.add(root)
        return scene

    def build(self) -> SceneNode:
        joint_indices = {joint for skin in self.gltf.skins or [] for joint in skin.joints}
        node_defs = self.gltf.nodes or []
        self.nodes = [self._build_node(index, joint_indices) for index in range(len(node_defs))]
        for index, node_def in enumerate(node_defs):
            for child in node_def.children or []:
                self.nodes[index].add(self.nodes[child])

        skeletons = {skin_index: self._build_skeleton(skin_index) for skin_index in range(len(self.gltf.skins or []))}
        for mesh, skin_index in self.pending_binds:
            mesh.bind(skeletons[skin_index])

        scene = self._build_scene()
        scene.animations = [self._build_clip(index) for index in range(len(self.gltf.animations or []))]

        part = SceneNode(name=self.name)
        part.add(scene)
        return part


class PartLoader:
    """Load avatar part assets into scene graphs."""

    def load_bytes(self, data: bytes, name: str) -> SceneNode:
        """
        Build a part tree from GLB or glTF JSON bytes.

        Args:
            data: Asset contents
            name: Name given to the part's top node

        Returns:
            Part root node containing the asset's Scene

        Raises:
            PartLoadError: If the asset can't be parsed
        """
        gltf = parse_gltf(data)
        try:
            part = _PartBuilder(gltf, name).build()
        except (IndexError, KeyError, TypeError) as exc:
            raise PartLoadError(f"Asset {name!r} is malformed: {exc!r}") from exc
        logger.debug("Loaded part {name} ({count} nodes)", name=name, count=len(gltf.nodes or []))
        return part

    def load_path(self, path: Path, name: Optional[str] = None) -> SceneNode:
        path = Path(path)
        if not path.exists():
            msg = f"Part asset does not exist: {path}"
            raise FileNotFoundError(msg)
        return self.load_bytes(path.read_bytes(), name or path.stem)


__all__ = [
    "PartLoader",
    "decompose_matrix",
    "parse_gltf",
]
