"""glTF/GLB serialization of composed avatars via pygltflib."""

from __future__ import annotations

import json
import math
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

import numpy as np
import pygltflib
from loguru import logger
from pygltflib import BufferFormat

from avatar_composer.composer.errors import EncodeError, ExporterBusyError
from avatar_composer.composer.locator import find_child_by_name
from avatar_composer.composer.metadata import GLTF_EXTENSIONS_KEY
from avatar_composer.composer.types import (
    IDENTITY_ROTATION,
    IDENTITY_SCALE,
    IDENTITY_TRANSLATION,
    AnimationClip,
    ExportOptions,
    Geometry,
    Material,
    Mesh,
    SceneNode,
    Skeleton,
    SkinnedMesh,
)

GENERATOR = "avatar-composer"

ANIMATION_PATHS = ("translation", "rotation", "scale")
INTERPOLATIONS = ("LINEAR", "STEP", "CUBICSPLINE")

GLTFResult = Union[bytes, Dict[str, Any]]


def _floats(values) -> List[float]:
    return [float(v) for v in values]


def _is_default(values, default) -> bool:
    return all(math.isclose(float(a), float(b), abs_tol=1e-9) for a, b in zip(values, default))


class _GLTFWriter:
    """Transient state of one serialization run."""

    def __init__(self, options: ExportOptions) -> None:
        self.options = options
        self.gltf = pygltflib.GLTF2(
            asset=pygltflib.Asset(generator=GENERATOR, version="2.0"),
            scene=0,
            scenes=[],
            nodes=[],
            meshes=[],
            materials=[],
            skins=[],
            animations=[],
            accessors=[],
            bufferViews=[],
            buffers=[],
        )
        self.blob = bytearray()
        self.node_map: Dict[SceneNode, int] = {}
        self.skinned_meshes: List[SkinnedMesh] = []
        self.mesh_cache: Dict[Tuple[int, int], int] = {}
        self.material_cache: Dict[Material, int] = {}
        self.skin_cache: Dict[Skeleton, int] = {}
        self.extensions_used: List[str] = []

    # Buffers -----------------------------------------------------------

    def _write_buffer_view(self, data: bytes, target: Optional[int] = None) -> int:
        padding = (4 - len(self.blob) % 4) % 4
        self.blob.extend(b"\x00" * padding)
        offset = len(self.blob)
        self.blob.extend(data)

        view_idx = len(self.gltf.bufferViews)
        self.gltf.bufferViews.append(
            pygltflib.BufferView(
                buffer=0,
                byteOffset=offset,
                byteLength=len(data),
                target=target,
            )
        )
        return view_idx

    def _write_accessor(
        self,
        array: np.ndarray,
        component_type: int,
        accessor_type: str,
        target: Optional[int] = None,
        with_bounds: bool = False,
    ) -> int:
        dtype = {
            pygltflib.FLOAT: np.float32,
            pygltflib.UNSIGNED_SHORT: np.uint16,
            pygltflib.UNSIGNED_INT: np.uint32,
        }[component_type]
        data = np.ascontiguousarray(array, dtype=dtype)
        view_idx = self._write_buffer_view(data.tobytes(), target=target)

        accessor = pygltflib.Accessor(
            bufferView=view_idx,
            byteOffset=0,
            componentType=component_type,
            count=int(len(data)),
            type=accessor_type,
        )
        if with_bounds and len(data):
            flat = data.reshape(len(data), -1)
            accessor.min = _floats(flat.min(axis=0))
            accessor.max = _floats(flat.max(axis=0))

        accessor_idx = len(self.gltf.accessors)
        self.gltf.accessors.append(accessor)
        return accessor_idx

    # Metadata ----------------------------------------------------------

    def _serialize_user_data(self, node: SceneNode, gltf_node: Any) -> None:
        user_data = dict(node.user_data)
        extensions = user_data.pop(GLTF_EXTENSIONS_KEY, None) or {}
        if not isinstance(extensions, dict):
            raise EncodeError(f"Node {node.name!r} has non-mapping {GLTF_EXTENSIONS_KEY} metadata")

        try:
            if extensions:
                gltf_node.extensions = json.loads(json.dumps(extensions, allow_nan=False))
                for name in extensions:
                    if name not in self.extensions_used:
                        self.extensions_used.append(name)
            if user_data:
                gltf_node.extras = json.loads(json.dumps(user_data, allow_nan=False))
        except (TypeError, ValueError) as exc:
            raise EncodeError(f"Metadata on node {node.name!r} is not JSON serializable: {exc}") from exc

    # Nodes -------------------------------------------------------------

    def process_node(self, node: SceneNode) -> int:
        gltf_node = pygltflib.Node(name=node.name or None)
        if not _is_default(node.translation, IDENTITY_TRANSLATION):
            gltf_node.translation = _floats(node.translation)
        if not _is_default(node.rotation, IDENTITY_ROTATION):
            gltf_node.rotation = _floats(node.rotation)
        if not _is_default(node.scale, IDENTITY_SCALE):
            gltf_node.scale = _floats(node.scale)
        self._serialize_user_data(node, gltf_node)

        node_idx = len(self.gltf.nodes)
        self.gltf.nodes.append(gltf_node)
        self.node_map[node] = node_idx

        if isinstance(node, Mesh) and node.geometry is not None:
            gltf_node.mesh = self.process_mesh(node)
        if isinstance(node, SkinnedMesh):
            self.skinned_meshes.append(node)

        children = [self.process_node(child) for child in node.children]
        if children:
            gltf_node.children = children
        return node_idx

    # Meshes ------------------------------------------------------------

    def process_material(self, material: Material) -> int:
        if material in self.material_cache:
            return self.material_cache[material]

        material_idx = len(self.gltf.materials)
        self.gltf.materials.append(
            pygltflib.Material(
                name=material.name or None,
                pbrMetallicRoughness=pygltflib.PbrMetallicRoughness(
                    baseColorFactor=_floats(material.base_color_factor),
                    metallicFactor=float(material.metallic_factor),
                    roughnessFactor=float(material.roughness_factor),
                ),
                alphaMode="OPAQUE" if material.base_color_factor[3] >= 1.0 else "BLEND",
                doubleSided=material.double_sided,
            )
        )
        self.material_cache[material] = material_idx
        return material_idx

    def process_mesh(self, mesh: Mesh) -> int:
        geometry: Geometry = mesh.geometry
        cache_key = (id(geometry), id(mesh.material))
        if cache_key in self.mesh_cache:
            return self.mesh_cache[cache_key]

        positions = np.asarray(geometry.positions).reshape(-1, 3)
        attributes = pygltflib.Attributes(
            POSITION=self._write_accessor(
                positions, pygltflib.FLOAT, pygltflib.VEC3, target=pygltflib.ARRAY_BUFFER, with_bounds=True
            )
        )
        if geometry.normals is not None:
            attributes.NORMAL = self._write_accessor(
                np.asarray(geometry.normals).reshape(-1, 3),
                pygltflib.FLOAT,
                pygltflib.VEC3,
                target=pygltflib.ARRAY_BUFFER,
            )
        if geometry.uvs is not None:
            attributes.TEXCOORD_0 = self._write_accessor(
                np.asarray(geometry.uvs).reshape(-1, 2),
                pygltflib.FLOAT,
                pygltflib.VEC2,
                target=pygltflib.ARRAY_BUFFER,
            )
        if geometry.joints is not None and geometry.weights is not None:
            attributes.JOINTS_0 = self._write_accessor(
                np.asarray(geometry.joints).reshape(-1, 4),
                pygltflib.UNSIGNED_SHORT,
                pygltflib.VEC4,
                target=pygltflib.ARRAY_BUFFER,
            )
            attributes.WEIGHTS_0 = self._write_accessor(
                np.asarray(geometry.weights).reshape(-1, 4),
                pygltflib.FLOAT,
                pygltflib.VEC4,
                target=pygltflib.ARRAY_BUFFER,
            )

        primitive = pygltflib.Primitive(attributes=attributes)
        if geometry.indices is not None:
            primitive.indices = self._write_accessor(
                np.asarray(geometry.indices).reshape(-1),
                pygltflib.UNSIGNED_INT,
                pygltflib.SCALAR,
                target=pygltflib.ELEMENT_ARRAY_BUFFER,
            )
        if mesh.material is not None:
            primitive.material = self.process_material(mesh.material)

        mesh_idx = len(self.gltf.meshes)
        self.gltf.meshes.append(pygltflib.Mesh(name=mesh.name or None, primitives=[primitive]))
        self.mesh_cache[cache_key] = mesh_idx
        return mesh_idx

    # Skins -------------------------------------------------------------

    def process_skin(self, mesh: SkinnedMesh) -> None:
        skeleton = mesh.skeleton
        if skeleton is None:
            raise EncodeError(f"Skinned mesh {mesh.name!r} is not bound to a skeleton")

        if skeleton not in self.skin_cache:
            joints: List[int] = []
            for bone in skeleton.bones:
                bone_idx = self.node_map.get(bone)
                if bone_idx is None:
                    raise EncodeError(
                        f"Bone {bone.name!r} used by skinned mesh {mesh.name!r} "
                        "is not part of the exported tree"
                    )
                joints.append(bone_idx)

            # glTF matrices are column-major; ours are row-major.
            inverses = np.stack([np.asarray(m, dtype=np.float32) for m in skeleton.bone_inverses])
            ibm_idx = self._write_accessor(
                np.ascontiguousarray(inverses.transpose(0, 2, 1)).reshape(-1, 16),
                pygltflib.FLOAT,
                pygltflib.MAT4,
            )

            skin_idx = len(self.gltf.skins)
            self.gltf.skins.append(
                pygltflib.Skin(
                    joints=joints,
                    skeleton=joints[0],
                    inverseBindMatrices=ibm_idx,
                )
            )
            self.skin_cache[skeleton] = skin_idx

        # glTF only allows a skin on nodes that carry a mesh.
        gltf_node = self.gltf.nodes[self.node_map[mesh]]
        if gltf_node.mesh is not None:
            gltf_node.skin = self.skin_cache[skeleton]

    # Animations --------------------------------------------------------

    def process_animation(self, clip: AnimationClip, root: SceneNode) -> None:
        channels: List[pygltflib.AnimationChannel] = []
        samplers: List[pygltflib.AnimationSampler] = []

        for track in clip.tracks:
            target = find_child_by_name(root, track.node_name)
            if target is None or track.path not in ANIMATION_PATHS:
                logger.warning(
                    "Skipping track {node}.{path} of clip {clip}: no such target",
                    node=track.node_name,
                    path=track.path,
                    clip=clip.name,
                )
                continue
            if track.interpolation not in INTERPOLATIONS:
                raise EncodeError(
                    f"Track {track.node_name}.{track.path} of clip {clip.name!r} "
                    f"uses unsupported interpolation {track.interpolation!r}"
                )

            times = np.asarray(track.times, dtype=np.float32).reshape(-1)
            values = np.asarray(track.values, dtype=np.float32).reshape(-1, track.value_size)
            input_idx = self._write_accessor(times, pygltflib.FLOAT, pygltflib.SCALAR, with_bounds=True)
            output_idx = self._write_accessor(
                values, pygltflib.FLOAT, pygltflib.VEC4 if track.value_size == 4 else pygltflib.VEC3
            )

            samplers.append(
                pygltflib.AnimationSampler(
                    input=input_idx,
                    output=output_idx,
                    interpolation=track.interpolation,
                )
            )
            channels.append(
                pygltflib.AnimationChannel(
                    sampler=len(samplers) - 1,
                    target=pygltflib.AnimationChannelTarget(node=self.node_map[target], path=track.path),
                )
            )

        if not channels:
            logger.warning("Skipping clip {clip}: no exportable tracks", clip=clip.name)
            return

        self.gltf.animations.append(
            pygltflib.Animation(name=clip.name, channels=channels, samplers=samplers)
        )

    # Entry -------------------------------------------------------------

    def write(self, root: SceneNode) -> GLTFResult:
        root_idx = self.process_node(root)
        self.gltf.scenes.append(pygltflib.Scene(name=root.name or None, nodes=[root_idx]))

        for mesh in self.skinned_meshes:
            self.process_skin(mesh)
        for clip in self.options.animations:
            self.process_animation(clip, root)

        if self.extensions_used:
            self.gltf.extensionsUsed = list(self.extensions_used)

        if self.blob:
            padding = (4 - len(self.blob) % 4) % 4
            self.blob.extend(b"\x00" * padding)
            self.gltf.buffers = [pygltflib.Buffer(byteLength=len(self.blob))]
            self.gltf.set_binary_blob(bytes(self.blob))

        if self.options.binary:
            return b"".join(self.gltf.save_to_bytes())

        if self.blob:
            self.gltf.convert_buffers(BufferFormat.DATAURI)
        return json.loads(self.gltf.to_json())


class GLTFExporter:
    """
    Serializes scene graphs to glTF 2.0.

    An instance holds the state of the serialization in flight, so it can
    only run one ``parse`` at a time. Use ``acquire()`` to hold it across
    several calls; another thread trying to use it meanwhile gets
    ExporterBusyError.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._writer: Optional[_GLTFWriter] = None

    @contextmanager
    def acquire(self, timeout: Optional[float] = None) -> Iterator["GLTFExporter"]:
        """Hold the exporter for the duration of the ``with`` block."""
        if timeout is None:
            acquired = self._lock.acquire(blocking=False)
        else:
            acquired = self._lock.acquire(timeout=timeout)
        if not acquired:
            raise ExporterBusyError("Exporter is already serializing another avatar")
        try:
            yield self
        finally:
            self._lock.release()

    @property
    def busy(self) -> bool:
        return self._writer is not None

    def parse(self, root: SceneNode, options: Optional[ExportOptions] = None) -> GLTFResult:
        """
        Serialize the tree under ``root``.

        Args:
            root: Root node to export, typically ``ComposedAvatar.scene``
            options: Binary flag and animation clips to include

        Returns:
            GLB bytes when ``options.binary`` is set, else a glTF JSON document

        Raises:
            EncodeError: If the tree can't be represented as glTF
            ExporterBusyError: If another thread holds the exporter
        """
        options = options or ExportOptions()
        with self.acquire():
            if self._writer is not None:
                raise ExporterBusyError("Exporter is already serializing another avatar")
            self._writer = _GLTFWriter(options)
            try:
                result = self._writer.write(root)
            finally:
                self._writer = None

        logger.debug(
            "Serialized {root} as {fmt}",
            root=root.name,
            fmt="GLB" if options.binary else "glTF JSON",
        )
        return result


def dump_document(document: Dict[str, Any]) -> bytes:
    """Stable byte encoding of a glTF JSON document."""
    return json.dumps(document, sort_keys=True, separators=(",", ":")).encode("utf-8")


__all__ = [
    "GLTFExporter",
    "GLTFResult",
    "dump_document",
]
