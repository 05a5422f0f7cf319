"""
Application state for avatar editing sessions.

Holds which part asset fills each avatar slot and the exporter the session
serializes with. Nothing here is process-global; callers own their state.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional

from loguru import logger

from avatar_composer.composer.exporter import GLTFExporter
from avatar_composer.composer.types import SceneNode

PartLoaderFn = Callable[[str], SceneNode]


@dataclass
class AvatarState:
    """Selected parts for one avatar, plus its exporter resource."""

    base_part: Optional[SceneNode] = None
    avatar_config: Dict[str, Optional[str]] = field(default_factory=dict)
    slots: Dict[str, SceneNode] = field(default_factory=dict)
    exporter: GLTFExporter = field(default_factory=GLTFExporter)

    def set_part(self, slot: str, part: Optional[SceneNode]) -> None:
        if part is None:
            self.slots.pop(slot, None)
        else:
            self.slots[slot] = part

    def apply_avatar_config(self, new_config: Mapping[str, Optional[str]], load: PartLoaderFn) -> List[str]:
        """
        Bring the slots in line with ``new_config``.

        Only slots whose asset name changed are reloaded; ``None`` empties a
        slot. Slots absent from ``new_config`` are left alone.

        Args:
            new_config: Slot name -> asset name (or None)
            load: Loads an asset name into a part tree

        Returns:
            Names of the slots that changed
        """
        changed: List[str] = []
        for slot, asset in new_config.items():
            if slot in self.avatar_config and self.avatar_config[slot] == asset:
                continue
            self.set_part(slot, load(asset) if asset is not None else None)
            self.avatar_config[slot] = asset
            changed.append(slot)

        if changed:
            logger.info("Applied avatar config, changed slots: {slots}", slots=", ".join(changed))
        return changed

    def parts(self) -> List[SceneNode]:
        """Parts in composition order: the base part first, then slots in insertion order."""
        parts = [self.base_part] if self.base_part is not None else []
        parts.extend(self.slots.values())
        return parts
