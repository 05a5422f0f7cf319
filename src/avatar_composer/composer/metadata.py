"""
Metadata merge policies.

Both merges here are shallow on purpose: conflicting keys are replaced
wholesale, nested mappings are not combined.
"""

import copy

from avatar_composer.composer.types import Metadata

GLTF_EXTENSIONS_KEY = "gltfExtensions"
HUBS_COMPONENTS_EXTENSION = "MOZ_hubs_components"


def merge_user_data(target: Metadata, source: Metadata) -> Metadata:
    """Copy every top-level key of ``source`` onto ``target``; later wins."""
    # TODO: deep merge once nested component settings need combining
    target.update(copy.deepcopy(source))
    return target


def ensure_hubs_components(user_data: Metadata) -> Metadata:
    """Make sure ``user_data`` holds an extensions map with a hubs components entry."""
    extensions = user_data.get(GLTF_EXTENSIONS_KEY)
    if not isinstance(extensions, dict):
        extensions = {}
        user_data[GLTF_EXTENSIONS_KEY] = extensions
    if not isinstance(extensions.get(HUBS_COMPONENTS_EXTENSION), dict):
        extensions[HUBS_COMPONENTS_EXTENSION] = {}
    return user_data


def hubs_components(user_data: Metadata) -> Metadata:
    """Return the hubs components of ``user_data`` without modifying it."""
    extensions = user_data.get(GLTF_EXTENSIONS_KEY)
    if not isinstance(extensions, dict):
        return {}
    components = extensions.get(HUBS_COMPONENTS_EXTENSION)
    return components if isinstance(components, dict) else {}


def combine_hubs_components(target: Metadata, source: Metadata) -> Metadata:
    """
    Merge the hubs components of ``source`` into ``target``.

    Keys from ``source`` overwrite keys in ``target``. ``source`` is read
    only; a missing container there counts as empty.

    Args:
        target: user_data receiving the merge
        source: user_data to merge from

    Returns:
        ``target``, updated in place
    """
    ensure_hubs_components(target)
    components = target[GLTF_EXTENSIONS_KEY][HUBS_COMPONENTS_EXTENSION]
    components.update(copy.deepcopy(hubs_components(source)))
    return target
