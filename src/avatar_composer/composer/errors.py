"""Errors raised by the composition and export pipeline."""


class AvatarError(RuntimeError):
    """Base class for avatar composition and export failures."""


class MissingRequiredNodeError(AvatarError):
    """Raised when no part provides a "Scene" or "AvatarRoot" node."""


class MissingSkeletonSourceError(AvatarError):
    """Raised when no part provides a skinned mesh to take the skeleton from."""


class StructuralPreconditionError(AvatarError):
    """Raised when a skeleton or binding breaks the hierarchy/ordering rules."""


class EncodeError(AvatarError):
    """Raised when the composed graph can't be represented as glTF."""


class ExporterBusyError(AvatarError):
    """Raised when a shared exporter is already in use."""


class PartLoadError(AvatarError):
    """Raised when a part asset can't be parsed."""


__all__ = [
    "AvatarError",
    "EncodeError",
    "ExporterBusyError",
    "MissingRequiredNodeError",
    "MissingSkeletonSourceError",
    "PartLoadError",
    "StructuralPreconditionError",
]
