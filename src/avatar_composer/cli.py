import argparse
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from avatar_composer.composer.errors import AvatarError
from avatar_composer.composer.exporter import dump_document
from avatar_composer.composer.loader import PartLoader
from avatar_composer.composer.pipeline import export_avatar
from avatar_composer.composer.state import AvatarState
from avatar_composer.config import configure_logging, get_settings
from avatar_composer.services.sinks import GLB_CONTENT_TYPE, GLTF_CONTENT_TYPE, LocalDirectorySink


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Compose avatar parts into a single GLB")
    parser.add_argument("parts", nargs="+", help="Part assets (.glb or .gltf), base body first")
    parser.add_argument(
        "--output-dir",
        dest="output_dir",
        required=True,
        help="Directory where the exported assets will be written",
    )
    parser.add_argument(
        "--animation",
        dest="animations",
        action="append",
        default=None,
        help="Name of a merged clip to export; repeat for more. All clips when omitted",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    settings = get_settings()
    configure_logging(settings)

    loader = PartLoader()
    state = AvatarState()
    try:
        for index, part_path in enumerate(args.parts):
            state.set_part(f"part_{index}", loader.load_path(Path(part_path)))
        result = export_avatar(state, args.animations)
    except FileNotFoundError as exc:
        logger.error("{exc}", exc=exc)
        return 2
    except AvatarError as exc:
        logger.error("{kind}: {exc}", kind=type(exc).__name__, exc=exc)
        return 1

    sink = LocalDirectorySink(Path(args.output_dir))
    sink.write(settings.document_filename, dump_document(result.document), GLTF_CONTENT_TYPE)
    artifact = sink.write(settings.export_filename, result.glb, GLB_CONTENT_TYPE)
    print(artifact.uri)
    return 0


if __name__ == "__main__":  # pragma: no cover - console entrypoint
    sys.exit(main())
