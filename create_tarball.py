#!/usr/bin/env python3
"""
Package the project into a gzip-compressed tarball.

Usage:
  python create_tarball.py                       # writes kids-chat.tar.gz next to this script
  python create_tarball.py --output /tmp/kc.tar.gz
  python create_tarball.py --root /path/to/project -v
"""

import argparse
import logging
import os
import sys
import tarfile
from pathlib import Path, PurePosixPath
from typing import Optional, Sequence

LOG = logging.getLogger("create-tarball")

PROJECT_ROOT = Path(__file__).resolve().parent
DEFAULT_OUTPUT = "kids-chat.tar.gz"

DIRECTORIES_TO_EXCLUDE = ["node_modules", "dist", "build", ".venv", "venv", ".git"]
# Excluded wherever they appear in the tree.
NESTED_DIRECTORIES_TO_EXCLUDE = ["__pycache__", ".pytest_cache"]
FILE_EXTENSIONS_TO_INCLUDE = [
    ".py", ".js", ".html", ".css", ".json", ".md", ".toml", ".txt", ".cfg", ".ini", ".env",
]


def setup_log(verbose: int) -> None:
    level = logging.DEBUG if verbose > 0 else logging.INFO
    logging.basicConfig(format="[%(levelname)s] %(message)s", level=level, stream=sys.stdout)


def should_include(relative_path: str, is_dir: bool = False) -> bool:
    """Decide whether a path (relative to the project root) goes into the archive."""
    parts = PurePosixPath(relative_path.replace(os.sep, "/")).parts
    if not parts:
        return True
    if parts[0] in DIRECTORIES_TO_EXCLUDE:
        return False
    if any(part in NESTED_DIRECTORIES_TO_EXCLUDE for part in parts):
        return False
    if is_dir:
        return True
    name = parts[-1]
    return os.path.splitext(name)[1] in FILE_EXTENSIONS_TO_INCLUDE or name.startswith(".")


def create_tarball(root: Path, output: Path) -> Path:
    root = Path(root).resolve()
    output = Path(output).resolve()
    if not root.is_dir():
        raise NotADirectoryError(f"Project root not found: {root}")

    def _filter(tarinfo: tarfile.TarInfo) -> Optional[tarfile.TarInfo]:
        if (root / tarinfo.name).resolve() == output:
            return None
        if not should_include(tarinfo.name, tarinfo.isdir()):
            LOG.debug("skip %s", tarinfo.name)
            return None
        LOG.debug("add  %s", tarinfo.name)
        return tarinfo

    with tarfile.open(output, "w:gz") as tar:
        tar.add(str(root), arcname=".", filter=_filter)
    return output


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Package the project as a .tar.gz archive")
    parser.add_argument("--root", default=str(PROJECT_ROOT), help="project directory to package")
    parser.add_argument("--output", default=None, help=f"archive path (default: <root>/{DEFAULT_OUTPUT})")
    parser.add_argument("-v", "--verbose", action="count", default=0)
    args = parser.parse_args(argv)
    setup_log(args.verbose)

    root = Path(args.root)
    output = Path(args.output) if args.output else root / DEFAULT_OUTPUT
    try:
        create_tarball(root, output)
    except NotADirectoryError as exc:
        parser.error(str(exc))

    print(f"Project packaged as {output.name}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
