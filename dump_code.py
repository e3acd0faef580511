#!/usr/bin/env python3
"""
Concatenate the project's main source files into one text file.

Usage:
  python dump_code.py                 # writes project-code-dump.txt in the current directory
  python dump_code.py --output dump.txt -v
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable, Optional, Sequence

LOG = logging.getLogger("dump-code")

PROJECT_ROOT = Path(__file__).resolve().parent
DEFAULT_OUTPUT = "project-code-dump.txt"

FILES_TO_INCLUDE = [
    "app.py",
    "chat.py",
    "create_tarball.py",
    "dump_code.py",
    "templates/index.html",
    "static/app.js",
    "static/styles.css",
    "pyproject.toml",
    "README.md",
    "DESIGN.md",
    ".env",
]


def setup_log(verbose: int) -> None:
    level = logging.DEBUG if verbose > 0 else logging.INFO
    logging.basicConfig(format="[%(levelname)s] %(message)s", level=level, stream=sys.stdout)


def _read_error(exc: Exception) -> str:
    if isinstance(exc, OSError) and exc.strerror:
        return f"{exc.strerror}: {exc.filename}"
    return str(exc)


def dump_code(root: Path, files: Iterable[str] = FILES_TO_INCLUDE) -> str:
    output = ""
    for file in files:
        output += f"\n\n--- {file} ---\n\n"
        try:
            output += (Path(root) / file).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            LOG.warning("could not read %s: %s", file, exc)
            output += f"Error reading file: {_read_error(exc)}"
    return output


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Dump selected project files into one text file")
    parser.add_argument("--root", default=str(PROJECT_ROOT), help="project directory to read from")
    parser.add_argument("--output", default=DEFAULT_OUTPUT, help="text file to write")
    parser.add_argument("-v", "--verbose", action="count", default=0)
    args = parser.parse_args(argv)
    setup_log(args.verbose)

    output = Path(args.output)
    output.write_text(dump_code(Path(args.root)), encoding="utf-8")
    print(f"All code has been dumped to {output.name}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
