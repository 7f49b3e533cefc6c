# log4shell_scanner/walker.py
import os
import logging
from pathlib import Path
from typing import Iterable, Iterator
from .models import RunContext

logger = logging.getLogger(__name__)

# Pseudo filesystems that must never be walked
KERNEL_FILESYSTEMS = ('/proc', '/sys', '/dev')


def is_excluded_path(path: str, excluded: Iterable[str] = KERNEL_FILESYSTEMS) -> bool:
    """Exact match or path-prefix match against the excluded roots."""
    for root in excluded:
        root = root.rstrip('/') or '/'
        if path == root or path.startswith(root + '/'):
            return True
    return False


def is_symlinked_dir(path: Path) -> bool:
    return path.is_symlink() and path.is_dir()


def walk_files(target: Path, context: RunContext, exclude_paths: Iterable[str] = ()) -> Iterator[Path]:
    """
    Yields every regular file under target, depth first in name order. Counts
    scanned directories and files on the context as it goes.
    """
    excluded = tuple(KERNEL_FILESYSTEMS) + tuple(str(p) for p in exclude_paths)
    stack = [Path(os.path.abspath(target))]

    while stack:
        current = stack.pop()
        current_str = str(current)

        if current.is_dir():
            if is_symlinked_dir(current):
                logger.debug(f"Skipping symlink: {current_str}")
                continue
            if is_excluded_path(current_str, excluded):
                logger.debug(f"Skipping directory: {current_str}")
                continue

            logger.debug(f"Scanning directory: {current_str}")
            context.scanned_dirs += 1
            try:
                children = sorted(current.iterdir())
            except OSError as e:
                logger.warning(f"Cannot list directory {current_str}: {e}")
                continue
            # Reversed so the stack pops children in name order
            stack.extend(reversed(children))
        elif current.is_file():
            context.scanned_files += 1
            yield current
