"""
Conflict Resolver
=================

Picks a free destination name so a move never overwrites anything.
Taken names get a counter suffix: ``rapport.pdf``, ``rapport-1.pdf``,
``rapport-2.pdf`` ...
"""

from datetime import datetime
from pathlib import Path
from typing import AbstractSet, Optional
import os

from stellar.utils.logging_config import get_logger

logger = get_logger(__name__)

MAX_COUNTER = 9999


class ConflictResolver:
    """Resolves name collisions against the live directory.

    Every call re-checks the filesystem, so files created by other
    processes between two moves are still respected. A name can still be
    taken right after it is returned, so callers claim it exclusively.
    Names planned earlier in a dry run can be passed as ``reserved``.
    """

    @staticmethod
    def _taken(path: Path, reserved: AbstractSet[str]) -> bool:
        # lexists: a dangling symlink still occupies the name
        return os.path.lexists(path) or str(path) in reserved

    def resolve(
        self,
        dest_dir: Path,
        name: str,
        reserved: Optional[AbstractSet[str]] = None
    ) -> Path:
        """Find a free path for ``name`` inside ``dest_dir``.

        Args:
            dest_dir: Destination directory.
            name: Desired file name.
            reserved: Paths to treat as taken even if they do not exist.

        Returns:
            ``dest_dir / name`` if free, otherwise the first free
            ``stem-N.ext``.
        """
        reserved = reserved or frozenset()
        dest_path = Path(dest_dir) / name
        if not self._taken(dest_path, reserved):
            return dest_path

        new_path = self._generate_unique_name(dest_path, reserved)
        logger.debug(f"Name conflict: {dest_path.name} -> {new_path.name}")
        return new_path

    def _generate_unique_name(self, path: Path, reserved: AbstractSet[str]) -> Path:
        """Generate unique filename by appending counter.

        Args:
            path: Original path.
            reserved: Paths to treat as taken.

        Returns:
            Available path with counter suffix.
        """
        stem, suffix = os.path.splitext(path.name)
        parent = path.parent

        for counter in range(1, MAX_COUNTER + 1):
            new_path = parent / f"{stem}-{counter}{suffix}"
            if not self._taken(new_path, reserved):
                return new_path

        # Fallback to timestamp
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        return parent / f"{stem}-{timestamp}{suffix}"
