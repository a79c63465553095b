"""
Destination Classifier
======================

Maps a scanned file to the relative folder it belongs in, according to
the organization mode. Classification is pure: it only reads the entry's
extension and modification time.
"""

from pathlib import PurePosixPath
from typing import Optional

from stellar.config.categories import CategoryTable, DEFAULT_TABLE
from stellar.config.modes import OrganizationMode
from stellar.scanning.scanner import FileEntry
from stellar.utils.logging_config import get_logger

logger = get_logger(__name__)

MONTH_FOLDERS = (
    "01-january", "02-february", "03-march", "04-april",
    "05-may", "06-june", "07-july", "08-august",
    "09-september", "10-october", "11-november", "12-december",
)


class Classifier:
    """Extension and date based classifier.

    Example:
        >>> classifier = Classifier()
        >>> classifier.classify(entry, OrganizationMode.HYBRID)
        PurePosixPath('Documents/2024')
    """

    def __init__(self, categories: Optional[CategoryTable] = None):
        """Initialize the classifier.

        Args:
            categories: Category table. Uses the default table if None.
        """
        self.categories = categories or DEFAULT_TABLE

    def category_of(self, entry: FileEntry) -> str:
        """Get the category name for an entry."""
        return self.categories.category_for(entry.extension)

    @staticmethod
    def date_folder(entry: FileEntry) -> PurePosixPath:
        """Get the ``YYYY/MM-month`` folder for an entry's local mtime."""
        modified = entry.modified_at
        return PurePosixPath(f"{modified.year:04d}", MONTH_FOLDERS[modified.month - 1])

    def classify(self, entry: FileEntry, mode: OrganizationMode) -> PurePosixPath:
        """Compute the destination folder, relative to the target root.

        Args:
            entry: Scanned file.
            mode: Organization mode.

        Returns:
            Relative destination directory.
        """
        if mode is OrganizationMode.CATEGORY:
            folder = PurePosixPath(self.category_of(entry))
        elif mode is OrganizationMode.DATE:
            folder = self.date_folder(entry)
        elif mode is OrganizationMode.HYBRID:
            folder = PurePosixPath(self.category_of(entry), f"{entry.modified_at.year:04d}")
        else:
            raise ValueError(f"Unsupported organization mode: {mode!r}")

        logger.debug(f"Classified {entry.name} -> {folder}")
        return folder
