"""
File Renamer
============

Computes new file names according to the rename mode. The renamer never
touches the filesystem; conflicts are settled later by the move engine.

- CLEAN: ``Élève Café (1).PDF`` -> ``eleve-cafe.PDF``
- DATE_PREFIX: ``report.pdf`` -> ``2024-01-15-report.pdf``
- SKIP: unchanged
"""

import os
import re
import unicodedata

from stellar.config.modes import RenameMode
from stellar.scanning.scanner import FileEntry
from stellar.utils.logging_config import get_logger

logger = get_logger(__name__)

SEPARATORS = frozenset(" _-.")

# Duplicate markers added by browsers and file managers: "name (1)",
# "name [2]", "name (copy)", "name - Copy", "name_copie 2"
_RAW_COPY_MARKER = re.compile(
    r"(?:\s*[\(\[]\s*(?:\d+|copy|copie)\s*[\)\]]|[\s_\-]+(?:copy|copie)(?:\s*\d+)?)\s*$",
    re.IGNORECASE,
)
_SLUG_COPY_MARKER = re.compile(r"-(?:copy|copie)$")


def _strip_markers(text: str, pattern: re.Pattern) -> str:
    while True:
        stripped = pattern.sub("", text)
        if stripped == text:
            return text
        text = stripped


def slugify(text: str) -> str:
    """Convert text to a lowercase ASCII slug.

    Accents are removed, separator runs become a single dash and any
    other punctuation is dropped.

    Args:
        text: Text to convert.

    Returns:
        Slug, possibly empty.
    """
    decomposed = unicodedata.normalize("NFKD", text)
    chars = []
    pending_dash = False
    for char in decomposed:
        if unicodedata.combining(char):
            continue
        if char.isascii() and char.isalnum():
            if pending_dash and chars:
                chars.append("-")
            pending_dash = False
            chars.append(char.lower())
        elif char in SEPARATORS or char.isspace():
            pending_dash = True
    return "".join(chars)


def clean_name(name: str) -> str:
    """Clean a file name, keeping its extension as found.

    Returns the original name when nothing survives cleaning.
    """
    stem, ext = os.path.splitext(name)
    slug = slugify(_strip_markers(stem, _RAW_COPY_MARKER))
    slug = _strip_markers(slug, _SLUG_COPY_MARKER).strip("-")
    if not slug:
        return name
    return f"{slug}{ext}"


class Renamer:
    """Computes destination names for scanned files."""

    def rename(self, entry: FileEntry, mode: RenameMode) -> str:
        """Compute the new name for an entry.

        Args:
            entry: Scanned file.
            mode: Rename mode.

        Returns:
            Candidate file name (before conflict resolution).
        """
        name = entry.name
        if mode is RenameMode.SKIP:
            return name
        if mode is RenameMode.CLEAN:
            new_name = clean_name(name)
        elif mode is RenameMode.DATE_PREFIX:
            prefix = entry.modified_at.strftime("%Y-%m-%d-")
            new_name = name if name.startswith(prefix) else prefix + name
        else:
            raise ValueError(f"Unsupported rename mode: {mode!r}")

        if new_name != name:
            logger.debug(f"Rename {name} -> {new_name}")
        return new_name
