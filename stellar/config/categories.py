"""
Category Definitions
====================

Defines the category table used for classification: an ordered mapping of
category names to the file extensions they collect.

Lookup is case-insensitive and the first category listing an extension
wins. Extensions that no category claims fall into ``Others``.
"""

from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from stellar.utils.exceptions import ConfigurationError


FALLBACK_CATEGORY = "Others"


DEFAULT_CATEGORIES: Dict[str, List[str]] = {
    "Documents": [
        "pdf", "doc", "docx", "odt", "rtf", "txt", "md", "tex",
        "xls", "xlsx", "ods", "csv", "ppt", "pptx", "odp",
        "pages", "numbers", "key",
    ],
    "Images": [
        "jpg", "jpeg", "png", "gif", "bmp", "webp", "svg", "ico",
        "tiff", "tif", "heic", "heif", "raw", "cr2", "nef", "arw",
        "dng", "psd", "ai", "xcf",
    ],
    "Audio": [
        "mp3", "m4a", "aac", "flac", "wav", "ogg", "wma", "aiff",
        "opus", "m4b",
    ],
    "Videos": [
        "mp4", "mov", "avi", "mkv", "wmv", "flv", "webm", "m4v",
        "mpeg", "mpg", "3gp",
    ],
    "Archives": [
        "zip", "rar", "7z", "tar", "gz", "bz2", "xz", "tgz", "tbz2",
        "lz", "lzma",
    ],
    "Installers": [
        "exe", "msi", "dmg", "pkg", "deb", "rpm", "appimage", "snap",
        "flatpak",
    ],
    "Code": [
        "py", "js", "ts", "jsx", "tsx", "java", "c", "cpp", "h", "hpp",
        "cs", "go", "rs", "rb", "php", "swift", "kt", "scala", "r",
        "sh", "bash", "zsh", "ps1", "html", "css", "scss", "sass",
        "less", "vue", "svelte",
    ],
    "Data": [
        "json", "xml", "yaml", "yml", "toml", "ini", "conf", "cfg",
        "db", "sqlite", "sqlite3", "sql", "parquet", "feather",
        "pickle", "pkl",
    ],
    "Ebooks": ["epub", "mobi", "azw", "azw3", "fb2", "djvu"],
    "Fonts": ["ttf", "otf", "woff", "woff2", "eot"],
}


def normalize_extension(extension: str) -> str:
    """Lowercase an extension and drop any leading dot."""
    return extension.strip().lstrip(".").lower()


class CategoryTable:
    """Ordered, case-insensitive extension-to-category lookup.

    The table is configuration data: the organizer only reads it.
    """

    def __init__(
        self,
        categories: Optional[Mapping[str, Iterable[str]]] = None,
        fallback: str = FALLBACK_CATEGORY
    ):
        """Initialize the table.

        Args:
            categories: Mapping of category name to extensions, in
                        priority order. Uses the defaults if omitted.
            fallback: Category for extensions no entry claims.
        """
        source = DEFAULT_CATEGORIES if categories is None else categories
        self.fallback = fallback
        self._categories: Dict[str, Tuple[str, ...]] = {}
        self._lookup: Dict[str, str] = {}

        for name, extensions in source.items():
            if isinstance(extensions, str):
                raise ConfigurationError(
                    f"Extensions for category {name!r} must be a list",
                    config_key=f"categories.{name}",
                    expected_type="list[str]",
                )
            ordered: List[str] = []
            for ext in extensions:
                ext = normalize_extension(str(ext))
                if ext and ext not in ordered:
                    ordered.append(ext)
                # First category to claim an extension keeps it
                if ext and ext not in self._lookup:
                    self._lookup[ext] = name
            self._categories[name] = tuple(ordered)

    @property
    def names(self) -> List[str]:
        """Category names in priority order (fallback excluded)."""
        return list(self._categories)

    def extensions(self, category: str) -> Tuple[str, ...]:
        """Extensions listed for a category."""
        return self._categories.get(category, ())

    def find_category(self, extension: str) -> Optional[str]:
        """Find the category claiming an extension, or None."""
        return self._lookup.get(normalize_extension(extension))

    def category_for(self, extension: str) -> str:
        """Get the category for an extension, falling back to ``Others``."""
        return self.find_category(extension) or self.fallback

    def is_category_folder(self, folder_name: str) -> bool:
        """Check whether a folder name matches a category (already organized)."""
        lower = folder_name.lower()
        if lower == self.fallback.lower():
            return True
        return any(name.lower() == lower for name in self._categories)

    def to_dict(self) -> Dict[str, List[str]]:
        """Convert to a plain mapping for YAML output."""
        return {name: list(exts) for name, exts in self._categories.items()}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Iterable[str]]]) -> "CategoryTable":
        """Create a table from configuration data (defaults when empty)."""
        if not data:
            return cls()
        if not isinstance(data, Mapping):
            raise ConfigurationError(
                "Categories must be a mapping of name to extensions",
                config_key="categories",
                expected_type="dict[str, list[str]]",
            )
        return cls(data)

    def __contains__(self, category: str) -> bool:
        return category in self._categories or category == self.fallback

    def __len__(self) -> int:
        return len(self._categories)


# Shared default table
DEFAULT_TABLE = CategoryTable()
