"""
Stellar
=======

Folder organization engine.

Features:
- Classification into category, date or hybrid folder layouts
- Deterministic renaming (clean slugs or date prefixes)
- Safe moves with conflict handling and cross-device fallback
- Content-based duplicate detection
- Session journal with undo and history
- Watch mode for folders such as Downloads

Everything happens locally on the folder you point it at.
"""

__version__ = "0.1.0"
__author__ = "Dharshan"
