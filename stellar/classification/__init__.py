"""Classification module for file categorization."""

from .classifier import Classifier, MONTH_FOLDERS

__all__ = [
    "Classifier",
    "MONTH_FOLDERS",
]
