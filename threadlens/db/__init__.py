"""Database module for threadlens."""

from .connection import Database
from .content_storage import ContentStore
from .label_storage import LabelStore
from .models import ContentItem, Label, StaffResponse, StaffStats
from .staff_storage import StaffStore

__all__ = [
    "ContentItem",
    "ContentStore",
    "Database",
    "Label",
    "LabelStore",
    "StaffResponse",
    "StaffStats",
    "StaffStore",
]
