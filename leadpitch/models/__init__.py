"""Domain models for the leadpitch import and outreach workflows."""

from .cell import Cell, CellType, cell_type
from .cleaning_options import CleaningOptions, TextCase
from .dataset import Dataset, DatasetRow
from .dispatch import DispatchResult, DispatchSummary
from .pitch import GeneratedPitch, PitchStatus, PitchTemplate
from .quota import SendQuota
from .table import ColumnProfile, ColumnType, ParsedTable

__all__ = [
    # Cell values
    "Cell",
    "CellType",
    "cell_type",
    # Import models
    "ParsedTable",
    "ColumnProfile",
    "ColumnType",
    "CleaningOptions",
    "TextCase",
    "Dataset",
    "DatasetRow",
    # Outreach models
    "PitchTemplate",
    "GeneratedPitch",
    "PitchStatus",
    "SendQuota",
    "DispatchResult",
    "DispatchSummary",
]
