"""
LABELOPT INFRASTRUCTURE
Ingestion helpers around the record store

This package contains:
- data_validation: campaign record validation at ingestion
- spreadsheet: campaign report import and optimized export
"""

from .data_validation import ValidationError, validate_campaign
from .spreadsheet import read_campaign_sheet, write_campaign_sheet

__all__ = [
    'ValidationError', 'validate_campaign', 'read_campaign_sheet', 'write_campaign_sheet'
]
