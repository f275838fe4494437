"""
Persistence Module - Case Files and Table Files
"""

from .case_file import (
    parse_case,
    load_case,
    case_path,
    parse_call,
    split_arguments,
    DEFAULT_CASES_DIR,
)
from .table_store import (
    save_table,
    load_table,
    DEFAULT_TABLE_PATH,
)

__all__ = [
    'parse_case',
    'load_case',
    'case_path',
    'parse_call',
    'split_arguments',
    'DEFAULT_CASES_DIR',
    'save_table',
    'load_table',
    'DEFAULT_TABLE_PATH',
]
