"""
I/O module: tab-separated run output and sweep session tables.
"""

from emsim.io.diagnostics import (
    DiagnosticsWriter,
    SessionWriter,
    parameter_header,
    read_table,
    timestamp,
)

__all__ = [
    'DiagnosticsWriter',
    'SessionWriter',
    'parameter_header',
    'read_table',
    'timestamp',
]
