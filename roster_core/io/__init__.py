"""Input/output layer for snapshots and plans.

Public API:
    load_input(directory)         -- read CSV input dir -> (snapshot, meta)
    inputs_from_snapshot(snap)    -- snapshot dict -> typed WeekInput
    write_output(plan, dir)       -- plan.json, CSV views, warnings, metrics
    extract_from_snapshot(...)    -- snapshot dict -> CSV input files
    render_xlsx(plan, path)       -- multi-sheet review workbook
"""

from .reader import inputs_from_snapshot, load_input
from .writer import write_output

__all__ = [
    "extract_from_snapshot",
    "inputs_from_snapshot",
    "load_input",
    "render_xlsx",
    "write_output",
]


def extract_from_snapshot(*args, **kwargs):
    from .extractors import extract_from_snapshot as _fn
    return _fn(*args, **kwargs)


# Lazy import for the optional openpyxl dependency.
def render_xlsx(*args, **kwargs):
    from .xlsx import render_xlsx as _fn
    return _fn(*args, **kwargs)
