"""Per-module recorded state and the file facts it is checked against."""

from .files import FileChange, ProjectFiles, compute_checksum, diff_source_sets, scan_project_files, scan_sources
from .project import ProjectState, atomic_write, merge

__all__ = [
    "FileChange",
    "ProjectFiles",
    "ProjectState",
    "atomic_write",
    "compute_checksum",
    "diff_source_sets",
    "merge",
    "scan_project_files",
    "scan_sources",
]
