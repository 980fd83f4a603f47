"""Tool integrations used by the feature runner."""

from .applier import AppliedPatch, apply_patch_document
from .path_guard import PathPolicy, PathVerdict, check_path
from .patch_parser import FileWrite, list_patch_paths, parse_patch
from .shell import CommandResult, ShellExecutor
from .vcs import WorkingTree, branch_name

__all__ = [
    "AppliedPatch",
    "CommandResult",
    "FileWrite",
    "PathPolicy",
    "PathVerdict",
    "ShellExecutor",
    "WorkingTree",
    "apply_patch_document",
    "branch_name",
    "check_path",
    "list_patch_paths",
    "parse_patch",
]
