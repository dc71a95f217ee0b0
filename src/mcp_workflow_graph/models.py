"""Data models for the workflow dependency graph."""

import enum
from dataclasses import dataclass, field


@dataclass
class WorkflowNode:
    """A single workflow document in the dependency graph."""

    path: str  # Canonical absolute path
    is_top_level: bool  # Directly in the workflows directory (no subdirectory)
    imports: list[str] = field(default_factory=list)  # Absolute paths, in declaration order


class ChangeKind(enum.Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class ChangeEvent:
    """A single file-system change reported by a watcher or by git."""

    path: str
    kind: ChangeKind


@dataclass
class GraphStats:
    """Size counters for a built dependency graph."""

    total_workflows: int = 0
    top_level_workflows: int = 0
    fragments: int = 0
    import_edges: int = 0
    imported_files: int = 0  # Keys in the reverse index
    build_time_seconds: float = 0.0
