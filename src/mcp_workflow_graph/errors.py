"""Exception hierarchy for the workflow dependency graph.

Only DiscoveryError ever escapes the graph. Extraction and resolution
errors are raised by the collaborators and degraded by the graph into
import-free nodes and dropped edges.
"""


class WorkflowGraphError(Exception):
    """Base exception for all workflow graph errors."""

    def __init__(self, message: str, context: dict | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class DiscoveryError(WorkflowGraphError):
    """The workflows directory cannot be scanned."""

    pass


class ExtractionError(WorkflowGraphError):
    """A document's import list cannot be read or parsed."""

    pass


class ResolutionError(WorkflowGraphError):
    """A declared import cannot be mapped to a file on disk."""

    pass
