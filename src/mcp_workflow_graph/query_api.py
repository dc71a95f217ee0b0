# mcp-workflow-graph - Workflow dependency tracker with MCP server
# Copyright (C) 2026 Michael Doyle
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.
#
# Commercial licensing available. See COMMERCIAL-LICENSE.md for details.

"""Read-only query functions over a workflow dependency graph.

Paths are accepted either absolute or relative to the workflows directory,
and returned relative to it whenever they live inside it. All functions
return plain lists/strings for easy use in a REPL or as tool output.
"""

from __future__ import annotations

import fnmatch
import os
from typing import Callable

from mcp_workflow_graph.dependency_graph import DependencyGraph


def _resolve_path(graph: DependencyGraph, file_path: str) -> str:
    """Absolute path for ``file_path``, matching a known workflow by unique suffix."""
    if os.path.isabs(file_path):
        return os.path.abspath(file_path)

    candidate = os.path.abspath(os.path.join(graph.workflows_dir, file_path))
    if candidate in graph:
        return candidate

    normalized = file_path.replace("/", os.sep)
    matches = [
        stored for stored in graph.workflow_paths() if stored.endswith(os.sep + normalized)
    ]
    if len(matches) == 1:
        return matches[0]
    return candidate


def _display(graph: DependencyGraph, abs_path: str) -> str:
    rel_path = os.path.relpath(abs_path, graph.workflows_dir)
    if rel_path == os.pardir or rel_path.startswith(os.pardir + os.sep):
        return abs_path
    return rel_path.replace(os.sep, "/")


def _limit(items: list[str], max_results: int) -> list[str]:
    if max_results > 0:
        return items[:max_results]
    return items


def create_graph_query_functions(graph: DependencyGraph) -> dict[str, Callable]:
    """Create query functions bound to a dependency graph.

    Returns a dict mapping function names to callables.
    """

    def get_graph_summary() -> str:
        """Counts plus the most imported fragments."""
        stats = graph.stats()
        parts = [
            f"Workflows directory: {graph.workflows_dir}",
            f"Workflows: {stats.total_workflows} "
            f"(top-level: {stats.top_level_workflows}, fragments: {stats.fragments})",
            f"Import edges: {stats.import_edges}, imported files: {stats.imported_files}",
            f"Last build: {stats.build_time_seconds:.2f}s",
        ]

        fan_in = sorted(
            graph.reverse_index().items(), key=lambda item: (-len(item[1]), item[0])
        )
        if fan_in:
            parts.append("Most imported:")
            for target, importers in fan_in[:10]:
                parts.append(f"  {_display(graph, target)} ({len(importers)} importers)")
        return "\n".join(parts)

    def list_workflows(
        pattern: str | None = None, top_level_only: bool = False, max_results: int = 0
    ) -> list[str]:
        """Known workflows, optional glob filter (fnmatch on the relative path)."""
        if top_level_only:
            paths = sorted(graph.get_top_level_workflows())
        else:
            paths = graph.workflow_paths()
        shown = [_display(graph, p) for p in paths]
        if pattern:
            shown = [p for p in shown if fnmatch.fnmatch(p, pattern)]
        return _limit(shown, max_results)

    def get_workflow_imports(file_path: str, max_results: int = 0) -> list[str]:
        """Files this workflow imports, in declaration order."""
        abs_path = _resolve_path(graph, file_path)
        if abs_path not in graph:
            return [f"Error: '{file_path}' not found in dependency graph"]
        return _limit([_display(graph, p) for p in graph.imports_of(abs_path)], max_results)

    def get_workflow_importers(file_path: str, max_results: int = 0) -> list[str]:
        """Workflows that import this file directly."""
        abs_path = _resolve_path(graph, file_path)
        importers = sorted(set(graph.importers_of(abs_path)))
        return _limit([_display(graph, p) for p in importers], max_results)

    def get_affected_workflows(file_path: str, max_results: int = 0) -> list[str]:
        """Top-level workflows to recompile if this file changes."""
        abs_path = _resolve_path(graph, file_path)
        affected = sorted(graph.get_affected_workflows(abs_path))
        return _limit([_display(graph, p) for p in affected], max_results)

    return {
        "get_graph_summary": get_graph_summary,
        "list_workflows": list_workflows,
        "get_workflow_imports": get_workflow_imports,
        "get_workflow_importers": get_workflow_importers,
        "get_affected_workflows": get_affected_workflows,
    }
