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

"""MCP server for the workflow dependency graph.

Exposes the graph's query functions as MCP tools, so an agent can ask which
workflows a change affects before recompiling anything.

Usage:
    PROJECT_ROOT=/path/to/repo WORKFLOWS_DIR=.github/workflows \\
        python -m mcp_workflow_graph.server
"""

from __future__ import annotations

import json
import os
import sys
import time
import traceback

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Tool, TextContent
import mcp.types as types

from mcp_workflow_graph.dependency_graph import DependencyGraph
from mcp_workflow_graph.errors import DiscoveryError
from mcp_workflow_graph.git_tracker import get_changed_files, get_head_commit, is_git_repo
from mcp_workflow_graph.import_resolver import WORKFLOWS_SUBDIR, find_repo_root
from mcp_workflow_graph.query_api import create_graph_query_functions
from mcp_workflow_graph.watch_session import WatchSession

# ---------------------------------------------------------------------------
# Module-level state
# ---------------------------------------------------------------------------

server = Server("mcp-workflow-graph")

_project_root: str = ""
_workflows_dir: str = ""
_repo_root: str = ""
_graph: DependencyGraph | None = None
_session: WatchSession | None = None
_query_fns: dict | None = None
_is_git: bool = False
_last_git_ref: str | None = None

# Session usage stats
_session_start: float = time.time()
_tool_call_counts: dict[str, int] = {}
_total_chars_returned: int = 0

# Above this many changes (and half the graph), rebuild from scratch
LARGE_CHANGESET = 20


def _log(message: str) -> None:
    print(f"[mcp-workflow-graph] {message}", file=sys.stderr)


def _format_result(value: object) -> str:
    """Format a query result as readable text."""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, indent=2, default=str)
    return str(value)


def _format_duration(seconds: float) -> str:
    """Format seconds into a human-readable duration."""
    if seconds < 60:
        return f"{seconds:.0f}s"
    minutes = int(seconds // 60)
    secs = int(seconds % 60)
    if minutes < 60:
        return f"{minutes}m {secs}s"
    hours = minutes // 60
    mins = minutes % 60
    return f"{hours}h {mins}m"


def _format_usage_stats() -> str:
    """Format session usage statistics."""
    elapsed = time.time() - _session_start
    total_calls = sum(_tool_call_counts.values())
    query_calls = total_calls - _tool_call_counts.get("get_usage_stats", 0)

    lines = [
        f"Session duration: {_format_duration(elapsed)}",
        f"Total queries: {query_calls}",
    ]

    if _tool_call_counts:
        lines.append("")
        lines.append("Queries by tool:")
        for tool_name, count in sorted(_tool_call_counts.items(), key=lambda x: -x[1]):
            if tool_name == "get_usage_stats":
                continue
            lines.append(f"  {tool_name}: {count}")

    lines.append("")
    lines.append(f"Total chars returned: {_total_chars_returned:,}")

    if _graph is not None:
        stats = _graph.stats()
        lines.append(
            f"Workflows tracked: {stats.total_workflows} "
            f"({stats.top_level_workflows} top-level)"
        )
    if _session is not None:
        lines.append(f"Change events handled: {_session.events_handled}")

    return "\n".join(lines)


def _resolve_workflows_dir(project_root: str) -> str:
    workflows_dir = os.environ.get("WORKFLOWS_DIR", WORKFLOWS_SUBDIR)
    if os.path.isabs(workflows_dir):
        return workflows_dir
    return os.path.join(project_root, workflows_dir)


def _build_graph() -> None:
    """Build (or rebuild) the dependency graph and query functions."""
    global _project_root, _workflows_dir, _repo_root, _graph, _session, _query_fns
    global _is_git, _last_git_ref

    _project_root = os.path.abspath(os.environ.get("PROJECT_ROOT", os.getcwd()))
    _workflows_dir = _resolve_workflows_dir(_project_root)
    _repo_root = find_repo_root(_project_root)
    _log(f"Scanning workflows: {_workflows_dir}")

    graph = DependencyGraph(_workflows_dir)
    try:
        warnings = graph.build()
    except DiscoveryError as e:
        _log(f"Cannot build dependency graph: {e.message}")
        _graph = _session = _query_fns = None
        return

    for warning in warnings:
        _log(f"Warning: {warning}")

    _graph = graph
    _session = WatchSession(graph)
    _query_fns = create_graph_query_functions(graph)

    _is_git = is_git_repo(_repo_root)
    _last_git_ref = get_head_commit(_repo_root) if _is_git else None

    stats = graph.stats()
    _log(
        f"Tracked {stats.total_workflows} workflows "
        f"({stats.top_level_workflows} top-level, {stats.fragments} fragments), "
        f"{stats.import_edges} imports in {stats.build_time_seconds:.2f}s"
    )


def _maybe_incremental_update() -> list[str]:
    """Apply git changes to the graph. Returns the affected workflows."""
    global _last_git_ref

    if not _is_git or _graph is None or _session is None:
        return []

    pathspec = os.path.relpath(_workflows_dir, _repo_root)
    changeset = get_changed_files(_repo_root, _last_git_ref, pathspec=pathspec)
    if changeset.is_empty:
        return []

    events = changeset.to_events(_repo_root)
    if len(events) > LARGE_CHANGESET and len(events) > len(_graph) * 0.5:
        _log(f"Large changeset ({len(events)} files), doing full rebuild")
        _build_graph()
        return sorted(_graph.get_top_level_workflows()) if _graph is not None else []

    affected = _session.handle_events(events)
    _last_git_ref = get_head_commit(_repo_root)

    _log(
        f"Incremental update: {len(changeset.modified)} modified, "
        f"{len(changeset.added)} added, {len(changeset.deleted)} deleted, "
        f"{len(affected)} workflows affected"
    )
    return sorted(affected)


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------

_FILE_PATH_SCHEMA = {
    "type": "string",
    "description": "Path to a workflow or imported file, absolute or relative to the workflows directory.",
}
_MAX_RESULTS_SCHEMA = {
    "type": "integer",
    "description": "Maximum number of results to return (0 = unlimited, default 0).",
}

TOOLS = [
    Tool(
        name="get_graph_summary",
        description="Overview of the workflow dependency graph: counts and the most imported fragments.",
        inputSchema={
            "type": "object",
            "properties": {},
        },
    ),
    Tool(
        name="list_workflows",
        description="List tracked workflow documents. Optional glob pattern and top-level-only filter.",
        inputSchema={
            "type": "object",
            "properties": {
                "pattern": {
                    "type": "string",
                    "description": "Glob pattern on the path relative to the workflows directory (fnmatch).",
                },
                "top_level_only": {
                    "type": "boolean",
                    "description": "Only list top-level workflows (default false).",
                },
                "max_results": _MAX_RESULTS_SCHEMA,
            },
        },
    ),
    Tool(
        name="get_workflow_imports",
        description="List the files a workflow imports, in declaration order.",
        inputSchema={
            "type": "object",
            "properties": {
                "file_path": _FILE_PATH_SCHEMA,
                "max_results": _MAX_RESULTS_SCHEMA,
            },
            "required": ["file_path"],
        },
    ),
    Tool(
        name="get_workflow_importers",
        description="List the workflows that directly import a file.",
        inputSchema={
            "type": "object",
            "properties": {
                "file_path": _FILE_PATH_SCHEMA,
                "max_results": _MAX_RESULTS_SCHEMA,
            },
            "required": ["file_path"],
        },
    ),
    Tool(
        name="get_affected_workflows",
        description="Top-level workflows that must be recompiled when a file changes (transitive).",
        inputSchema={
            "type": "object",
            "properties": {
                "file_path": _FILE_PATH_SCHEMA,
                "max_results": _MAX_RESULTS_SCHEMA,
            },
            "required": ["file_path"],
        },
    ),
    Tool(
        name="refresh",
        description="Apply git changes since the last refresh and return the top-level workflows they affect.",
        inputSchema={
            "type": "object",
            "properties": {},
        },
    ),
    Tool(
        name="rebuild",
        description="Rescan the whole workflows directory from scratch.",
        inputSchema={
            "type": "object",
            "properties": {},
        },
    ),
    Tool(
        name="get_usage_stats",
        description="Session stats: tool calls, characters returned, workflows tracked, change events handled.",
        inputSchema={
            "type": "object",
            "properties": {},
        },
    ),
]


# ---------------------------------------------------------------------------
# MCP handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def list_tools() -> list[Tool]:
    return TOOLS


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[types.TextContent]:
    global _total_chars_returned

    _tool_call_counts[name] = _tool_call_counts.get(name, 0) + 1

    try:
        if name == "rebuild":
            _build_graph()
            if _graph is None:
                return [TextContent(type="text", text=f"Error: cannot scan {_workflows_dir}")]
            return [TextContent(type="text", text=f"Rebuilt graph: {len(_graph)} workflows.")]

        if name == "get_usage_stats":
            return [TextContent(type="text", text=_format_usage_stats())]

        if name == "refresh":
            result = _maybe_incremental_update()
        else:
            _maybe_incremental_update()

            if _query_fns is None:
                return [TextContent(type="text", text="Error: graph not built yet. Call rebuild first.")]

            max_results = arguments.get("max_results", 0)

            if name == "get_graph_summary":
                result = _query_fns["get_graph_summary"]()

            elif name == "list_workflows":
                result = _query_fns["list_workflows"](
                    arguments.get("pattern"),
                    top_level_only=arguments.get("top_level_only", False),
                    max_results=max_results,
                )

            elif name in ("get_workflow_imports", "get_workflow_importers", "get_affected_workflows"):
                result = _query_fns[name](arguments["file_path"], max_results=max_results)

            else:
                return [TextContent(type="text", text=f"Error: unknown tool '{name}'")]

        formatted = _format_result(result)
        _total_chars_returned += len(formatted)
        return [TextContent(type="text", text=formatted)]

    except Exception as e:
        tb = traceback.format_exc()
        _log(f"Error in {name}: {tb}")
        return [TextContent(type="text", text=f"Error: {e}")]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


async def main():
    _build_graph()
    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options(),
        )


def main_sync():
    """Synchronous entry point for console_scripts."""
    import asyncio

    asyncio.run(main())


if __name__ == "__main__":
    main_sync()
