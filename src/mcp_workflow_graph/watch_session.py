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

"""Drives a dependency graph from file change events.

Each event updates the graph (created/modified -> update, deleted -> remove)
and then asks it which top-level workflows are affected. Those are handed
to the compiler callback, once each.
"""

from __future__ import annotations

import logging
import os
from typing import Callable, Iterable

from mcp_workflow_graph.dependency_graph import DependencyGraph
from mcp_workflow_graph.models import ChangeEvent, ChangeKind

logger = logging.getLogger(__name__)


class WatchSession:
    """Keeps a built graph warm across a stream of change events."""

    def __init__(
        self,
        graph: DependencyGraph,
        compile_fn: Callable[[str], object] | None = None,
    ):
        self.graph = graph
        self.compile_fn = compile_fn
        self.events_handled = 0
        self.compilations = 0
        self.compile_failures = 0

    def is_workflow_file(self, path: str) -> bool:
        """A tracked document inside the workflows directory."""
        abs_path = os.path.abspath(path)
        if not self.graph.is_workflow_file(abs_path):
            return False
        try:
            rel_path = os.path.relpath(abs_path, self.graph.workflows_dir)
        except ValueError:
            return False
        return not (rel_path == os.pardir or rel_path.startswith(os.pardir + os.sep))

    def handle_event(self, event: ChangeEvent) -> set[str]:
        """Apply one event and compile what it affects."""
        return self.handle_events([event])

    def handle_events(self, events: Iterable[ChangeEvent]) -> set[str]:
        """Apply a batch of events, then compile the union of affected workflows.

        Events for the same path are coalesced; the last kind wins.
        Deleted files are queried before they leave the graph, while their
        importers are still known. Files the graph has never seen are also
        queried up front: an importer may have dropped an edge to them while
        they did not exist, so only the unknown-file answer is safe. Every
        path that is not deleted is queried again after all mutations, so a
        batch touching both a fragment and its importer sees the final graph.
        """
        latest: dict[str, ChangeKind] = {}
        for event in events:
            if not self.is_workflow_file(event.path):
                logger.debug("Ignoring non-workflow change: %s", event.path)
                continue
            latest[os.path.abspath(event.path)] = event.kind

        if not latest:
            return set()

        candidates: set[str] = set()
        for path, kind in latest.items():
            if kind is ChangeKind.DELETED or path not in self.graph:
                candidates |= self.graph.get_affected_workflows(path)

        for path, kind in latest.items():
            self._apply(path, kind)
        self.events_handled += len(latest)

        for path, kind in latest.items():
            if kind is not ChangeKind.DELETED:
                candidates |= self.graph.get_affected_workflows(path)

        # Nothing to compile for a workflow that is gone
        affected = {path for path in candidates if os.path.exists(path)}

        logger.info(
            "%d change(s) affect %d top-level workflow(s)", len(latest), len(affected)
        )
        self._compile(affected)
        return affected

    def _apply(self, path: str, kind: ChangeKind) -> None:
        if kind is ChangeKind.DELETED:
            self.graph.remove(path)
            return

        warning = self.graph.update(path)
        if warning:
            logger.warning(warning)

    def _compile(self, paths: set[str]) -> None:
        if self.compile_fn is None:
            return
        for path in sorted(paths):
            try:
                self.compile_fn(path)
            except Exception:
                self.compile_failures += 1
                logger.exception("Failed to compile %s", path)
                continue
            self.compilations += 1
