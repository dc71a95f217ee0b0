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

"""Workflow dependency graph.

Scans a workflows directory, records which documents import which, and
answers the question "which top-level workflows must be recompiled when
this file changes?" without rescanning the tree on every change.
"""

from __future__ import annotations

import copy
import logging
import os
import time
from collections import deque
from typing import Callable

from mcp_workflow_graph.errors import DiscoveryError, ExtractionError, ResolutionError
from mcp_workflow_graph.frontmatter import extract_imports
from mcp_workflow_graph.import_resolver import ImportCache, find_repo_root, strip_section
from mcp_workflow_graph.models import GraphStats, WorkflowNode

logger = logging.getLogger(__name__)


class DependencyGraph:
    """Tracks workflow imports for efficient recompilation.

    Top-level workflows live directly in ``workflows_dir`` and are build
    entry points. Everything in a subdirectory is a fragment that only
    matters through the top-level workflows importing it.
    """

    def __init__(
        self,
        workflows_dir: str,
        extractor: Callable[[str], list[str]] | None = None,
        import_cache: ImportCache | None = None,
        document_suffix: str = ".md",
        exclude_suffixes: tuple[str, ...] = (".lock.yml",),
        repo_marker: str = ".git",
    ):
        self.workflows_dir = os.path.abspath(workflows_dir)
        self.extractor = extractor or extract_imports
        self.document_suffix = document_suffix
        self.exclude_suffixes = tuple(exclude_suffixes)
        self.repo_marker = repo_marker
        self._import_cache = import_cache

        # path -> node
        self._nodes: dict[str, WorkflowNode] = {}
        # imported path -> importers, one entry per declared import
        self._reverse_imports: dict[str, list[str]] = {}
        self._last_build_seconds = 0.0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build(self) -> list[str]:
        """Scan the workflows directory and add every document to the graph.

        Documents already in the graph are skipped. A document whose imports
        cannot be extracted is still added, as a node without imports.

        Returns:
            One warning message per document whose extraction failed.

        Raises:
            DiscoveryError: the workflows directory is missing or unreadable.
        """
        start_time = time.monotonic()
        logger.debug("Building dependency graph by scanning %s", self.workflows_dir)

        workflow_paths = self._discover_workflows()
        logger.info("Found %d workflow files in %s", len(workflow_paths), self.workflows_dir)

        warnings: list[str] = []
        for path in workflow_paths:
            warning = self._add_workflow(path)
            if warning:
                warnings.append(warning)

        self._last_build_seconds = time.monotonic() - start_time
        logger.info(
            "Dependency graph built: %d nodes, %d reverse import entries in %.2fs",
            len(self._nodes),
            len(self._reverse_imports),
            self._last_build_seconds,
        )
        return warnings

    def get_affected_workflows(self, modified_path: str) -> set[str]:
        """Top-level workflows that must be recompiled after ``modified_path`` changed.

        - Unknown top-level file (new workflow): only itself.
        - Unknown fragment: every known top-level workflow, since anything
          might start importing it.
        - Known top-level workflow: only itself.
        - Known fragment: every top-level workflow reaching it through the
          reverse import index.
        """
        modified_path = os.path.abspath(modified_path)
        node = self._nodes.get(modified_path)

        if node is None:
            if self._is_top_level(modified_path):
                logger.debug("Modified file is a new top-level workflow: %s", modified_path)
                return {modified_path}
            logger.debug(
                "Modified file is a new fragment, returning all top-level workflows: %s",
                modified_path,
            )
            return self.get_top_level_workflows()

        if node.is_top_level:
            logger.debug("Modified file is a top-level workflow: %s", modified_path)
            return {modified_path}

        affected = self._find_affected_top_level(modified_path)
        logger.debug(
            "Found %d affected top-level workflows for fragment %s",
            len(affected),
            modified_path,
        )
        return affected

    def get_top_level_workflows(self) -> set[str]:
        """All top-level workflows currently in the graph."""
        return {path for path, node in self._nodes.items() if node.is_top_level}

    def update(self, workflow_path: str) -> str | None:
        """Re-read one workflow's imports, keeping the rest of the graph.

        Works for new files too. Returns the extraction warning, if any.
        """
        workflow_path = os.path.abspath(workflow_path)
        logger.debug("Updating workflow in graph: %s", workflow_path)

        old_node = self._nodes.pop(workflow_path, None)
        if old_node is not None:
            for import_path in old_node.imports:
                self._remove_reverse_import(import_path, workflow_path)

        # The tree changed; earlier resolutions may point at moved files.
        if self._import_cache is not None:
            self._import_cache.clear()

        warning = self._add_workflow(workflow_path)
        if old_node is None and workflow_path not in self._reverse_imports:
            self._restore_importers(workflow_path)
        return warning

    def remove(self, workflow_path: str) -> bool:
        """Forget a workflow (e.g. after deletion). Returns False if unknown."""
        workflow_path = os.path.abspath(workflow_path)
        logger.debug("Removing workflow from graph: %s", workflow_path)

        node = self._nodes.pop(workflow_path, None)
        if node is None:
            return False

        for import_path in node.imports:
            self._remove_reverse_import(import_path, workflow_path)

        # Nothing can import a file that no longer exists.
        self._reverse_imports.pop(workflow_path, None)

        if self._import_cache is not None:
            self._import_cache.clear()
        return True

    # ------------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------------

    def __contains__(self, path: str) -> bool:
        return os.path.abspath(path) in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def workflow_paths(self) -> list[str]:
        return sorted(self._nodes)

    def get_node(self, path: str) -> WorkflowNode | None:
        """A copy of the node for ``path``, or None."""
        node = self._nodes.get(os.path.abspath(path))
        if node is None:
            return None
        return WorkflowNode(path=node.path, is_top_level=node.is_top_level, imports=list(node.imports))

    def imports_of(self, path: str) -> list[str]:
        node = self._nodes.get(os.path.abspath(path))
        return list(node.imports) if node is not None else []

    def importers_of(self, path: str) -> list[str]:
        return list(self._reverse_imports.get(os.path.abspath(path), []))

    def reverse_index(self) -> dict[str, list[str]]:
        return copy.deepcopy(self._reverse_imports)

    def check_consistency(self) -> bool:
        """True if the reverse index matches the inversion of all import lists.

        The one allowed gap: a removed document loses its own key, so
        imports pointing at a path that is no longer a node may be missing
        from the index entirely.
        """
        expected: dict[str, list[str]] = {}
        for path, node in self._nodes.items():
            for import_path in node.imports:
                expected.setdefault(import_path, []).append(path)

        if not set(self._reverse_imports) <= set(expected):
            return False
        for target, importers in expected.items():
            actual = self._reverse_imports.get(target)
            if actual is None:
                if target in self._nodes:
                    return False
                continue
            if sorted(actual) != sorted(importers):
                return False
        return True

    def stats(self) -> GraphStats:
        top_level = sum(1 for node in self._nodes.values() if node.is_top_level)
        return GraphStats(
            total_workflows=len(self._nodes),
            top_level_workflows=top_level,
            fragments=len(self._nodes) - top_level,
            import_edges=sum(len(node.imports) for node in self._nodes.values()),
            imported_files=len(self._reverse_imports),
            build_time_seconds=self._last_build_seconds,
        )

    def is_workflow_file(self, path: str) -> bool:
        """Whether ``path`` is a document this graph tracks."""
        return path.endswith(self.document_suffix) and not path.endswith(self.exclude_suffixes)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def _discover_workflows(self) -> list[str]:
        if not os.path.isdir(self.workflows_dir):
            raise DiscoveryError(
                f"workflows directory does not exist: {self.workflows_dir}",
                {"workflows_dir": self.workflows_dir},
            )

        def _raise(error: OSError) -> None:
            raise error

        found: list[str] = []
        try:
            for dirpath, _dirnames, filenames in os.walk(self.workflows_dir, onerror=_raise):
                for filename in filenames:
                    if self.is_workflow_file(filename):
                        found.append(os.path.join(dirpath, filename))
        except OSError as e:
            raise DiscoveryError(
                f"failed to scan workflows directory: {e}",
                {"workflows_dir": self.workflows_dir},
            ) from e

        return sorted(found)

    def _is_top_level(self, abs_path: str) -> bool:
        try:
            rel_path = os.path.relpath(abs_path, self.workflows_dir)
        except ValueError as e:
            logger.debug("Failed to get relative path for %s: %s", abs_path, e)
            return False

        is_top_level = os.sep not in rel_path and (os.altsep is None or os.altsep not in rel_path)
        logger.debug("Checking if %s is top-level: %s (relpath: %s)", abs_path, is_top_level, rel_path)
        return is_top_level

    # ------------------------------------------------------------------
    # Insertion
    # ------------------------------------------------------------------

    def _add_workflow(self, workflow_path: str) -> str | None:
        """Insert one workflow and its reverse edges. Returns a warning on failure."""
        if workflow_path in self._nodes:
            logger.debug("Workflow already in graph: %s", workflow_path)
            return None

        is_top_level = self._is_top_level(workflow_path)
        try:
            imports = self._extract_imports(workflow_path)
        except ExtractionError as e:
            warning = f"failed to extract imports from {workflow_path}: {e.message}"
            logger.warning("Adding %s without imports: %s", workflow_path, e.message)
            self._nodes[workflow_path] = WorkflowNode(
                path=workflow_path, is_top_level=is_top_level, imports=[]
            )
            return warning

        self._nodes[workflow_path] = WorkflowNode(
            path=workflow_path, is_top_level=is_top_level, imports=imports
        )
        for import_path in imports:
            self._reverse_imports.setdefault(import_path, []).append(workflow_path)
            logger.debug("Tracking reverse import: %s <- %s", import_path, workflow_path)

        logger.debug(
            "Added workflow to graph: %s (top-level: %s, imports: %d)",
            workflow_path,
            is_top_level,
            len(imports),
        )
        return None

    def _restore_importers(self, workflow_path: str) -> None:
        """Rebuild the reverse entry of a re-added file from existing nodes.

        ``remove`` drops a file's own key while its importers keep naming
        it, so a file that comes back must collect them again.
        """
        importers = [
            path
            for path, node in self._nodes.items()
            for import_path in node.imports
            if import_path == workflow_path
        ]
        if importers:
            self._reverse_imports[workflow_path] = importers
            logger.debug(
                "Restored %d importer(s) of re-added file %s", len(importers), workflow_path
            )

    def _extract_imports(self, workflow_path: str) -> list[str]:
        """Resolved import paths of a workflow, dropping unresolvable ones."""
        references = self.extractor(workflow_path)
        base_dir = os.path.dirname(workflow_path)

        imports: list[str] = []
        for reference in references:
            resolved = self._resolve_import(reference, base_dir)
            if resolved is not None:
                imports.append(resolved)
        return imports

    def _resolve_import(self, reference: str, base_dir: str) -> str | None:
        """Resolve a reference relative to ``base_dir``, then via the import cache."""
        reference = strip_section(reference).strip()
        if not reference:
            return None

        if not os.path.isabs(reference):
            candidate = os.path.normpath(os.path.join(base_dir, reference))
            if os.path.exists(candidate):
                logger.debug("Resolved import %s to %s", reference, candidate)
                return candidate

        try:
            resolved = self._get_import_cache().resolve(reference, base_dir)
        except ResolutionError as e:
            logger.warning("Dropping import %s from %s: %s", reference, base_dir, e.message)
            return None
        return os.path.abspath(resolved)

    def _get_import_cache(self) -> ImportCache:
        if self._import_cache is None:
            repo_root = find_repo_root(
                self.workflows_dir, marker=self.repo_marker, fallback=self.workflows_dir
            )
            self._import_cache = ImportCache(repo_root)
        return self._import_cache

    # ------------------------------------------------------------------
    # Graph utilities
    # ------------------------------------------------------------------

    def _find_affected_top_level(self, file_path: str) -> set[str]:
        """BFS up the reverse index, collecting top-level importers."""
        visited = {file_path}
        affected: set[str] = set()
        queue = deque([file_path])

        while queue:
            current = queue.popleft()
            for importer in self._reverse_imports.get(current, []):
                if importer in visited:
                    continue
                visited.add(importer)

                node = self._nodes.get(importer)
                if node is not None and node.is_top_level:
                    affected.add(importer)
                    logger.debug("Found top-level workflow affected: %s", importer)
                else:
                    queue.append(importer)
                    logger.debug("Found intermediate workflow: %s", importer)

        return affected

    def _remove_reverse_import(self, import_path: str, importer: str) -> None:
        """Remove the first ``importer`` entry under ``import_path``."""
        importers = self._reverse_imports.get(import_path)
        if importers is None:
            return
        if importer in importers:
            importers.remove(importer)
        if not importers:
            del self._reverse_imports[import_path]
