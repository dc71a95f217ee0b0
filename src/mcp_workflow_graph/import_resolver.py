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

"""Import reference resolution scoped to a repository root."""

from __future__ import annotations

import logging
import os

from mcp_workflow_graph.errors import ResolutionError

logger = logging.getLogger(__name__)

WORKFLOWS_SUBDIR = os.path.join(".github", "workflows")
IMPORT_CACHE_SUBDIR = os.path.join(".github", "aw", "imports")


def strip_section(reference: str) -> str:
    """Drop a ``#Section`` suffix; only the file matters for rebuilds."""
    if "#" in reference:
        return reference.split("#", 1)[0]
    return reference


def find_repo_root(start: str, marker: str = ".git", fallback: str | None = None) -> str:
    """Walk up from ``start`` looking for a directory containing ``marker``.

    Stops at the filesystem root. Returns ``fallback`` (default: ``start``)
    when no marker is found.
    """
    start = os.path.abspath(start)
    directory = start
    while True:
        if os.path.exists(os.path.join(directory, marker)):
            logger.debug("Found repository root at %s", directory)
            return directory
        parent = os.path.dirname(directory)
        if parent == directory:
            break
        directory = parent

    result = fallback if fallback is not None else start
    logger.debug("No %s found above %s, using %s", marker, start, result)
    return result


def _split_workflowspec(reference: str) -> tuple[str, str, str, str] | None:
    """Split ``owner/repo/path@ref`` into its parts, or return None."""
    if reference.startswith((".", "/")) or "@" not in reference:
        return None
    spec, _, ref = reference.rpartition("@")
    parts = spec.split("/")
    if len(parts) < 3 or not ref or not all(parts):
        return None
    owner, repo = parts[0], parts[1]
    return owner, repo, "/".join(parts[2:]), ref


class ImportCache:
    """Resolves import references that are not relative to the importer.

    Lookup order:
      1. An absolute path that exists.
      2. A path relative to the repository root.
      3. A path relative to the repository's ``.github/workflows``.
      4. A workflowspec (``owner/repo/path@ref``) already downloaded into
         ``.github/aw/imports/<owner>/<repo>/<ref>/<path>``.

    Successful lookups are memoized. Failures are not, so a file created
    later resolves on the next attempt.
    """

    def __init__(self, repo_root: str):
        self.repo_root = os.path.abspath(repo_root)
        self._resolved: dict[tuple[str, str], str] = {}

    def resolve(self, reference: str, base_dir: str) -> str:
        """Map ``reference`` (declared in a file under ``base_dir``) to a path.

        Raises:
            ResolutionError: when no candidate exists on disk.
        """
        key = (reference, base_dir)
        cached = self._resolved.get(key)
        if cached is not None:
            return cached

        for candidate in self._candidates(reference):
            if os.path.isfile(candidate):
                resolved = os.path.abspath(candidate)
                self._resolved[key] = resolved
                logger.debug("Resolved %s to %s via import cache", reference, resolved)
                return resolved

        raise ResolutionError(
            f"import '{reference}' not found",
            {"reference": reference, "base_dir": base_dir, "repo_root": self.repo_root},
        )

    def clear(self) -> None:
        self._resolved.clear()

    def _candidates(self, reference: str) -> list[str]:
        if os.path.isabs(reference):
            return [os.path.normpath(reference)]

        candidates = [
            os.path.normpath(os.path.join(self.repo_root, reference)),
            os.path.normpath(os.path.join(self.repo_root, WORKFLOWS_SUBDIR, reference)),
        ]
        spec = _split_workflowspec(reference)
        if spec is not None:
            owner, repo, path, ref = spec
            candidates.append(
                os.path.normpath(
                    os.path.join(self.repo_root, IMPORT_CACHE_SUBDIR, owner, repo, ref, path)
                )
            )
        return candidates

    def __len__(self) -> int:
        return len(self._resolved)
