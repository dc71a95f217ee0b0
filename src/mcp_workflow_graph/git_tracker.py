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

"""Git change detection, turned into workflow change events."""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field

from mcp_workflow_graph.models import ChangeEvent, ChangeKind

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 10


@dataclass
class GitChangeSet:
    """Files changed since a given git ref, relative to the repository root."""

    modified: list[str] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.modified and not self.added and not self.deleted

    def to_events(self, root_path: str) -> list[ChangeEvent]:
        """Absolute-path change events; deletions first."""
        events = [
            ChangeEvent(os.path.join(root_path, path), ChangeKind.DELETED)
            for path in self.deleted
        ]
        events.extend(
            ChangeEvent(os.path.join(root_path, path), ChangeKind.MODIFIED)
            for path in self.modified
        )
        events.extend(
            ChangeEvent(os.path.join(root_path, path), ChangeKind.CREATED)
            for path in self.added
        )
        return events


def _run_git(root_path: str, args: list[str]) -> str | None:
    """Run a git command in ``root_path``; None if git fails or is missing."""
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=root_path,
            capture_output=True,
            text=True,
            timeout=GIT_TIMEOUT_SECONDS,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired) as e:
        logger.debug("git %s failed: %s", " ".join(args), e)
        return None
    if result.returncode != 0:
        return None
    return result.stdout


def is_git_repo(root_path: str) -> bool:
    """Check if the given path is inside a git work tree."""
    output = _run_git(root_path, ["rev-parse", "--is-inside-work-tree"])
    return output is not None and output.strip() == "true"


def get_head_commit(root_path: str) -> str | None:
    """Get the current HEAD commit hash."""
    output = _run_git(root_path, ["rev-parse", "HEAD"])
    if output is None:
        return None
    return output.strip() or None


def get_changed_files(
    root_path: str, since_ref: str | None, pathspec: str | None = None
) -> GitChangeSet:
    """Get files changed since a given git ref.

    Combines committed changes (since_ref..HEAD), staged changes,
    unstaged changes, and untracked files into a single GitChangeSet.
    ``pathspec`` limits every query to one directory (e.g. the workflows dir).
    """
    if since_ref is None:
        return GitChangeSet()

    modified: set[str] = set()
    added: set[str] = set()
    deleted: set[str] = set()
    limit = ["--", pathspec] if pathspec else []

    for args in (
        ["diff", "--name-status", since_ref, "HEAD"],
        ["diff", "--name-status"],
        ["diff", "--name-status", "--cached"],
    ):
        _parse_name_status(_run_git(root_path, args + limit), modified, added, deleted)

    untracked = _run_git(root_path, ["ls-files", "--others", "--exclude-standard"] + limit)
    if untracked is not None:
        added.update(line.strip() for line in untracked.splitlines() if line.strip())

    # Added and deleted in different steps means the file still changed
    overlap = added & deleted
    modified |= overlap
    added -= overlap
    deleted -= overlap
    # A file modified after being added is still new to the graph
    modified -= added

    return GitChangeSet(
        modified=sorted(modified),
        added=sorted(added),
        deleted=sorted(deleted),
    )


def _parse_name_status(
    output: str | None,
    modified: set[str],
    added: set[str],
    deleted: set[str],
) -> None:
    """Parse git diff --name-status output into modified/added/deleted sets."""
    if not output:
        return

    for line in output.strip().splitlines():
        parts = line.split("\t")
        if len(parts) < 2:
            continue
        status, path = parts[0], parts[1]

        if status == "M":
            modified.add(path)
        elif status == "A":
            added.add(path)
        elif status == "D":
            deleted.add(path)
        elif status.startswith("R"):
            deleted.add(path)
            if len(parts) >= 3:
                added.add(parts[2])
