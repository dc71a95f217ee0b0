"""Shared fixtures: workflow trees on disk."""

import pytest


def _render(imports=None, body="# Workflow\n\nDo the thing.\n"):
    lines = ["---", "engine: copilot"]
    if imports:
        lines.append("imports:")
        lines.extend(f"  - {imp}" for imp in imports)
    lines.append("---")
    return "\n".join(lines) + "\n" + body


@pytest.fixture
def workflows_dir(tmp_path):
    path = tmp_path / "workflows"
    path.mkdir()
    return path


@pytest.fixture
def write_workflow(workflows_dir):
    """Write a workflow relative to the workflows dir; returns its path as str."""

    def _write(rel_path, imports=None, body="# Workflow\n\nDo the thing.\n"):
        path = workflows_dir / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(_render(imports, body))
        return str(path)

    return _write
