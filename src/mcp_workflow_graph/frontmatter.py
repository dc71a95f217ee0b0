"""Import extraction from workflow documents.

A workflow declares its imports in two places:

  1. The ``imports:`` list of its YAML frontmatter. Entries are either plain
     strings or mappings with a ``path`` key (extra keys such as ``inputs``
     are ignored here).
  2. Include directives in the markdown body, one per line:
     ``@include path``, ``@import path`` (legacy, ``?`` marks optional) and
     ``{{#import path}}`` / ``{{#import?: path}}``.

Only raw references are returned; resolving them to files is the job of
the dependency graph.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

import yaml

from mcp_workflow_graph.errors import ExtractionError

logger = logging.getLogger(__name__)

_FRONTMATTER_DELIMITER = "---"

_DIRECTIVE_RE = re.compile(
    r"^(?:@(?:include|import)(\?)?\s+(.+)|\{\{#import(\?)?\s*:?\s*(.+?)\s*\}\})$"
)
_LEGACY_DIRECTIVE_RE = re.compile(r"^@(?:include|import)(\?)?\s+(.+)$")


@dataclass(frozen=True)
class ImportDirective:
    """A body include directive."""

    path: str
    is_optional: bool
    is_legacy: bool  # @include / @import rather than {{#import}}


def parse_import_directive(line: str) -> ImportDirective | None:
    """Parse one body line as an include directive, or return None."""
    stripped = line.strip()
    match = _DIRECTIVE_RE.match(stripped)
    if match is None:
        return None

    if _LEGACY_DIRECTIVE_RE.match(stripped):
        return ImportDirective(
            path=match.group(2).strip(),
            is_optional=match.group(1) == "?",
            is_legacy=True,
        )
    return ImportDirective(
        path=match.group(4).strip(),
        is_optional=match.group(3) == "?",
        is_legacy=False,
    )


def split_frontmatter(content: str) -> tuple[dict | None, str]:
    """Split a document into its parsed frontmatter mapping and its body.

    Returns (None, content) when the document has no frontmatter. An empty
    frontmatter block yields an empty dict.

    Raises:
        ExtractionError: unterminated block, invalid YAML, or a frontmatter
            that is not a mapping.
    """
    lines = content.split("\n")
    if not lines or lines[0].strip() != _FRONTMATTER_DELIMITER:
        return None, content

    end = None
    for i in range(1, len(lines)):
        if lines[i].strip() == _FRONTMATTER_DELIMITER:
            end = i
            break
    if end is None:
        raise ExtractionError("frontmatter is not closed with '---'")

    raw = "\n".join(lines[1:end])
    body = "\n".join(lines[end + 1:])
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ExtractionError(f"invalid frontmatter YAML: {e}") from e

    if data is None:
        return {}, body
    if not isinstance(data, dict):
        raise ExtractionError(
            f"frontmatter must be a mapping, got {type(data).__name__}"
        )
    return data, body


def imports_from_frontmatter(frontmatter: dict | None) -> list[str]:
    """Collect the raw import references declared in a frontmatter mapping."""
    if not frontmatter or "imports" not in frontmatter:
        return []

    field = frontmatter["imports"]
    if field is None:
        return []
    if not isinstance(field, list):
        raise ExtractionError(
            f"'imports' must be a list, got {type(field).__name__}"
        )

    refs: list[str] = []
    for item in field:
        if isinstance(item, str):
            refs.append(item)
        elif isinstance(item, dict) and isinstance(item.get("path"), str):
            refs.append(item["path"])
        else:
            logger.debug("Ignoring unsupported import entry: %r", item)
    return refs


def imports_from_body(body: str) -> list[str]:
    """Collect the raw references of include directives in a markdown body."""
    refs: list[str] = []
    for line in body.split("\n"):
        directive = parse_import_directive(line)
        if directive is not None and directive.path:
            refs.append(directive.path)
    return refs


def read_document(path: str) -> str:
    """Read a document as text, trying UTF-8 first then latin-1 as fallback."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except UnicodeDecodeError:
        with open(path, "r", encoding="latin-1") as f:
            return f.read()


def extract_imports(path: str) -> list[str]:
    """Return the raw import references declared by the document at ``path``.

    Frontmatter imports come first, followed by body directives, each in
    declaration order. A document without any imports yields an empty list.

    Raises:
        ExtractionError: the file cannot be read or its frontmatter is
            malformed.
    """
    try:
        content = read_document(path)
    except OSError as e:
        raise ExtractionError(f"cannot read {path}: {e}", {"path": path}) from e

    try:
        frontmatter, body = split_frontmatter(content)
        refs = imports_from_frontmatter(frontmatter)
    except ExtractionError as e:
        e.context.setdefault("path", path)
        raise

    refs.extend(imports_from_body(body))
    logger.debug("Extracted %d import references from %s", len(refs), path)
    return refs
