"""In-place edits of YAML manifests carrying promotion markers.

A value is promoted by tagging its line with a JSON comment naming the
pipeline environment it belongs to::

    version: 0.1.4 # {"$promotion": "flux-system:podinfo:prod"}

Only the scalar on a marked line changes; the rest of the file (comments,
ordering, formatting) is left byte-for-byte intact, which a YAML round-trip
would not guarantee.
"""

from __future__ import annotations

import json
import re
from pathlib import Path

import structlog

from pipeline_controller.services.strategy.exceptions import ManifestUpdateError

logger = structlog.get_logger()

MARKER_KEY = "$promotion"
MANIFEST_SUFFIXES = (".yaml", ".yml")

_MARKER_PATTERN = re.compile(r"#\s*(\{.*\})\s*$")
_KEY_VALUE_PATTERN = re.compile(r"^(?P<head>\s*(?:-\s+)?[^\s#'\"][^#]*?:\s+)(?P<value>\S.*)$")
_LIST_ITEM_PATTERN = re.compile(r"^(?P<head>\s*-\s+)(?P<value>\S.*)$")


def promotion_setter(namespace: str, pipeline: str, environment: str) -> str:
    return f"{namespace}:{pipeline}:{environment}"


def _marker(line: str) -> tuple[str, int] | None:
    """The marker value on ``line`` and where its comment starts."""
    match = _MARKER_PATTERN.search(line)
    if match is None:
        return None
    try:
        data = json.loads(match.group(1))
    except ValueError:
        return None
    if not isinstance(data, dict) or not isinstance(data.get(MARKER_KEY), str):
        return None
    return data[MARKER_KEY], match.start()


def _quote_like(original: str, value: str) -> str:
    if len(original) >= 2 and original[0] == original[-1] and original[0] in "\"'":
        return f"{original[0]}{value}{original[0]}"
    return value


def set_marked_value(line: str, setter: str, value: str) -> str | None:
    """Rewrite ``line`` if it carries the marker for ``setter``.

    Returns:
        The rewritten line, or None when the line is not marked for ``setter``.
    """
    found = _marker(line)
    if found is None or found[0] != setter:
        return None

    body = line.rstrip("\r\n")
    newline = line[len(body) :]
    comment_start = found[1]
    content = body[:comment_start].rstrip()
    gap = body[len(content) : comment_start]
    comment = body[comment_start:]

    match = _KEY_VALUE_PATTERN.match(content) or _LIST_ITEM_PATTERN.match(content)
    if match is not None:
        head, current = match.group("head"), match.group("value")
    else:
        stripped = content.lstrip()
        head, current = content[: len(content) - len(stripped)], stripped
    if not current:
        return None

    return f"{head}{_quote_like(current, value)}{gap}{comment}{newline}"


def _manifest_files(root: Path) -> list[Path]:
    return sorted(
        p
        for p in root.rglob("*")
        if p.is_file() and p.suffix in MANIFEST_SUFFIXES and ".git" not in p.relative_to(root).parts
    )


def update_manifests(root: Path, setter: str, value: str) -> list[Path]:
    """Set every value marked for ``setter`` under ``root`` to ``value``.

    Returns:
        Files that changed, relative to ``root``. Empty when every marked
        value already equals ``value``.

    Raises:
        ManifestUpdateError: If no file carries a marker for ``setter``.
    """
    marked = 0
    changed: list[Path] = []
    for path in _manifest_files(root):
        try:
            text = path.read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.debug("manifest_unreadable", path=str(path), error=str(e))
            continue

        lines = text.splitlines(keepends=True)
        updated = False
        for i, line in enumerate(lines):
            new_line = set_marked_value(line, setter, value)
            if new_line is None:
                continue
            marked += 1
            if new_line != line:
                lines[i] = new_line
                updated = True

        if updated:
            path.write_bytes("".join(lines).encode("utf-8"))
            changed.append(path.relative_to(root))

    if marked == 0:
        raise ManifestUpdateError(f'no manifest carries a promotion marker for "{setter}"')
    logger.debug("manifests_updated", setter=setter, marked=marked, changed=len(changed))
    return changed
