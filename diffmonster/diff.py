"""Unified diff parsing into GitHub comment positions."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol

HUNK_HEADER_PATTERN = re.compile(
    r"^@@ -(?P<base_start>\d+)(?:,(?P<base_count>\d+))? "
    r"\+(?P<head_start>\d+)(?:,(?P<head_count>\d+))? @@"
)
FILE_HEADER_PATTERN = re.compile(r"^diff --git a/(?P<old_path>.+) b/(?P<new_path>.+)$")
DEV_NULL = "/dev/null"


class DiffLineType(StrEnum):
    CONTEXT = "context"
    ADDITION = "addition"
    DELETION = "deletion"


@dataclass(frozen=True, slots=True)
class DiffLine:
    """One diff line and the position GitHub uses to anchor comments on it."""

    type: DiffLineType
    position: int
    old_number: int | None
    new_number: int | None
    content: str


@dataclass(slots=True)
class Hunk:
    header: str
    lines: list[DiffLine] = field(default_factory=list)


@dataclass(slots=True)
class FileDiff:
    old_path: str | None
    new_path: str | None
    hunks: list[Hunk] = field(default_factory=list)

    @property
    def path(self) -> str:
        """Path comments are filed against (the head-side path unless deleted)."""
        return self.new_path or self.old_path or ""

    def positions(self) -> frozenset[int]:
        return frozenset(line.position for hunk in self.hunks for line in hunk.lines)


class DiffParser(Protocol):
    """Turns raw unified diff text into ordered per-file hunks."""

    def __call__(self, diff_text: str) -> list[FileDiff]:
        ...


def _strip_prefix(path: str) -> str | None:
    if path == DEV_NULL:
        return None
    if path.startswith(("a/", "b/")):
        return path[2:]
    return path


def parse_unified_diff(diff_text: str) -> list[FileDiff]:
    """Parse `git diff` output.

    Position 1 is the line right below a file's first hunk header; every following
    line counts, later hunk headers included.
    """
    files: list[FileDiff] = []
    current: FileDiff | None = None
    hunk: Hunk | None = None
    position = 0
    old_line = new_line = 0
    old_remaining = new_remaining = 0

    for raw_line in diff_text.splitlines():
        in_hunk = hunk is not None and (old_remaining > 0 or new_remaining > 0)
        if in_hunk and hunk is not None:
            marker = raw_line[:1]
            content = raw_line[1:]
            if marker == "\\":
                continue
            position += 1
            if marker == "+":
                hunk.lines.append(
                    DiffLine(DiffLineType.ADDITION, position, None, new_line, content)
                )
                new_line += 1
                new_remaining -= 1
            elif marker == "-":
                hunk.lines.append(
                    DiffLine(DiffLineType.DELETION, position, old_line, None, content)
                )
                old_line += 1
                old_remaining -= 1
            else:
                hunk.lines.append(
                    DiffLine(DiffLineType.CONTEXT, position, old_line, new_line, content)
                )
                old_line += 1
                new_line += 1
                old_remaining -= 1
                new_remaining -= 1
            continue

        file_match = FILE_HEADER_PATTERN.match(raw_line)
        if file_match is not None:
            current = FileDiff(
                old_path=file_match.group("old_path"),
                new_path=file_match.group("new_path"),
            )
            files.append(current)
            hunk = None
            position = 0
            continue

        if current is None:
            continue

        if raw_line.startswith("--- "):
            current.old_path = _strip_prefix(raw_line[4:].rstrip("\t"))
            continue
        if raw_line.startswith("+++ "):
            current.new_path = _strip_prefix(raw_line[4:].rstrip("\t"))
            continue

        header_match = HUNK_HEADER_PATTERN.match(raw_line)
        if header_match is None:
            continue
        if current.hunks:
            position += 1
        hunk = Hunk(header=raw_line)
        current.hunks.append(hunk)
        old_line = int(header_match.group("base_start"))
        new_line = int(header_match.group("head_start"))
        old_remaining = int(header_match.group("base_count") or 1)
        new_remaining = int(header_match.group("head_count") or 1)

    return files


def positions_by_path(files: list[FileDiff]) -> dict[str, frozenset[int]]:
    """Map each file path to the positions a comment may be placed on."""
    return {file_diff.path: file_diff.positions() for file_diff in files}
