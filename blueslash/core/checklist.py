"""Markdown checklist parsing and generation for task descriptions."""

import re
import uuid

from blueslash.domain.task import ChecklistGroup, ChecklistItem


CHECKLIST_PATTERN = re.compile(r"^\s*[-*]\s*\[(\s|x|X)\]\s*(.+)$")


def _new_id() -> str:
    return uuid.uuid4().hex


def _group_positions(lines: list[str], positions: list[int]) -> list[list[int]]:
    """Split checklist line positions into runs separated only by blank lines."""
    groups: list[list[int]] = []
    current = [positions[0]]
    for prev, pos in zip(positions, positions[1:], strict=False):
        if all(not lines[j].strip() for j in range(prev + 1, pos)):
            current.append(pos)
        else:
            groups.append(current)
            current = [pos]
    groups.append(current)
    return groups


def parse_markdown_checklist(description: str) -> list[ChecklistGroup]:
    """Extract checklist groups, with their surrounding context lines, from markdown."""
    lines = description.split("\n")
    matches = {}
    for i, line in enumerate(lines):
        match = CHECKLIST_PATTERN.match(line)
        if match:
            matches[i] = match
    if not matches:
        return []

    runs = _group_positions(lines, list(matches))
    groups = []

    for index, run in enumerate(runs):
        first, last = run[0], run[-1]

        context_before = None
        if first > 0 and lines[first - 1].strip():
            context_before = lines[first - 1]

        has_next = index < len(runs) - 1
        next_start = runs[index + 1][0] if has_next else len(lines)
        after: list[str] = []
        for i in range(last + 1, next_start):
            # The line right before the next run is that run's context
            if has_next and i == next_start - 1 and lines[i].strip():
                break
            after.append(lines[i])
        while after and not after[-1].strip():
            after.pop()

        items = [
            ChecklistItem(
                id=_new_id(), text=matches[pos].group(2).strip(), completed=matches[pos].group(1).lower() == "x"
            )
            for pos in run
        ]

        groups.append(
            ChecklistGroup(
                id=_new_id(),
                items=items,
                context_before=context_before,
                context_after="\n".join(after) if after else None,
            )
        )

    return groups


def has_checklist_items(description: str) -> bool:
    return any(CHECKLIST_PATTERN.match(line) for line in description.split("\n"))


def render_description_without_checklist(description: str) -> str:
    """Return the description with checklist lines and their context lines removed."""
    groups = parse_markdown_checklist(description)
    if not groups:
        return description

    lines = description.split("\n")
    excluded = {i for i, line in enumerate(lines) if CHECKLIST_PATTERN.match(line)}

    for group in groups:
        context_lines = []
        if group.context_before:
            context_lines.append(group.context_before)
        if group.context_after:
            context_lines.extend(group.context_after.split("\n"))
        for context_line in context_lines:
            if context_line in lines:
                excluded.add(lines.index(context_line))

    return "\n".join(line for i, line in enumerate(lines) if i not in excluded).strip()


def generate_markdown_from_checklist(groups: list[ChecklistGroup]) -> str:
    """Render checklist groups back to markdown, one blank line between groups."""
    rendered = []
    for group in groups:
        parts = []
        if group.context_before:
            parts.append(group.context_before)
        parts.extend(f"- [{'x' if item.completed else ' '}] {item.text}" for item in group.items)
        if group.context_after:
            parts.append(group.context_after)
        rendered.append("\n".join(parts))
    return "\n\n".join(rendered)
