"""
Kanban board ordering helpers.

Pure list operations used by the task endpoints. A column is represented as a
list ordered by position; after any change `renumber` writes the list index
back to each task's `position` so positions stay contiguous (0..n-1).
"""

from typing import Any, List, Optional, Sequence, Tuple


def clamp_position(position: Optional[int], length: int) -> int:
    """Clamp a requested insert index into [0, length]; None means the end."""
    if position is None or position > length:
        return length
    if position < 0:
        return 0
    return position


def reorder(items: Sequence[Any], start: int, finish: int) -> List[Any]:
    """
    Move the item at `start` to `finish` within one list.

    Raises:
        IndexError: if `start` is not a valid index
    """
    if start < 0 or start >= len(items):
        raise IndexError(f"start index {start} out of range for {len(items)} items")
    result = list(items)
    moved = result.pop(start)
    result.insert(clamp_position(finish, len(result)), moved)
    return result


def move_between(
    source: Sequence[Any],
    destination: Sequence[Any],
    start: int,
    finish: Optional[int],
) -> Tuple[List[Any], List[Any]]:
    """
    Move the item at `start` in `source` to index `finish` in `destination`.

    Returns:
        (new_source, new_destination)

    Raises:
        IndexError: if `start` is not a valid index of `source`
    """
    if start < 0 or start >= len(source):
        raise IndexError(f"start index {start} out of range for {len(source)} items")
    new_source = list(source)
    new_destination = list(destination)
    moved = new_source.pop(start)
    new_destination.insert(clamp_position(finish, len(new_destination)), moved)
    return new_source, new_destination


def renumber(tasks: Sequence[Any]) -> List[Any]:
    """Assign position = index; returns the tasks whose position changed."""
    changed = []
    for index, task in enumerate(tasks):
        if task.position != index:
            task.position = index
            changed.append(task)
    return changed
