"""
File Routing Helpers

Pure functions over directive lists, shared by both managers:

- which monthly file a date belongs to
- where a dated directive goes so a file stays in date order
- how a directive is removed without leaving stray blank lines
- how the main file's include list is kept (sorted, no duplicates)

Nothing here touches the disk.
"""

import datetime
from typing import Optional

from beanledger.models.ledger import Blank, Include, directive_date


def month_file(when: datetime.date) -> str:
    return f"{when.year:04d}-{when.month:02d}.bean"


def insert_dated(directives: list, new, when: datetime.date) -> list:
    """
    Insert a directive after the last one dated on or before `when`.

    Same-date directives keep insertion order (the new one goes last).
    A directive older than everything goes before the first dated one,
    below any header comments. Directives are separated by one blank.
    """
    result = list(directives)
    last_not_after = None
    first_after = None
    for index, directive in enumerate(result):
        dated = directive_date(directive)
        if dated is None:
            continue
        if dated <= when:
            last_not_after = index
        elif first_after is None:
            first_after = index

    if last_not_after is not None:
        position = last_not_after + 1
        group = [Blank(), new]
        if position < len(result) and not isinstance(result[position], Blank):
            group.append(Blank())
        result[position:position] = group
    elif first_after is not None:
        result[first_after:first_after] = [new, Blank()]
    else:
        if result and not isinstance(result[-1], Blank):
            result.append(Blank())
        result.append(new)
    return result


def remove_at(directives: list, index: int) -> list:
    """Remove one directive and one blank line next to it (preceding first)."""
    result = list(directives)
    del result[index]
    if index > 0 and isinstance(result[index - 1], Blank):
        del result[index - 1]
    elif index < len(result) and isinstance(result[index], Blank):
        del result[index]
    return result


def is_effectively_empty(directives: list) -> bool:
    """Only blank lines left; the file can go."""
    return all(isinstance(d, Blank) for d in directives)


def include_key(path: str, accounts_file: str) -> tuple[int, str]:
    return (0 if path == accounts_file else 1, path)


def add_include(directives: list, target: str, accounts_file: str) -> Optional[list]:
    """
    Register `target` in the main file.

    Returns the new directive list, or None if it is already included.
    Includes stay sorted: the accounts file first, then months by name.
    """
    includes = [i for i, d in enumerate(directives) if isinstance(d, Include)]
    if any(directives[i].path == target for i in includes):
        return None

    result = list(directives)
    new = Include(path=target)
    key = include_key(target, accounts_file)

    if not includes:
        if result and not isinstance(result[-1], Blank):
            result.append(Blank())
        result.append(new)
        return result

    position = includes[0]
    for i in includes:
        if include_key(result[i].path, accounts_file) < key:
            position = i + 1
    result.insert(position, new)
    return result


def remove_include(directives: list, target: str) -> Optional[list]:
    """Drop every include of `target`; None if there was none."""
    result = [d for d in directives if not (isinstance(d, Include) and d.path == target)]
    if len(result) == len(directives):
        return None
    return result


def is_included(directives: list, target: str) -> bool:
    return any(isinstance(d, Include) and d.path == target for d in directives)
