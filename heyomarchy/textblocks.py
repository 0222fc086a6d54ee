"""Marker-delimited managed blocks inside otherwise user-owned text files.

A block looks like::

    # BEGIN hey-omarchy <name>
    ...body...
    # END hey-omarchy <name>

Everything here operates on strings; reading and writing the files is the
caller's job (see ``system.Host``).
"""

import re

OWNER = "hey-omarchy"


def markers(name: str) -> tuple:
    """Return the (begin, end) marker lines for block *name*."""
    return f"# BEGIN {OWNER} {name}", f"# END {OWNER} {name}"


def has_block(text: str, begin: str) -> bool:
    return begin in text


def _lines(text: str) -> list:
    return text.splitlines()


def _join(lines: list, eol: bool = True) -> str:
    if not lines:
        return ""
    return "\n".join(lines) + ("\n" if eol else "")


def _ends_line(text: str) -> bool:
    """False only for non-empty text missing its final newline."""
    return not text or text.endswith("\n")


def insert_block(text: str, begin: str, end: str, body: str,
                 before: str = None) -> str:
    """Insert a managed block into *text*.

    With *before* (a regex), the block goes directly above the first matching
    line.  Without a match, the block is appended after a blank separator
    line.  Already-present blocks are left alone.  A missing final newline
    stays missing, so ``remove_block`` can restore the text exactly.
    """
    if has_block(text, begin):
        return text

    lines = _lines(text)
    block = [begin] + body.rstrip("\n").splitlines() + [end]

    if before is not None:
        pattern = re.compile(before)
        for idx, line in enumerate(lines):
            if pattern.match(line):
                return _join(lines[:idx] + block + lines[idx:], _ends_line(text))

    return _join(lines + [""] + block, _ends_line(text))


def remove_block(text: str, begin: str, end: str) -> str:
    """Drop every line from *begin* through *end*, markers included.

    When the block sits at the very end of the file, the blank separator
    that ``insert_block`` put in front of it goes too.
    """
    if not has_block(text, begin):
        return text

    kept = []
    skipping = False
    trailing_removed = False
    for line in _lines(text):
        if begin in line:
            skipping = True
            continue
        if skipping and end in line:
            skipping = False
            trailing_removed = True
            continue
        if skipping:
            continue
        trailing_removed = False
        kept.append(line)

    if trailing_removed and kept and kept[-1] == "":
        kept.pop()
    return _join(kept, _ends_line(text))

