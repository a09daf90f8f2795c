"""
Correlation codec for mirror task notes.

A mirror task created by the sync carries the gid of its Asana task in its
notes, after a line containing only the separator:

    <original notes>
    ---
    <asana gid>

Anything before the first separator line is the human-written part of the
notes; everything from the separator on belongs to the sync.
"""

from typing import List, Optional

SEPARATOR = '---'


def split_lines(body: str) -> List[str]:
    """Split on line feeds only. A trailing carriage return is dropped from each
    line, and a trailing line feed does not produce an empty last line.
    """
    lines = [line[:-1] if line.endswith('\r') else line for line in body.split('\n')]
    if lines and lines[-1] == '':
        lines.pop()
    return lines


def encode(body: str, foreign_id: str) -> str:
    """Append the correlation footer for foreign_id to body."""
    return f"{body}\n{SEPARATOR}\n{foreign_id}"


def decode(body: Optional[str]) -> Optional[str]:
    """Return the foreign id stored in body, or None if there is none.

    Only the first separator line counts. A separator on the last line
    means no id.
    """
    if body is None:
        return None

    lines = iter(split_lines(body))
    for line in lines:
        if line == SEPARATOR:
            return next(lines, None)
    return None


def body_prefix(body: Optional[str]) -> List[str]:
    """Lines of body that come before the first separator line."""
    if body is None:
        return []

    prefix = []
    for line in split_lines(body):
        if line == SEPARATOR:
            break
        prefix.append(line)
    return prefix


class CorrelationCodec:
    """Links mirror tasks back to their Asana task through the notes field.

    The reconciler only talks to this class, so the link could live somewhere
    other than the notes without changing reconciliation logic.
    """

    def encode(self, body: str, foreign_id: str) -> str:
        return encode(body, foreign_id)

    def decode(self, body: Optional[str]) -> Optional[str]:
        return decode(body)

    def body_prefix(self, body: Optional[str]) -> List[str]:
        return body_prefix(body)

    def split_lines(self, body: str) -> List[str]:
        return split_lines(body)
