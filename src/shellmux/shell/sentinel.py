"""
Batch boundary markers in the shell's merged output stream.

After every batch the dispatcher writes

    echo <TOKEN> <index> $?

and the shell itself substitutes the exit status of the batch's last line,
so the output stream carries exactly one `<TOKEN> <index> <exit>` line per
batch. Decoding is tolerant: a line that merely contains the token yields
a match with missing fields instead of an error.
"""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from typing import Optional

from shellmux.settings.models import DEFAULT_SENTINEL_TOKEN

DEFAULT_TOKEN = DEFAULT_SENTINEL_TOKEN


@dataclass(frozen=True)
class SentinelMatch:
    # Text printed before the token on the same line (output lacking a
    # trailing newline); empty for a clean sentinel line.
    prefix: str
    index: Optional[int]
    exit_code: Optional[int]

    def is_terminal_for(self, expected_index: int) -> bool:
        return self.index is not None and self.index == expected_index


def encode(token: str, index: int) -> str:
    # Quote the token so glob characters never expand; leave $? bare so the
    # shell evaluates it.
    return f"echo {shlex.quote(token)} {index} $?\n"


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def decode(token: str, line: str) -> Optional[SentinelMatch]:
    pos = line.find(token)
    if pos == -1:
        return None
    rest = line[pos + len(token) :]
    if rest and not rest[0].isspace():
        # Token glued to other text: not a field boundary.
        return SentinelMatch(prefix=line[:pos], index=None, exit_code=None)
    fields = rest.split()
    index = _parse_int(fields[0] if len(fields) > 0 else None)
    exit_code = _parse_int(fields[1] if len(fields) > 1 else None)
    return SentinelMatch(prefix=line[:pos], index=index, exit_code=exit_code)
