"""
Occupancy parsing for the `list` console command.

The reply is human-readable text, optionally interleaved with two-character
style codes ("§" followed by one alphanumeric). Parsing lives behind the
OccupancyParser protocol so a different server flavour only needs a new
parser, not changes to the drain sequence.
"""

import re
from typing import Protocol

from vertiscale.errors import ProtocolMismatch

STYLE_MARKER_RE = re.compile(r"§[0-9A-Za-z]")
LIST_RE = re.compile(r"There are (\d+) out of maximum (\d+) players online\.")


def strip_style_markers(text: str) -> str:
    """Remove "§x" formatting codes."""
    return STYLE_MARKER_RE.sub("", text)


class OccupancyParser(Protocol):
    """Extracts the online player count from a console reply."""

    command: str

    def parse(self, response: str) -> int: ...


class ListCommandParser:
    """Parser for "There are <N> out of maximum <M> players online..." replies."""

    command = "list"

    def parse(self, response: str) -> int:
        """
        Return the number of players online.

        Raises:
            ProtocolMismatch: The reply does not have the expected shape
        """
        match = LIST_RE.match(strip_style_markers(response).strip())
        if match is None:
            raise ProtocolMismatch(response)
        return int(match.group(1))
