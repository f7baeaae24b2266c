"""
Graceful drain of the managed game server.

This module provides:
- RCON client for the server console
- Occupancy parsing of `list` replies
- Drain coordinator (notify, wait for empty, stop)
"""

from vertiscale.drain.coordinator import (
    CommandSession,
    DrainCoordinator,
    DrainResult,
    DrainStage,
    broadcast_command,
)
from vertiscale.drain.occupancy import (
    ListCommandParser,
    OccupancyParser,
    strip_style_markers,
)
from vertiscale.drain.rcon import RconClient, decode_payload, encode_packet

__all__ = [
    # Coordinator
    "CommandSession",
    "DrainCoordinator",
    "DrainResult",
    "DrainStage",
    "broadcast_command",
    # Occupancy
    "ListCommandParser",
    "OccupancyParser",
    "strip_style_markers",
    # RCON
    "RconClient",
    "decode_payload",
    "encode_packet",
]
