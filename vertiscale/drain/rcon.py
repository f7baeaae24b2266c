"""
Remote console (RCON) client for the managed game server.

Wire format, all integers little-endian int32:

    length | request_id | type | body (ASCII) | 0x00 | 0x00

`length` counts everything after itself. A login reply carrying request id
-1 means the password was rejected.
"""

import asyncio
import itertools
import struct
from typing import Any

from vertiscale.errors import RconError
from vertiscale.utils.logging import get_logger

logger = get_logger(__name__)

PACKET_TYPE_RESPONSE = 0
PACKET_TYPE_COMMAND = 2
PACKET_TYPE_LOGIN = 3

_HEADER = struct.Struct("<iii")
_LENGTH = struct.Struct("<i")
MAX_PACKET_LENGTH = 4096 + _HEADER.size


def encode_packet(request_id: int, packet_type: int, body: str) -> bytes:
    """Encode one RCON packet."""
    payload = struct.pack("<ii", request_id, packet_type) + body.encode("utf-8") + b"\x00\x00"
    return _LENGTH.pack(len(payload)) + payload


def decode_payload(payload: bytes) -> tuple[int, int, str]:
    """Decode a packet payload (without its length prefix)."""
    if len(payload) < 10:
        raise RconError(f"RCON packet too short ({len(payload)} bytes)")
    request_id, packet_type = struct.unpack_from("<ii", payload)
    body = payload[8:].rstrip(b"\x00")
    return request_id, packet_type, body.decode("utf-8", errors="replace")


class RconClient:
    """
    Async RCON session.

    Usage:
        async with RconClient("mc.example.com", 25575, "secret") as rcon:
            reply = await rcon.command("list")
    """

    def __init__(
        self,
        host: str,
        port: int,
        password: str,
        timeout: float = 10.0,
    ) -> None:
        """
        Initialize RCON client.

        Args:
            host: Server host
            port: RCON port
            password: RCON password
            timeout: Timeout for connect and for each send/receive
        """
        self.host = host
        self.port = port
        self._password = password
        self.timeout = timeout
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._ids = itertools.count(1)

    @classmethod
    def from_address(cls, address: str, password: str, timeout: float = 10.0) -> "RconClient":
        """Create a client from a "host:port" address."""
        host, _, port = address.rpartition(":")
        return cls(host=host, port=int(port), password=password, timeout=timeout)

    @property
    def is_connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def connect(self) -> None:
        """
        Open the TCP connection and authenticate.

        Raises:
            RconError: Connection failed, timed out or the password was rejected
        """
        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(self.host, self.port),
                timeout=self.timeout,
            )
        except (OSError, TimeoutError) as e:
            raise RconError(
                f"failed to connect to RCON at {self.host}:{self.port}: {e!r}",
                details={"host": self.host, "port": self.port},
            ) from e

        try:
            request_id = await self._write(PACKET_TYPE_LOGIN, self._password)
            reply_id, _, _ = await self._read()
        except BaseException:
            await self.close()
            raise

        if reply_id == -1 or reply_id != request_id:
            await self.close()
            raise RconError(
                "RCON authentication failed",
                details={"host": self.host, "port": self.port},
            )

        logger.debug("RCON connected", host=self.host, port=self.port)

    async def send(self, command: str) -> int:
        """
        Send a command without waiting for the reply.

        Returns:
            Request id of the sent packet
        """
        return await self._write(PACKET_TYPE_COMMAND, command)

    async def receive(self) -> str:
        """Read the next reply body."""
        _, _, body = await self._read()
        return body

    async def command(self, command: str) -> str:
        """Send a command and return its reply."""
        await self.send(command)
        reply = await self.receive()
        logger.debug("RCON command", command=command.split(" ", 1)[0], reply=reply)
        return reply

    async def close(self) -> None:
        """Close the connection."""
        if self._writer is None:
            return
        writer, self._writer, self._reader = self._writer, None, None
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug("RCON close error", error=str(e))

    async def _write(self, packet_type: int, body: str) -> int:
        if self._writer is None:
            raise RconError("RCON client is not connected")
        request_id = next(self._ids)
        packet = encode_packet(request_id, packet_type, body)
        if len(packet) > MAX_PACKET_LENGTH:
            raise RconError(f"RCON command too long ({len(packet)} bytes)")
        try:
            self._writer.write(packet)
            await asyncio.wait_for(self._writer.drain(), timeout=self.timeout)
        except (OSError, TimeoutError) as e:
            raise RconError(f"failed to send RCON packet: {e!r}") from e
        return request_id

    async def _read(self) -> tuple[int, int, str]:
        if self._reader is None:
            raise RconError("RCON client is not connected")
        try:
            header = await asyncio.wait_for(
                self._reader.readexactly(_LENGTH.size), timeout=self.timeout
            )
            (length,) = _LENGTH.unpack(header)
            if length < 10 or length > MAX_PACKET_LENGTH:
                raise RconError(f"invalid RCON packet length {length}")
            payload = await asyncio.wait_for(
                self._reader.readexactly(length), timeout=self.timeout
            )
        except (OSError, TimeoutError, asyncio.IncompleteReadError) as e:
            raise RconError(f"failed to read RCON reply: {e!r}") from e
        return decode_payload(payload)

    async def __aenter__(self) -> "RconClient":
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
