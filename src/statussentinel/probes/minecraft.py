"""Minecraft Server List Ping probe.

The status query is two client packets followed by one server packet, all
framed as ``varint(length) + varint(packet_id) + payload``:

    Handshake       0x00  varint protocol, string host, u16 port, varint state=1
    Status Request  0x00  (empty)
    Status Response 0x00  string json

Varints carry 7 bits per byte, least significant group first, with the high
bit set on every byte but the last. Negative values are sent as their 32-bit
two's complement and always take 5 bytes.
"""

import asyncio
import json
import logging
import socket
import struct
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from statussentinel.config import ServiceConfig
from statussentinel.models import ProbeResult, ReasonKind
from statussentinel.probes.base import BaseProbe

logger = logging.getLogger(__name__)

MAX_VARINT_BYTES = 5
MAX_PACKET_LENGTH = 2097151  # largest value a 3-byte varint can hold
DEFAULT_PROTOCOL_VERSION = -1  # "unknown"; servers answer status for any version
STATUS_PACKET_ID = 0x00
NEXT_STATE_STATUS = 1


class MalformedPacketError(ValueError):
    """Bytes received from the server do not form a valid packet."""


class HandshakeError(Exception):
    """The server dropped the exchange before sending a response."""


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - (1 << 32) if value & 0x80000000 else value


def encode_varint(value: int) -> bytes:
    """Encode a signed 32-bit integer as a varint."""
    if not -(1 << 31) <= value < (1 << 31):
        raise ValueError(f"varint out of 32-bit range: {value}")
    value &= 0xFFFFFFFF
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_varint(data: bytes, offset: int = 0) -> tuple[int, int]:
    """Decode a varint from ``data`` at ``offset``.

    Returns:
        Tuple of (value, offset just past the varint).

    Raises:
        MalformedPacketError: If the varint is truncated or longer than 5 bytes.
    """
    result = 0
    for i in range(MAX_VARINT_BYTES):
        if offset + i >= len(data):
            raise MalformedPacketError("truncated varint")
        byte = data[offset + i]
        result |= (byte & 0x7F) << (7 * i)
        if not byte & 0x80:
            return _to_int32(result), offset + i + 1
    raise MalformedPacketError("varint is too big")


async def read_varint(reader: asyncio.StreamReader) -> int:
    """Read one varint from a stream.

    Raises:
        asyncio.IncompleteReadError: If the stream ends before the first byte.
        MalformedPacketError: If it ends mid-varint or the varint is too long.
    """
    result = 0
    for i in range(MAX_VARINT_BYTES):
        try:
            byte = (await reader.readexactly(1))[0]
        except asyncio.IncompleteReadError:
            if i == 0:
                raise
            raise MalformedPacketError("truncated varint") from None
        result |= (byte & 0x7F) << (7 * i)
        if not byte & 0x80:
            return _to_int32(result)
    raise MalformedPacketError("varint is too big")


def encode_string(text: str) -> bytes:
    raw = text.encode("utf-8")
    return encode_varint(len(raw)) + raw


def decode_string(data: bytes, offset: int = 0) -> tuple[str, int]:
    length, offset = decode_varint(data, offset)
    if length < 0 or offset + length > len(data):
        raise MalformedPacketError(f"string length {length} exceeds packet")
    try:
        text = data[offset:offset + length].decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedPacketError(f"string is not UTF-8: {e}") from e
    return text, offset + length


def build_packet(packet_id: int, payload: bytes = b"") -> bytes:
    """Frame a packet with its length prefix."""
    body = encode_varint(packet_id) + payload
    return encode_varint(len(body)) + body


def build_handshake_packet(
    host: str,
    port: int,
    protocol_version: int = DEFAULT_PROTOCOL_VERSION,
    next_state: int = NEXT_STATE_STATUS,
) -> bytes:
    payload = (
        encode_varint(protocol_version)
        + encode_string(host)
        + struct.pack(">H", port)
        + encode_varint(next_state)
    )
    return build_packet(STATUS_PACKET_ID, payload)


def build_status_request() -> bytes:
    return build_packet(STATUS_PACKET_ID)


@dataclass(frozen=True)
class Handshake:
    protocol_version: int
    host: str
    port: int
    next_state: int


def parse_handshake_packet(data: bytes) -> Handshake:
    """Parse a complete, length-prefixed handshake packet."""
    length, offset = decode_varint(data)
    if length != len(data) - offset:
        raise MalformedPacketError(f"length prefix {length} does not match {len(data) - offset} bytes")
    packet_id, offset = decode_varint(data, offset)
    if packet_id != STATUS_PACKET_ID:
        raise MalformedPacketError(f"unexpected packet id {packet_id:#04x}")
    protocol_version, offset = decode_varint(data, offset)
    host, offset = decode_string(data, offset)
    if offset + 2 > len(data):
        raise MalformedPacketError("truncated port")
    (port,) = struct.unpack_from(">H", data, offset)
    next_state, offset = decode_varint(data, offset + 2)
    if offset != len(data):
        raise MalformedPacketError("trailing bytes after handshake")
    return Handshake(protocol_version, host, port, next_state)


def parse_status_response(body: bytes) -> Any:
    """Parse the body of a Status Response packet (after the length prefix).

    Returns:
        The decoded JSON document.
    """
    if not body:
        raise MalformedPacketError("empty status response")
    packet_id, offset = decode_varint(body)
    if packet_id != STATUS_PACKET_ID:
        raise MalformedPacketError(f"unexpected packet id {packet_id:#04x}")
    text, _ = decode_string(body, offset)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedPacketError(f"status is not valid JSON: {e}") from e


def _motd_text(description: Any) -> str:
    if isinstance(description, str):
        return description
    if isinstance(description, dict):
        parts = [description.get("text", "")]
        parts.extend(_motd_text(extra) for extra in description.get("extra", []))
        return "".join(parts)
    return ""


def summarize_status(status: Any) -> str:
    """One-line description of a status document."""
    if not isinstance(status, dict):
        return ""
    parts = []
    version = status.get("version")
    if isinstance(version, dict) and version.get("name"):
        parts.append(str(version["name"]))
    players = status.get("players")
    if isinstance(players, dict) and "online" in players:
        parts.append(f"{players.get('online')}/{players.get('max', '?')} players")
    motd = " ".join(_motd_text(status.get("description")).split())
    if motd:
        parts.append(motd[:80])
    return ", ".join(parts)


class MinecraftProbe(BaseProbe):
    """Check a Minecraft server with the Server List Ping exchange."""

    def __init__(self, service: ServiceConfig, protocol_version: int = DEFAULT_PROTOCOL_VERSION) -> None:
        super().__init__(service)
        self.protocol_version = protocol_version

    async def _exchange(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> Any:
        target = self.service.target
        writer.write(build_handshake_packet(target.host, target.port, self.protocol_version))
        writer.write(build_status_request())
        await writer.drain()

        try:
            length = await read_varint(reader)
        except asyncio.IncompleteReadError:
            raise HandshakeError("connection closed before status response") from None
        if length <= 0:
            raise MalformedPacketError("empty status response")
        if length > MAX_PACKET_LENGTH:
            raise MalformedPacketError(f"packet length {length} too large")

        try:
            body = await reader.readexactly(length)
        except asyncio.IncompleteReadError as e:
            raise MalformedPacketError(f"truncated response ({len(e.partial)}/{length} bytes)") from None
        return parse_status_response(body)

    async def check(self, timestamp: datetime) -> ProbeResult:
        """Connect, handshake and read the status document."""
        name = self.service.name
        host, port = self.service.target.host, self.service.target.port
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        start = time.perf_counter()

        def failure(kind: ReasonKind, detail: str) -> ProbeResult:
            elapsed_ms = (time.perf_counter() - start) * 1000
            logger.debug(f"[MC] {name} {host}:{port} -> {kind.value}: {detail}")
            return ProbeResult.failure(name, timestamp, kind, detail=detail, latency_ms=round(elapsed_ms, 2))

        try:
            reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), self.timeout)
        except asyncio.TimeoutError:
            return failure(ReasonKind.TIMEOUT, f"connect timed out after {self.timeout:g}s")
        except ConnectionRefusedError as e:
            return failure(ReasonKind.CONNECTION_REFUSED, str(e))
        except socket.gaierror as e:
            return failure(ReasonKind.DNS_FAILURE, str(e))
        except OSError as e:
            return failure(ReasonKind.CONNECTION_ERROR, str(e))

        try:
            status = await asyncio.wait_for(self._exchange(reader, writer), max(deadline - loop.time(), 0))
        except asyncio.TimeoutError:
            return failure(ReasonKind.TIMEOUT, f"no status response within {self.timeout:g}s")
        except MalformedPacketError as e:
            return failure(ReasonKind.MALFORMED_RESPONSE, str(e))
        except (HandshakeError, OSError) as e:
            return failure(ReasonKind.HANDSHAKE_FAILED, str(e) or type(e).__name__)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass  # peer already gone

        latency_ms = (time.perf_counter() - start) * 1000
        logger.debug(f"[MC] {name} {host}:{port} -> up in {latency_ms:.1f}ms")
        return ProbeResult.success(name, timestamp, round(latency_ms, 2), detail=summarize_status(status))
