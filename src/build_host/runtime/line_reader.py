"""Stream line reader.

Turns one child byte stream into ordered LineEvents:
- reads fixed-size chunks and buffers incomplete lines
- emits one event per newline (a trailing carriage return is dropped)
- emits a non-empty unterminated remainder at EOF, then signals end-of-stream
- decodes each line on its own, replacing undecodable bytes with U+FFFD

Lines are split on the byte b"\\n" before decoding, so the encoding must be
ASCII compatible (UTF-8, Latin-1, code pages, ...).
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from .events import LineEvent, Origin

if TYPE_CHECKING:
    from .multiplexer import EventMultiplexer

__all__ = ["LineReader", "DEFAULT_CHUNK_SIZE"]

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 4096


class LineReader:
    """Reads one child stream and feeds its lines into a multiplexer.

    Attributes:
        origin: Stream this reader is attached to
        lines_read: Events emitted so far (equals the last sequence number)
        decode_errors: Lines that needed replacement characters
    """

    def __init__(
        self,
        stream: asyncio.StreamReader,
        origin: Origin,
        sink: "EventMultiplexer",
        encoding: str = "utf-8",
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._stream = stream
        self.origin = origin
        self._sink = sink
        self._encoding = encoding
        self._chunk_size = chunk_size
        self.lines_read = 0
        self.decode_errors = 0

    async def run(self) -> int:
        """Read until EOF, then signal end-of-stream for this origin.

        Blocks (suspends) whenever the multiplexer queue is full.

        Returns:
            Number of lines emitted
        """
        buffer = b""
        try:
            while True:
                chunk = await self._stream.read(self._chunk_size)
                if not chunk:
                    break

                buffer += chunk
                if b"\n" not in chunk:
                    continue

                *complete, buffer = buffer.split(b"\n")
                for raw in complete:
                    await self._emit(raw)

            # Unterminated trailing output
            if buffer:
                await self._emit(buffer)
        except OSError as e:
            # A broken pipe ends the stream like EOF would
            logger.warning(f"Error reading {self.origin.value} stream: {e}")

        await self._sink.close(self.origin)
        logger.debug(f"{self.origin.value} stream closed after {self.lines_read} line(s)")
        return self.lines_read

    async def _emit(self, raw: bytes) -> None:
        if raw.endswith(b"\r"):
            raw = raw[:-1]

        decode_error = False
        try:
            text = raw.decode(self._encoding)
        except UnicodeDecodeError:
            text = raw.decode(self._encoding, errors="replace")
            decode_error = True
            self.decode_errors += 1
            logger.debug(
                f"Replaced undecodable bytes in {self.origin.value} "
                f"line {self.lines_read + 1}"
            )

        self.lines_read += 1
        await self._sink.put(
            LineEvent(
                origin=self.origin,
                sequence=self.lines_read,
                text=text,
                decode_error=decode_error,
            )
        )
