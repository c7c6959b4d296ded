# MIT License
#
# Copyright (c) 2025 waypoint-link Contributors
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in
# all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
Chunked transport for the base64 route payload.

Framing (shared with the receiver firmware):

    payload  = base64(route_string)
    chunks   = payload[0:20], payload[20:40], ...   (last may be shorter)
    write[i] = base64(chunks[i])                    (one radio write each)

The receiver base64-decodes every write, concatenates the 20-character
pieces back into the payload and base64-decodes that. The per-chunk second
encoding is part of the firmware contract and must not be removed.

Writes are issued without response, strictly one after another, with a fixed
delay between them so the peripheral's receive buffer keeps up. There is no
acknowledgement: success means every write returned without an error. A
failed write aborts the transmission; chunks already sent stay sent and the
receiver is expected to discard the incomplete message.
"""

import asyncio
import base64

from .errors import ChunkWriteFailed
from .log import log


def split_payload(payload, chunk_size=20):
    """Split ``payload`` into consecutive ``chunk_size``-character pieces."""
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return [payload[i:i + chunk_size] for i in range(0, len(payload), chunk_size)]


def encode_chunk(chunk):
    """Second-level encoding of one chunk: base64 of its raw characters."""
    return base64.b64encode(chunk.encode("utf-8"))


def frame_payload(payload, chunk_size=20):
    """Return the exact byte strings written to the radio for ``payload``."""
    return [encode_chunk(chunk) for chunk in split_payload(payload, chunk_size)]


def reassemble_frames(frames):
    """
    Receiver side of the framing: rebuild the route string from the writes.

    Args:
        frames: Write payloads (bytes or str) in the order they were received

    Returns:
        str: The original route wire string
    """
    pieces = []
    for frame in frames:
        if isinstance(frame, str):
            frame = frame.encode("ascii")
        pieces.append(base64.b64decode(bytes(frame)).decode("utf-8"))
    payload = "".join(pieces)
    return base64.b64decode(payload).decode("utf-8")


class ChunkedTransport:
    """Writes a payload to a characteristic as a sequence of small frames."""

    def __init__(self, stack, chunk_size=20, chunk_delay=0.05):
        """
        Args:
            stack: RadioStackHandle whose current driver performs the writes
            chunk_size: Characters of the base64 payload per write
            chunk_delay: Seconds to wait after each successful write
        """
        self.stack = stack
        self.chunk_size = chunk_size
        self.chunk_delay = chunk_delay

        # Statistics
        self.transmissions = 0
        self.failures = 0
        self.chunks_sent = 0
        self.bytes_sent = 0

    async def transmit(self, handle, characteristic, payload):
        """
        Send ``payload`` to ``characteristic`` on ``handle``.

        Returns:
            int: Number of chunks written

        Raises:
            ChunkWriteFailed: A write raised; carries the 0-based chunk index
        """
        frames = frame_payload(payload, self.chunk_size)
        total = len(frames)
        log(self, f"Sending {len(payload)} chars to {handle.device.id} in {total} chunk(s)", "DEBUG")

        driver = self.stack.driver
        for index, frame in enumerate(frames):
            try:
                await driver.write_without_response(handle.raw, characteristic.service_id, characteristic.id, frame)
            except Exception as e:
                self.failures += 1
                log(self, f"Chunk {index + 1}/{total} to {handle.device.id} failed: {type(e).__name__}: {e}", "ERROR")
                raise ChunkWriteFailed(index, total, e) from e

            self.chunks_sent += 1
            self.bytes_sent += len(frame)
            log(self, f"Chunk {index + 1}/{total} sent ({len(frame)} bytes)", "EXTREME")
            await asyncio.sleep(self.chunk_delay)

        self.transmissions += 1
        log(self, f"All {total} chunk(s) sent to {handle.device.id}", "DEBUG")
        return total

    def get_statistics(self):
        return {
            "transmissions": self.transmissions,
            "failures": self.failures,
            "chunks_sent": self.chunks_sent,
            "bytes_sent": self.bytes_sent,
        }

    def __str__(self):
        return "ChunkedTransport"
