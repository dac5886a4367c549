"""SM3 message digest built on the compression function in `sm3_compress.py`.

This module provides:

- `SM3`: a streaming engine; feed data with `update()` and finalize once with
  `digest()`.
- `sm3(data: bytes) -> bytes`: compute the 32-byte SM3 digest of `data`.
- `sm3_before` / `sm3_after`: the pre- and post-compression halves of the
  one-shot pipeline, for driving the compression loop by hand.

Usage:

    engine = SM3()
    for chunk in chunks:
        engine.update(chunk)
    digest = engine.digest()
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Tuple

from sm3_compress import IV, MASK32, _rotl, compress_block, p1


logger = logging.getLogger(__name__)

BLOCK_SIZE = 64
DIGEST_SIZE = 32

# The bit length is encoded in 64 bits, so fewer than 2**61 bytes may be hashed.
MAX_MESSAGE_BYTES = 1 << 61


class UsageError(ValueError):
    """Raised when an `SM3` engine is driven outside its valid states."""


def words_to_bytes(words: Iterable[int]) -> bytes:
    """Serialize 32-bit words big-endian."""
    return b"".join((word & MASK32).to_bytes(4, byteorder="big") for word in words)


def bytes_to_words(data: bytes) -> List[int]:
    """Parse big-endian 32-bit words; `len(data)` must be a multiple of 4."""
    if len(data) % 4 != 0:
        raise ValueError(f"Expected a multiple of 4 bytes, got {len(data)}")
    return [int.from_bytes(data[i : i + 4], byteorder="big") for i in range(0, len(data), 4)]


def padding_for_length(total_bytes: int) -> bytes:
    """Return the SM3 padding for a message of `total_bytes` bytes.

    The padding is a single 0x80 byte, the fewest 0x00 bytes that bring the
    length to 56 mod 64, and the 64-bit big-endian bit length. A message whose
    last block already holds 56 bytes or more spills into one extra block.
    """
    if total_bytes < 0:
        raise ValueError(f"Message length must be non-negative, got {total_bytes}")
    if total_bytes >= MAX_MESSAGE_BYTES:
        raise UsageError(
            f"Message length {total_bytes} exceeds the SM3 limit of {MAX_MESSAGE_BYTES - 1} bytes"
        )

    zeros = (55 - total_bytes) % BLOCK_SIZE
    return b"\x80" + b"\x00" * zeros + (total_bytes * 8).to_bytes(8, byteorder="big")


def pad_message(message: bytes) -> bytes:
    """Pad a complete message to a multiple of 64 bytes."""
    message = bytes(message)
    return message + padding_for_length(len(message))


def split_into_blocks(padded: bytes) -> List[bytes]:
    """Split a padded message into 512-bit (64-byte) blocks."""
    if len(padded) % BLOCK_SIZE != 0:
        raise ValueError(
            f"Padded message length must be a multiple of 64 bytes, got {len(padded)}"
        )
    return [bytes(padded[i : i + BLOCK_SIZE]) for i in range(0, len(padded), BLOCK_SIZE)]


def expand_message_schedule(block: bytes) -> Tuple[List[int], List[int]]:
    """Expand a 512-bit block into `W[0..67]` and `W'[0..63]`."""
    if len(block) != BLOCK_SIZE:
        raise ValueError(f"Expected 64-byte block, got {len(block)}")

    w = bytes_to_words(block) + [0] * 52

    # Each W[j] depends on earlier words, so j must increase.
    for j in range(16, 68):
        w[j] = (
            p1(w[j - 16] ^ w[j - 9] ^ _rotl(w[j - 3], 15))
            ^ _rotl(w[j - 13], 7)
            ^ w[j - 6]
        ) & MASK32

    w1 = [w[j] ^ w[j + 4] for j in range(64)]
    return w, w1


class SM3:
    """Incremental SM3 hash engine.

    An engine accepts data until `digest()` is called, after which it is
    finalized; `update()` and `digest()` then raise `UsageError` until
    `reset()` is called. Calling `digest()` on an engine that never received
    data returns the digest of the empty message.

    Instances are not thread-safe; give each concurrent computation its own
    engine.
    """

    name = "sm3"
    digest_size = DIGEST_SIZE
    block_size = BLOCK_SIZE

    def __init__(self, data: Optional[bytes] = None) -> None:
        self._state: Tuple[int, ...] = IV
        self._buffer = bytearray(BLOCK_SIZE)
        self._offset = 0
        self._length = 0
        self._blocks = 0
        self._finalized = False
        if data is not None:
            self.update(data)

    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def length(self) -> int:
        """Number of message bytes ingested so far."""
        return self._length

    def update(self, data: bytes, offset: int = 0, length: Optional[int] = None) -> "SM3":
        """Feed `data[offset:offset + length]` into the engine.

        `length` defaults to the rest of `data`. Returns the engine so calls
        can be chained.
        """
        self._check_accepting("update")
        view = _as_view(data)

        if length is None:
            length = len(view) - offset
        if offset < 0 or length < 0 or offset + length > len(view):
            raise ValueError(
                f"Window offset={offset} length={length} is outside data of {len(view)} bytes"
            )
        if self._length + length >= MAX_MESSAGE_BYTES:
            raise UsageError(
                f"Message length would exceed the SM3 limit of {MAX_MESSAGE_BYTES - 1} bytes"
            )

        self._absorb(view[offset : offset + length])
        self._length += length
        return self

    def digest(self, message: Optional[bytes] = None) -> bytes:
        """Finalize the engine and return the 32-byte digest.

        If `message` is given it is fed through `update()` first, so
        `SM3().digest(m)` is the one-shot digest of `m`.
        """
        if message is not None:
            self.update(message)
        self._check_accepting("digest")

        self._absorb(memoryview(padding_for_length(self._length)))
        assert self._offset == 0, "padding must end on a block boundary"

        self._finalized = True
        logger.debug(
            "SM3 finalized after %d bytes (%d blocks compressed)", self._length, self._blocks
        )
        return words_to_bytes(self._state)

    def reset(self) -> "SM3":
        """Return the engine to its initial, accepting state."""
        self._state = IV
        self._offset = 0
        self._length = 0
        self._blocks = 0
        self._finalized = False
        logger.debug("SM3 engine reset")
        return self

    def copy(self) -> "SM3":
        """Return an independent engine with the same state."""
        other = type(self).__new__(type(self))
        other._state = self._state
        other._buffer = bytearray(self._buffer)
        other._offset = self._offset
        other._length = self._length
        other._blocks = self._blocks
        other._finalized = self._finalized
        return other

    def _check_accepting(self, operation: str) -> None:
        if self._finalized:
            raise UsageError(f"Cannot {operation}() a finalized SM3 engine; call reset() first")

    def _absorb(self, view: memoryview) -> None:
        """Buffer `view`, compressing every block as soon as it is complete."""
        total = len(view)
        pos = 0

        if self._offset:
            take = min(BLOCK_SIZE - self._offset, total)
            self._buffer[self._offset : self._offset + take] = view[:take]
            self._offset += take
            pos = take
            if self._offset == BLOCK_SIZE:
                self._compress(self._buffer)
                self._offset = 0

        # Whole blocks skip the buffer.
        while total - pos >= BLOCK_SIZE:
            self._compress(view[pos : pos + BLOCK_SIZE])
            pos += BLOCK_SIZE

        rest = total - pos
        if rest:
            self._buffer[:rest] = view[pos:]
            self._offset = rest

    def _compress(self, block) -> None:
        ws, ws1 = expand_message_schedule(bytes(block))
        self._state = compress_block(self._state, ws, ws1)
        self._blocks += 1


def _as_view(data) -> memoryview:
    """Return a flat byte view of a bytes-like object."""
    if isinstance(data, str):
        raise TypeError("Strings must be encoded before hashing")
    return memoryview(data).cast("B")


def sm3_before(data: bytes) -> Tuple[Tuple[int, ...], List[Tuple[List[int], List[int]]]]:
    """Prepare everything needed before compression for a whole message.

    Returns the initial chaining value and the expanded `(W, W')` schedule of
    every padded block, so a caller can run its own loop:

        state, schedules = sm3_before(data)
        for ws, ws1 in schedules:
            state = compress_block(state, ws, ws1)
        digest = sm3_after(state)
    """
    padded = pad_message(data)
    schedules = [expand_message_schedule(block) for block in split_into_blocks(padded)]
    return IV, schedules


def sm3_after(state: Sequence[int]) -> bytes:
    """Convert a final chaining value into the 32-byte digest."""
    if len(state) != 8:
        raise ValueError(f"chaining value must have 8 words, got {len(state)}")
    return words_to_bytes(state)


def sm3_with_state_tracking(data: bytes) -> Tuple[bytes, List[Tuple[int, ...]]]:
    """Compute SM3 while recording the chaining value after every block.

    Returns:
        (digest, states)
        where states[i] is V(i+1), the chaining value after block i
    """
    state, schedules = sm3_before(data)
    states: List[Tuple[int, ...]] = []

    for ws, ws1 in schedules:
        state = compress_block(state, ws, ws1)
        states.append(state)

    return sm3_after(state), states


def sm3(data: bytes) -> bytes:
    """Compute the SM3 digest of `data`."""
    return SM3().digest(data)
