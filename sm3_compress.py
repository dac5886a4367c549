"""SM3 compression function (GB/T 32905-2016, section 5.3.3).

Given the working registers `(A, B, C, D, E, F, G, H)`, the round index `j`,
and the expanded message words `W[j]` and `W'[j]`, one round computes:

    SS1 = ((A <<< 12) + E + (T_j <<< (j mod 32))) <<< 7
    SS2 = SS1 ^ (A <<< 12)
    TT1 = FF_j(A, B, C) + D + SS2 + W'[j]
    TT2 = GG_j(E, F, G) + H + SS1 + W[j]

    D' = C
    C' = B <<< 9
    B' = A
    A' = TT1
    H' = G
    G' = F <<< 19
    F' = E
    E' = P0(TT2)

All additions are performed modulo 2**32. After 64 rounds the next chaining
value is `V ^ (A, B, C, D, E, F, G, H)` word-wise.
"""

from __future__ import annotations

from typing import Sequence, Tuple


MASK32 = 0xFFFFFFFF

# Initial chaining value IV.
IV: Tuple[int, ...] = (
    0x7380166F,
    0x4914B2B9,
    0x172442D7,
    0xDA8A0600,
    0xA96F30BC,
    0x163138AA,
    0xE38DEE4D,
    0xB0FB0E4E,
)

_T_LOW = 0x79CC4519
_T_HIGH = 0x7A879D8A

# Round constants T[0..63].
T_VALUES: Tuple[int, ...] = (_T_LOW,) * 16 + (_T_HIGH,) * 48


def _rotl(x: int, n: int) -> int:
    """Left-rotate a 32-bit word `x` by `n` bits.

    `n` is taken modulo 32, so a rotation by 32 leaves `x` unchanged.
    """
    x &= MASK32
    n &= 31
    return ((x << n) | (x >> (32 - n))) & MASK32


def round_constant(j: int) -> int:
    """Return T_j for round `j` in 0..63."""
    if not 0 <= j < 64:
        raise ValueError(f"round index must be in 0..63, got {j}")
    return T_VALUES[j]


def ff(j: int, x: int, y: int, z: int) -> int:
    """Boolean function FF_j: parity for rounds 0..15, majority afterwards."""
    if j < 16:
        return (x ^ y ^ z) & MASK32
    return ((x & y) | (x & z) | (y & z)) & MASK32


def gg(j: int, x: int, y: int, z: int) -> int:
    """Boolean function GG_j: parity for rounds 0..15, choose afterwards."""
    if j < 16:
        return (x ^ y ^ z) & MASK32
    return ((x & y) | ((~x) & z)) & MASK32


def p0(x: int) -> int:
    """Permutation P0 used in the compression function."""
    return (x ^ _rotl(x, 9) ^ _rotl(x, 17)) & MASK32


def p1(x: int) -> int:
    """Permutation P1 used in the message expansion."""
    return (x ^ _rotl(x, 15) ^ _rotl(x, 23)) & MASK32


def compression(
    a: int,
    b: int,
    c: int,
    d: int,
    e: int,
    f: int,
    g: int,
    h: int,
    j: int,
    w: int,
    w1: int,
) -> Tuple[int, int, int, int, int, int, int, int]:
    """Perform one SM3 compression round.

    Parameters
    ----------
    a, b, c, d, e, f, g, h : int
        32-bit words representing the current working state.
    j : int
        Round index in 0..63; selects T_j, FF_j and GG_j.
    w : int
        Expanded message word `W[j]`.
    w1 : int
        Expanded message word `W'[j]`.

    Returns
    -------
    (a_new, b_new, c_new, d_new, e_new, f_new, g_new, h_new) : tuple[int, ...]
        Updated working state after one round, all reduced modulo 2**32.
    """
    a_rot = _rotl(a, 12)

    # 1. SS1 / SS2
    ss1 = _rotl((a_rot + e + _rotl(round_constant(j), j % 32)) & MASK32, 7)
    ss2 = ss1 ^ a_rot

    # 2. TT1 / TT2
    tt1 = (ff(j, a, b, c) + d + ss2 + w1) & MASK32
    tt2 = (gg(j, e, f, g) + h + ss1 + w) & MASK32

    # 3. Shift registers
    d_new = c
    c_new = _rotl(b, 9)
    b_new = a
    a_new = tt1
    h_new = g
    g_new = _rotl(f, 19)
    f_new = e
    e_new = p0(tt2)

    return (
        a_new & MASK32,
        b_new & MASK32,
        c_new & MASK32,
        d_new & MASK32,
        e_new & MASK32,
        f_new & MASK32,
        g_new & MASK32,
        h_new & MASK32,
    )


def compress64(
    a: int,
    b: int,
    c: int,
    d: int,
    e: int,
    f: int,
    g: int,
    h: int,
    ws: Sequence[int],
    ws1: Sequence[int],
) -> Tuple[int, int, int, int, int, int, int, int]:
    """Run all 64 SM3 rounds for one block.

    Parameters
    ----------
    a, b, c, d, e, f, g, h : int
        Initial working state words (the current chaining value).
    ws : Sequence[int]
        The expanded words `W[0..67]`; only `W[0..63]` are read here.
    ws1 : Sequence[int]
        The 64 words `W'[0..63]`.

    Returns
    -------
    (a, b, c, d, e, f, g, h) : tuple[int, ...]
        Working state after round 63, before the feed-forward XOR.
    """
    if len(ws) < 64:
        raise ValueError(f"compress64 expects at least 64 W words, got {len(ws)}")
    if len(ws1) != 64:
        raise ValueError(f"compress64 expects 64 W' words, got {len(ws1)}")

    state = (a, b, c, d, e, f, g, h)
    for j in range(64):
        state = compression(*state, j, ws[j], ws1[j])

    return state


def compress_block(
    state: Sequence[int],
    ws: Sequence[int],
    ws1: Sequence[int],
) -> Tuple[int, int, int, int, int, int, int, int]:
    """Compute the next chaining value CF(V, B) from an expanded block."""
    if len(state) != 8:
        raise ValueError(f"chaining value must have 8 words, got {len(state)}")

    worked = compress64(*state, ws, ws1)
    return tuple((v ^ x) & MASK32 for v, x in zip(state, worked))
