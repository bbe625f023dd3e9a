"""SM83 arithmetic, logic, rotate and bit operations.

Every operation takes plain integers and returns the result together with
the new value of the F register; `bit` returns only the new flags.
"""

from __future__ import annotations

from enum import IntFlag


class Flag(IntFlag):
    """Bits of the F register."""

    Z = 0x80
    N = 0x40
    H = 0x20
    C = 0x10


_Z = 0x80
_N = 0x40
_H = 0x20
_C = 0x10


def _zero(value: int) -> int:
    return _Z if value == 0 else 0


def _add_flags(a: int, n: int, total: int) -> int:
    return (
        (_H if (total ^ a ^ n) & 0x10 else 0)
        | _zero(total & 0xFF)
        | (_C if total & 0x100 else 0)
    )


def _sub_flags(a: int, n: int, total: int) -> int:
    return (
        (_H if (total ^ a ^ n) & 0x10 else 0)
        | (_C if total < 0 else 0)
        | _zero(total & 0xFF)
        | _N
    )


def add(a: int, n: int) -> tuple[int, int]:
    total = a + n
    return total & 0xFF, _add_flags(a, n, total)


def adc(a: int, n: int, f: int) -> tuple[int, int]:
    total = a + n + (1 if f & _C else 0)
    return total & 0xFF, _add_flags(a, n, total)


def sub(a: int, n: int) -> tuple[int, int]:
    """Subtract; also serves as compare when the result is discarded."""
    total = a - n
    return total & 0xFF, _sub_flags(a, n, total)


def sbc(a: int, n: int, f: int) -> tuple[int, int]:
    total = a - n - (1 if f & _C else 0)
    return total & 0xFF, _sub_flags(a, n, total)


def and_(a: int, n: int) -> tuple[int, int]:
    result = a & n & 0xFF
    return result, _zero(result) | _H


def or_(a: int, n: int) -> tuple[int, int]:
    result = (a | n) & 0xFF
    return result, _zero(result)


def xor(a: int, n: int) -> tuple[int, int]:
    result = (a ^ n) & 0xFF
    return result, _zero(result)


def inc(value: int, f: int) -> tuple[int, int]:
    result = (value + 1) & 0xFF
    flags = _zero(result) | (_H if (result & 0xF) == 0 else 0)
    return result, (f & _C) | flags


def dec(value: int, f: int) -> tuple[int, int]:
    result = (value - 1) & 0xFF
    flags = _zero(result) | _N | (_H if (result & 0xF) == 0xF else 0)
    return result, (f & _C) | flags


def daa(a: int, f: int) -> tuple[int, int]:
    """Decimal-adjust A after a BCD addition or subtraction."""
    total = a
    kept = f & (_N | _H | _C)
    if kept & _N:
        if kept & _H:
            total = (total - 6) & 0xFF
        if kept & _C:
            total -= 0x60
    else:
        if (total & 0xF) > 9 or kept & _H:
            total += 6
        if total > 0x9F or kept & _C:
            total += 0x60
    result = total & 0xFF
    return result, (kept & ~_H & 0xFF) | (_C if total & 0x100 else 0) | _zero(result)


def add_hl(hl: int, n: int, f: int) -> tuple[int, int]:
    total = hl + n
    flags = (
        (f & _Z)
        | (_H if (total ^ hl ^ n) & 0x1000 else 0)
        | (_C if total & 0x10000 else 0)
    )
    return total & 0xFFFF, flags


def add_sp(sp: int, n: int) -> tuple[int, int]:
    """Add a signed byte to SP; used by ADD SP,n and LD HL,SP+n."""
    n &= 0xFF
    offset = n - 0x100 if n & 0x80 else n
    flags = (_H if (sp & 0xF) + (n & 0xF) > 0xF else 0) | (
        _C if (sp & 0xFF) + n > 0xFF else 0
    )
    return (sp + offset) & 0xFFFF, flags


def rlca(a: int) -> tuple[int, int]:
    return ((a >> 7) | (a << 1)) & 0xFF, _C if a & 0x80 else 0


def rrca(a: int) -> tuple[int, int]:
    return ((a << 7) | (a >> 1)) & 0xFF, _C if a & 1 else 0


def rla(a: int, f: int) -> tuple[int, int]:
    return ((a << 1) | (1 if f & _C else 0)) & 0xFF, _C if a & 0x80 else 0


def rra(a: int, f: int) -> tuple[int, int]:
    return (a >> 1) | (0x80 if f & _C else 0), _C if a & 1 else 0


def rlc(value: int) -> tuple[int, int]:
    result = ((value >> 7) | (value << 1)) & 0xFF
    return result, _zero(result) | (_C if value & 0x80 else 0)


def rrc(value: int) -> tuple[int, int]:
    result = ((value << 7) | (value >> 1)) & 0xFF
    return result, _zero(result) | (_C if value & 1 else 0)


def rl(value: int, f: int) -> tuple[int, int]:
    result = ((value << 1) | (1 if f & _C else 0)) & 0xFF
    return result, _zero(result) | (_C if value & 0x80 else 0)


def rr(value: int, f: int) -> tuple[int, int]:
    result = (value >> 1) | (0x80 if f & _C else 0)
    return result, _zero(result) | (_C if value & 1 else 0)


def sla(value: int) -> tuple[int, int]:
    result = (value << 1) & 0xFF
    return result, _zero(result) | (_C if value & 0x80 else 0)


def sra(value: int) -> tuple[int, int]:
    result = (value >> 1) | (value & 0x80)
    return result, _zero(result) | (_C if value & 1 else 0)


def srl(value: int) -> tuple[int, int]:
    result = value >> 1
    return result, _zero(result) | (_C if value & 1 else 0)


def swap(value: int) -> tuple[int, int]:
    result = ((value << 4) | (value >> 4)) & 0xFF
    return result, _zero(result)


def bit(n: int, value: int, f: int) -> int:
    """Flags after testing bit n of value."""
    return (f & _C) | _H | _zero((1 << n) & value)