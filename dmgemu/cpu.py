"""SM83 processor core: registers, instruction decoding and interrupts.

The clock counts machine cycles (1048576 Hz). `execute_until` runs
instructions until the clock reaches a limit; an instruction may carry
it past the limit by a few cycles.
"""

from __future__ import annotations

from . import alu
from .errors import UndefinedOpcodeError
from .memory import R_IE, R_IF, Memory

_MASK32 = 0xFFFFFFFF

_Z = int(alu.Flag.Z)
_N = int(alu.Flag.N)
_H = int(alu.Flag.H)
_C = int(alu.Flag.C)

# Indices of the 8-bit registers, in the order the opcodes encode them.
# Slot 6 stands for (HL) in opcodes; it stores F in the register file.
_B, _C_REG, _D, _E, _H_REG, _L, _F, _A = range(8)
_HL_INDIRECT = 6

BASE_CYCLES = (
    1, 3, 2, 2, 1, 1, 2, 1, 5, 2, 2, 2, 1, 1, 2, 1,
    1, 3, 2, 2, 1, 1, 2, 1, 3, 2, 2, 2, 1, 1, 2, 1,
    3, 3, 2, 2, 1, 1, 2, 1, 3, 2, 2, 2, 1, 1, 2, 1,
    3, 3, 2, 2, 3, 3, 3, 1, 3, 2, 2, 2, 1, 1, 2, 1,
    1, 1, 1, 1, 1, 1, 2, 1, 1, 1, 1, 1, 1, 1, 2, 1,
    1, 1, 1, 1, 1, 1, 2, 1, 1, 1, 1, 1, 1, 1, 2, 1,
    1, 1, 1, 1, 1, 1, 2, 1, 1, 1, 1, 1, 1, 1, 2, 1,
    2, 2, 2, 2, 2, 2, 1, 2, 1, 1, 1, 1, 1, 1, 2, 1,
    1, 1, 1, 1, 1, 1, 2, 1, 1, 1, 1, 1, 1, 1, 2, 1,
    1, 1, 1, 1, 1, 1, 2, 1, 1, 1, 1, 1, 1, 1, 2, 1,
    1, 1, 1, 1, 1, 1, 2, 1, 1, 1, 1, 1, 1, 1, 2, 1,
    1, 1, 1, 1, 1, 1, 2, 1, 1, 1, 1, 1, 1, 1, 2, 1,
    5, 3, 4, 4, 6, 4, 2, 4, 5, 4, 4, 0, 6, 6, 2, 4,
    5, 3, 4, 0, 6, 4, 2, 4, 5, 4, 4, 0, 6, 0, 2, 4,
    3, 3, 2, 0, 0, 4, 2, 4, 4, 1, 4, 0, 0, 0, 2, 4,
    3, 3, 2, 1, 0, 4, 2, 4, 3, 2, 4, 1, 0, 0, 2, 4,
)

# Every CB-prefixed instruction takes 2 cycles, except those on (HL):
# BIT takes 3, the read-modify-write ones take 4.
CB_CYCLES = tuple(
    (3 if 0x40 <= op < 0x80 else 4) if op & 7 == _HL_INDIRECT else 2
    for op in range(256)
)

UNDEFINED_OPCODES = frozenset(
    {0xD3, 0xDB, 0xDD, 0xE3, 0xE4, 0xEB, 0xEC, 0xED, 0xF4, 0xFC, 0xFD}
)

# ALU group (opcodes 0x80-0xBF and the immediate forms): ADD ADC SUB SBC AND XOR OR CP.
_ALU_OPS = (
    lambda a, n, f: alu.add(a, n),
    alu.adc,
    lambda a, n, f: alu.sub(a, n),
    alu.sbc,
    lambda a, n, f: alu.and_(a, n),
    lambda a, n, f: alu.xor(a, n),
    lambda a, n, f: alu.or_(a, n),
    lambda a, n, f: alu.sub(a, n),
)
_ALU_CP = 7

# CB 0x00-0x3F: RLC RRC RL RR SLA SRA SWAP SRL.
_SHIFT_OPS = (
    lambda v, f: alu.rlc(v),
    lambda v, f: alu.rrc(v),
    alu.rl,
    alu.rr,
    lambda v, f: alu.sla(v),
    lambda v, f: alu.sra(v),
    lambda v, f: alu.swap(v),
    lambda v, f: alu.srl(v),
)


def _signed(byte: int) -> int:
    return byte - 0x100 if byte & 0x80 else byte


def _reg8(index: int) -> property:
    def getter(self: Cpu) -> int:
        return self._r[index]

    def setter(self: Cpu, value: int) -> None:
        self._r[index] = value & 0xFF

    return property(getter, setter)


def _reg16(high: int, low: int) -> property:
    def getter(self: Cpu) -> int:
        return (self._r[high] << 8) | self._r[low]

    def setter(self: Cpu, value: int) -> None:
        self._r[high] = (value >> 8) & 0xFF
        self._r[low] = value & 0xFF

    return property(getter, setter)


class Cpu:
    """SM83 interpreter working on a `Memory` address space."""

    a = _reg8(_A)
    f = _reg8(_F)
    b = _reg8(_B)
    c = _reg8(_C_REG)
    d = _reg8(_D)
    e = _reg8(_E)
    h = _reg8(_H_REG)
    l = _reg8(_L)  # noqa: E741
    af = _reg16(_A, _F)
    bc = _reg16(_B, _C_REG)
    de = _reg16(_D, _E)
    hl = _reg16(_H_REG, _L)

    def __init__(self, memory: Memory) -> None:
        self.memory = memory
        self._r = bytearray(8)
        self.sp = 0
        self.pc = 0
        self.clock = 0
        self.ime = False
        self.halted = False
        memory.interrupt_hook = self.check_interrupts
        self.reset()

    def reset(self) -> None:
        """Start again from address 0 with interrupts disabled."""
        self.pc = 0
        self.halted = False
        self.ime = False

    # ------------------------------------------------------------------
    # interrupts

    def check_interrupts(self) -> bool:
        """Dispatch the highest-priority pending interrupt if enabled."""
        if not self.ime:
            return False
        hram = self.memory.hram
        pending = hram[R_IE] & hram[R_IF] & 0x1F
        if not pending:
            return False
        lowest = pending & -pending
        hram[R_IF] &= ~lowest & 0xFF
        self.ime = False
        self.halted = False
        self._push(self.pc)
        self.pc = 0x40 + 8 * (lowest.bit_length() - 1)
        return True

    # ------------------------------------------------------------------
    # execution

    def execute_until(self, limit: int) -> None:
        """Run instructions until the clock reaches `limit`."""
        limit &= _MASK32
        if self.halted:
            self.clock = limit
            return
        while self.clock < limit:
            self.step()
            if self.halted:
                self.clock = limit
                return

    def step(self) -> int:
        """Execute one instruction and return the cycles it took."""
        if self.halted:
            return 0
        opcode = self._fetch()
        cycles = self._execute(opcode, BASE_CYCLES[opcode])
        self.clock = (self.clock + cycles) & _MASK32
        return cycles

    # ------------------------------------------------------------------
    # helpers

    def _fetch(self) -> int:
        value = self.memory.read(self.pc)
        self.pc = (self.pc + 1) & 0xFFFF
        return value

    def _fetch16(self) -> int:
        low = self._fetch()
        return low | (self._fetch() << 8)

    def _push(self, value: int) -> None:
        self.sp = (self.sp - 1) & 0xFFFF
        self.memory.write(self.sp, (value >> 8) & 0xFF)
        self.sp = (self.sp - 1) & 0xFFFF
        self.memory.write(self.sp, value & 0xFF)

    def _pop(self) -> int:
        low = self.memory.read(self.sp)
        self.sp = (self.sp + 1) & 0xFFFF
        high = self.memory.read(self.sp)
        self.sp = (self.sp + 1) & 0xFFFF
        return low | (high << 8)

    def _get8(self, index: int) -> int:
        if index == _HL_INDIRECT:
            return self.memory.read(self.hl)
        return self._r[index]

    def _set8(self, index: int, value: int) -> None:
        if index == _HL_INDIRECT:
            self.memory.write(self.hl, value & 0xFF)
        else:
            self._r[index] = value & 0xFF

    def _pair(self, index: int) -> int:
        return (self.bc, self.de, self.hl, self.sp)[index]

    def _set_pair(self, index: int, value: int) -> None:
        value &= 0xFFFF
        if index == 0:
            self.bc = value
        elif index == 1:
            self.de = value
        elif index == 2:
            self.hl = value
        else:
            self.sp = value

    def _condition(self, opcode: int) -> bool:
        cc = (opcode >> 3) & 3
        flag = _Z if cc < 2 else _C
        is_set = bool(self.f & flag)
        return is_set if cc & 1 else not is_set

    def _alu(self, operation: int, operand: int) -> None:
        result, flags = _ALU_OPS[operation](self.a, operand, self.f)
        if operation != _ALU_CP:
            self.a = result
        self.f = flags

    def _jump_relative(self, taken: bool, cycles: int) -> int:
        if taken:
            offset = _signed(self._fetch())
            self.pc = (self.pc + offset) & 0xFFFF
            return cycles
        self.pc = (self.pc + 1) & 0xFFFF
        return cycles - 1

    # ------------------------------------------------------------------
    # decoding

    def _execute(self, opcode: int, cycles: int) -> int:
        if 0x40 <= opcode < 0x80:
            if opcode == 0x76:
                self.halted = True
            else:
                self._set8((opcode >> 3) & 7, self._get8(opcode & 7))
            return cycles
        if 0x80 <= opcode < 0xC0:
            self._alu((opcode >> 3) & 7, self._get8(opcode & 7))
            return cycles
        if opcode < 0x40:
            return self._execute_low(opcode, cycles)
        return self._execute_high(opcode, cycles)

    def _execute_low(self, opcode: int, cycles: int) -> int:
        column = opcode & 7
        row = (opcode >> 3) & 7
        pair = opcode >> 4

        if column == 4:
            value, flags = alu.inc(self._get8(row), self.f)
            self._set8(row, value)
            self.f = flags
        elif column == 5:
            value, flags = alu.dec(self._get8(row), self.f)
            self._set8(row, value)
            self.f = flags
        elif column == 6:
            self._set8(row, self._fetch())
        elif column == 7:
            self._execute_accumulator(row)
        elif column == 1:
            if opcode & 8:
                self.hl, self.f = alu.add_hl(self.hl, self._pair(pair), self.f)
            else:
                self._set_pair(pair, self._fetch16())
        elif column == 3:
            step = -1 if opcode & 8 else 1
            self._set_pair(pair, self._pair(pair) + step)
        elif column == 2:
            address = (self.bc, self.de, self.hl, self.hl)[pair]
            if opcode & 8:
                self.a = self.memory.read(address)
            else:
                self.memory.write(address, self.a)
            if pair == 2:
                self.hl = (self.hl + 1) & 0xFFFF
            elif pair == 3:
                self.hl = (self.hl - 1) & 0xFFFF
        elif opcode == 0x08:
            self.memory.write16(self._fetch16(), self.sp)
        elif opcode == 0x10:
            self._fetch()
        elif opcode == 0x18:
            cycles = self._jump_relative(True, cycles)
        elif opcode >= 0x20:
            cycles = self._jump_relative(self._condition(opcode), cycles)
        return cycles

    def _execute_accumulator(self, row: int) -> None:
        if row == 0:
            self.a, self.f = alu.rlca(self.a)
        elif row == 1:
            self.a, self.f = alu.rrca(self.a)
        elif row == 2:
            self.a, self.f = alu.rla(self.a, self.f)
        elif row == 3:
            self.a, self.f = alu.rra(self.a, self.f)
        elif row == 4:
            self.a, self.f = alu.daa(self.a, self.f)
        elif row == 5:
            self.a = ~self.a
            self.f |= _H | _N
        elif row == 6:
            self.f = (self.f & (_C | _Z)) | _C
        else:
            self.f = (self.f & (_C | _Z)) ^ _C

    def _execute_high(self, opcode: int, cycles: int) -> int:
        if opcode in UNDEFINED_OPCODES:
            self.pc = (self.pc - 1) & 0xFFFF
            raise UndefinedOpcodeError(opcode, self.pc)

        column = opcode & 7
        memory = self.memory

        if column == 7:
            self._push(self.pc)
            self.pc = opcode & 0x38
        elif column == 6:
            self._alu((opcode >> 3) & 7, self._fetch())
        elif opcode & 0xCF == 0xC1:
            value = self._pop()
            index = (opcode >> 4) & 3
            if index == 3:
                self.a = value >> 8
                self.f = value & (_Z | _N | _H | _C)
            else:
                self._set_pair(index, value)
        elif opcode & 0xCF == 0xC5:
            index = (opcode >> 4) & 3
            self._push(self.af if index == 3 else self._pair(index))
        elif opcode == 0xC9:
            self.pc = self._pop()
        elif opcode == 0xD9:
            self.pc = self._pop()
            self.ime = True
            self.check_interrupts()
        elif opcode & 0xE7 == 0xC0:
            if self._condition(opcode):
                self.pc = self._pop()
            else:
                cycles -= 3
        elif opcode == 0xC3:
            self.pc = self._fetch16()
        elif opcode & 0xE7 == 0xC2:
            if self._condition(opcode):
                self.pc = self._fetch16()
            else:
                self.pc = (self.pc + 2) & 0xFFFF
                cycles -= 1
        elif opcode == 0xCD or (opcode & 0xE7 == 0xC4 and self._condition(opcode)):
            target = self._fetch16()
            self._push(self.pc)
            self.pc = target
        elif opcode & 0xE7 == 0xC4:
            self.pc = (self.pc + 2) & 0xFFFF
            cycles -= 3
        elif opcode == 0xCB:
            cycles = self._execute_cb(self._fetch())
        elif opcode == 0xE0:
            memory.write(0xFF00 + self._fetch(), self.a)
        elif opcode == 0xE2:
            memory.write(0xFF00 + self.c, self.a)
        elif opcode == 0xE8:
            self.sp, self.f = alu.add_sp(self.sp, self._fetch())
        elif opcode == 0xE9:
            self.pc = self.hl
        elif opcode == 0xEA:
            memory.write(self._fetch16(), self.a)
        elif opcode == 0xF0:
            self.a = memory.read(0xFF00 + self._fetch())
        elif opcode == 0xF2:
            self.a = memory.read(0xFF00 + self.c)
        elif opcode == 0xF3:
            self.ime = False
        elif opcode == 0xF8:
            self.hl, self.f = alu.add_sp(self.sp, self._fetch())
        elif opcode == 0xF9:
            self.sp = self.hl
        elif opcode == 0xFA:
            self.a = memory.read(self._fetch16())
        elif opcode == 0xFB:
            self.ime = True
            self.check_interrupts()
        return cycles

    def _execute_cb(self, opcode: int) -> int:
        index = opcode & 7
        n = (opcode >> 3) & 7
        group = opcode >> 6
        if group == 0:
            value, flags = _SHIFT_OPS[n](self._get8(index), self.f)
            self._set8(index, value)
            self.f = flags
        elif group == 1:
            self.f = alu.bit(n, self._get8(index), self.f)
        elif group == 2:
            self._set8(index, self._get8(index) & ~(1 << n))
        else:
            self._set8(index, self._get8(index) | (1 << n))
        return CB_CYCLES[opcode]