"""Exceptions raised by the emulator."""

from __future__ import annotations


class EmulatorError(Exception):
    """Base class for every fatal emulator condition."""


class CartridgeError(EmulatorError):
    """A ROM image cannot be loaded or is not supported."""


class MemoryTrapError(EmulatorError):
    """An access hit an address that has nothing mapped to it."""

    def __init__(self, address: int, value: int | None = None) -> None:
        self.address = address
        self.value = value
        if value is None:
            message = f"Trap on memory read, [{address:X}]"
        else:
            message = f"Trap on memory write, [{address:X}] <- {value:X}"
        super().__init__(message)


class UndefinedOpcodeError(EmulatorError):
    """The CPU fetched an opcode the SM83 does not implement."""

    def __init__(self, opcode: int, pc: int) -> None:
        self.opcode = opcode
        self.pc = pc
        super().__init__(f"Undefined SM83 opcode {opcode:02X} at PC = {pc:04X}")