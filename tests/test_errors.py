import pytest

from dmgemu.errors import (
    CartridgeError,
    EmulatorError,
    MemoryTrapError,
    UndefinedOpcodeError,
)


def test_read_trap_message_names_address():
    error = MemoryTrapError(0xA123)
    assert str(error) == "Trap on memory read, [A123]"
    assert error.address == 0xA123
    assert error.value is None


def test_write_trap_message_names_address_and_value():
    error = MemoryTrapError(0xFEA0, 0x3C)
    assert "[FEA0]" in str(error)
    assert "<- 3C" in str(error)
    assert error.value == 0x3C


def test_undefined_opcode_message():
    error = UndefinedOpcodeError(0xD3, 0x0150)
    assert str(error) == "Undefined SM83 opcode D3 at PC = 0150"
    assert (error.opcode, error.pc) == (0xD3, 0x0150)


@pytest.mark.parametrize(
    ("error", "fragment"),
    [
        (CartridgeError("bad"), "bad"),
        (MemoryTrapError(0), "Trap on memory read"),
        (UndefinedOpcodeError(0xDB, 0), "Undefined SM83 opcode DB at PC = 0000"),
    ],
)
def test_all_errors_are_emulator_errors(error, fragment):
    with pytest.raises(EmulatorError) as caught:
        raise error
    assert caught.value is error
    assert fragment in str(caught.value)