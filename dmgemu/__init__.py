"""Emulator of the original monochrome handheld game console: SM83 processor,
memory and cartridge mappers, picture and sound units, and a pygame front end."""

__version__ = "0.1.0"