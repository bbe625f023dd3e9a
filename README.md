# dmgemu

An emulator of the original monochrome handheld game console. It interprets
the SM83 processor, draws the picture line by line, synthesises the four sound
channels, and supports plain ROM cartridges as well as the MBC1, MBC2, MBC3
and MBC5 bank controllers. The window, keyboard and sound output use pygame.

## Installing

```
pip install .
```

To run the tests as well:

```
pip install .[test]
pytest
```

## Running a game

```
dmgemu path/to/game.gb
```

The window shows the 160×144 screen scaled up. Without a ROM argument the
machine starts with no cartridge inserted.

Options:

| Option        | Effect                                           |
|---------------|--------------------------------------------------|
| `--scale N`   | Pixel scale factor (default 4, at least 1)       |
| `--border N`  | Border width in screen pixels (default 0)        |
| `--no-limit`  | Do not hold the frame rate at 60 fps             |
| `--no-blend`  | Turn off the LCD ghosting effect                 |
| `--skip-boot` | Start the cartridge at 0x100 without the boot ROM|
| `--mute`      | Start with sound off                             |

Battery-backed cartridge RAM is read from a `<title>.sav` file in the current
directory when the game is loaded, and written back there when the window is
closed. The window caption shows the game title and the frame rate.

If the processor meets an opcode the SM83 does not have, the register map is
printed and the command exits with status 1.

### Keys

| Key         | Button                          |
|-------------|---------------------------------|
| Arrow keys  | D-pad                           |
| X           | A                               |
| Z           | B                               |
| A           | Select                          |
| S           | Start                           |
| Return      | All four buttons                |
| F8          | Toggle the 60 fps limit         |
| F9          | Toggle the LCD ghosting effect  |
| F12         | Toggle sound                    |

## Using it as a library

The parts of the machine can be used on their own:

- `dmgemu.cartridge.Cartridge` loads a ROM image (`from_file`, or `empty()`
  for no cartridge), reads its header (`RomHeader`) and attaches the matching
  bank controller (`create_mapper`). Unknown cartridge types and size codes
  raise `CartridgeError`.
- `dmgemu.machine.GameBoy` ties the processor, memory, picture and sound
  together; `run_frame()` runs one full frame and returns its 0xRRGGBB pixels,
  `register_dump()` gives a readable view of the processor and hardware
  registers, and `shutdown()` saves battery-backed RAM.
- `dmgemu.cpu.Cpu` is the SM83 interpreter; `step()` runs one instruction and
  `execute_until()` runs up to a clock value.
- `dmgemu.memory.Memory` is the 64 KiB address space with the I/O registers,
  DMA and the DIV/TIMA counters (`Timer`).
- `dmgemu.ppu.Ppu` renders background, window and sprites line by line.
- `dmgemu.apu.Apu` produces stereo samples into any object with a
  `push(left, right)` method, such as `dmgemu.sound.SampleRing`.
- `dmgemu.alu` holds the arithmetic and bit operations of the processor as
  plain functions that return the new value and flags.
- `dmgemu.pad.Joypad` keeps track of pressed `Button`s.
- `dmgemu.errors` defines `EmulatorError` and its subclasses.

```python
from dmgemu.cartridge import Cartridge
from dmgemu.machine import GameBoy

cart = Cartridge.from_file("game.gb", ".")
gb = GameBoy(cart, None, 44100, True)
gb.run_frame()
print(gb.register_dump())
gb.shutdown()
```

## What it does not do

- The MBC3 real-time clock is not emulated; writes to its registers are ignored.
- The timer counters can be read and written, but the timer interrupt is never
  requested.
- There is no serial link port and no colour-model support.
- There is no file chooser: the ROM is given on the command line.