"""The whole console: CPU, memory, picture and sound units driven line by line."""

from __future__ import annotations

from .apu import Apu, SampleSink
from .cartridge import Cartridge
from .cpu import Cpu
from .memory import R_BANK, R_IF, R_LY, R_LYC, TIMER_OFF, Memory
from .pad import Joypad
from .ppu import Ppu

_MASK32 = 0xFFFFFFFF
_IO = 0x100
R_STAT = _IO + 0x41

INT_VBLANK = 0x01
INT_LCDSTAT = 0x02

VISIBLE_LINES = 144
VBLANK_LINES = 10
OAM_CYCLES = 20
TRANSFER_CYCLES = 43
HBLANK_CYCLES = 51
LINE_CYCLES = OAM_CYCLES + TRANSFER_CYCLES + HBLANK_CYCLES

# STAT bit that enables an interrupt on entering each LCD mode.
_MODE_INTERRUPT_ENABLE = (0x08, 0x10, 0x20, 0x00)

_WRAP_LIMIT = 4 << 28
_WRAP_DELTA = 3 << 28

DEFAULT_RATE = 44100


class GameBoy:
    """A DMG console with a cartridge inserted, ready to run frame by frame."""

    def __init__(
        self,
        cartridge: Cartridge | None = None,
        sink: SampleSink | None = None,
        rate: int = DEFAULT_RATE,
        skip_boot_rom: bool = False,
    ) -> None:
        self.cartridge = cartridge if cartridge is not None else Cartridge.empty()
        self.joypad = Joypad()
        self.ppu = Ppu()
        self.apu = Apu(memoryview(self.ppu.hram)[_IO:], sink, rate, 0)
        self.memory = Memory(
            self.cartridge, self.ppu, self.apu, self.joypad, clock=self._now
        )
        self.memory.clear_ram(randomize=True)
        self.cpu = Cpu(self.memory)
        self.memory.lyc_hook = self.check_lyc
        self.apu.reset(0)
        self.event_clock = 0
        if skip_boot_rom:
            self.memory.hram[R_BANK] = 1
            self.cpu.pc = 0x100

    def _now(self) -> int:
        return self.cpu.clock

    # ------------------------------------------------------------------
    # LCD status

    def _request_stat_interrupt(self) -> None:
        self.memory.hram[R_IF] |= INT_LCDSTAT
        self.cpu.check_interrupts()

    def _set_mode(self, mode: int) -> None:
        hram = self.memory.hram
        hram[R_STAT] = (hram[R_STAT] & 0xFC) | mode
        if hram[R_STAT] & _MODE_INTERRUPT_ENABLE[mode]:
            self._request_stat_interrupt()

    def check_lyc(self) -> None:
        """Update the LY=LYC coincidence bit and raise its interrupt on a match."""
        hram = self.memory.hram
        stat = hram[R_STAT]
        new = stat & ~4 & 0xFF
        if hram[R_LYC] == hram[R_LY]:
            new |= 4
            if stat < new and new & 0x40:
                self._request_stat_interrupt()
        hram[R_STAT] = new

    # ------------------------------------------------------------------
    # execution

    def _execute(self, cycles: int) -> None:
        self.event_clock = (self.event_clock + cycles) & _MASK32
        self.cpu.execute_until(self.event_clock)

    def _next_line(self) -> None:
        hram = self.memory.hram
        hram[R_LY] = (hram[R_LY] + 1) & 0xFF

    def run_frame(self) -> list[int]:
        """Run 154 scanlines and return the frame's 0xRRGGBB pixels."""
        hram = self.memory.hram
        hram[R_LY] = 0
        for _ in range(VISIBLE_LINES):
            self.check_lyc()
            self._set_mode(2)
            self.ppu.enumerate_sprites()
            self._execute(OAM_CYCLES)
            self._set_mode(3)
            self.ppu.render_line()
            self._execute(TRANSFER_CYCLES)
            self._set_mode(0)
            self._execute(HBLANK_CYCLES)
            self._next_line()

        hram[R_IF] |= INT_VBLANK
        self.cpu.check_interrupts()
        self._set_mode(1)
        frame = self.ppu.vsync()
        for _ in range(VBLANK_LINES):
            self.check_lyc()
            self._execute(LINE_CYCLES)
            self._next_line()

        if self.event_clock > _WRAP_LIMIT:
            self._wrap_clocks()
        self.apu.mix(self.cpu.clock)
        return frame

    def _wrap_clocks(self) -> None:
        self.cpu.clock = (self.cpu.clock - _WRAP_DELTA) & _MASK32
        self.event_clock = (self.event_clock - _WRAP_DELTA) & _MASK32
        self.apu.rebase(_WRAP_DELTA)
        timer = self.memory.timer
        if timer.deadline < TIMER_OFF:
            timer.deadline = (timer.deadline - _WRAP_DELTA) & _MASK32

    # ------------------------------------------------------------------
    # diagnostics and shutdown

    def register_dump(self) -> str:
        """Text listing of CPU registers and hardware registers."""
        cpu = self.cpu
        hram = self.memory.hram

        def io(address: int) -> int:
            return hram[_IO + (address & 0xFF)]

        parts = [
            "AF=%.4X\t\tBC=%.4X\t\tDE=%.4X\nHL=%.4X\n" % (cpu.af, cpu.bc, cpu.de, cpu.hl),
            "SP=%.4X\t\tPC=%.4X\t\tCLK=%d\n\n" % (cpu.sp, cpu.pc, cpu.clock),
            "P1=%.2X\t\tTIMA=%.2X\t\tIF=%.2X\n" % (io(0xFF00), io(0xFF05), io(0xFF0F)),
            "SB=%.2X\t\tTMA=%.2X\t\tIE=%.2X\n" % (io(0xFF01), io(0xFF06), io(0xFFFF)),
            "SC=%.2X\t\tTAC=%.2X\n" % (io(0xFF02), io(0xFF07)),
            "DIV=%.2X\n\n" % io(0xFF04),
            "NR10=%.2X\t\tNR21=%.2X\t\tNR30=%.2X\n" % (io(0xFF10), io(0xFF16), io(0xFF1A)),
            "NR11=%.2X\t\tNR22=%.2X\t\tNR31=%.2X\n" % (io(0xFF11), io(0xFF17), io(0xFF1B)),
            "NR12=%.2X\t\tNR23=%.2X\t\tNR32=%.2X\n" % (io(0xFF12), io(0xFF18), io(0xFF1C)),
            "NR13=%.2X\t\tNR24=%.2X\t\tNR33=%.2X\n" % (io(0xFF13), io(0xFF19), io(0xFF1D)),
            "NR14=%.2X\t\t\t\tNR34=%.2X\n\n" % (io(0xFF14), io(0xFF1E)),
            "NR41=%.2X\t\tNR50=%.2X\n" % (io(0xFF20), io(0xFF24)),
            "NR42=%.2X\t\tNR51=%.2X\n" % (io(0xFF21), io(0xFF25)),
            "NR43=%.2X\t\tNR52=%.2X\n" % (io(0xFF22), io(0xFF26)),
            "NR40=%.2X\n\n" % io(0xFF23),
            "WAVE:\n",
            "".join("%.2X " % io(0xFF30 + i) for i in range(16)),
            "\n\n",
            "LCDC=%.2X\tLY=%.2X\t\tBGP=%.2X\n" % (io(0xFF40), io(0xFF44), io(0xFF47)),
            "STAT=%.2X \tLYC=%.2X\t\tOBP0=%.2X\n" % (io(0xFF41), io(0xFF45), io(0xFF48)),
            "SCX=%.2X\t\tWX=%.2X\t\tOBP1=%.2X\n" % (io(0xFF43), io(0xFF4B), io(0xFF49)),
            "SCY=%.2X\t\tWY=%.2X\n" % (io(0xFF42), io(0xFF4A)),
        ]
        return "".join(parts)

    def shutdown(self) -> None:
        """Persist battery-backed cartridge RAM, if the cartridge has any."""
        if self.cartridge.battery_ram_size():
            self.cartridge.save_sram()