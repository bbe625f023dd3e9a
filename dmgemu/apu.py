"""Four-channel sound unit: register file, envelopes, sweep and mixing.

The APU clock runs at 1048576 Hz, the same rate as the CPU machine clock.
Register numbers are the low byte of the I/O address (0xFF10 -> 0x10).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import MutableSequence, Protocol

SO_FREQ = 1 << 20
_MASK32 = 0xFFFFFFFF
_STEP_BASE = SO_FREQ << 11  # 2**31, numerator of every pitch step

NR10 = 0x10
NR11 = 0x11
NR12 = 0x12
NR13 = 0x13
NR14 = 0x14
NR21 = 0x16
NR22 = 0x17
NR23 = 0x18
NR24 = 0x19
NR30 = 0x1A
NR31 = 0x1B
NR32 = 0x1C
NR33 = 0x1D
NR34 = 0x1E
NR41 = 0x20
NR42 = 0x21
NR43 = 0x22
NR44 = 0x23
NR50 = 0x24
NR51 = 0x25
NR52 = 0x26
WAVE_START = 0x30
WAVE_END = 0x40

DMG_WAVE = bytes(
    [
        0xAC, 0xDD, 0xDA, 0x48,
        0x36, 0x02, 0xCF, 0x16,
        0x2C, 0x04, 0xE5, 0x2C,
        0xAC, 0xDD, 0xDA, 0x48,
    ]
)

SQUARE_WAVES = (
    bytes([0, 0, 0xFF, 0, 0, 0, 0, 0]),
    bytes([0, 0xFF, 0xFF, 0, 0, 0, 0, 0]),
    bytes([0xFF, 0xFF, 0xFF, 0xFF, 0, 0, 0, 0]),
    bytes([0xFF, 0, 0, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF]),
)

NOISE_DIVISORS = (1, 2, 4, 6, 8, 10, 12, 14)

_ENVELOPE_REGISTERS = ((0, NR12), (1, NR22), (3, NR42))

_MIN_RATE = 64


class SampleSink(Protocol):
    def push(self, left: int, right: int) -> None: ...


def make_noise(bits: int) -> bytes:
    """Return the output of a `bits`-wide LFSR packed 8 bits per byte, MSB first."""
    if bits < 3:
        raise ValueError("noise register must be at least 3 bits wide")
    counter = (1 << bits) - 1
    top = bits - 1
    out = bytearray()
    for _ in range(1 << (bits - 3)):
        acc = 0
        for _ in range(8):
            acc = (acc << 1) | (counter & 1)
            shifted = counter >> 1
            counter = shifted | (((shifted ^ counter) & 1) << top)
        out.append(acc & 0xFF)
    return bytes(out)


@dataclass
class _Channel:
    on: bool = False
    pos: int = 0
    cnt: int = 0
    encnt: int = 0
    swcnt: int = 0
    freq: int = 0
    swfreq: int = 0
    envol: int = 0


class Apu:
    """Sound generator driven by the machine clock.

    `io` is the mutable 256-byte view of the 0xFF00-0xFFFF register page,
    `sink` receives (left, right) samples through `push`, or is None to
    discard them; `rate` is the output sample rate in Hz.
    """

    def __init__(
        self,
        io: MutableSequence[int] | None = None,
        sink: SampleSink | None = None,
        rate: int = 44100,
        now: int = 0,
    ) -> None:
        if rate < _MIN_RATE:
            raise ValueError(f"output rate must be at least {_MIN_RATE} Hz")
        self.io = io if io is not None else bytearray(0x100)
        self.sink = sink
        self.rate = rate
        self.noise7 = make_noise(7)
        self.noise15 = make_noise(15)
        self.reset(now)

    # ------------------------------------------------------------------
    # state control

    def reset(self, now: int) -> None:
        """Restore power-on state with the sample clock starting at `now`."""
        self.channels = [_Channel() for _ in range(4)]
        self.rate_hi = SO_FREQ // self.rate
        self.rate_lo = ((SO_FREQ - self.rate_hi * self.rate) << 16) // self.rate
        self.clock_frac = 0
        self.clock = now & _MASK32
        self.next_change = ((now & ~0xFFF) + 0x1000) & _MASK32
        self.wave = bytearray(DMG_WAVE)
        self.io[WAVE_START:WAVE_END] = DMG_WAVE
        self.power_off()
        self.io[NR52] |= 0x80

    def power_off(self) -> None:
        """Silence every channel and load the registers' power-off values."""
        self.channels = [_Channel() for _ in range(4)]
        io = self.io
        io[NR10] = 0x80
        io[NR11] = 0xBF
        io[NR12] = 0xF3
        io[NR14] = 0xBF
        io[NR21] = 0x3F
        io[NR22] = 0x00
        io[NR24] = 0xBF
        io[NR30] = 0x7F
        io[NR31] = 0xFF
        io[NR32] = 0x9F
        io[NR33] = 0xBF
        io[NR41] = 0xFF
        io[NR42] = 0x00
        io[NR43] = 0x00
        io[NR44] = 0xBF
        io[NR50] = 0x77
        io[NR51] = 0xF3
        io[NR52] = 0xF1
        self._reload_all()

    def rebase(self, delta: int) -> None:
        """Shift the internal clocks back by `delta` after the machine clock wraps."""
        self.clock = (self.clock - delta) & _MASK32
        self.next_change = (self.next_change - delta) & _MASK32

    # ------------------------------------------------------------------
    # helpers

    def _freq11(self, low_register: int) -> int:
        return (self.io[low_register] | (self.io[low_register + 1] << 8)) & 0x7FF

    def _square_step(self, freq: int) -> int:
        divisor = 2048 - (freq & 0x7FF)
        return _STEP_BASE // ((self.rate * divisor) >> 3)

    def _set_ch1_freq(self, freq: int) -> None:
        self.channels[0].freq = self._square_step(freq)

    def _update_ch1_freq(self) -> None:
        self._set_ch1_freq(self._freq11(NR13))

    def _update_ch2_freq(self) -> None:
        self.channels[1].freq = self._square_step(self._freq11(NR23))

    def _update_ch3_freq(self) -> None:
        divisor = 2048 - self._freq11(NR33)
        self.channels[2].freq = _STEP_BASE // ((self.rate * divisor) >> 6)

    def _update_ch4_freq(self) -> None:
        nr43 = self.io[NR43]
        step = _STEP_BASE // (self.rate * NOISE_DIVISORS[nr43 & 7])
        self.channels[3].freq = ((step << 5) >> (nr43 >> 4)) & _MASK32

    def _reload_all(self) -> None:
        io = self.io
        ch1, ch2, ch3, ch4 = self.channels
        self._update_ch1_freq()
        self._update_ch2_freq()
        self._update_ch3_freq()
        ch3.cnt = 256 - io[NR31]
        ch1.cnt = 64 - (io[NR11] & 63)
        ch2.cnt = 64 - (io[NR21] & 63)
        ch4.cnt = 64 - (io[NR41] & 63)
        ch1.encnt = ch1.swcnt = ch2.encnt = ch4.encnt = 0
        ch1.envol = io[NR12] >> 4
        ch2.envol = io[NR22] >> 4
        ch4.envol = io[NR42] >> 4
        self._update_ch4_freq()

    def _stop(self, index: int) -> None:
        self.channels[index].on = False
        self.io[NR52] &= ~(1 << index) & 0xFF

    # ------------------------------------------------------------------
    # triggers

    def _trigger_ch1(self) -> None:
        io = self.io
        if (io[NR12] & 0xF8) == 0:
            return
        ch = self.channels[0]
        ch.pos = 0
        io[NR52] |= 1
        ch.on = True
        if not ch.cnt:
            ch.cnt = 64
        ch.encnt = 0
        ch.envol = io[NR12] >> 4
        ch.swcnt = 0
        ch.swfreq = self._freq11(NR13)
        shift = io[NR10] & 7
        if shift:
            ch.swfreq += ch.swfreq >> shift
            if ch.swfreq > 2047:
                self._stop(0)

    def _trigger_ch2(self) -> None:
        io = self.io
        if (io[NR22] & 0xF8) == 0:
            return
        ch = self.channels[1]
        ch.pos = 0
        io[NR52] |= 2
        ch.on = True
        if not ch.cnt:
            ch.cnt = 64
        ch.encnt = 0
        ch.envol = io[NR22] >> 4

    def _trigger_ch3(self) -> None:
        io = self.io
        ch = self.channels[2]
        ch.pos = 0
        io[NR52] |= 4
        if not ch.cnt:
            ch.cnt = 256
        ch.on = True
        if io[NR30] & 0x80:
            for offset in range(WAVE_START, WAVE_END):
                io[offset] = 0x13 ^ io[offset + 1]

    def _trigger_ch4(self) -> None:
        io = self.io
        ch = self.channels[3]
        ch.on = False
        if (io[NR42] & 0xF8) == 0:
            return
        ch.pos = 0
        io[NR52] |= 8
        ch.on = True
        if not ch.cnt:
            ch.cnt = 64
        ch.encnt = 0
        ch.envol = io[NR42] >> 4

    # ------------------------------------------------------------------
    # register access

    def read(self, register: int, now: int) -> int:
        """Bring the output up to `now` and return the register's contents."""
        self.mix(now)
        return self.io[register & 0xFF]

    def write(self, register: int, value: int, now: int) -> None:
        """Store `value` into a sound register at machine time `now`."""
        register &= 0xFF
        value &= 0xFF
        io = self.io
        if not io[NR52] & 0x80 and register != NR52:
            return
        if (register & 0xF0) == WAVE_START:
            if not (io[NR52] & 8 and io[NR30] & 0x80):
                io[register] = value
                self.wave[register - WAVE_START] = value
            return
        self.mix(now)
        ch1, ch2, ch3, ch4 = self.channels

        if register == NR10:
            io[NR10] = value
            ch1.swfreq = self._freq11(NR13)
            ch1.swcnt = 0
        elif register == NR11:
            io[NR11] = value
            ch1.cnt = 64 - (value & 63)
        elif register == NR12:
            io[NR12] = value
            ch1.envol = value >> 4
            if (value & 0xF8) == 0:
                self._stop(0)
        elif register == NR13:
            io[NR13] = value
            self._update_ch1_freq()
        elif register == NR14:
            io[NR14] = value
            self._update_ch1_freq()
            if value & 0x80:
                self._trigger_ch1()
        elif register == NR21:
            io[NR21] = value
            ch2.cnt = 64 - (value & 63)
        elif register == NR22:
            io[NR22] = value
            if (value & 0xF8) == 0:
                self._stop(1)
            ch2.envol = value >> 4
        elif register == NR23:
            io[NR23] = value
            self._update_ch2_freq()
        elif register == NR24:
            io[NR24] = value
            self._update_ch2_freq()
            if value & 0x80:
                self._trigger_ch2()
        elif register == NR30:
            io[NR30] = value
            if not value & 0x80:
                self._stop(2)
        elif register == NR31:
            io[NR31] = value
            ch3.cnt = 256 - value
        elif register == NR32:
            io[NR32] = value
        elif register == NR33:
            io[NR33] = value
            self._update_ch3_freq()
        elif register == NR34:
            io[NR34] = value
            self._update_ch3_freq()
            if value & 0x80:
                self._trigger_ch3()
        elif register == NR41:
            io[NR41] = value
            ch4.cnt = 64 - (value & 63)
        elif register == NR42:
            io[NR42] = value
            ch4.envol = value >> 4
            if (value & 0xF8) == 0:
                self._stop(3)
        elif register == NR43:
            io[NR43] = value
            self._update_ch4_freq()
        elif register == NR44:
            io[NR44] = value
            self._update_ch4_freq()
            if value & 0x80:
                self._trigger_ch4()
        elif register in (NR50, NR51):
            io[register] = value
        elif register == NR52:
            io[NR52] = value
            if not value & 0x80:
                self.power_off()

    # ------------------------------------------------------------------
    # sample generation

    def _render(self, until: int) -> None:
        """Produce samples with constant parameters up to clock `until`."""
        clock = self.clock
        if clock >= until:
            return
        frac = self.clock_frac
        io = self.io
        ch1, ch2, ch3, ch4 = self.channels
        duty1 = SQUARE_WAVES[io[NR11] >> 6]
        duty2 = SQUARE_WAVES[io[NR21] >> 6]
        nr51 = io[NR51]
        right1 = ch1.envol if nr51 & 0x01 else 0
        left1 = ch1.envol if nr51 & 0x10 else 0
        right2 = ch2.envol if nr51 & 0x02 else 0
        left2 = ch2.envol if nr51 & 0x20 else 0
        right3 = bool(nr51 & 0x04)
        left3 = bool(nr51 & 0x40)
        right4 = ch4.envol if nr51 & 0x08 else 0
        left4 = ch4.envol if nr51 & 0x80 else 0
        wave = self.wave
        wave_shift = ((io[NR32] >> 5) & 3) - 1
        nr43 = io[NR43]
        noise, noise_mask = (self.noise7, 0xF) if nr43 & 8 else (self.noise15, 0xFFF)
        nr50 = io[NR50]
        left_volume = nr50 & 0x07
        right_volume = (nr50 & 0x70) >> 4
        push = self.sink.push if self.sink is not None else None
        rate_lo, rate_hi = self.rate_lo, self.rate_hi

        while True:
            left = right = 0
            if ch1.on:
                if duty1[(ch1.pos >> 14) & 7]:
                    right += right1
                    left += left1
                ch1.pos = (ch1.pos + ch1.freq) & _MASK32
            if ch2.on:
                if duty2[(ch2.pos >> 14) & 7]:
                    right += right2
                    left += left2
                ch2.pos = (ch2.pos + ch2.freq) & _MASK32
            if ch3.on:
                sample = wave[(ch3.pos >> 18) & 0xF]
                sample = sample & 15 if ch3.pos & (1 << 21) else sample >> 4
                ch3.pos = (ch3.pos + ch3.freq) & _MASK32
                sample = 0 if wave_shift < 0 else sample >> wave_shift
                if right3:
                    right += sample
                if left3:
                    left += sample
            if ch4.on:
                pos = ch4.pos
                if (noise[(pos >> 20) & noise_mask] >> ((pos >> 17) & 7)) & 1:
                    right += right4
                    left += left4
                ch4.pos = (pos + ch4.freq) & _MASK32

            if push is not None:
                push((left * left_volume) >> 2, (right * right_volume) >> 2)

            frac += rate_lo
            clock = (clock + rate_hi + (frac >> 16)) & _MASK32
            frac &= 0xFFFF
            if clock >= until:
                break
        self.clock_frac = frac
        self.clock = clock

    def _sweep_tick(self) -> None:
        io = self.io
        ch1 = self.channels[0]
        period = io[NR10] & 0x70
        if not period:
            return
        ch1.swcnt = (ch1.swcnt + 1) & 7
        if ch1.swcnt != period >> 4:
            return
        ch1.swcnt = 0
        freq = ch1.swfreq
        self._set_ch1_freq(freq)
        delta = freq >> (io[NR10] & 7)
        if io[NR10] & 8:
            freq -= delta
        else:
            freq += delta
            if freq >= 0x800:
                self._stop(0)
        freq &= 0x7FF
        ch1.swfreq = freq
        self._set_ch1_freq(freq)

    def _length_tick(self) -> None:
        io = self.io
        for index, control in enumerate((NR14, NR24, NR34, NR44)):
            ch = self.channels[index]
            if io[control] & 0x40 and ch.cnt:
                ch.cnt -= 1
                if ch.cnt == 0:
                    self._stop(index)

    def _envelope_tick(self) -> None:
        io = self.io
        for index, register in _ENVELOPE_REGISTERS:
            ch = self.channels[index]
            value = io[register]
            period = value & 7
            if not (ch.on and period):
                continue
            ch.encnt = (ch.encnt + 1) & 7
            if ch.encnt != period:
                continue
            ch.encnt = 0
            if value & 8:
                value += 16
                if not value & 0xF0:
                    value -= 16
            else:
                value -= 16
                if (value & 0xF0) == 0xF0:
                    value += 16
            ch.envol = (value >> 4) & 0xF
            io[register] = value & 0xFF

    def mix(self, now: int) -> None:
        """Generate output and run length/sweep/envelope timers up to `now`."""
        now &= _MASK32
        while self.next_change < now:
            tick = self.next_change
            self._render(tick)
            if self.io[NR52] & 0x80:
                if not tick & 0x1000:
                    self._sweep_tick()
                self._length_tick()
                if not tick & 0x3000:
                    self._envelope_tick()
            self.next_change = (tick + 0x1000) & _MASK32
        self._render(now)