import pygame
import pytest

from dmgemu.frontend import (
    TOGGLE_LIMIT,
    FrameLimiter,
    Window,
    format_title,
    main,
    parse_args,
)
from dmgemu.pad import Joypad
from dmgemu.ppu import DMG_PALETTE


def fake_clock(values):
    it = iter(values)
    return lambda: next(it)


def test_limited_wait_returns_frame_duration():
    limiter = FrameLimiter(fake_clock([0.0, 0.02]))
    assert limiter.wait(True) == pytest.approx(0.02)
    assert limiter.average_fps() == pytest.approx(1 / 0.02)


def test_limited_wait_polls_until_target_reached():
    limiter = FrameLimiter(fake_clock([0.0, 0.005, 0.0169]))
    assert limiter.wait(True) == pytest.approx(0.0169)


def test_unlimited_wait_uses_short_target():
    limiter = FrameLimiter(fake_clock([0.0, 0.005]))
    assert limiter.wait(False) == pytest.approx(0.005)


def test_average_fps_unknown_without_frames():
    limiter = FrameLimiter(fake_clock([0.0]))
    assert limiter.average_fps() == 0.0


def test_average_fps_uses_recent_frames():
    times = [0.0] + [0.02 * i for i in range(1, 11)]
    limiter = FrameLimiter(fake_clock(times))
    for _ in range(10):
        limiter.wait(False)
    assert limiter.average_fps() == pytest.approx(1 / 0.02)


def test_format_title():
    assert format_title("TETRIS", 59.7) == "GameBoy - TETRIS [59 fps]"


def test_parse_args_defaults():
    args = parse_args([])
    assert args.rom is None
    assert args.scale == 4
    assert args.border == 0
    assert args.no_limit is False
    assert args.skip_boot is False


def test_parse_args_strips_quotes():
    args = parse_args(['"game.gb"', "--scale", "2"])
    assert args.rom == "game.gb"
    assert args.scale == 2


def test_parse_args_rejects_zero_scale():
    with pytest.raises(SystemExit):
        parse_args(["--scale", "0"])


def test_main_reports_missing_rom(tmp_path, capsys):
    assert main([str(tmp_path / "missing.gb")]) == 1
    assert "SYSTEM ERROR" in capsys.readouterr().out


@pytest.fixture
def window(monkeypatch):
    monkeypatch.setenv("SDL_VIDEODRIVER", "dummy")
    win = Window("TEST", scale=2, border=1)
    yield win
    win.close()


def test_window_blit_scales_and_draws_border(window):
    window.blit([0x123456] * (160 * 144))
    assert tuple(window.surface.get_at((2, 2)))[:3] == (0x12, 0x34, 0x56)
    corner = DMG_PALETTE[0]
    expected = ((corner >> 16) & 0xFF, (corner >> 8) & 0xFF, corner & 0xFF)
    assert tuple(window.surface.get_at((0, 0)))[:3] == expected


def test_window_blit_rejects_wrong_size(window):
    with pytest.raises(ValueError):
        window.blit([0] * 10)


def test_window_poll_updates_pad_and_commands(window):
    pygame.event.clear()
    pygame.event.post(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_x))
    pygame.event.post(pygame.event.Event(pygame.KEYDOWN, key=pygame.K_LEFT))
    pygame.event.post(pygame.event.Event(pygame.KEYUP, key=pygame.K_F8))
    pad = Joypad()
    commands = window.poll(pad)
    assert commands == [TOGGLE_LIMIT]
    assert pad.read(0x10) == 0xE
    assert pad.read(0x20) == 0xD