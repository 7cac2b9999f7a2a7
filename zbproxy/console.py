"""Terminal colours, window titles and build information."""

from __future__ import annotations

import enum
import platform
import random
import sys
from typing import TextIO

VERSION = "3.0-rc.5"
COMMIT_HASH = "UNKNOWN"

_RESET = "\x1b[0m"


class Color(enum.IntEnum):
    """ANSI foreground colour codes."""

    RED = 31
    GREEN = 32
    YELLOW = 33
    BLUE = 34
    MAGENTA = 35
    CYAN = 36
    WHITE = 37
    HI_BLACK = 90
    HI_RED = 91
    HI_GREEN = 92
    HI_YELLOW = 93
    HI_BLUE = 94
    HI_MAGENTA = 95
    HI_CYAN = 96
    HI_WHITE = 97


# Colours used to tell connections apart in the log.
ID_COLORS = (
    Color.RED,
    Color.GREEN,
    Color.YELLOW,
    Color.BLUE,
    Color.MAGENTA,
    Color.CYAN,
    Color.WHITE,
    Color.HI_RED,
    Color.HI_GREEN,
    Color.HI_YELLOW,
    Color.HI_BLUE,
    Color.HI_MAGENTA,
    Color.HI_CYAN,
    Color.HI_WHITE,
)


def colorize(text: object, color: Color) -> str:
    """Return ``text`` wrapped in the escape codes for ``color``."""
    return f"\x1b[{int(color)}m{text}{_RESET}"


def random_color(rng: random.Random | None = None) -> Color:
    """Pick one of the connection identifier colours at random."""
    return (rng or random).choice(ID_COLORS)


def title_sequence(title: str) -> str:
    """Return the escape sequence that sets the terminal window title."""
    return f"\x1b]0;{title}\x07"


def set_title(title: str, stream: TextIO | None = None) -> None:
    """Set the terminal window title by writing to ``stream``."""
    out = sys.stdout if stream is None else stream
    out.write(title_sequence(title))
    out.flush()


def build_info() -> str:
    """Describe the interpreter and platform this program runs on."""
    return (
        f"{platform.python_implementation()} {platform.python_version()}, "
        f"{sys.platform}/{platform.machine() or 'unknown'}"
    )