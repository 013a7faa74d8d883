"""Register layout of the desk controller (0-based Modbus addresses)."""

# Status block, read back with every exchange
STATUS_ADDRESS = 0x09C4
STATUS_COUNT = 20
HEIGHT_INDEX = 7

# Panel block, written with every exchange; emulates the button panel
PANEL_ADDRESS = 0x0A8C
PANEL_COUNT = 14
BUTTON_INDEX = 2
HOLD_INDEX = 3
PANEL_TEMPLATE = (
    0x0000, 0x0000, 0x0000, 0x0000, 0x0008, 0x0005, 0x0001,
    0x005A, 0x0011, 0x0008, 0x0017, 0x0000, 0x0000, 0x0000,
)

# Button codes
BUTTON_IDLE = 0x0000
BUTTON_UP = 0x0001
BUTTON_DOWN = 0x0002
BUTTON_WAKE = 0x0009

# Unconfirmed on hardware; 0x0008 is part of the wake chord
DEFAULT_PRESET_BUTTONS = {
    1: 0x0004,
    2: 0x0010,
    3: 0x0020,
    4: 0x0040,
}


def panel_frame(button: int = BUTTON_IDLE, hold: bool = False) -> tuple[int, ...]:
    """Return the 14 panel words for ``button``, optionally held down."""
    words = list(PANEL_TEMPLATE)
    words[BUTTON_INDEX] = button
    if hold:
        words[HOLD_INDEX] = button
    return tuple(words)
