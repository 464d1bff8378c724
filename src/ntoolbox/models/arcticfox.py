"""
Arctic Fox configuration block.

The firmware exposes its settings as one 1024-byte block, read with HID
command 0x60 and written back with 0x61. The layout below matches builds
161117 and newer; older builds use a different block and are refused.

Block map:

| Offset | Size | Section   | Contents                                       |
|--------|------|-----------|------------------------------------------------|
| 0      | 32   | info      | product id, versions, build, max power         |
| 32     | 264  | general   | 8 profiles x 32 bytes, selected profile, smart |
| 296    | 40   | interface | screen, layout lines, click actions            |
| 336    | 16   | counters  | puffs, puff time, clock                        |
| 352    | 512  | advanced  | 8 power curves, 8 TFR tables                   |
| 864    | 160  | reserved  |                                                |

Layout lines share one byte between a content enum (low 7 bits) and a
"show fire time" bit (0x80); they are modeled as two descriptors over the same
byte so either can change without touching the other.
"""

import enum
from datetime import datetime
from typing import Optional

from ..errors import FormatError
from ..structure_codec import (
    Array,
    Bits,
    Flag,
    Nested,
    Record,
    StructureLayout,
    Text,
    UInt,
)

CONFIGURATION_SIZE = 1024
MINIMUM_SUPPORTED_BUILD = 161117
PROFILE_COUNT = 8
CURVE_COUNT = 8
CURVE_POINTS = 12
TFR_COUNT = 8
TFR_POINTS = 7


class Material(enum.IntEnum):
    VARIWATT = 0
    NICKEL = 1
    TITANIUM = 2
    STAINLESS_STEEL = 3
    TCR = 4


class PreheatType(enum.IntEnum):
    WATTS = 0
    PERCENTS = 1
    CURVE = 2


class LineContent(enum.IntEnum):
    NON_DOMINANT = 0x30
    VOLT = 0x31
    VOUT = 0x32
    AMPS = 0x33
    RESISTANCE = 0x34
    REAL_RESISTANCE = 0x35
    PUFFS = 0x40
    TIME = 0x41
    BATTERY_VOLTS = 0x42
    DATE_TIME = 0x43
    BOARD_TEMPERATURE = 0x44
    BATTERY = 0x50
    BATTERY_WITH_PERCENTS = 0x51
    BATTERY_WITH_VOLTS = 0x52


FIRE_TIME_MASK = 0x80


class ClickAction(enum.IntEnum):
    NONE = 0
    EDIT = 1
    MAIN_MENU = 2
    PREHEAT = 3
    PROFILE_SELECTOR = 4
    PROFILE_EDIT = 5
    TEMPERATURE_DOMINANT = 6
    MAIN_SCREEN_CLOCK = 7
    LSL = 8
    ON_OFF = 9


class ClockType(enum.IntEnum):
    OFF = 0
    ANALOG = 1
    DIGITAL = 2


class ScreenProtectionTime(enum.IntEnum):
    OFF = 0
    MIN_1 = 1
    MIN_2 = 2
    MIN_5 = 5
    MIN_10 = 10
    MIN_15 = 15
    MIN_20 = 20
    MIN_30 = 30


INFO_LAYOUT = StructureLayout(
    "DeviceInfo",
    32,
    {
        "settings_version": UInt(0),
        "product_id": Text(1, 4),
        "hardware_version": UInt(5, 4, scale=100),
        "max_power": UInt(9, 2, scale=10),
        "number_of_batteries": UInt(11),
        "display_size": UInt(12),
        "firmware_version": UInt(13, 2, scale=100),
        "firmware_build": UInt(16, 4),
    },
)

PROFILE_LAYOUT = StructureLayout(
    "Profile",
    32,
    {
        "name": Text(0, 8),
        "material": Bits(8, 0x0F, Material),
        "is_resistance_locked": Flag(8, 0x40),
        "is_enabled": Flag(8, 0x80),
        "preheat_type": Bits(9, 0xFF, PreheatType),
        "selected_curve": UInt(10),
        "preheat_time": UInt(11, scale=100),
        "preheat_delay": UInt(12, scale=10),
        "power": UInt(13, 2, scale=10),
        "preheat_power": UInt(15, 2, scale=10),
        "temperature": UInt(17, 2),
        "is_celsius": Flag(19, 0x01),
        "resistance": UInt(20, 2, scale=1000),
        "tcr": UInt(22, 2),
    },
)

GENERAL_LAYOUT = StructureLayout(
    "General",
    264,
    {
        "profiles": Array(0, PROFILE_LAYOUT, PROFILE_COUNT),
        "selected_profile": UInt(256),
        "is_smart_enabled": Flag(257, 0x01),
    },
)

LINE_LAYOUT = StructureLayout(
    "Line",
    1,
    {
        "content": Bits(0, 0x7F, LineContent),
        "fire_time": Flag(0, FIRE_TIME_MASK),
    },
)

INTERFACE_LAYOUT = StructureLayout(
    "Interface",
    40,
    {
        "brightness": UInt(0),
        "dim_timeout": UInt(1),
        "is_flipped": Flag(2, 0x01),
        "is_stealth_mode": Flag(2, 0x02),
        "wake_up_by_plus_minus": Flag(2, 0x04),
        "is_power_step_1w": Flag(2, 0x08),
        "is_battery_percents": Flag(2, 0x10),
        "is_classic_menu": Flag(2, 0x20),
        "is_logo_enabled": Flag(2, 0x40),
        "clock_type": Bits(3, 0xFF, ClockType),
        "screensave_duration": Bits(4, 0xFF, ScreenProtectionTime),
        "vw_lines": Array(5, LINE_LAYOUT, 4),
        "tc_lines": Array(9, LINE_LAYOUT, 4),
        "clicks": Array(13, Bits(0, 0xFF, ClickAction), 3),
    },
)

COUNTERS_LAYOUT = StructureLayout(
    "Counters",
    16,
    {
        "puffs_count": UInt(0, 4),
        "puffs_time": UInt(4, 4, scale=10),
        "year": UInt(8, 2),
        "month": UInt(10),
        "day": UInt(11),
        "hour": UInt(12),
        "minute": UInt(13),
        "second": UInt(14),
    },
)

CURVE_POINT_LAYOUT = StructureLayout(
    "CurvePoint",
    2,
    {
        "time": UInt(0, scale=10),
        "percents": UInt(1),
    },
)

POWER_CURVE_LAYOUT = StructureLayout(
    "PowerCurve",
    32,
    {
        "name": Text(0, 8),
        "points": Array(8, CURVE_POINT_LAYOUT, CURVE_POINTS),
    },
)

TFR_POINT_LAYOUT = StructureLayout(
    "TFRPoint",
    4,
    {
        "temperature": UInt(0, 2),
        "factor": UInt(2, 2, scale=10000),
    },
)

TFR_TABLE_LAYOUT = StructureLayout(
    "TFRTable",
    32,
    {
        "name": Text(0, 4),
        "points": Array(4, TFR_POINT_LAYOUT, TFR_POINTS),
    },
)

ADVANCED_LAYOUT = StructureLayout(
    "Advanced",
    512,
    {
        "power_curves": Array(0, POWER_CURVE_LAYOUT, CURVE_COUNT),
        "tfr_tables": Array(256, TFR_TABLE_LAYOUT, TFR_COUNT),
    },
)

CONFIGURATION_LAYOUT = StructureLayout(
    "ArcticFoxConfiguration",
    CONFIGURATION_SIZE,
    {
        "info": Nested(0, INFO_LAYOUT),
        "general": Nested(32, GENERAL_LAYOUT),
        "interface": Nested(296, INTERFACE_LAYOUT),
        "counters": Nested(336, COUNTERS_LAYOUT),
        "advanced": Nested(352, ADVANCED_LAYOUT),
    },
)


def decode_configuration(data: bytes) -> Record:
    """Decode a configuration block read from the device."""
    return CONFIGURATION_LAYOUT.decode(data)


def encode_configuration(configuration: Record) -> bytes:
    return CONFIGURATION_LAYOUT.encode(configuration)


def ensure_supported(configuration: Record) -> None:
    """
    Refuse configurations from firmware older than the supported layout.

    Raises:
        FormatError: If the firmware build predates MINIMUM_SUPPORTED_BUILD
    """
    build = configuration.info.firmware_build
    if build < MINIMUM_SUPPORTED_BUILD:
        raise FormatError(
            f"Arctic Fox build {build} is not supported. "
            f"Connect a device with build {MINIMUM_SUPPORTED_BUILD} or newer."
        )


def sync_clock(configuration: Record, now: Optional[datetime] = None) -> None:
    """Copy the host clock into the device counters section."""
    now = now or datetime.now()
    counters = configuration.counters
    counters.year = now.year
    counters.month = now.month
    counters.day = now.day
    counters.hour = now.hour
    counters.minute = now.minute
    counters.second = now.second
