import re
from dataclasses import dataclass
from decimal import Decimal

from rpc_errors import ParseError

WEI_DECIMALS = 18

_HEX_RE = re.compile(r"[0-9a-fA-F]+")


def hex_to_int(hex_value: str) -> int:
    if not isinstance(hex_value, str):
        raise ParseError(f"Expected hex string, got {type(hex_value).__name__}")
    digits = hex_value[2:] if hex_value[:2] in ("0x", "0X") else hex_value
    # int(..., 16) also accepts whitespace, signs and underscores
    if not _HEX_RE.fullmatch(digits):
        raise ParseError(f"Invalid hex value: {hex_value!r}")
    return int(digits, 16)


def format_units(magnitude: int, decimals: int) -> str:
    if isinstance(decimals, bool) or not isinstance(decimals, int):
        raise ValueError(f"decimals must be an integer, got {decimals!r}")
    if decimals < 0:
        raise ValueError(f"decimals must be non-negative, got {decimals}")
    if magnitude < 0:
        raise ValueError("magnitude must be non-negative")
    if decimals == 0:
        return str(magnitude)
    whole, frac = divmod(magnitude, 10 ** decimals)
    frac_str = str(frac).rjust(decimals, "0").rstrip("0")
    if not frac_str:
        return str(whole)
    return f"{whole}.{frac_str}"


def format_unsigned(hex_value: str, decimals: int) -> str:
    return format_units(hex_to_int(hex_value), decimals)


def wei_to_ether(hex_value: str) -> str:
    return format_unsigned(hex_value, WEI_DECIMALS)


@dataclass(frozen=True)
class FixedPointValue:
    """Unsigned integer magnitude scaled down by ``10 ** decimals``."""

    magnitude: int
    decimals: int

    def __post_init__(self) -> None:
        if self.magnitude < 0:
            raise ValueError("magnitude must be non-negative")
        if self.decimals < 0:
            raise ValueError("decimals must be non-negative")

    @classmethod
    def from_hex(cls, hex_value: str, decimals: int) -> "FixedPointValue":
        return cls(hex_to_int(hex_value), decimals)

    def to_decimal(self) -> Decimal:
        # built from the digit tuple so the context precision never rounds it
        digits = Decimal(self.magnitude).as_tuple().digits
        return Decimal((0, digits, -self.decimals))

    def __str__(self) -> str:
        return format_units(self.magnitude, self.decimals)
