"""Exact Kubernetes resource quantities.

Quantities are held as an integer number of milli-units so that CPU
(``"250m"``), memory (``"128Mi"``) and storage (``"10G"``) values can be
summed and compared without floating point drift.  The canonical string
form matches what ``kubectl`` prints for the same value.

Summation is checked: a result whose magnitude leaves the signed 64-bit
milli-unit range is reported as :class:`Overflow` and the caller decides
what to do with it (the summing helpers here log it and drop the
contribution).
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal, InvalidOperation

from kubediag.observability.logging import get_logger
from kubediag.observability.metrics import quantity_overflows_total

_logger = get_logger("quantity")

_MAX_MILLI = 2**63 - 1

_QUANTITY_RE = re.compile(r"^([+-]?(?:\d+\.?\d*|\.\d+))(?:([eE][+-]?\d+)|(Ki|Mi|Gi|Ti|Pi|Ei|n|u|m|k|M|G|T|P|E))?$")

_BINARY_SUFFIXES: dict[str, int] = {
    "Ki": 1024,
    "Mi": 1024**2,
    "Gi": 1024**3,
    "Ti": 1024**4,
    "Pi": 1024**5,
    "Ei": 1024**6,
}

_DECIMAL_SUFFIXES: dict[str, Decimal] = {
    "n": Decimal("1e-9"),
    "u": Decimal("1e-6"),
    "m": Decimal("1e-3"),
    "k": Decimal(10**3),
    "M": Decimal(10**6),
    "G": Decimal(10**9),
    "T": Decimal(10**12),
    "P": Decimal(10**15),
    "E": Decimal(10**18),
}

# Largest first, used when rendering.
_BINARY_RENDER = sorted(_BINARY_SUFFIXES.items(), key=lambda item: item[1], reverse=True)
_DECIMAL_RENDER = [
    (s, int(f)) for s, f in sorted(_DECIMAL_SUFFIXES.items(), key=lambda i: i[1], reverse=True) if f >= 1
]


@dataclass(frozen=True, order=True)
class Quantity:
    """A resource quantity in milli-units.

    ``binary`` records whether the value was written with a power-of-two
    suffix so it can be rendered back the same way.
    """

    milli: int = 0
    binary: bool = False

    @property
    def is_zero(self) -> bool:
        return self.milli == 0

    def __str__(self) -> str:
        if self.milli == 0:
            return "0"
        sign = "-" if self.milli < 0 else ""
        magnitude = abs(self.milli)
        if magnitude % 1000:
            return f"{sign}{magnitude}m"
        units = magnitude // 1000
        table = _BINARY_RENDER if self.binary else _DECIMAL_RENDER
        for suffix, factor in table:
            if units >= factor and units % factor == 0:
                return f"{sign}{units // factor}{suffix}"
        return f"{sign}{units}"

    def __sub__(self, other: Quantity) -> Quantity:
        binary = self.binary if self.milli != 0 else other.binary
        return Quantity(self.milli - other.milli, binary)

    def compare(self, other: Quantity) -> int:
        """Return -1, 0 or 1 the way ``kubectl``'s ``Cmp`` does."""
        return (self.milli > other.milli) - (self.milli < other.milli)


ZERO = Quantity()


def parse_quantity(text: str) -> Quantity:
    """Parse a Kubernetes quantity string.

    Raises:
        ValueError: the string is not a valid quantity.
    """
    match = _QUANTITY_RE.match(text.strip())
    if match is None:
        raise ValueError(f"invalid quantity: {text!r}")
    number, exponent, suffix = match.groups()
    try:
        value = Decimal(number)
        if exponent:
            value = value.scaleb(int(exponent[1:]))
    except InvalidOperation as exc:
        raise ValueError(f"invalid quantity: {text!r}") from exc

    binary = False
    if suffix in _BINARY_SUFFIXES:
        value *= _BINARY_SUFFIXES[suffix]
        binary = True
    elif suffix:
        value *= _DECIMAL_SUFFIXES[suffix]

    milli = int((value * 1000).to_integral_value(rounding=ROUND_CEILING))
    return Quantity(milli, binary)


# ---------------------------------------------------------------------------
# Checked arithmetic
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Ok:
    value: Quantity


@dataclass(frozen=True)
class Overflow:
    attempted_milli: int


QuantitySum = Ok | Overflow


def checked_add(total: Quantity, addend: Quantity) -> QuantitySum:
    """Add two quantities, reporting overflow instead of returning a bad total.

    The result keeps the format of ``total`` unless ``total`` is zero, in
    which case it takes the format of ``addend``.
    """
    result = total.milli + addend.milli
    if abs(result) > _MAX_MILLI:
        return Overflow(result)
    binary = total.binary if total.milli != 0 else addend.binary
    return Ok(Quantity(result, binary))


def accumulate(total: Quantity, addend: Quantity, *, resource: str = "", source: str = "") -> Quantity:
    """Add ``addend`` to ``total``; on overflow log it and keep ``total`` unchanged."""
    match checked_add(total, addend):
        case Ok(value=value):
            return value
        case Overflow(attempted_milli=attempted):
            _logger.warning(
                "quantity_overflow",
                resource=resource,
                source=source,
                total=str(total),
                addend=str(addend),
                attempted_milli=attempted,
            )
            quantity_overflows_total.inc()
            return total


def sum_quantities(values: Iterable[str], *, resource: str = "", source: str = "") -> Quantity:
    """Sum quantity strings, skipping unparseable values and overflowing contributions."""
    total = ZERO
    for raw in values:
        try:
            addend = parse_quantity(raw)
        except ValueError:
            _logger.warning("invalid_quantity", resource=resource, source=source, value=raw)
            continue
        total = accumulate(total, addend, resource=resource, source=source)
    return total


def quantity_or_zero(raw: str | None, *, resource: str = "", source: str = "") -> Quantity:
    """Parse ``raw`` if present; absent or invalid values count as zero."""
    if not raw:
        return ZERO
    try:
        return parse_quantity(raw)
    except ValueError:
        _logger.warning("invalid_quantity", resource=resource, source=source, value=raw)
        return ZERO
