# services/consumption.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from errors import InvalidReadingError, MonotonicityError
from services.tariffs import D, qty


@dataclass(frozen=True)
class ReadingLine:
    """previous -> present on one meter, scaled by the meter multiplier."""
    meter_number: str
    previous_reading: Decimal
    present_reading: Decimal
    multiplier: Decimal = Decimal("1")

    @property
    def raw_consumed(self) -> Decimal:
        return qty(self.present_reading - self.previous_reading)

    @property
    def consumed(self) -> Decimal:
        return qty(self.raw_consumed * self.multiplier)

    def validate(self) -> "ReadingLine":
        for name in ("previous_reading", "present_reading", "multiplier"):
            v = getattr(self, name)
            if not isinstance(v, Decimal) or not v.is_finite():
                raise InvalidReadingError(f"{self.meter_number}: {name} is not a number", meter_number=self.meter_number)
        if self.previous_reading < 0 or self.present_reading < 0:
            raise InvalidReadingError(f"{self.meter_number}: readings cannot be negative", meter_number=self.meter_number)
        if self.multiplier <= 0:
            raise InvalidReadingError(f"{self.meter_number}: multiplier must be greater than 0", meter_number=self.meter_number)
        if self.present_reading < self.previous_reading:
            raise MonotonicityError(
                f"{self.meter_number}: present reading {self.present_reading} is lower than previous reading {self.previous_reading}",
                meter_number=self.meter_number,
            )
        return self

    def snapshot(self) -> dict:
        return {
            "meter_number": self.meter_number,
            "previous_reading": str(qty(self.previous_reading)),
            "present_reading": str(qty(self.present_reading)),
            "raw_consumed": str(self.raw_consumed),
            "multiplier": format(D(self.multiplier).normalize(), "f"),
            "consumed": str(self.consumed),
        }

    @classmethod
    def from_reading(cls, r) -> "ReadingLine":
        return cls(
            meter_number=r.meter_number,
            previous_reading=D(r.previous_reading),
            present_reading=D(r.present_reading),
            multiplier=D(r.multiplier),
        )


def total_consumed(lines: Iterable[ReadingLine]) -> Decimal:
    return qty(sum((l.consumed for l in lines), Decimal("0")))
