"""Stamp duty and registration fee estimate for a valued property.

The duty basis is the higher of market value and declared consideration.
Each selected instrument charges its male / female / joint rate on the
basis (or a fixed amount for fixed-duty instruments); registration fee is
a percentage of the basis, capped.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from app.config import (
    REGISTRATION_FEE_CAP,
    REGISTRATION_FEE_RATE,
    STAMP_CESS_RATE,
    STAMP_SURCHARGE_RATE,
)
from app.valuation.money import round_half_up, to_decimal

logger = logging.getLogger(__name__)

GENDER_OPTIONS = ("Male", "Female", "Joint")


@dataclass(frozen=True)
class Instrument:
    id: int
    name: str
    male_duty: Decimal
    female_duty: Decimal
    joint_duty: Decimal
    is_fixed: bool = False      # duties are rupee amounts, not percentages

    def __post_init__(self):
        for attr in ("male_duty", "female_duty", "joint_duty"):
            object.__setattr__(self, attr, to_decimal(getattr(self, attr)))

    def duty_for(self, option: str) -> Decimal:
        if option not in GENDER_OPTIONS:
            raise ValueError(f"Unknown option {option!r} for instrument {self.name} (expected {GENDER_OPTIONS})")
        return {"Male": self.male_duty, "Female": self.female_duty, "Joint": self.joint_duty}[option]


@dataclass
class StampDutyBreakdown:
    basis: str                      # MARKET_VALUE | CONSIDERATION_VALUE
    basis_value: int
    stamp_duty: int
    registration_fee: int
    surcharge: int
    cess: int
    total_payable: int
    instruments: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "basis": self.basis,
            "basis_value": self.basis_value,
            "stamp_duty": self.stamp_duty,
            "registration_fee": self.registration_fee,
            "surcharge": self.surcharge,
            "cess": self.cess,
            "total_payable": self.total_payable,
            "instruments": self.instruments,
        }


def calculate_stamp_duty(
    market_value: Any,
    selections: list[tuple[Instrument, str]],
    consideration_value: Optional[Any] = None,
    registration_fee_rate: float = REGISTRATION_FEE_RATE,
    registration_fee_cap: int = REGISTRATION_FEE_CAP,
    surcharge_rate: float = STAMP_SURCHARGE_RATE,
    cess_rate: float = STAMP_CESS_RATE,
) -> StampDutyBreakdown:
    """Estimate duty and fees.

    Args:
        market_value: computed market value (whole rupees)
        selections: (instrument, gender option) pairs; at least one
        consideration_value: declared agreement value, if any

    Raises:
        ValueError: no instrument selected, or negative values.
    """
    if not selections:
        raise ValueError("Select at least one instrument")
    market = to_decimal(market_value)
    consideration = to_decimal(consideration_value) if consideration_value is not None else Decimal("0")
    if market < 0 or consideration < 0:
        raise ValueError("Market and consideration values must not be negative")

    if consideration > market:
        basis, basis_value = "CONSIDERATION_VALUE", consideration
    else:
        basis, basis_value = "MARKET_VALUE", market

    lines = []
    total_duty = 0
    for instrument, option in selections:
        rate = instrument.duty_for(option)
        if instrument.is_fixed:
            amount = round_half_up(rate)
        else:
            amount = round_half_up(basis_value * rate / 100)
        total_duty += amount
        lines.append({
            "instrument_id": instrument.id,
            "instrument_name": instrument.name,
            "selected_option": option,
            "duty_value": str(rate),
            "is_fixed": instrument.is_fixed,
            "amount": amount,
        })

    registration_fee = round_half_up(
        min(basis_value * to_decimal(registration_fee_rate), Decimal(registration_fee_cap))
    )
    surcharge = round_half_up(basis_value * to_decimal(surcharge_rate))
    cess = round_half_up(basis_value * to_decimal(cess_rate))
    total = total_duty + registration_fee + surcharge + cess

    logger.info(
        f"Stamp duty on {basis}={basis_value}: duty={total_duty} reg_fee={registration_fee} total={total}"
    )
    return StampDutyBreakdown(
        basis=basis,
        basis_value=round_half_up(basis_value),
        stamp_duty=total_duty,
        registration_fee=registration_fee,
        surcharge=surcharge,
        cess=cess,
        total_payable=total,
        instruments=lines,
    )
