"""Reference-data and valuation records.

Plain dataclasses; monetary amounts are whole-currency ``Decimal`` on the
records themselves and are converted to subunits inside the engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from app.valuation.money import to_decimal

# DERIVED_AVERAGE factors are compared to the mean of their parents with this slack
# so that values round-tripped through JSON still validate.
_MEAN_TOLERANCE = Decimal("0.000001")


class AreaType(str, Enum):
    RURAL = "RURAL"
    URBAN = "URBAN"


class FactorSource(str, Enum):
    EXISTING = "EXISTING"
    DERIVED_AVERAGE = "DERIVED_AVERAGE"


class ParameterCategory(str, Enum):
    DEPRECIATION = "DEPRECIATION"
    TEMPORARY_APPRECIATION = "TEMPORARY_APPRECIATION"
    OTHER = "OTHER"


class FactorType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"


def _as_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _positive(value: Any, label: str) -> Decimal:
    amount = to_decimal(value)
    if not amount.is_finite() or amount <= 0:
        raise ValueError(f"{label} must be greater than 0 (got {amount})")
    return amount


# ═══════════════════════════════════════════════════
# JURISDICTION
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class Jurisdiction:
    """District → Circle → Mouza → (Village) → Lot.  Hashable lookup key."""

    district_code: str
    circle_code: str
    mouza_code: str
    lot_code: str
    village_code: Optional[str] = None

    def key(self) -> str:
        parts = [self.district_code, self.circle_code, self.mouza_code,
                 self.village_code or "-", self.lot_code]
        return "|".join(parts)


# ═══════════════════════════════════════════════════
# BASE VALUES & FACTORS
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class DistrictBase:
    district_code: str
    base_value: Decimal
    effective_from: date
    version: int = 0

    def __post_init__(self):
        object.__setattr__(self, "base_value", _positive(self.base_value, f"District base {self.district_code}"))
        effective_from = _as_date(self.effective_from)
        if effective_from is None:
            raise ValueError(f"District base {self.district_code} has no effective_from date")
        object.__setattr__(self, "effective_from", effective_from)

    def to_dict(self) -> dict:
        return {
            "district_code": self.district_code,
            "base_value": str(self.base_value),
            "effective_from": self.effective_from.isoformat(),
            "version": self.version,
        }


@dataclass(frozen=True)
class ParentFactor:
    circle_code: str
    lot_code: str
    factor: Decimal

    def __post_init__(self):
        object.__setattr__(self, "factor", _positive(self.factor, f"Parent factor {self.circle_code}|{self.lot_code}"))


@dataclass(frozen=True)
class GeographicalFactor:
    """Circle × Lot factor.

    A DERIVED_AVERAGE factor must carry its parents and equal their mean;
    anything else is rejected at construction.
    """

    district_code: str
    circle_code: str
    lot_code: str
    factor: Decimal
    source: FactorSource = FactorSource.EXISTING
    parents: tuple[ParentFactor, ...] = ()
    effective_from: Optional[date] = None
    version: int = 0

    def __post_init__(self):
        object.__setattr__(self, "factor", _positive(self.factor, f"Geographical factor {self.key()}"))
        object.__setattr__(self, "source", FactorSource(self.source))
        object.__setattr__(self, "effective_from", _as_date(self.effective_from))
        parents = tuple(
            p if isinstance(p, ParentFactor) else ParentFactor(**p)
            for p in (self.parents or ())
        )
        object.__setattr__(self, "parents", parents)
        if self.source is FactorSource.DERIVED_AVERAGE:
            if not parents:
                raise ValueError(
                    f"Derived geographical factor {self.key()} has no parent factors"
                )
            mean = average_factor([p.factor for p in parents])
            if abs(mean - self.factor) > _MEAN_TOLERANCE:
                raise ValueError(
                    f"Derived geographical factor {self.key()} = {self.factor} "
                    f"does not equal the mean of its parents ({mean})"
                )

    def key(self) -> str:
        return f"{self.district_code}|{self.circle_code}|{self.lot_code}"

    def to_dict(self) -> dict:
        return {
            "district_code": self.district_code,
            "circle_code": self.circle_code,
            "lot_code": self.lot_code,
            "factor": str(self.factor),
            "source": self.source.value,
            "parents": [
                {"circle_code": p.circle_code, "lot_code": p.lot_code, "factor": str(p.factor)}
                for p in self.parents
            ],
            "effective_from": self.effective_from.isoformat() if self.effective_from else None,
            "version": self.version,
        }


def average_factor(factors: list[Decimal]) -> Decimal:
    """Arithmetic mean of parent factors (0 for an empty list)."""
    if not factors:
        return Decimal("0")
    return sum(factors, Decimal("0")) / len(factors)


@dataclass(frozen=True)
class ConversionFactor:
    land_category_id: str
    area_type: AreaType
    factor: Decimal
    effective_from: Optional[date] = None
    district_code: Optional[str] = None      # district-specific override
    version: int = 0

    def __post_init__(self):
        object.__setattr__(self, "factor", _positive(self.factor, f"Conversion factor {self.land_category_id}"))
        object.__setattr__(self, "area_type", AreaType(self.area_type))
        object.__setattr__(self, "effective_from", _as_date(self.effective_from))

    def to_dict(self) -> dict:
        return {
            "land_category_id": self.land_category_id,
            "area_type": self.area_type.value,
            "factor": str(self.factor),
            "effective_from": self.effective_from.isoformat() if self.effective_from else None,
            "district_code": self.district_code,
            "version": self.version,
        }


# ═══════════════════════════════════════════════════
# PARAMETERS
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class Parameter:
    code: str
    category: ParameterCategory
    factor_type: FactorType
    name: str = ""
    is_active: bool = True
    expiry_date: Optional[date] = None
    exclusion_group: Optional[str] = None    # parameters with overlapping conditions

    def __post_init__(self):
        object.__setattr__(self, "category", ParameterCategory(self.category))
        object.__setattr__(self, "factor_type", FactorType(self.factor_type))
        object.__setattr__(self, "expiry_date", _as_date(self.expiry_date))

    def is_effective(self, as_of: date) -> bool:
        """Inactive or expired parameters never take part in a valuation."""
        if not self.is_active:
            return False
        return self.expiry_date is None or self.expiry_date >= as_of

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "name": self.name,
            "category": self.category.value,
            "factor_type": self.factor_type.value,
            "is_active": self.is_active,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "exclusion_group": self.exclusion_group,
        }


@dataclass(frozen=True)
class ParameterBand:
    """A numeric range ``[min, max)`` or, with neither bound, a categorical label."""

    parameter_code: str
    band_code: str
    label: str
    min_value: Optional[Decimal] = None
    max_value: Optional[Decimal] = None

    def __post_init__(self):
        if self.min_value is not None:
            object.__setattr__(self, "min_value", to_decimal(self.min_value))
        if self.max_value is not None:
            object.__setattr__(self, "max_value", to_decimal(self.max_value))
        if (self.min_value is not None and self.max_value is not None
                and self.min_value >= self.max_value):
            raise ValueError(
                f"Band {self.parameter_code}/{self.band_code}: min {self.min_value} "
                f"must be below max {self.max_value}"
            )

    @property
    def is_categorical(self) -> bool:
        return self.min_value is None and self.max_value is None


@dataclass(frozen=True)
class ParameterWeightage:
    parameter_code: str
    band_code: str
    district_code: str
    area_type: AreaType
    weightage: Decimal

    def __post_init__(self):
        object.__setattr__(self, "area_type", AreaType(self.area_type))
        object.__setattr__(self, "weightage", to_decimal(self.weightage))


@dataclass(frozen=True)
class ResolvedParameter:
    """A parameter whose band has been matched and weight resolved."""

    code: str
    category: ParameterCategory
    factor_type: FactorType
    weightage: Decimal
    band_code: Optional[str] = None
    exclusion_group: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "category", ParameterCategory(self.category))
        object.__setattr__(self, "factor_type", FactorType(self.factor_type))
        object.__setattr__(self, "weightage", to_decimal(self.weightage))

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "category": self.category.value,
            "factor_type": self.factor_type.value,
            "weightage": str(self.weightage),
            "band_code": self.band_code,
            "exclusion_group": self.exclusion_group,
        }


# ═══════════════════════════════════════════════════
# REQUEST / RESULT
# ═══════════════════════════════════════════════════

@dataclass(frozen=True)
class ValuationRequest:
    jurisdiction: Jurisdiction
    land_category_id: str
    area_type: AreaType
    plot_area: Optional[Decimal] = None
    # parameter_code → observed value (number for ranged bands, label/bool for categorical)
    observations: dict = field(default_factory=dict)
    as_of: Optional[date] = None

    def __post_init__(self):
        object.__setattr__(self, "area_type", AreaType(self.area_type))
        if self.plot_area is not None:
            object.__setattr__(self, "plot_area", to_decimal(self.plot_area))
        object.__setattr__(self, "as_of", _as_date(self.as_of))


@dataclass
class ValuationResult:
    market_value: int
    plot_base_value: int
    breakdown: dict
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "market_value": self.market_value,
            "plot_base_value": self.plot_base_value,
            "breakdown": self.breakdown,
            "warnings": self.warnings,
        }
