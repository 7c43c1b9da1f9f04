"""Valuation engine — deterministic market value for one plot on one date.

    Plot Base Value = District Base × Geographical Factor × Conversion Factor
    Market Value    = Plot Base Value, depreciated, then appreciated

Parameter passes:
  1. Depreciation: all DEPRECIATION percentages are summed and applied
     against the base value in one step, then fixed amounts are subtracted.
  2. Appreciation: TEMPORARY_APPRECIATION and OTHER percentages are summed
     and applied over the depreciated value, then fixed amounts are added.
     OTHER weightages are signed; the two named categories are magnitudes.

Overlapping parameters (same category and exclusion group, e.g. "on main
road" vs "on approach road") go through the tie-break policy first.

Money is held as Decimal paise, quantized half-up after each pass, and
rounded half-up to whole rupees only when the result is reported.
"""

import logging
import warnings
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from app.config import TRACE_ENABLED, VALUATION_TIE_BREAK
from app.errors import NoBandMatchError, StaleReferenceError, ValueFlooredWarning
from app.valuation.bands import resolve_band_weightage
from app.valuation.lookups import LookupService, ParameterService
from app.valuation.models import (
    AreaType,
    FactorType,
    ParameterCategory,
    ResolvedParameter,
    ValuationRequest,
    ValuationResult,
)
from app.valuation.money import quantize_subunits, to_decimal, to_subunits, to_units

logger = logging.getLogger(__name__)

TIE_BREAK_POLICIES = ("HIGHEST_WEIGHT", "APPLY_ALL")

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


def _trace(msg: str):
    """Emit a trace-level debug message when VALUATION_TRACE is enabled."""
    if TRACE_ENABLED:
        logger.debug(f"[TRACE] {msg}")


# ═══════════════════════════════════════════════════
# 1. PLOT BASE VALUE
# ═══════════════════════════════════════════════════

def _value_of(record: Any, attr: str, entity: str) -> Decimal:
    if record is None:
        raise StaleReferenceError(entity, "(not supplied)")
    return to_decimal(getattr(record, attr, record))


def compute_plot_base_value(district_base, geo_factor, conversion_factor) -> Decimal:
    """District base × geographical factor × conversion factor, in paise.

    Accepts the reference records (DistrictBase, GeographicalFactor,
    ConversionFactor) or bare numbers.  The product is exact; no rounding
    happens here.

    Raises:
        StaleReferenceError: any input is None (no effective record).
    """
    base = _value_of(district_base, "base_value", "district base")
    geo = _value_of(geo_factor, "factor", "geographical factor")
    conversion = _value_of(conversion_factor, "factor", "conversion factor")
    return to_subunits(base) * geo * conversion


# ═══════════════════════════════════════════════════
# 2. PARAMETER APPLICATION
# ═══════════════════════════════════════════════════

@dataclass
class AppliedValue:
    """Outcome of apply_parameters(): value in paise plus an audit trail."""

    subunits: Decimal
    applied: list[ResolvedParameter] = field(default_factory=list)
    dropped: list[ResolvedParameter] = field(default_factory=list)
    steps: list[dict] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    floored: bool = False

    @property
    def market_value(self) -> int:
        return to_units(self.subunits)


def select_parameters(
    resolved: list[ResolvedParameter], policy: str | None = None,
) -> tuple[list[ResolvedParameter], list[ResolvedParameter]]:
    """Apply the tie-break policy to overlapping parameters.

    Parameters overlap when they share a category and a non-empty
    exclusion group.  Returns (kept, dropped), both in input order.
    """
    policy = (policy or VALUATION_TIE_BREAK).upper()
    if policy not in TIE_BREAK_POLICIES:
        raise ValueError(f"Unknown tie-break policy {policy!r} (expected one of {TIE_BREAK_POLICIES})")
    if policy == "APPLY_ALL":
        return list(resolved), []

    winners: dict[tuple[ParameterCategory, str], ResolvedParameter] = {}
    for p in resolved:
        if not p.exclusion_group:
            continue
        group = (p.category, p.exclusion_group)
        best = winners.get(group)
        # Strictly greater: on equal weight the first listed parameter stays
        if best is None or p.weightage > best.weightage:
            winners[group] = p

    kept, dropped = [], []
    for p in resolved:
        if p.exclusion_group and winners[(p.category, p.exclusion_group)] is not p:
            dropped.append(p)
        else:
            kept.append(p)
    for p in dropped:
        logger.info(
            f"Parameter {p.code} dropped, overlaps a higher-weighted "
            f"{p.category.value} parameter in group '{p.exclusion_group}'"
        )
    return kept, dropped


def _sum_magnitudes(params: list[ResolvedParameter], factor_type: FactorType) -> Decimal:
    total = _ZERO
    for p in params:
        if p.factor_type is factor_type:
            total += abs(p.weightage)
    return total


def _floor(value: Decimal, stage: str, result: AppliedValue) -> Decimal:
    if value >= 0:
        return value
    msg = f"Value floored to zero {stage} (would have been {to_units(value)})"
    logger.warning(msg)
    warnings.warn(msg, ValueFlooredWarning, stacklevel=3)
    result.warnings.append(msg)
    result.floored = True
    return _ZERO


def apply_parameters(
    plot_base_value: Decimal,
    resolved_parameters: list[ResolvedParameter],
    tie_break: str | None = None,
) -> AppliedValue:
    """Apply resolved parameters to a plot base value (paise).

    An empty parameter list returns a non-negative input unchanged.  The
    result is never negative; clamping emits ValueFlooredWarning.
    """
    result = AppliedValue(subunits=_ZERO)
    value = _floor(to_decimal(plot_base_value), "at the plot base value", result)
    result.subunits = value
    if not resolved_parameters:
        return result

    kept, dropped = select_parameters(resolved_parameters, tie_break)
    result.applied = kept
    result.dropped = dropped

    depreciation = [p for p in kept if p.category is ParameterCategory.DEPRECIATION]
    appreciation = [p for p in kept if p.category is not ParameterCategory.DEPRECIATION]

    # Pass 1: depreciation against the base value
    if depreciation:
        pct = _sum_magnitudes(depreciation, FactorType.PERCENTAGE)
        fixed = _sum_magnitudes(depreciation, FactorType.FIXED_AMOUNT)
        before = value
        value = quantize_subunits(value * (1 - pct / _HUNDRED)) - to_subunits(fixed)
        value = _floor(value, "after depreciation", result)
        result.steps.append({
            "pass": "depreciation",
            "percentage": str(pct),
            "fixed_amount": str(fixed),
            "before": to_units(before),
            "after": to_units(value),
        })
        _trace(f"DEPRECIATION pct={pct} fixed={fixed} {before} → {value}")

    # Pass 2: appreciation over the depreciated value
    if appreciation:
        pct = _ZERO
        fixed = _ZERO
        for p in appreciation:
            # TEMPORARY_APPRECIATION is a magnitude; OTHER carries its own sign
            w = abs(p.weightage) if p.category is ParameterCategory.TEMPORARY_APPRECIATION else p.weightage
            if p.factor_type is FactorType.PERCENTAGE:
                pct += w
            else:
                fixed += w
        before = value
        value = quantize_subunits(value * (1 + pct / _HUNDRED)) + to_subunits(fixed)
        value = _floor(value, "after appreciation", result)
        result.steps.append({
            "pass": "appreciation",
            "percentage": str(pct),
            "fixed_amount": str(fixed),
            "before": to_units(before),
            "after": to_units(value),
        })
        _trace(f"APPRECIATION pct={pct} fixed={fixed} {before} → {value}")

    result.subunits = value
    return result


# ═══════════════════════════════════════════════════
# 3. FULL VALUATION
# ═══════════════════════════════════════════════════

def resolve_parameters(
    parameter_service: ParameterService,
    observations: dict,
    district_code: str,
    area_type: AreaType,
    as_of: date,
) -> tuple[list[ResolvedParameter], list[dict], list[str]]:
    """Match every observed, active parameter to its band weightage.

    Returns (resolved, unmatched, ignored):
      - unmatched: observations that fit no band (zero contribution)
      - ignored:   observed codes that are unknown, inactive or expired
    """
    resolved: list[ResolvedParameter] = []
    unmatched: list[dict] = []
    active = {p.code: p for p in parameter_service.list_active_parameters(as_of)}
    ignored = sorted(code for code in observations if code not in active)

    for code, param in active.items():
        if code not in observations:
            continue
        observed = observations[code]
        try:
            weightage, band = resolve_band_weightage(
                parameter_service, code, observed, district_code, area_type,
            )
        except NoBandMatchError as e:
            logger.warning(f"{e}; parameter contributes zero")
            unmatched.append({"code": code, "observed_value": observed})
            continue
        resolved.append(ResolvedParameter(
            code=code,
            category=param.category,
            factor_type=param.factor_type,
            weightage=weightage,
            band_code=band.band_code,
            exclusion_group=param.exclusion_group,
        ))
    return resolved, unmatched, ignored


def compute_valuation(
    request: ValuationRequest,
    lookup: LookupService,
    parameter_service: ParameterService,
    tie_break: str | None = None,
) -> ValuationResult:
    """Compute the market value of one plot.

    All-or-nothing: a missing district base, geographical factor or
    conversion factor raises StaleReferenceError and nothing is returned.
    """
    as_of = request.as_of or date.today()
    j = request.jurisdiction

    district_base = lookup.resolve_district_base(j.district_code, as_of)
    if district_base is None:
        raise StaleReferenceError("district base", j.district_code, as_of)
    geo = lookup.resolve_geo_factor(j.district_code, j.circle_code, j.lot_code, as_of)
    if geo is None:
        raise StaleReferenceError(
            "geographical factor", f"{j.district_code}|{j.circle_code}|{j.lot_code}", as_of,
        )
    conversion = lookup.resolve_conversion_factor(
        request.land_category_id, request.area_type, as_of, j.district_code,
    )
    if conversion is None:
        raise StaleReferenceError(
            "conversion factor", f"{request.land_category_id}|{request.area_type.value}", as_of,
        )

    base_subunits = compute_plot_base_value(district_base, geo, conversion)
    resolved, unmatched, ignored = resolve_parameters(
        parameter_service, request.observations, j.district_code, request.area_type, as_of,
    )
    applied = apply_parameters(base_subunits, resolved, tie_break)

    plot_base_value = to_units(base_subunits)
    market_value = applied.market_value
    per_unit: Optional[int] = None
    if request.plot_area and request.plot_area > 0:
        per_unit = to_units(applied.subunits / request.plot_area)

    breakdown = {
        "formula": "Plot Base Value = District Base × Geographical Factor × Conversion Factor",
        "as_of": as_of.isoformat(),
        "jurisdiction": j.key(),
        "district_base": district_base.to_dict(),
        "geographical_factor": geo.to_dict(),
        "conversion_factor": conversion.to_dict(),
        "plot_base_value": plot_base_value,
        "market_value_per_unit": per_unit,
        "applied_parameters": [p.to_dict() for p in applied.applied],
        "dropped_parameters": [p.to_dict() for p in applied.dropped],
        "unmatched_parameters": unmatched,
        "ignored_observations": ignored,
        "steps": applied.steps,
    }
    logger.info(
        f"Valuation {j.key()} [{request.land_category_id}/{request.area_type.value}] "
        f"base={plot_base_value} market={market_value} params={len(applied.applied)}"
    )
    return ValuationResult(
        market_value=market_value,
        plot_base_value=plot_base_value,
        breakdown=breakdown,
        warnings=list(applied.warnings),
    )


def validate_valuation_request(payload: dict) -> list[str]:
    """Validate raw plot-valuation input; returns human-readable errors."""
    errors: list[str] = []
    for field_name, label in (
        ("district_code", "District code"),
        ("circle_code", "Circle code"),
        ("mouza_code", "Mouza code"),
        ("lot_code", "Lot code"),
        ("land_category_id", "Land category ID"),
    ):
        if not str(payload.get(field_name) or "").strip():
            errors.append(f"{label} is required")

    if str(payload.get("area_type") or "").upper() not in {a.value for a in AreaType}:
        errors.append("Valid area type (RURAL/URBAN) is required")

    plot_area = payload.get("plot_area")
    if plot_area is not None:
        try:
            if to_decimal(plot_area) <= 0:
                errors.append("Plot area must be greater than 0")
        except (TypeError, ValueError):
            errors.append("Plot area must be a number")
    return errors
