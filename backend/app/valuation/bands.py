"""Parameter band matching and weightage resolution.

A band is either a numeric range ``[min, max)`` (an absent bound is open)
or a categorical label.  Bands are scanned in declaration order and the
first one that accepts the observed value wins.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from app.errors import BandOverlapError, NoBandMatchError
from app.valuation.models import AreaType, ParameterBand

logger = logging.getLogger(__name__)

_TRUE_LABELS = {"yes", "true", "y", "1"}
_FALSE_LABELS = {"no", "false", "n", "0"}


def _normalize_label(value: Any) -> str:
    return " ".join(str(value).split()).lower()


def _as_number(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip().replace(",", ""))
        except InvalidOperation:
            return None
    return None


def band_matches(band: ParameterBand, observed_value: Any) -> bool:
    """True if ``observed_value`` falls into ``band``."""
    if band.is_categorical:
        label = _normalize_label(band.label)
        if isinstance(observed_value, bool):
            wanted = _TRUE_LABELS if observed_value else _FALSE_LABELS
            return label in wanted
        return label == _normalize_label(observed_value)

    number = _as_number(observed_value)
    if number is None:
        return False
    if band.min_value is not None and number < band.min_value:
        return False
    if band.max_value is not None and number >= band.max_value:
        return False
    return True


def match_band(parameter_code: str, bands: list[ParameterBand], observed_value: Any) -> ParameterBand:
    """Linear scan; the first band containing the value wins."""
    for band in bands:
        if band.parameter_code != parameter_code:
            continue
        if band_matches(band, observed_value):
            return band
    raise NoBandMatchError(parameter_code, observed_value)


def _ranges_overlap(a: ParameterBand, b: ParameterBand) -> bool:
    a_lo = a.min_value if a.min_value is not None else Decimal("-Infinity")
    a_hi = a.max_value if a.max_value is not None else Decimal("Infinity")
    b_lo = b.min_value if b.min_value is not None else Decimal("-Infinity")
    b_hi = b.max_value if b.max_value is not None else Decimal("Infinity")
    # Half-open intervals: [0,100) and [100,200) touch but do not overlap
    return a_lo < b_hi and b_lo < a_hi


def validate_bands(bands: list[ParameterBand]) -> None:
    """Reject overlapping or duplicate bands within each parameter.

    Raises:
        BandOverlapError: two ranged bands intersect, two categorical bands
            share a label, or a band code is repeated.
    """
    by_param: dict[str, list[ParameterBand]] = {}
    for band in bands:
        by_param.setdefault(band.parameter_code, []).append(band)

    for code, group in by_param.items():
        seen_codes: set[str] = set()
        seen_labels: set[str] = set()
        ranged: list[ParameterBand] = []
        for band in group:
            if band.band_code in seen_codes:
                raise BandOverlapError(f"{code}: duplicate band code {band.band_code}")
            seen_codes.add(band.band_code)
            if band.is_categorical:
                label = _normalize_label(band.label)
                if label in seen_labels:
                    raise BandOverlapError(f"{code}: duplicate categorical label '{band.label}'")
                seen_labels.add(label)
            else:
                for other in ranged:
                    if _ranges_overlap(band, other):
                        raise BandOverlapError(
                            f"{code}: band {band.band_code} overlaps {other.band_code}"
                        )
                ranged.append(band)


def resolve_parameter_band(
    parameter_service,
    parameter_code: str,
    observed_value: Any,
    district_code: str,
    area_type: AreaType | str,
) -> Decimal:
    """Resolve the weightage of the band that ``observed_value`` falls into.

    Returns ``Decimal(0)`` when a band matches but no weightage is defined for
    the district / area type.

    Raises:
        NoBandMatchError: no band of the parameter accepts the value.
    """
    weightage, _band = resolve_band_weightage(
        parameter_service, parameter_code, observed_value, district_code, area_type,
    )
    return weightage


def resolve_band_weightage(
    parameter_service,
    parameter_code: str,
    observed_value: Any,
    district_code: str,
    area_type: AreaType | str,
) -> tuple[Decimal, ParameterBand]:
    """Same as resolve_parameter_band() but also returns the matched band."""
    area_type = AreaType(area_type)
    band = match_band(parameter_code, parameter_service.list_bands(parameter_code), observed_value)
    for row in parameter_service.list_weightages(parameter_code, district_code, area_type):
        if row.band_code == band.band_code:
            return row.weightage, band
    logger.debug(
        f"No weightage for {parameter_code}/{band.band_code} in "
        f"{district_code}/{area_type.value}, contributes zero"
    )
    return Decimal("0"), band
