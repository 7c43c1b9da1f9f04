"""Valuation endpoints: market value, plot base value, stamp duty, statement, alerts."""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, Field

from app.config import STALE_AFTER_DAYS
from app.errors import BandOverlapError, StaleReferenceError
from app.reports.generator import render_valuation_statement
from app.services import Services
from app.valuation.engine import (
    compute_plot_base_value,
    compute_valuation,
    validate_valuation_request,
)
from app.valuation.models import Jurisdiction, ValuationRequest
from app.valuation.money import to_units
from app.valuation.stamp_duty import Instrument, calculate_stamp_duty

router = APIRouter()
logger = logging.getLogger(__name__)


def get_services(request: Request) -> Services:
    return request.app.state.services


class ValuationInput(BaseModel):
    district_code: str = ""
    circle_code: str = ""
    mouza_code: str = ""
    lot_code: str = ""
    village_code: Optional[str] = None
    land_category_id: str = ""
    area_type: str = ""
    plot_area: Optional[float] = None
    observations: dict[str, Any] = Field(default_factory=dict)
    as_of: Optional[date] = None
    tie_break: Optional[str] = None


class PlotBaseInput(BaseModel):
    district_code: str
    circle_code: str
    lot_code: str
    land_category_id: str
    area_type: str
    plot_area: Optional[float] = None
    as_of: Optional[date] = None


class InstrumentSelection(BaseModel):
    id: int
    name: str
    male_duty: Decimal = Decimal("0")
    female_duty: Decimal = Decimal("0")
    joint_duty: Decimal = Decimal("0")
    is_fixed: bool = False
    selected_option: str = "Male"


class StampDutyInput(BaseModel):
    market_value: Decimal
    consideration_value: Optional[Decimal] = None
    instruments: list[InstrumentSelection]


class StatementStampDuty(BaseModel):
    consideration_value: Optional[Decimal] = None
    instruments: list[InstrumentSelection]


class StatementInput(BaseModel):
    valuation: ValuationInput
    stamp_duty: Optional[StatementStampDuty] = None


def _build_request(body: ValuationInput) -> ValuationRequest:
    errors = validate_valuation_request(body.model_dump())
    if errors:
        raise HTTPException(status_code=422, detail=errors)
    return ValuationRequest(
        jurisdiction=Jurisdiction(
            district_code=body.district_code,
            circle_code=body.circle_code,
            mouza_code=body.mouza_code,
            lot_code=body.lot_code,
            village_code=body.village_code,
        ),
        land_category_id=body.land_category_id,
        area_type=body.area_type.upper(),
        plot_area=body.plot_area,
        observations=body.observations,
        as_of=body.as_of,
    )


def _run_valuation(body: ValuationInput, services: Services):
    request = _build_request(body)
    try:
        return compute_valuation(
            request, services.reference_store, services.parameter_store, body.tie_break,
        )
    except StaleReferenceError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except (BandOverlapError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))


def _estimate(market_value, selections: list[InstrumentSelection], consideration_value):
    pairs = [
        (
            Instrument(
                id=s.id, name=s.name, male_duty=s.male_duty, female_duty=s.female_duty,
                joint_duty=s.joint_duty, is_fixed=s.is_fixed,
            ),
            s.selected_option,
        )
        for s in selections
    ]
    try:
        return calculate_stamp_duty(market_value, pairs, consideration_value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/compute")
async def compute(body: ValuationInput, services: Services = Depends(get_services)):
    """Market value of one plot with the full breakdown."""
    return _run_valuation(body, services).to_dict()


@router.post("/plot-base")
async def plot_base(body: PlotBaseInput, services: Services = Depends(get_services)):
    """Plot base value only (district base × geographical × conversion factor)."""
    if body.area_type.upper() not in ("RURAL", "URBAN"):
        raise HTTPException(status_code=422, detail=["Valid area type (RURAL/URBAN) is required"])
    as_of = body.as_of or date.today()
    store = services.reference_store
    base = store.resolve_district_base(body.district_code, as_of)
    geo = store.resolve_geo_factor(body.district_code, body.circle_code, body.lot_code, as_of)
    conversion = store.resolve_conversion_factor(
        body.land_category_id, body.area_type.upper(), as_of, body.district_code,
    )
    try:
        subunits = compute_plot_base_value(base, geo, conversion)
    except StaleReferenceError as e:
        raise HTTPException(status_code=422, detail=str(e))

    per_unit = None
    if body.plot_area and body.plot_area > 0:
        per_unit = to_units(subunits / Decimal(str(body.plot_area)))
    return {
        "district_base": base.to_dict(),
        "geographical_factor": geo.to_dict(),
        "conversion_factor": conversion.to_dict(),
        "plot_base_value": to_units(subunits),
        "plot_base_value_per_unit": per_unit,
    }


@router.post("/stamp-duty")
async def stamp_duty(body: StampDutyInput):
    return _estimate(body.market_value, body.instruments, body.consideration_value).to_dict()


@router.post("/statement", response_class=HTMLResponse)
async def statement(body: StatementInput, services: Services = Depends(get_services)):
    """Valuation statement as HTML, with the stamp duty estimate if requested."""
    result = _run_valuation(body.valuation, services)
    duty = None
    if body.stamp_duty is not None:
        duty = _estimate(
            result.market_value, body.stamp_duty.instruments, body.stamp_duty.consideration_value,
        ).to_dict()
    return HTMLResponse(render_valuation_statement(result.to_dict(), duty))


@router.get("/alerts/stale")
async def stale_alerts(
    max_stale_days: int = STALE_AFTER_DAYS,
    as_of: Optional[date] = None,
    services: Services = Depends(get_services),
):
    """Per-district freshness of the district base value."""
    return services.reference_store.stale_statuses(max_stale_days, as_of)
