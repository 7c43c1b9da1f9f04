"""Shared fixtures for the valuation and workflow test suite."""

import pytest
from datetime import date

from app.services import build_services
from app.valuation.models import (
    ConversionFactor,
    GeographicalFactor,
    Jurisdiction,
    Parameter,
    ParameterBand,
    ParameterWeightage,
    ValuationRequest,
)
from app.valuation.reference_store import ParameterStore, ReferenceStore
from app.workflow.approval import ApprovalWorkflow
from app.workflow.roles import RoleAuthority

AS_OF = date(2024, 6, 1)
CHAIN = ["Junior Manager", "Manager", "Senior Manager", "Role Admin"]


# ═══════════════════════════════════════════════════
# Reference data
# ═══════════════════════════════════════════════════

@pytest.fixture
def reference_store():
    """D01 base ₹1,000; C01/L01 factor 1.2; LC1 rural 1.5 → plot base ₹1,800."""
    store = ReferenceStore(derive_geo_factors=True)
    store.add_district_base("D01", 1000, "2024-01-01")
    store.add_geo_factor(GeographicalFactor("D01", "C01", "L01", "1.2", effective_from="2024-01-01"))
    store.add_geo_factor(GeographicalFactor("D01", "C01", "L02", "1.0", effective_from="2024-01-01"))
    store.add_conversion_factor(ConversionFactor("LC1", "RURAL", "1.5", effective_from="2024-01-01"))
    store.add_conversion_factor(ConversionFactor("LC1", "URBAN", "2.0", effective_from="2024-01-01"))
    return store


@pytest.fixture
def parameter_store():
    """Road width (depreciation), two overlapping road-access appreciations,
    a fixed flood-zone deduction and one expired parameter."""
    store = ParameterStore()
    store.upsert_parameter(Parameter("ROAD_WIDTH", "DEPRECIATION", "PERCENTAGE", name="Road width (ft)"))
    store.upsert_parameter(Parameter(
        "MAIN_ROAD", "TEMPORARY_APPRECIATION", "PERCENTAGE", name="On main road", exclusion_group="ROAD_ACCESS",
    ))
    store.upsert_parameter(Parameter(
        "APPROACH_ROAD", "TEMPORARY_APPRECIATION", "PERCENTAGE", name="On approach road", exclusion_group="ROAD_ACCESS",
    ))
    store.upsert_parameter(Parameter("FLOOD_ZONE", "DEPRECIATION", "FIXED_AMOUNT", name="Flood zone"))
    store.upsert_parameter(Parameter(
        "OLD_SCHEME", "OTHER", "PERCENTAGE", name="Withdrawn scheme", expiry_date="2020-01-01",
    ))

    store.set_bands("ROAD_WIDTH", [
        ParameterBand("ROAD_WIDTH", "NARROW", "Below 10 ft", min_value=0, max_value=10),
        ParameterBand("ROAD_WIDTH", "WIDE", "10 ft and above", min_value=10),
    ])
    for code in ("MAIN_ROAD", "APPROACH_ROAD", "FLOOD_ZONE", "OLD_SCHEME"):
        store.set_bands(code, [ParameterBand(code, "YES", "Yes")])

    store.set_weightages("ROAD_WIDTH", [
        ParameterWeightage("ROAD_WIDTH", "NARROW", "D01", "RURAL", 10),
        ParameterWeightage("ROAD_WIDTH", "WIDE", "D01", "RURAL", 2),
    ])
    store.set_weightages("MAIN_ROAD", [ParameterWeightage("MAIN_ROAD", "YES", "D01", "RURAL", 15)])
    store.set_weightages("APPROACH_ROAD", [ParameterWeightage("APPROACH_ROAD", "YES", "D01", "RURAL", 5)])
    store.set_weightages("FLOOD_ZONE", [ParameterWeightage("FLOOD_ZONE", "YES", "D01", "RURAL", 100)])
    store.set_weightages("OLD_SCHEME", [ParameterWeightage("OLD_SCHEME", "YES", "D01", "RURAL", 50)])
    return store


@pytest.fixture
def jurisdiction():
    return Jurisdiction(district_code="D01", circle_code="C01", mouza_code="M01", lot_code="L01")


@pytest.fixture
def valuation_request(jurisdiction):
    def _make(observations=None, **overrides):
        fields = {
            "jurisdiction": jurisdiction,
            "land_category_id": "LC1",
            "area_type": "RURAL",
            "observations": observations or {},
            "as_of": AS_OF,
        }
        fields.update(overrides)
        return ValuationRequest(**fields)
    return _make


# ═══════════════════════════════════════════════════
# Workflow
# ═══════════════════════════════════════════════════

@pytest.fixture
def workflow():
    return ApprovalWorkflow(roles=RoleAuthority(CHAIN))


@pytest.fixture
def district_payload():
    return {"code": "D09", "name": "Kamrup Metro"}


@pytest.fixture
def services(reference_store, parameter_store):
    return build_services(
        reference_store=reference_store,
        parameter_store=parameter_store,
        backend="memory",
        snapshot=None,
        roles=RoleAuthority(CHAIN),
    )


@pytest.fixture
def approve_all():
    """Walk a request through every level of the chain."""
    def _walk(workflow, request):
        for role in CHAIN:
            request = workflow.approve(request, role)
        return request
    return _walk
