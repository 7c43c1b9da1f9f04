"""Tests for backend/app/valuation/reference_store.py — versioned reference data.

Covers:
  - VersionedArena: version numbering, point-in-time lookup, history
  - ReferenceStore: conversion-factor district override, derived geo factors,
    stale district base alerts, snapshot loading
  - GeographicalFactor: DERIVED_AVERAGE construction invariant
  - ParameterStore: stale exclusion, deactivation, band validation
  - MasterDataRegistry: create / update / deactivate with history, dry-run check
  - record validation: positive values and factors, dated district bases
"""

import json
from datetime import date
from decimal import Decimal

import pytest

from app.errors import BandOverlapError
from app.valuation.models import (
    ConversionFactor,
    DistrictBase,
    FactorSource,
    GeographicalFactor,
    ParameterBand,
)
from app.valuation.reference_store import (
    MasterDataRegistry,
    ReferenceStore,
    VersionedArena,
    load_snapshot,
)


# ═══════════════════════════════════════════════════
# 1. VersionedArena
# ═══════════════════════════════════════════════════

class TestVersionedArena:

    def test_versions_increase(self):
        arena = VersionedArena()
        v1 = arena.append("D01", DistrictBase("D01", 100, "2023-01-01"))
        v2 = arena.append("D01", DistrictBase("D01", 200, "2024-01-01"))
        assert (v1.version, v2.version) == (1, 2)

    def test_point_in_time(self):
        arena = VersionedArena()
        arena.append("D01", DistrictBase("D01", 100, "2023-01-01"))
        arena.append("D01", DistrictBase("D01", 200, "2024-01-01"))
        assert arena.effective("D01", date(2022, 12, 31)) is None
        assert arena.effective("D01", date(2023, 6, 1)).base_value == Decimal("100")
        assert arena.effective("D01", date(2024, 1, 1)).base_value == Decimal("200")

    def test_later_version_with_earlier_date_wins(self):
        # A correction back-dated to the same start supersedes the original
        arena = VersionedArena()
        arena.append("D01", DistrictBase("D01", 100, "2024-01-01"))
        arena.append("D01", DistrictBase("D01", 150, "2024-01-01"))
        assert arena.effective("D01", date(2024, 6, 1)).base_value == Decimal("150")

    def test_history_is_append_only(self):
        arena = VersionedArena()
        arena.append("D01", DistrictBase("D01", 100, "2023-01-01"))
        history = arena.history("D01")
        history.clear()
        assert len(arena.history("D01")) == 1


# ═══════════════════════════════════════════════════
# 2. ReferenceStore
# ═══════════════════════════════════════════════════

class TestReferenceStore:

    def test_conversion_district_override(self, reference_store):
        reference_store.add_conversion_factor(
            ConversionFactor("LC1", "RURAL", "1.8", effective_from="2024-01-01", district_code="D01")
        )
        as_of = date(2024, 6, 1)
        assert reference_store.resolve_conversion_factor("LC1", "RURAL", as_of, "D01").factor == Decimal("1.8")
        assert reference_store.resolve_conversion_factor("LC1", "RURAL", as_of, "D02").factor == Decimal("1.5")

    def test_derived_geo_factor(self, reference_store):
        geo = reference_store.resolve_geo_factor("D01", "C01", "L99", date(2024, 6, 1))
        assert geo.source is FactorSource.DERIVED_AVERAGE
        assert geo.factor == Decimal("1.1")
        assert {p.lot_code for p in geo.parents} == {"L01", "L02"}

    def test_derived_geo_factor_not_stored(self, reference_store):
        reference_store.resolve_geo_factor("D01", "C01", "L99", date(2024, 6, 1))
        assert reference_store.geo_factor_history("D01", "C01", "L99") == []

    def test_derivation_disabled(self):
        store = ReferenceStore(derive_geo_factors=False)
        store.add_geo_factor(GeographicalFactor("D01", "C01", "L01", "1.2", effective_from="2024-01-01"))
        assert store.resolve_geo_factor("D01", "C01", "L99", date(2024, 6, 1)) is None

    def test_no_siblings_no_derivation(self, reference_store):
        assert reference_store.resolve_geo_factor("D01", "C77", "L01", date(2024, 6, 1)) is None

    def test_stale_statuses(self, reference_store):
        reference_store.add_district_base("D02", 500, "2025-05-01")
        statuses = {s["key"]: s for s in reference_store.stale_statuses(365, date(2025, 6, 1))}
        assert statuses["D01"]["is_stale"] is True
        assert statuses["D01"]["days_since_update"] == 517
        assert statuses["D02"]["is_stale"] is False
        assert statuses["D02"]["last_updated_at"] == "2025-05-01"

    def test_load_snapshot(self, tmp_path):
        snapshot = {
            "district_bases": [{"district_code": "D01", "base_value": "1000", "effective_from": "2024-01-01"}],
            "geo_factors": [{"district_code": "D01", "circle_code": "C01", "lot_code": "L01", "factor": "1.2"}],
            "conversion_factors": [{"land_category_id": "LC1", "area_type": "URBAN", "factor": "2"}],
            "parameters": [{"code": "AGE", "category": "DEPRECIATION", "factor_type": "PERCENTAGE"}],
            "bands": [{"parameter_code": "AGE", "band_code": "OLD", "label": "Old", "min_value": 20}],
            "weightages": [{
                "parameter_code": "AGE", "band_code": "OLD", "district_code": "D01",
                "area_type": "URBAN", "weightage": 5,
            }],
        }
        path = tmp_path / "reference.json"
        path.write_text(json.dumps(snapshot), encoding="utf-8")
        refs, params = load_snapshot(path)
        as_of = date(2024, 6, 1)
        assert refs.resolve_district_base("D01", as_of).base_value == Decimal("1000")
        assert refs.resolve_conversion_factor("LC1", "URBAN", as_of).factor == Decimal("2")
        assert [p.code for p in params.list_active_parameters(as_of)] == ["AGE"]
        assert params.list_weightages("AGE", "D01", "URBAN")[0].weightage == Decimal("5")


# ═══════════════════════════════════════════════════
# 3. GeographicalFactor invariant
# ═══════════════════════════════════════════════════

class TestDerivedAverageInvariant:

    def test_requires_parents(self):
        with pytest.raises(ValueError):
            GeographicalFactor("D01", "C01", "L05", "1.1", source="DERIVED_AVERAGE")

    def test_requires_mean(self):
        parents = ({"circle_code": "C01", "lot_code": "L01", "factor": "1.2"},
                   {"circle_code": "C01", "lot_code": "L02", "factor": "1.0"})
        with pytest.raises(ValueError):
            GeographicalFactor("D01", "C01", "L05", "1.5", source="DERIVED_AVERAGE", parents=parents)

    def test_valid_mean(self):
        parents = ({"circle_code": "C01", "lot_code": "L01", "factor": "1.2"},
                   {"circle_code": "C01", "lot_code": "L02", "factor": "1.0"})
        geo = GeographicalFactor("D01", "C01", "L05", "1.1", source="DERIVED_AVERAGE", parents=parents)
        assert len(geo.parents) == 2


# ═══════════════════════════════════════════════════
# 4. ParameterStore
# ═══════════════════════════════════════════════════

class TestParameterStore:

    def test_expired_parameter_excluded(self, parameter_store):
        codes = {p.code for p in parameter_store.list_active_parameters(date(2024, 6, 1))}
        assert "OLD_SCHEME" not in codes
        assert "ROAD_WIDTH" in codes

    def test_expired_parameter_active_before_expiry(self, parameter_store):
        codes = {p.code for p in parameter_store.list_active_parameters(date(2019, 6, 1))}
        assert "OLD_SCHEME" in codes

    def test_deactivate(self, parameter_store):
        parameter_store.deactivate_parameter("MAIN_ROAD")
        codes = {p.code for p in parameter_store.list_active_parameters(date(2024, 6, 1))}
        assert "MAIN_ROAD" not in codes
        assert len(parameter_store.parameter_history("MAIN_ROAD")) == 2

    def test_deactivate_unknown(self, parameter_store):
        with pytest.raises(KeyError):
            parameter_store.deactivate_parameter("NOPE")

    def test_overlapping_bands_rejected(self, parameter_store):
        with pytest.raises(BandOverlapError):
            parameter_store.set_bands("ROAD_WIDTH", [
                ParameterBand("ROAD_WIDTH", "A", "a", 0, 20),
                ParameterBand("ROAD_WIDTH", "B", "b", 10, 30),
            ])
        # Existing bands untouched
        assert [b.band_code for b in parameter_store.list_bands("ROAD_WIDTH")] == ["NARROW", "WIDE"]

    def test_band_for_other_parameter_rejected(self, parameter_store):
        with pytest.raises(ValueError):
            parameter_store.set_bands("ROAD_WIDTH", [ParameterBand("MAIN_ROAD", "X", "x")])


# ═══════════════════════════════════════════════════
# 5. MasterDataRegistry
# ═══════════════════════════════════════════════════

class TestMasterDataRegistry:

    def test_create_update_deactivate(self):
        registry = MasterDataRegistry()
        registry.apply("DISTRICT", "CREATE", {"code": "D01", "name": "Kamrup"})
        registry.apply("DISTRICT", "UPDATE", {"code": "D01", "name": "Kamrup Rural"})
        registry.apply("DISTRICT", "DEACTIVATE", {"code": "D01"})
        record = registry.get("DISTRICT", "D01")
        assert record["name"] == "Kamrup Rural"
        assert record["active"] is False
        assert len(registry.history("DISTRICT", "D01")) == 3
        assert registry.list_records("DISTRICT") == []
        assert len(registry.list_records("DISTRICT", include_inactive=True)) == 1

    def test_duplicate_create(self):
        registry = MasterDataRegistry()
        registry.apply("CIRCLE", "CREATE", {"code": "C01"})
        with pytest.raises(ValueError):
            registry.apply("CIRCLE", "CREATE", {"code": "C01"})

    def test_update_missing(self):
        with pytest.raises(ValueError):
            MasterDataRegistry().apply("LOT", "UPDATE", {"code": "L01"})

    def test_code_required(self):
        with pytest.raises(ValueError):
            MasterDataRegistry().apply("SRO", "CREATE", {"name": "no code"})

    def test_check_mirrors_apply_without_mutating(self):
        registry = MasterDataRegistry()
        registry.check("VILLAGE", "CREATE", {"code": "V01"})
        assert registry.get("VILLAGE", "V01") is None
        registry.apply("VILLAGE", "CREATE", {"code": "V01"})
        with pytest.raises(ValueError):
            registry.check("VILLAGE", "CREATE", {"code": "V01"})
        with pytest.raises(ValueError):
            registry.check("VILLAGE", "DEACTIVATE", {"code": "V02"})
        assert len(registry.history("VILLAGE", "V01")) == 1


# ═══════════════════════════════════════════════════
# 6. Record validation
# ═══════════════════════════════════════════════════

class TestRecordValidation:

    def test_district_base_requires_effective_from(self):
        with pytest.raises(ValueError):
            DistrictBase("D01", 5000, None)
        with pytest.raises(ValueError):
            DistrictBase("D01", 5000, "")

    @pytest.mark.parametrize("base_value", [0, -5000, "-1"])
    def test_district_base_must_be_positive(self, base_value):
        with pytest.raises(ValueError):
            DistrictBase("D01", base_value, "2024-01-01")

    @pytest.mark.parametrize("factor", [0, "-1.2"])
    def test_geo_factor_must_be_positive(self, factor):
        with pytest.raises(ValueError):
            GeographicalFactor("D01", "C01", "L01", factor, effective_from="2024-01-01")

    @pytest.mark.parametrize("factor", [0, -1])
    def test_conversion_factor_must_be_positive(self, factor):
        with pytest.raises(ValueError):
            ConversionFactor("LC1", "RURAL", factor, effective_from="2024-01-01")

    def test_parent_factor_must_be_positive(self):
        parents = ({"circle_code": "C01", "lot_code": "L01", "factor": "0"},
                   {"circle_code": "C01", "lot_code": "L02", "factor": "2.2"})
        with pytest.raises(ValueError):
            GeographicalFactor("D01", "C01", "L05", "1.1", source="DERIVED_AVERAGE", parents=parents)
