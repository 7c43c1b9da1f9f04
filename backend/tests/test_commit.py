"""Tests for backend/app/workflow/commit.py — approved changes reach the stores."""

from datetime import date
from decimal import Decimal

import pytest

from app.valuation.engine import compute_valuation
from app.workflow.models import Operation, Status

AS_OF = date(2024, 6, 1)
CHAIN = ["Junior Manager", "Manager", "Senior Manager", "Role Admin"]


class TestChangeCommitter:

    def test_district_base_gets_new_version(self, services, approve_all):
        wf = services.workflow
        request = wf.submit(
            "DISTRICT_BASE", "UPDATE",
            {"district_code": "D01", "base_value": "1200", "effective_from": "2024-05-01"},
            "clerk01", "Annual revision",
        )
        # Nothing changes until the final approval
        assert services.reference_store.resolve_district_base("D01", AS_OF).base_value == Decimal("1000")
        approve_all(wf, request)
        current = services.reference_store.resolve_district_base("D01", AS_OF)
        assert current.base_value == Decimal("1200")
        assert current.version == 2
        assert len(services.reference_store.district_base_history("D01")) == 2

    def test_geo_factor(self, services, approve_all):
        request = services.workflow.submit(
            "GEO_FACTOR", "CREATE",
            {"district_code": "D01", "circle_code": "C02", "lot_code": "L01", "factor": "0.9",
             "effective_from": "2024-01-01"},
            "clerk01",
        )
        approve_all(services.workflow, request)
        assert services.reference_store.resolve_geo_factor("D01", "C02", "L01", AS_OF).factor == Decimal("0.9")

    def test_parameter_with_bands(self, services, approve_all):
        payload = {
            "code": "CORNER_PLOT",
            "category": "TEMPORARY_APPRECIATION",
            "factor_type": "PERCENTAGE",
            "bands": [{"band_code": "YES", "label": "Yes"}],
            "weightages": [{"band_code": "YES", "district_code": "D01", "area_type": "RURAL", "weightage": 4}],
        }
        approve_all(services.workflow, services.workflow.submit("PARAMETER", "CREATE", payload, "clerk01"))
        store = services.parameter_store
        assert store.get_parameter("CORNER_PLOT").is_active
        assert store.list_bands("CORNER_PLOT")[0].band_code == "YES"
        assert store.list_weightages("CORNER_PLOT", "D01", "RURAL")[0].weightage == Decimal("4")

    def test_parameter_deactivation(self, services, approve_all):
        request = services.workflow.submit("PARAMETER", "DEACTIVATE", {"code": "MAIN_ROAD"}, "clerk01")
        approve_all(services.workflow, request)
        assert services.parameter_store.get_parameter("MAIN_ROAD").is_active is False

    def test_master_entity(self, services, approve_all):
        request = services.workflow.submit("VILLAGE", "CREATE", {"code": "V01", "name": "Rani"}, "clerk01")
        approve_all(services.workflow, request)
        assert services.registry.get("VILLAGE", "V01")["name"] == "Rani"

    def test_invalid_payload_refused_at_submit(self, services):
        with pytest.raises(ValueError):
            services.workflow.submit("GEO_FACTOR", "CREATE", {"district_code": "D01"}, "clerk01")

    def test_overlapping_bands_refused_at_submit(self, services):
        payload = {
            "code": "AGE", "category": "DEPRECIATION", "factor_type": "PERCENTAGE",
            "bands": [
                {"band_code": "A", "label": "a", "min_value": 0, "max_value": 20},
                {"band_code": "B", "label": "b", "min_value": 10, "max_value": 30},
            ],
        }
        with pytest.raises(ValueError):
            services.workflow.submit("PARAMETER", "CREATE", payload, "clerk01")

    def test_versioned_data_cannot_be_deactivated(self, services):
        with pytest.raises(ValueError):
            services.committer.validate("DISTRICT_BASE", Operation.DEACTIVATE, {"district_code": "D01"})

    def test_rejected_change_not_applied(self, services):
        wf = services.workflow
        request = wf.submit("VILLAGE", "CREATE", {"code": "V02"}, "clerk01")
        wf.reject(request, "Junior Manager", "Wrong circle")
        assert services.registry.get("VILLAGE", "V02") is None


class TestVersionedPayloadValidation:

    @pytest.mark.parametrize("entity_type,payload", [
        ("DISTRICT_BASE", {"district_code": "D01", "base_value": 5000, "effective_from": None}),
        ("GEO_FACTOR", {"district_code": "D01", "circle_code": "C01", "lot_code": "L01", "factor": "1.3"}),
        ("CONVERSION_FACTOR", {"land_category_id": "LC1", "area_type": "RURAL", "factor": "1.7",
                               "effective_from": ""}),
    ])
    def test_missing_effective_from_refused(self, services, entity_type, payload):
        with pytest.raises(ValueError):
            services.workflow.submit(entity_type, "UPDATE", payload, "clerk01")
        assert services.workflow.list_requests() == []

    @pytest.mark.parametrize("entity_type,payload", [
        ("DISTRICT_BASE", {"district_code": "D01", "base_value": -5000, "effective_from": "2024-05-01"}),
        ("DISTRICT_BASE", {"district_code": "D01", "base_value": 0, "effective_from": "2024-05-01"}),
        ("GEO_FACTOR", {"district_code": "D01", "circle_code": "C01", "lot_code": "L01", "factor": "0",
                        "effective_from": "2024-05-01"}),
        ("CONVERSION_FACTOR", {"land_category_id": "LC1", "area_type": "RURAL", "factor": "-1.5",
                               "effective_from": "2024-05-01"}),
    ])
    def test_non_positive_values_refused(self, services, entity_type, payload):
        with pytest.raises(ValueError):
            services.workflow.submit(entity_type, "UPDATE", payload, "clerk01")

    def test_reference_data_untouched_after_refusal(self, services, valuation_request):
        with pytest.raises(ValueError):
            services.workflow.submit(
                "DISTRICT_BASE", "UPDATE",
                {"district_code": "D01", "base_value": 5000, "effective_from": None}, "clerk01",
            )
        store = services.reference_store
        assert len(store.district_base_history("D01")) == 1
        assert store.stale_statuses(365, AS_OF)[0]["days_since_update"] == 152
        result = compute_valuation(valuation_request(), store, services.parameter_store)
        assert result.market_value == 1800


class TestConflictsBeforeFinalApproval:

    def _walk_to_last_level(self, workflow, request):
        for role in CHAIN[:-1]:
            request = workflow.approve(request, role)
        return request

    def test_duplicate_create_refused_and_request_stays_open(self, services, approve_all):
        wf = services.workflow
        approve_all(wf, wf.submit("DISTRICT", "CREATE", {"code": "D09", "name": "Kamrup Metro"}, "clerk01"))
        duplicate = wf.submit("DISTRICT", "CREATE", {"code": "D09", "name": "Duplicate"}, "clerk02")
        duplicate = self._walk_to_last_level(wf, duplicate)

        with pytest.raises(ValueError):
            wf.approve(duplicate, CHAIN[-1])

        current = wf.get(duplicate.id)
        assert current == duplicate
        assert (current.status, current.current_level) == (Status.UNDER_REVIEW, 4)
        assert len(wf.audit_trail(duplicate.id)) == 4
        assert services.registry.get("DISTRICT", "D09")["name"] == "Kamrup Metro"
        # Still open, so the last approver can turn it down
        assert wf.reject(current, CHAIN[-1], "Already exists").status is Status.REJECTED

    def test_update_of_unknown_parameter_refused(self, services):
        wf = services.workflow
        payload = {"code": "GHOST", "category": "OTHER", "factor_type": "PERCENTAGE"}
        request = self._walk_to_last_level(wf, wf.submit("PARAMETER", "UPDATE", payload, "clerk01"))
        with pytest.raises(ValueError):
            wf.approve(request, CHAIN[-1])
        assert wf.get(request.id).status is Status.UNDER_REVIEW
        assert services.parameter_store.get_parameter("GHOST") is None

    def test_deactivate_of_missing_master_record_refused(self, services):
        wf = services.workflow
        request = self._walk_to_last_level(wf, wf.submit("LOT", "DEACTIVATE", {"code": "L77"}, "clerk01"))
        with pytest.raises(ValueError):
            wf.approve(request, CHAIN[-1])
        assert wf.get(request.id).current_level == 4
