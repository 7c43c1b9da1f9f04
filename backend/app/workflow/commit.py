"""Applies approved change requests to the reference data.

Versioned data (district bases, geographical and conversion factors) only
ever gains a new version; parameters are upserted or deactivated together
with their bands and weightages; master entities go through the registry.
"""

import logging

from app.valuation.bands import validate_bands
from app.valuation.models import (
    ConversionFactor,
    DistrictBase,
    GeographicalFactor,
    Parameter,
    ParameterBand,
    ParameterWeightage,
)
from app.valuation.reference_store import MasterDataRegistry, ParameterStore, ReferenceStore
from app.workflow.models import ChangeCommitted, Operation

logger = logging.getLogger(__name__)

VERSIONED_ENTITIES = {"DISTRICT_BASE", "GEO_FACTOR", "CONVERSION_FACTOR"}
MASTER_ENTITIES = {"DISTRICT", "CIRCLE", "MOUZA", "VILLAGE", "LOT", "LAND_CLASS", "SRO"}


def _parameter_parts(payload: dict) -> tuple[Parameter, list[ParameterBand] | None, list[ParameterWeightage] | None]:
    fields = {k: v for k, v in payload.items() if k not in ("bands", "weightages")}
    parameter = Parameter(**fields)
    bands = None
    if payload.get("bands") is not None:
        bands = [ParameterBand(**{"parameter_code": parameter.code, **row}) for row in payload["bands"]]
        validate_bands(bands)
    weightages = None
    if payload.get("weightages") is not None:
        weightages = [
            ParameterWeightage(**{"parameter_code": parameter.code, **row}) for row in payload["weightages"]
        ]
    return parameter, bands, weightages


def _versioned_record(entity_type: str, payload: dict):
    if entity_type == "DISTRICT_BASE":
        return DistrictBase(payload["district_code"], payload["base_value"], payload["effective_from"])
    if entity_type == "GEO_FACTOR":
        return GeographicalFactor(**payload)
    return ConversionFactor(**payload)


class ChangeCommitter:
    def __init__(
        self,
        reference_store: ReferenceStore,
        parameter_store: ParameterStore,
        registry: MasterDataRegistry,
    ):
        self.reference_store = reference_store
        self.parameter_store = parameter_store
        self.registry = registry

    def validate(self, entity_type: str, operation: Operation, payload: dict) -> None:
        """Check a payload can be applied, without applying it.

        Raises:
            ValueError: missing fields, bad values, overlapping bands, or an
                operation the entity type does not support.
        """
        operation = Operation(operation)
        try:
            if entity_type in VERSIONED_ENTITIES:
                if operation is Operation.DEACTIVATE:
                    raise ValueError(
                        f"{entity_type} history is append-only; submit a new effective version instead"
                    )
                if not payload.get("effective_from"):
                    raise ValueError(f"{entity_type} payload has no 'effective_from' date")
                _versioned_record(entity_type, payload)
            elif entity_type == "PARAMETER":
                if operation is Operation.DEACTIVATE:
                    if not payload.get("code"):
                        raise ValueError("PARAMETER payload has no 'code'")
                else:
                    _parameter_parts(payload)
            elif entity_type in MASTER_ENTITIES:
                if not str(payload.get("code", "")).strip():
                    raise ValueError(f"{entity_type} payload has no 'code'")
            else:
                raise ValueError(f"Unknown entity type '{entity_type}'")
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid {entity_type} payload: {e}") from e

    def check_applicable(self, entity_type: str, operation: Operation, payload: dict) -> None:
        """Run validate() plus the checks that depend on current data.

        Called before the final approval is recorded, so a change that would
        fail to apply is refused while the request is still open.
        """
        operation = Operation(operation)
        self.validate(entity_type, operation, payload)
        if entity_type == "PARAMETER":
            if operation is not Operation.CREATE and self.parameter_store.get_parameter(payload["code"]) is None:
                raise ValueError(f"PARAMETER {payload['code']} does not exist")
        elif entity_type in MASTER_ENTITIES:
            self.registry.check(entity_type, operation.value, payload)

    def apply(self, event: ChangeCommitted):
        entity_type, operation, payload = event.entity_type, Operation(event.operation), event.payload
        self.validate(entity_type, operation, payload)

        if entity_type == "DISTRICT_BASE":
            record = _versioned_record(entity_type, payload)
            result = self.reference_store.add_district_base(
                record.district_code, record.base_value, record.effective_from,
            )
        elif entity_type == "GEO_FACTOR":
            result = self.reference_store.add_geo_factor(_versioned_record(entity_type, payload))
        elif entity_type == "CONVERSION_FACTOR":
            result = self.reference_store.add_conversion_factor(_versioned_record(entity_type, payload))
        elif entity_type == "PARAMETER":
            if operation is Operation.DEACTIVATE:
                result = self.parameter_store.deactivate_parameter(payload["code"])
            else:
                parameter, bands, weightages = _parameter_parts(payload)
                if operation is Operation.UPDATE and self.parameter_store.get_parameter(parameter.code) is None:
                    raise ValueError(f"PARAMETER {parameter.code} does not exist")
                result = self.parameter_store.upsert_parameter(parameter)
                if bands is not None:
                    self.parameter_store.set_bands(parameter.code, bands)
                if weightages is not None:
                    self.parameter_store.set_weightages(parameter.code, weightages)
        else:
            result = self.registry.apply(entity_type, operation.value, payload)

        logger.info(
            f"Committed change request {event.request_id}: {operation.value} {entity_type} "
            f"(approved by {event.approved_by})"
        )
        return result

    __call__ = apply
