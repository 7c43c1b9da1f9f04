"""Collaborator interfaces consumed by the valuation engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from typing import Optional

from app.valuation.models import (
    AreaType,
    ConversionFactor,
    DistrictBase,
    GeographicalFactor,
    Parameter,
    ParameterBand,
    ParameterWeightage,
)


class LookupService(ABC):
    """Resolves the jurisdictional base data effective on a given date.

    Implementations return ``None`` when no effective record exists; the
    engine turns that into a StaleReferenceError.
    """

    @abstractmethod
    def resolve_district_base(self, district_code: str, as_of: date) -> Optional[DistrictBase]:
        pass

    @abstractmethod
    def resolve_geo_factor(
        self, district_code: str, circle_code: str, lot_code: str, as_of: date,
    ) -> Optional[GeographicalFactor]:
        pass

    @abstractmethod
    def resolve_conversion_factor(
        self,
        land_category_id: str,
        area_type: AreaType,
        as_of: date | None = None,
        district_code: str | None = None,
    ) -> Optional[ConversionFactor]:
        pass


class ParameterService(ABC):
    """Parameter definitions, bands and district/area weightages."""

    @abstractmethod
    def list_active_parameters(self, as_of: date) -> list[Parameter]:
        pass

    @abstractmethod
    def list_bands(self, parameter_code: str) -> list[ParameterBand]:
        pass

    @abstractmethod
    def list_weightages(
        self, parameter_code: str, district_code: str, area_type: AreaType,
    ) -> list[ParameterWeightage]:
        pass
