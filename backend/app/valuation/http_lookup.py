"""LookupService backed by the remote master-data REST service.

The service answers camelCase JSON; a 404 on a ``/single`` lookup means no
effective record and is returned as ``None``.  Any other HTTP failure
propagates as ``httpx.HTTPStatusError``.
"""

import logging
from datetime import date
from typing import Optional

import httpx

from app.config import MASTER_DATA_API_TOKEN, MASTER_DATA_API_URL, MASTER_DATA_TIMEOUT
from app.valuation.lookups import LookupService
from app.valuation.models import AreaType, ConversionFactor, DistrictBase, GeographicalFactor

logger = logging.getLogger(__name__)


class HttpLookupService(LookupService):
    def __init__(
        self,
        base_url: str = MASTER_DATA_API_URL,
        token: str = MASTER_DATA_API_TOKEN,
        timeout: float = MASTER_DATA_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def close(self):
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _get_single(self, path: str, params: dict) -> Optional[dict]:
        params = {k: v for k, v in params.items() if v is not None}
        resp = self._client.get(path, params=params)
        if resp.status_code == 404:
            logger.info(f"Master data {path} {params}: not found")
            return None
        resp.raise_for_status()
        return resp.json()

    def resolve_district_base(self, district_code: str, as_of: date) -> Optional[DistrictBase]:
        data = self._get_single("/district-bases/single", {
            "districtCode": district_code,
            "asOf": as_of.isoformat() if as_of else None,
        })
        if data is None:
            return None
        return DistrictBase(
            district_code=data.get("districtCode", district_code),
            base_value=data["baseValue"],
            effective_from=data.get("effectiveFrom") or as_of,
            version=int(data.get("version") or 0),
        )

    def resolve_geo_factor(
        self, district_code: str, circle_code: str, lot_code: str, as_of: date,
    ) -> Optional[GeographicalFactor]:
        data = self._get_single("/geographical-factors/single", {
            "districtCode": district_code,
            "circleCode": circle_code,
            "lotCode": lot_code,
            "asOf": as_of.isoformat() if as_of else None,
        })
        if data is None:
            return None
        parents = [
            {"circle_code": p["circleCode"], "lot_code": p["lotCode"], "factor": p["factor"]}
            for p in data.get("parents") or []
        ]
        return GeographicalFactor(
            district_code=data.get("districtCode", district_code),
            circle_code=data.get("circleCode", circle_code),
            lot_code=data.get("lotCode", lot_code),
            factor=data["factor"],
            source=data.get("source") or "EXISTING",
            parents=tuple(parents),
            effective_from=data.get("effectiveFrom"),
            version=int(data.get("version") or 0),
        )

    def resolve_conversion_factor(
        self,
        land_category_id: str,
        area_type: AreaType,
        as_of: date | None = None,
        district_code: str | None = None,
    ) -> Optional[ConversionFactor]:
        area_type = AreaType(area_type)
        data = self._get_single("/conversion-factors/single", {
            "landCategoryGenId": land_category_id,
            "areaType": area_type.value,
            "districtCode": district_code,
            "asOf": as_of.isoformat() if as_of else None,
        })
        if data is None:
            return None
        return ConversionFactor(
            land_category_id=data.get("landCategoryGenId", land_category_id),
            area_type=data.get("areaType", area_type.value),
            factor=data["factor"],
            effective_from=data.get("effectiveFrom"),
            district_code=data.get("districtCode"),
            version=int(data.get("version") or 0),
        )
