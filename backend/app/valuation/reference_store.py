"""In-memory reference data — versioned, append-only.

District bases, geographical factors and conversion factors are kept in a
``VersionedArena``: each entity key owns an append-only list of versions,
each with an ``effective_from`` date.  Lookups are point-in-time: the
highest version whose effective_from is on or before ``as_of`` wins, so
any past valuation can be recomputed exactly.

Usage:
    store = ReferenceStore()
    store.add_district_base("D01", 1_00_000, date(2024, 4, 1))
    store.resolve_district_base("D01", date.today())
"""

import dataclasses
import json
import logging
import threading
from datetime import date
from pathlib import Path
from typing import Any, Optional

from app.config import VALUATION_DERIVE_GEO_FACTORS
from app.valuation.bands import validate_bands
from app.valuation.lookups import LookupService, ParameterService
from app.valuation.models import (
    AreaType,
    ConversionFactor,
    DistrictBase,
    FactorSource,
    GeographicalFactor,
    Parameter,
    ParameterBand,
    ParameterWeightage,
    ParentFactor,
    average_factor,
)

logger = logging.getLogger(__name__)


class VersionedArena:
    """Append-only versions indexed by (entity_key, effective_from)."""

    def __init__(self):
        self._versions: dict[str, list[Any]] = {}
        self._lock = threading.Lock()

    def append(self, key: str, record: Any) -> Any:
        """Store ``record`` as the next version of ``key`` and return it.

        The record must be a dataclass with ``version`` and
        ``effective_from`` fields; ``version`` is assigned here.
        """
        with self._lock:
            versions = self._versions.setdefault(key, [])
            stored = dataclasses.replace(record, version=len(versions) + 1)
            versions.append(stored)
            return stored

    def effective(self, key: str, as_of: date) -> Optional[Any]:
        best = None
        for rec in self._versions.get(key, []):
            start = rec.effective_from or date.min
            if start <= as_of and (best is None or rec.version > best.version):
                best = rec
        return best

    def history(self, key: str) -> list[Any]:
        return list(self._versions.get(key, []))

    def keys(self) -> list[str]:
        return list(self._versions.keys())


def _geo_key(district_code: str, circle_code: str, lot_code: str) -> str:
    return f"{district_code}|{circle_code}|{lot_code}"


def _conversion_key(land_category_id: str, area_type: AreaType, district_code: str | None) -> str:
    return f"{land_category_id}|{AreaType(area_type).value}|{district_code or '*'}"


# ═══════════════════════════════════════════════════
# BASE VALUES & FACTORS
# ═══════════════════════════════════════════════════

class ReferenceStore(LookupService):
    """LookupService over versioned in-memory arenas."""

    def __init__(self, derive_geo_factors: bool = VALUATION_DERIVE_GEO_FACTORS):
        self.derive_geo_factors = derive_geo_factors
        self._district_bases = VersionedArena()
        self._geo_factors = VersionedArena()
        self._conversion_factors = VersionedArena()

    # ── writes (append-only) ──

    def add_district_base(self, district_code: str, base_value: Any, effective_from: Any) -> DistrictBase:
        record = DistrictBase(district_code, base_value, effective_from)
        stored = self._district_bases.append(district_code, record)
        logger.info(f"District base {district_code} v{stored.version} = {stored.base_value} from {stored.effective_from}")
        return stored

    def add_geo_factor(self, factor: GeographicalFactor) -> GeographicalFactor:
        key = _geo_key(factor.district_code, factor.circle_code, factor.lot_code)
        return self._geo_factors.append(key, factor)

    def add_conversion_factor(self, factor: ConversionFactor) -> ConversionFactor:
        key = _conversion_key(factor.land_category_id, factor.area_type, factor.district_code)
        return self._conversion_factors.append(key, factor)

    # ── LookupService ──

    def resolve_district_base(self, district_code: str, as_of: date) -> Optional[DistrictBase]:
        return self._district_bases.effective(district_code, as_of)

    def resolve_geo_factor(
        self, district_code: str, circle_code: str, lot_code: str, as_of: date,
    ) -> Optional[GeographicalFactor]:
        found = self._geo_factors.effective(_geo_key(district_code, circle_code, lot_code), as_of)
        if found is not None or not self.derive_geo_factors:
            return found
        return self.derive_geo_factor(district_code, circle_code, lot_code, as_of)

    def resolve_conversion_factor(
        self,
        land_category_id: str,
        area_type: AreaType,
        as_of: date | None = None,
        district_code: str | None = None,
    ) -> Optional[ConversionFactor]:
        as_of = as_of or date.today()
        if district_code:
            override = self._conversion_factors.effective(
                _conversion_key(land_category_id, area_type, district_code), as_of,
            )
            if override is not None:
                return override
        return self._conversion_factors.effective(
            _conversion_key(land_category_id, area_type, None), as_of,
        )

    # ── derived factors ──

    def derive_geo_factor(
        self, district_code: str, circle_code: str, lot_code: str, as_of: date,
    ) -> Optional[GeographicalFactor]:
        """Average the existing factors of the other lots in the same circle.

        Returns None when the circle has no lot with an existing factor.
        Derived factors are computed on demand and never stored.
        """
        prefix = f"{district_code}|{circle_code}|"
        parents: list[ParentFactor] = []
        latest_start: Optional[date] = None
        for key in sorted(self._geo_factors.keys()):
            if not key.startswith(prefix) or key == prefix + lot_code:
                continue
            rec = self._geo_factors.effective(key, as_of)
            if rec is None or rec.source is not FactorSource.EXISTING:
                continue
            parents.append(ParentFactor(rec.circle_code, rec.lot_code, rec.factor))
            if rec.effective_from and (latest_start is None or rec.effective_from > latest_start):
                latest_start = rec.effective_from
        if not parents:
            return None
        derived = GeographicalFactor(
            district_code=district_code,
            circle_code=circle_code,
            lot_code=lot_code,
            factor=average_factor([p.factor for p in parents]),
            source=FactorSource.DERIVED_AVERAGE,
            parents=tuple(parents),
            effective_from=latest_start,
        )
        logger.info(
            f"Derived geographical factor {derived.key()} = {derived.factor} "
            f"from {len(parents)} lot(s)"
        )
        return derived

    # ── history & alerts ──

    def district_base_history(self, district_code: str) -> list[DistrictBase]:
        return self._district_bases.history(district_code)

    def geo_factor_history(self, district_code: str, circle_code: str, lot_code: str) -> list[GeographicalFactor]:
        return self._geo_factors.history(_geo_key(district_code, circle_code, lot_code))

    def conversion_factor_history(
        self, land_category_id: str, area_type: AreaType, district_code: str | None = None,
    ) -> list[ConversionFactor]:
        return self._conversion_factors.history(
            _conversion_key(land_category_id, area_type, district_code)
        )

    def stale_statuses(self, max_stale_days: int, as_of: date | None = None) -> list[dict]:
        """Report, per district, how long the effective base value has stood."""
        as_of = as_of or date.today()
        statuses = []
        for district_code in sorted(self._district_bases.keys()):
            current = self._district_bases.effective(district_code, as_of)
            if current is None:
                statuses.append({
                    "key": district_code,
                    "last_updated_at": None,
                    "is_stale": True,
                    "days_since_update": None,
                })
                continue
            days = (as_of - current.effective_from).days
            statuses.append({
                "key": district_code,
                "last_updated_at": current.effective_from.isoformat(),
                "is_stale": days > max_stale_days,
                "days_since_update": days,
            })
        return statuses

    # ── snapshot loading ──

    @classmethod
    def from_dict(cls, data: dict, **kwargs) -> "ReferenceStore":
        store = cls(**kwargs)
        for row in data.get("district_bases", []):
            store.add_district_base(row["district_code"], row["base_value"], row["effective_from"])
        for row in data.get("geo_factors", []):
            store.add_geo_factor(GeographicalFactor(**row))
        for row in data.get("conversion_factors", []):
            store.add_conversion_factor(ConversionFactor(**row))
        return store


# ═══════════════════════════════════════════════════
# PARAMETERS
# ═══════════════════════════════════════════════════

class ParameterStore(ParameterService):
    """ParameterService over in-memory definitions.

    Parameter definitions keep an append-only history; the latest entry
    per code is the live one.
    """

    def __init__(self):
        self._parameters: dict[str, list[Parameter]] = {}
        self._bands: dict[str, list[ParameterBand]] = {}
        self._weightages: dict[str, list[ParameterWeightage]] = {}
        self._lock = threading.Lock()

    def upsert_parameter(self, parameter: Parameter) -> Parameter:
        with self._lock:
            self._parameters.setdefault(parameter.code, []).append(parameter)
        return parameter

    def deactivate_parameter(self, code: str) -> Parameter:
        current = self.get_parameter(code)
        if current is None:
            raise KeyError(f"Unknown parameter {code}")
        return self.upsert_parameter(dataclasses.replace(current, is_active=False))

    def set_bands(self, parameter_code: str, bands: list[ParameterBand]) -> None:
        """Replace the bands of one parameter (validated for overlap first)."""
        for band in bands:
            if band.parameter_code != parameter_code:
                raise ValueError(
                    f"Band {band.band_code} belongs to {band.parameter_code}, not {parameter_code}"
                )
        validate_bands(bands)
        with self._lock:
            self._bands[parameter_code] = list(bands)

    def set_weightages(self, parameter_code: str, rows: list[ParameterWeightage]) -> None:
        with self._lock:
            self._weightages[parameter_code] = list(rows)

    def get_parameter(self, code: str) -> Optional[Parameter]:
        versions = self._parameters.get(code)
        return versions[-1] if versions else None

    def parameter_history(self, code: str) -> list[Parameter]:
        return list(self._parameters.get(code, []))

    # ── ParameterService ──

    def list_active_parameters(self, as_of: date) -> list[Parameter]:
        live = [versions[-1] for versions in self._parameters.values() if versions]
        return [p for p in live if p.is_effective(as_of)]

    def list_bands(self, parameter_code: str) -> list[ParameterBand]:
        return list(self._bands.get(parameter_code, []))

    def list_weightages(
        self, parameter_code: str, district_code: str, area_type: AreaType,
    ) -> list[ParameterWeightage]:
        area_type = AreaType(area_type)
        return [
            w for w in self._weightages.get(parameter_code, [])
            if w.district_code == district_code and w.area_type is area_type
        ]

    @classmethod
    def from_dict(cls, data: dict) -> "ParameterStore":
        store = cls()
        for row in data.get("parameters", []):
            store.upsert_parameter(Parameter(**row))
        bands: dict[str, list[ParameterBand]] = {}
        for row in data.get("bands", []):
            band = ParameterBand(**row)
            bands.setdefault(band.parameter_code, []).append(band)
        for code, group in bands.items():
            store.set_bands(code, group)
        weights: dict[str, list[ParameterWeightage]] = {}
        for row in data.get("weightages", []):
            w = ParameterWeightage(**row)
            weights.setdefault(w.parameter_code, []).append(w)
        for code, group in weights.items():
            store.set_weightages(code, group)
        return store


# ═══════════════════════════════════════════════════
# MASTER ENTITIES
# ═══════════════════════════════════════════════════

class MasterDataRegistry:
    """District / Circle / Mouza / Village / Lot / LandClass / SRO records.

    Records are never removed; DEACTIVATE flips ``active`` and every change
    is kept in the per-record history.
    """

    def __init__(self):
        self._records: dict[tuple[str, str], dict] = {}
        self._history: dict[tuple[str, str], list[dict]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _code(entity_type: str, payload: dict) -> str:
        code = str(payload.get("code", "")).strip()
        if not code:
            raise ValueError(f"{entity_type} payload has no 'code'")
        return code

    @staticmethod
    def _merge(entity_type: str, code: str, operation: str, payload: dict, existing: Optional[dict]) -> dict:
        if operation == "CREATE":
            if existing is not None:
                raise ValueError(f"{entity_type} {code} already exists")
            return {**payload, "code": code, "active": True}
        if operation not in ("UPDATE", "DEACTIVATE"):
            raise ValueError(f"Unknown operation {operation}")
        if existing is None:
            raise ValueError(f"{entity_type} {code} does not exist")
        if operation == "UPDATE":
            return {**existing, **payload, "code": code}
        return {**existing, "active": False}

    def check(self, entity_type: str, operation: str, payload: dict) -> None:
        """Raise ValueError if apply() would refuse this change; mutates nothing."""
        code = self._code(entity_type, payload)
        self._merge(entity_type, code, operation, payload, self._records.get((entity_type, code)))

    def apply(self, entity_type: str, operation: str, payload: dict) -> dict:
        code = self._code(entity_type, payload)
        key = (entity_type, code)
        with self._lock:
            record = self._merge(entity_type, code, operation, payload, self._records.get(key))
            self._records[key] = record
            self._history.setdefault(key, []).append(dict(record))
        return record

    def get(self, entity_type: str, code: str) -> Optional[dict]:
        return self._records.get((entity_type, code))

    def history(self, entity_type: str, code: str) -> list[dict]:
        return list(self._history.get((entity_type, code), []))

    def list_records(self, entity_type: str, include_inactive: bool = False) -> list[dict]:
        return [
            rec for (etype, _code), rec in sorted(self._records.items())
            if etype == entity_type and (include_inactive or rec.get("active"))
        ]


def load_snapshot(path: Path) -> tuple[ReferenceStore, ParameterStore]:
    """Build both stores from a JSON snapshot file."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    logger.info(f"Loading reference snapshot from {path}")
    return ReferenceStore.from_dict(data), ParameterStore.from_dict(data)
