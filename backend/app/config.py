"""Application configuration."""

import os
from pathlib import Path
from dotenv import load_dotenv

# Base paths
BASE_DIR = Path(__file__).resolve().parent.parent

# Load .env from backend root (before any os.getenv calls)
load_dotenv(BASE_DIR / ".env")
TEMP_DIR = Path(os.getenv("VALUATION_TEMP_DIR", str(BASE_DIR / "temp")))
WORKFLOW_DIR = TEMP_DIR / "workflow"
REQUESTS_DIR = WORKFLOW_DIR / "requests"
AUDIT_LOG_FILE = WORKFLOW_DIR / "audit.jsonl"
TEMPLATES_DIR = BASE_DIR / "app" / "reports" / "templates"

# Optional JSON snapshot of reference data loaded at startup
REFERENCE_SNAPSHOT = os.getenv("REFERENCE_SNAPSHOT", "")

# Money: all arithmetic runs in the lowest currency subunit (paise)
CURRENCY_SUBUNITS = 100

# Valuation engine
# HIGHEST_WEIGHT: overlapping parameters (same category + exclusion group) keep only the heaviest
# APPLY_ALL:      every matching parameter is applied
VALUATION_TIE_BREAK = os.getenv("VALUATION_TIE_BREAK", "HIGHEST_WEIGHT").strip().upper()
VALUATION_DERIVE_GEO_FACTORS = os.getenv("VALUATION_DERIVE_GEO_FACTORS", "true").strip().lower() in ("1", "true", "yes")

# Approval chain: level N is acted on by the Nth role
WORKFLOW_APPROVAL_CHAIN = [
    r.strip() for r in os.getenv(
        "WORKFLOW_APPROVAL_CHAIN", "Junior Manager,Manager,Senior Manager,Role Admin"
    ).split(",") if r.strip()
]
WORKFLOW_STORE_BACKEND = os.getenv("WORKFLOW_STORE_BACKEND", "memory").strip().lower()  # memory | file

# Entity types a change request may target
ENTITY_TYPES = [
    "DISTRICT",
    "CIRCLE",
    "MOUZA",
    "VILLAGE",
    "LOT",
    "LAND_CLASS",
    "SRO",
    "PARAMETER",
    "DISTRICT_BASE",         # Minimum zonal value per district
    "GEO_FACTOR",            # Circle x Lot geographical factor
    "CONVERSION_FACTOR",     # Land category x area type multiplier
]

# Stale reference alerts (days since last district base revision)
STALE_AFTER_DAYS = int(os.getenv("STALE_AFTER_DAYS", "365"))

# Stamp duty / registration (configurable for policy changes)
REGISTRATION_FEE_RATE = float(os.getenv("REGISTRATION_FEE_RATE", "0.085"))   # 8.5% of basis
REGISTRATION_FEE_CAP = int(os.getenv("REGISTRATION_FEE_CAP", "10000"))        # capped at ₹10,000
STAMP_SURCHARGE_RATE = float(os.getenv("STAMP_SURCHARGE_RATE", "0"))
STAMP_CESS_RATE = float(os.getenv("STAMP_CESS_RATE", "0"))

# Remote master-data service (httpx client)
MASTER_DATA_API_URL = os.getenv("MASTER_DATA_API_URL", "http://localhost:8082/areap2")
MASTER_DATA_API_TOKEN = os.getenv("MASTER_DATA_API_TOKEN", "")
MASTER_DATA_TIMEOUT = float(os.getenv("MASTER_DATA_TIMEOUT", "15"))

# CORS
CORS_ORIGINS = [
    o.strip() for o in os.getenv(
        "CORS_ORIGINS", "http://localhost:5173,http://localhost:3000"
    ).split(",") if o.strip()
]

# Debug trace mode: set VALUATION_TRACE=1 to get detailed engine logs
TRACE_ENABLED = os.getenv("VALUATION_TRACE", "").strip().lower() in ("1", "true", "yes")
