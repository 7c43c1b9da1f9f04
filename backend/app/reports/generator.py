"""HTML valuation statement.

Renders a computed valuation (and, optionally, the stamp duty estimate)
through the Jinja2 template in ``templates/valuation_statement.html``.
"""

import logging
from datetime import datetime

from jinja2 import ChainableUndefined, Environment, FileSystemLoader

from app.config import TEMPLATES_DIR
from app.valuation.money import format_inr

logger = logging.getLogger(__name__)

# ChainableUndefined allows safe nested attribute access (a.b.c):
# a missing breakdown field renders empty instead of raising.
_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=True,
    undefined=ChainableUndefined,
)
_env.filters["inr"] = format_inr


def _format_weightage(param: dict) -> str:
    weight = param.get("weightage", "")
    if param.get("factor_type") == "PERCENTAGE":
        return f"{weight}%"
    return format_inr(weight)


_env.filters["weightage"] = _format_weightage


def render_valuation_statement(
    valuation: dict,
    stamp_duty: dict | None = None,
    title: str = "Land Valuation Statement",
) -> str:
    """Render the statement HTML.

    Args:
        valuation: ValuationResult.to_dict()
        stamp_duty: StampDutyBreakdown.to_dict(), if estimated

    Returns:
        The rendered HTML document.
    """
    breakdown = valuation.get("breakdown", {}) or {}
    context = {
        "title": title,
        "generated_at": datetime.now().strftime("%d %B %Y, %I:%M %p"),
        "market_value": valuation.get("market_value"),
        "plot_base_value": valuation.get("plot_base_value"),
        "jurisdiction": breakdown.get("jurisdiction", {}),
        "as_of": breakdown.get("as_of"),
        "formula": breakdown.get("formula"),
        "district_base": breakdown.get("district_base", {}),
        "geo_factor": breakdown.get("geographical_factor", {}),
        "conversion_factor": breakdown.get("conversion_factor", {}),
        "market_value_per_unit": breakdown.get("market_value_per_unit"),
        "applied": breakdown.get("applied_parameters", []) or [],
        "dropped": breakdown.get("dropped_parameters", []) or [],
        "unmatched": breakdown.get("unmatched_parameters", []) or [],
        "warnings": valuation.get("warnings", []) or [],
        "stamp_duty": stamp_duty,
    }
    html = _env.get_template("valuation_statement.html").render(**context)
    logger.info(
        f"Valuation statement rendered: market value {format_inr(valuation.get('market_value'))}"
    )
    return html
