from __future__ import annotations

from typing import Literal


TERRITORIES: tuple[str, ...] = (
    "West Coast",
    "East Coast",
    "Midwest",
    "South",
    "Southwest",
    "Mountain West",
    "Northeast",
    "Southeast",
)

DEAL_STAGES: tuple[str, ...] = (
    "prospect",
    "qualified",
    "proposal",
    "negotiation",
    "closed_won",
    "closed_lost",
)

Territory = Literal[
    "West Coast",
    "East Coast",
    "Midwest",
    "South",
    "Southwest",
    "Mountain West",
    "Northeast",
    "Southeast",
]
ChangeType = Literal["manual", "bulk", "system"]

FIELD_SALES_REP = "sales_rep"
FIELD_TERRITORY = "territory"
UNASSIGNED = "Unassigned"
DEFAULT_REASSIGN_REASON = "Sales rep reassignment"
DEFAULT_TERRITORY_REASON = "Territory update"
