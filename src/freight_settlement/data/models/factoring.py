"""
Factoring company data model.
"""

from decimal import Decimal
from typing import Optional

from pydantic import Field

from freight_settlement.data.models.base import RecordModel


class FactoringCompany(RecordModel):
    """A factor that buys invoices at a discount."""

    id: str
    name: str = ""
    fee_percentage: Optional[Decimal] = Field(
        None, ge=0, description="Fee in percent, e.g. 2.5 for 2.5%"
    )
