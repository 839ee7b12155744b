"""
Load data model - represents a freight shipment and the money attached to it.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import Field, computed_field

from freight_settlement.data.models.base import DateOnly, RecordModel


class LoadStatus(str, Enum):
    """Load status enumeration."""

    AVAILABLE = "available"
    DISPATCHED = "dispatched"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    TONU = "tonu"  # Truck ordered, not used

    @classmethod
    def _missing_(cls, value: object) -> Optional["LoadStatus"]:
        # Stores hold both "Delivered" and "delivered", and "InTransit"
        if isinstance(value, str):
            key = value.strip().lower().replace(" ", "_").replace("-", "_")
            if key == "intransit":
                key = "in_transit"
            for member in cls:
                if member.value == key:
                    return member
        return None


REVENUE_ELIGIBLE_STATUSES = frozenset({LoadStatus.DELIVERED, LoadStatus.COMPLETED})


class DocumentType(str, Enum):
    """Documents attached to a load."""

    RATE_CON = "RATE_CON"
    BOL = "BOL"
    POD = "POD"
    LUMPER_RECEIPT = "LUMPER_RECEIPT"
    OTHER = "OTHER"

    @classmethod
    def _missing_(cls, value: object) -> Optional["DocumentType"]:
        if isinstance(value, str):
            aliases = {
                "rate_confirmation": cls.RATE_CON,
                "ratecon": cls.RATE_CON,
                "lumper": cls.LUMPER_RECEIPT,
            }
            key = value.strip().lower()
            if key in aliases:
                return aliases[key]
            for member in cls:
                if member.value.lower() == key:
                    return member
            return cls.OTHER
        return None


class CommissionType(str, Enum):
    """How a dispatcher is paid on a load."""

    PERCENTAGE = "percentage"
    FLAT_FEE = "flat_fee"
    PER_MILE = "per_mile"


class LoadDocument(RecordModel):
    """Metadata for a document uploaded against a load."""

    id: Optional[str] = None
    type: DocumentType
    file_name: Optional[str] = None
    uploaded_at: Optional[datetime] = None


class Load(RecordModel):
    """
    Represents a freight load/shipment.

    This is the core operational record: its status drives revenue
    eligibility and the workflow events, its money fields drive pay and
    invoicing.
    """

    # Identification
    id: str = Field(..., description="Unique load identifier")
    load_number: Optional[str] = Field(None, description="Human-facing load number")
    customer_id: Optional[str] = None
    customer_name: Optional[str] = Field(None, description="Shipper/consignee billed")
    broker_name: Optional[str] = None

    # Status
    status: LoadStatus = Field(LoadStatus.AVAILABLE, description="Current load status")

    # Timing
    pickup_date: DateOnly = None
    delivery_date: DateOnly = None

    # Financial
    rate: Decimal = Field(Decimal("0"), ge=0, description="Gross line-haul rate (USD)")
    grand_total: Optional[Decimal] = Field(None, ge=0, description="Rate plus accessorials")
    miles: Decimal = Field(Decimal("0"), ge=0, description="Loaded miles")

    # Assignment and links
    driver_id: Optional[str] = None
    invoice_id: Optional[str] = None
    invoice_number: Optional[str] = None
    settlement_id: Optional[str] = None
    created_by: Optional[str] = None

    # Factoring
    is_factored: bool = False
    factoring_company_id: Optional[str] = None
    factoring_fee_percent: Optional[Decimal] = Field(None, ge=0, description="e.g. 2.5 for 2.5%")
    factoring_fee: Optional[Decimal] = Field(None, ge=0, description="Explicit fee amount")

    # Dispatcher
    dispatcher_id: Optional[str] = None
    dispatcher_commission_type: Optional[CommissionType] = None
    dispatcher_commission_rate: Optional[Decimal] = Field(None, ge=0)
    dispatcher_commission_amount: Optional[Decimal] = Field(None, ge=0)

    # Accessorials (billed) and driver pass-through
    detention_amount: Optional[Decimal] = Field(None, ge=0)
    driver_detention_pay: Optional[Decimal] = Field(None, ge=0)
    layover_amount: Optional[Decimal] = Field(None, ge=0)
    driver_layover_pay: Optional[Decimal] = Field(None, ge=0)
    fsc_amount: Optional[Decimal] = Field(None, ge=0)
    tonu_fee: Optional[Decimal] = Field(None, ge=0)

    # Driver pay stored at delivery
    driver_base_pay: Optional[Decimal] = Field(None, ge=0)
    driver_total_gross: Optional[Decimal] = Field(None, ge=0)

    # Documents
    bol_number: Optional[str] = None
    pod_number: Optional[str] = None
    documents: list[LoadDocument] = Field(default_factory=list)

    @computed_field
    @property
    def is_revenue_eligible(self) -> bool:
        """Only delivered or completed loads contribute income."""
        return self.status in REVENUE_ELIGIBLE_STATUSES

    @computed_field
    @property
    def gross_amount(self) -> Decimal:
        """Amount pay is computed against: rate, falling back to grand total."""
        if self.rate:
            return self.rate
        return self.grand_total or Decimal("0")

    @computed_field
    @property
    def billable_total(self) -> Decimal:
        """Amount billed to the customer: grand total, falling back to rate."""
        if self.grand_total:
            return self.grand_total
        return self.rate

    @property
    def effective_date(self) -> Optional[date]:
        """Date used for period selection: delivery, else pickup."""
        return self.delivery_date or self.pickup_date

    @property
    def rate_per_mile(self) -> Decimal:
        """Rate per loaded mile."""
        if not self.miles:
            return Decimal("0")
        return self.gross_amount / self.miles

    def has_document(self, doc_type: DocumentType) -> bool:
        """Check for an uploaded document (or its legacy number field)."""
        if any(d.type == doc_type for d in self.documents):
            return True
        if doc_type == DocumentType.BOL:
            return bool(self.bol_number)
        if doc_type == DocumentType.POD:
            return bool(self.pod_number)
        return False

    def document_types(self) -> set[DocumentType]:
        return {d.type for d in self.documents}
