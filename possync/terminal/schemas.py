from pydantic import BaseModel, ConfigDict, Field, computed_field
from typing import List, Optional
from datetime import datetime

# ==================== POINT OF SALE INPUT ====================

class CheckoutItem(BaseModel):
    variant_id: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)
    selling_price: Optional[float] = Field(None, ge=0, description="Defaults to the variant price")
    discount: float = Field(0, ge=0)
    tax_rate: Optional[float] = Field(None, ge=0, description="Defaults to the product tax rate")

class PaymentLine(BaseModel):
    payment_mode: str = Field("CASH", min_length=1)
    amount: float

class CheckoutRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    items: List[CheckoutItem] = Field(..., min_length=1)
    payments: List[PaymentLine] = Field(default_factory=list, description="Empty means paid in cash, exact amount")
    discount: float = Field(0, ge=0, description="Bill level discount")
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    remarks: Optional[str] = None

class ReturnLine(BaseModel):
    sale_item_id: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)

# ==================== SYNC REPORTS ====================

class SweepReport(BaseModel):
    """Outcome of one Batcher sweep over a model"""
    model: str
    total_records: int = 0
    chunks_sent: int = 0
    chunks_failed: int = 0
    records_synced: int = 0
    errors: List[str] = []

    @computed_field
    @property
    def success(self) -> bool:
        return self.chunks_failed == 0

class DispatchReport(BaseModel):
    """Outcome of one dispatcher cycle"""
    attempted: int = 0
    synced: int = 0
    retried: int = 0
    dead_lettered: int = 0
    held: int = 0
    errors: List[str] = []

class QueueEntryView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action: str
    target_model: str
    record_id: Optional[str] = None
    payload: str
    status: str
    retry_count: int
    last_error: Optional[str] = None
    next_attempt_at: Optional[datetime] = None
    created_at: datetime

    def is_due(self, now: datetime) -> bool:
        return self.next_attempt_at is None or self.next_attempt_at <= now

class QueueError(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    action: str
    status: str
    retry_count: int
    last_error: Optional[str] = None
    updated_at: datetime

class QueueStatusReport(BaseModel):
    """Queue health as shown to the operator"""
    pending: int = 0
    synced: int = 0
    failed: int = 0
    oldest_pending_at: Optional[datetime] = None
    recent_errors: List[QueueError] = []
