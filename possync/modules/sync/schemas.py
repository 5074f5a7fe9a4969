from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel
from typing import List, Optional
from datetime import datetime

# ==================== BASE (camelCase on the wire) ====================

class SyncBaseModel(BaseModel):
    """
    Base for every replicated record.

    Terminals send camelCase keys; attributes stay snake_case and ORM rows
    can be validated directly (from_attributes) when building payloads.
    """
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

# ==================== RECORD SCHEMAS ====================

class UserSync(SyncBaseModel):
    id: str = Field(..., min_length=1)
    username: str = Field(..., min_length=1)
    password: Optional[str] = None
    name: str = ""
    role: str = "CASHIER"
    is_active: bool = True
    perm_void_sale: bool = False
    perm_view_reports: bool = False
    perm_manage_products: bool = False
    perm_manage_inventory: bool = False
    perm_manage_users: bool = False
    perm_change_payment: bool = False
    perm_edit_settings: bool = False
    max_discount: float = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class CategorySync(SyncBaseModel):
    id: Optional[str] = None
    name: str = Field(..., min_length=1)

class VariantSync(SyncBaseModel):
    id: str = Field(..., min_length=1)
    sku: Optional[str] = None
    barcode: Optional[str] = None
    size: Optional[str] = None
    color: Optional[str] = None
    mrp: float = 0
    selling_price: float = Field(0, ge=0)
    cost_price: float = 0
    stock: int = 0
    min_stock: int = 0
    is_active: bool = True

class ProductSync(SyncBaseModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    hsn: Optional[str] = None
    tax_rate: float = 0
    is_active: bool = True
    category: Optional[CategorySync] = None
    variants: List[VariantSync] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class SaleItemSync(SyncBaseModel):
    id: str = Field(..., min_length=1)
    variant_id: str = Field(..., min_length=1)
    product_name: Optional[str] = None
    variant_info: Optional[str] = None
    quantity: int = Field(..., gt=0)
    mrp: float = 0
    selling_price: float = 0
    discount: float = 0
    tax_rate: float = 0
    tax_amount: float = 0
    total: float = 0

class PaymentSync(SyncBaseModel):
    id: Optional[str] = None
    payment_mode: str = Field(..., min_length=1)
    amount: float

class SaleSync(SyncBaseModel):
    id: str = Field(..., min_length=1)
    bill_no: int
    user_id: str = Field(..., min_length=1)
    user: Optional[UserSync] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    subtotal: float = 0
    discount: float = 0
    tax_amount: float = 0
    cgst: float = 0
    sgst: float = 0
    grand_total: float = 0
    payment_method: str = "CASH"
    paid_amount: float = 0
    change_amount: float = 0
    status: str = "COMPLETED"
    remarks: Optional[str] = None
    items: List[SaleItemSync] = Field(default_factory=list)
    payments: List[PaymentSync] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

# ==================== REQUEST SCHEMAS ====================

class UsersSyncRequest(SyncBaseModel):
    users: List[UserSync]
    terminal_id: Optional[str] = None

class InventorySyncRequest(SyncBaseModel):
    products: List[ProductSync]
    terminal_id: Optional[str] = None

class SalesSyncRequest(SyncBaseModel):
    sales: List[SaleSync]
    terminal_id: Optional[str] = None

# ==================== RESPONSE SCHEMAS ====================

class PlaceholderSummary(BaseModel):
    users: List[str] = []
    products: List[str] = []

class SyncResponse(BaseModel):
    success: bool = True
    batch_id: str
    model: str
    count: int
    created: int = 0
    updated: int = 0
    placeholders: PlaceholderSummary = Field(default_factory=PlaceholderSummary)

class PlaceholderInfo(BaseModel):
    id: str
    name: str
    variant_count: int
    placeholder_for_variant_id: Optional[str] = None
    merge_candidate_id: Optional[str] = None

class CleanupResponse(BaseModel):
    success: bool = True
    scanned: int
    deleted: List[PlaceholderInfo] = []
    needs_merge: List[PlaceholderInfo] = []
    # Variant ids sold under a deleted placeholder that central still does not know
    awaiting_inventory: List[str] = []

class SyncBatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    model: str
    terminal_id: Optional[str]
    record_count: int
    created_count: int
    updated_count: int
    placeholders_created: int
    received_at: datetime
