from pydantic import BaseModel, Field, model_validator
from typing import Any, Dict, List, Optional
from datetime import datetime

from possync.shared.database.models import Provenance

# ==================== REQUEST SCHEMAS ====================

class ResetRequest(BaseModel):
    secret: Optional[str] = Field(None, description="Maintenance secret")
    # Only the literal JSON true confirms; anything else is a 400
    confirm: Any = Field(None, description="Must be exactly true")

class ProductCorrectionFilter(BaseModel):
    """
    Predicate selecting products to hide or restore. Criteria are ANDed.
    """
    batch_id: Optional[str] = Field(None, description="Batch that last wrote the product")
    correction_id: Optional[str] = Field(None, description="Hide operation to undo (restore only)")
    origin: Optional[Provenance] = Field(None, description="LOCAL, PLACEHOLDER or IMPORTED")
    missing_category: bool = Field(False, description="Only products without a category")
    created_from: Optional[datetime] = Field(None, description="Created at or after")
    created_to: Optional[datetime] = Field(None, description="Created before")
    selling_price: Optional[float] = Field(None, description="Any variant sold at this price")

    @model_validator(mode="after")
    def require_criterion(self):
        if not any([
            self.batch_id,
            self.correction_id,
            self.origin,
            self.missing_category,
            self.created_from,
            self.created_to,
            self.selling_price is not None,
        ]):
            raise ValueError("At least one filter criterion is required")
        if self.created_from and self.created_to and self.created_from >= self.created_to:
            raise ValueError("created_from must be before created_to")
        return self

class CorrectionRequest(BaseModel):
    secret: Optional[str] = Field(None, description="Maintenance secret")
    filter: ProductCorrectionFilter
    dry_run: bool = Field(False, description="Report matches without changing anything")

# ==================== RESPONSE SCHEMAS ====================

class ResetResponse(BaseModel):
    success: bool = True
    message: str
    deleted: Dict[str, int]
    before: Dict[str, int]
    after: Dict[str, int]

class CorrectionResponse(BaseModel):
    success: bool = True
    action: str
    correction_id: Optional[str] = Field(None, description="Id stamped on rows hidden by this call")
    dry_run: bool
    matched_products: int
    products_changed: int
    variants_changed: int
    product_ids: List[str] = []
    conflicts: List[str] = Field(default_factory=list, description="Variants left inactive: barcode now taken")
