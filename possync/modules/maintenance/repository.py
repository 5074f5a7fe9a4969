# possync/modules/maintenance/repository.py
from typing import Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from possync.shared.database.models import (
    User, Category, Product, ProductVariant, Customer, Sale, SaleItem,
    InvoicePayment, AuditLog, InventoryMovement, Setting, SyncBatch
)
from .schemas import ProductCorrectionFilter

# Child before parent. Users are never in this list.
RESET_ORDER = [
    ("sale_items", SaleItem),
    ("invoice_payments", InvoicePayment),
    ("sales", Sale),
    ("inventory_movements", InventoryMovement),
    ("audit_logs", AuditLog),
    ("product_variants", ProductVariant),
    ("products", Product),
    ("categories", Category),
    ("customers", Customer),
    ("settings", Setting),
    ("sync_batches", SyncBatch),
]

COUNTED_TABLES = [("users", User)] + RESET_ORDER

class MaintenanceRepository:

    def __init__(self, db: Session):
        self.db = db

    # ===== COUNTS & WIPE =====

    def count_rows(self) -> Dict[str, int]:
        return {
            name: self.db.query(func.count()).select_from(model).scalar()
            for name, model in COUNTED_TABLES
        }

    def delete_all(self, model) -> int:
        return self.db.query(model).delete(synchronize_session=False)

    # ===== CORRECTIONS =====

    def find_products(self, flt: ProductCorrectionFilter, hidden: bool) -> List[Product]:
        """
        Active products for a hide; products a hide deactivated for a restore
        """
        query = self.db.query(Product).options(selectinload(Product.variants))
        if hidden:
            query = query.filter(Product.hidden_by.isnot(None))
        else:
            query = query.filter(Product.is_active.is_(True))

        if flt.correction_id:
            query = query.filter(Product.hidden_by == flt.correction_id)

        if flt.batch_id:
            query = query.filter(Product.batch_id == flt.batch_id)
        if flt.origin:
            query = query.filter(Product.origin == flt.origin.value)
        if flt.missing_category:
            query = query.filter(Product.category_id.is_(None))
        if flt.created_from:
            query = query.filter(Product.created_at >= flt.created_from)
        if flt.created_to:
            query = query.filter(Product.created_at < flt.created_to)
        if flt.selling_price is not None:
            query = query.filter(Product.variants.any(ProductVariant.selling_price == flt.selling_price))

        return query.order_by(Product.created_at, Product.id).all()

    def find_active_barcode_owner(self, barcode: str, exclude_ids: List[str]) -> Optional[ProductVariant]:
        return self.db.query(ProductVariant).filter(
            ProductVariant.barcode == barcode,
            ProductVariant.is_active.is_(True),
            ProductVariant.id.notin_(exclude_ids)
        ).first()
