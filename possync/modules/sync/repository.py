# possync/modules/sync/repository.py
from datetime import datetime
from typing import Iterable, List, Optional, Set
from sqlalchemy.orm import Session, selectinload

from possync.shared.database.models import (
    User, Category, Product, ProductVariant, Sale, SyncBatch, Provenance
)

class SyncRepository:
    """
    Data access for inbound batches.

    Methods add and flush but never commit: the service owns the
    transaction so a whole batch lands or none of it does.
    """

    def __init__(self, db: Session):
        self.db = db

    # ==================== USERS ====================

    def get_user(self, user_id: str) -> Optional[User]:
        return self.db.get(User, user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self.db.query(User).filter(User.username == username).first()

    # ==================== CATALOG ====================

    def get_category_by_name(self, name: str) -> Optional[Category]:
        return self.db.query(Category).filter(Category.name == name).first()

    def get_product(self, product_id: str) -> Optional[Product]:
        return self.db.get(Product, product_id)

    def find_product_by_name(self, name: str, category_id: Optional[str]) -> Optional[Product]:
        """
        Natural key lookup for products that arrive with a new id
        """
        return self.db.query(Product).filter(
            Product.name == name,
            Product.category_id == category_id if category_id else Product.category_id.is_(None),
            Product.origin != Provenance.PLACEHOLDER.value
        ).first()

    def get_variant(self, variant_id: str) -> Optional[ProductVariant]:
        return self.db.get(ProductVariant, variant_id)

    def existing_variant_ids(self, variant_ids: Iterable[str]) -> Set[str]:
        ids = list(set(variant_ids))
        if not ids:
            return set()
        rows = self.db.query(ProductVariant.id).filter(ProductVariant.id.in_(ids)).all()
        return {row[0] for row in rows}

    def find_active_barcode_owner(self, barcode: str, exclude_variant_ids: Iterable[str]) -> Optional[ProductVariant]:
        return self.db.query(ProductVariant).filter(
            ProductVariant.barcode == barcode,
            ProductVariant.is_active.is_(True),
            ProductVariant.id.notin_(list(exclude_variant_ids))
        ).first()

    def get_active_variants(self, variant_ids: Iterable[str]) -> List[ProductVariant]:
        ids = list(set(variant_ids))
        if not ids:
            return []
        return self.db.query(ProductVariant).filter(
            ProductVariant.id.in_(ids),
            ProductVariant.is_active.is_(True)
        ).all()

    # ==================== PLACEHOLDERS ====================

    def get_placeholder_for_variant(self, variant_id: str) -> Optional[Product]:
        return self.db.query(Product).filter(
            Product.placeholder_for_variant_id == variant_id
        ).first()

    def get_placeholder_products(self) -> List[Product]:
        return self.db.query(Product).options(
            selectinload(Product.variants)
        ).filter(
            Product.origin == Provenance.PLACEHOLDER.value
        ).order_by(Product.created_at, Product.id).all()

    def find_authoritative_product(self, name: str) -> Optional[Product]:
        return self.db.query(Product).filter(
            Product.name == name,
            Product.origin != Provenance.PLACEHOLDER.value
        ).order_by(Product.created_at).first()

    # ==================== SALES ====================

    def get_sale(self, sale_id: str) -> Optional[Sale]:
        return self.db.query(Sale).options(
            selectinload(Sale.items),
            selectinload(Sale.payments)
        ).filter(Sale.id == sale_id).first()

    # ==================== BATCH LEDGER ====================

    def record_batch(
        self,
        batch_id: str,
        model: str,
        terminal_id: Optional[str],
        record_count: int,
        created_count: int,
        updated_count: int,
        placeholders_created: int,
        received_at: datetime
    ) -> SyncBatch:
        batch = SyncBatch(
            id=batch_id,
            model=model,
            terminal_id=terminal_id,
            record_count=record_count,
            created_count=created_count,
            updated_count=updated_count,
            placeholders_created=placeholders_created,
            received_at=received_at
        )
        self.db.add(batch)
        return batch

    def recent_batches(self, limit: int = 50, model: Optional[str] = None) -> List[SyncBatch]:
        query = self.db.query(SyncBatch)
        if model:
            query = query.filter(SyncBatch.model == model)
        return query.order_by(SyncBatch.received_at.desc()).limit(limit).all()
