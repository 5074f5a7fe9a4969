# possync/modules/sync/service.py
import logging
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple
from sqlalchemy.orm import Session

from possync.core.exceptions import BatchValidationError
from possync.shared.database.models import (
    User, Category, Product, ProductVariant, Sale, SaleItem, InvoicePayment, Provenance
)
from .repository import SyncRepository
from .schemas import (
    UserSync, CategorySync, ProductSync, VariantSync, SaleSync,
    SyncResponse, PlaceholderSummary, CleanupResponse, PlaceholderInfo
)

logger = logging.getLogger(__name__)

PLACEHOLDER_SUFFIX = " (Sync Placeholder)"
FALLBACK_CATEGORY = "Unsynced Inventory"
TOTALS_TOLERANCE = 0.01

USER_FIELDS = (
    "name", "role", "is_active",
    "perm_void_sale", "perm_view_reports", "perm_manage_products",
    "perm_manage_inventory", "perm_manage_users", "perm_change_payment",
    "perm_edit_settings", "max_discount",
)
VARIANT_FIELDS = (
    "sku", "barcode", "size", "color", "mrp", "selling_price",
    "cost_price", "stock", "min_stock", "is_active",
)
SALE_FIELDS = (
    "bill_no", "customer_name", "customer_phone", "subtotal", "discount",
    "tax_amount", "cgst", "sgst", "grand_total", "payment_method",
    "paid_amount", "change_amount", "status", "remarks",
)
SALE_ITEM_FIELDS = (
    "variant_id", "product_name", "variant_info", "quantity", "mrp",
    "selling_price", "discount", "tax_rate", "tax_amount", "total",
)


def new_batch_id() -> str:
    return uuid.uuid4().hex


class SyncService:
    """
    Central reconciliation: absorbs batches pushed by terminals.

    Every batch is validated up front and applied in a single transaction.
    Records are upserted by their stable id (or natural key) so a batch
    delivered twice leaves exactly one row per record.
    """

    def __init__(self, db: Session):
        self.db = db
        self.repository = SyncRepository(db)

    # ==================== USERS ====================

    def ingest_users(self, users: List[UserSync], terminal_id: Optional[str] = None) -> SyncResponse:
        self._validate_users(users)
        batch_id = new_batch_id()
        now = datetime.utcnow()

        created = updated = 0
        try:
            for user_data in users:
                _, was_created = self._upsert_user(user_data, batch_id, now)
                if was_created:
                    created += 1
                else:
                    updated += 1

            self.repository.record_batch(batch_id, "user", terminal_id, len(users), created, updated, 0, now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"✅ Users batch {batch_id}: {created} created, {updated} updated")
        return SyncResponse(batch_id=batch_id, model="user", count=len(users), created=created, updated=updated)

    def _validate_users(self, users: List[UserSync]):
        seen_ids: Set[str] = set()
        seen_usernames: Set[str] = set()
        for index, user in enumerate(users):
            if user.id in seen_ids:
                raise BatchValidationError(f"Duplicate user id {user.id} in batch", index=index, record_id=user.id)
            if user.username in seen_usernames:
                raise BatchValidationError(
                    f"Duplicate username {user.username} in batch", index=index, record_id=user.id
                )
            seen_ids.add(user.id)
            seen_usernames.add(user.username)

            self._check_username_available(user, index)

    def _check_username_available(self, user: UserSync, index: int):
        existing = self.repository.get_user(user.id)
        if existing and existing.username != user.username:
            owner = self.repository.get_user_by_username(user.username)
            if owner and owner.id != user.id:
                raise BatchValidationError(
                    f"Username {user.username} already belongs to user {owner.id}",
                    index=index,
                    record_id=user.id
                )

    def _upsert_user(self, data: UserSync, batch_id: str, now: datetime) -> Tuple[User, bool]:
        """
        Match by id first, then by username; a new user keeps the terminal's id
        """
        user = self.repository.get_user(data.id) or self.repository.get_user_by_username(data.username)
        created = user is None
        if created:
            user = User(id=data.id, created_at=data.created_at or now)
            self.db.add(user)

        user.username = data.username
        for field in USER_FIELDS:
            setattr(user, field, getattr(data, field))
        if data.password:
            user.password = data.password

        # A real record replaces the stand-in
        user.origin = Provenance.IMPORTED.value
        user.batch_id = batch_id
        user.imported_at = now
        self.db.flush()
        return user, created

    # ==================== INVENTORY ====================

    def ingest_inventory(self, products: List[ProductSync], terminal_id: Optional[str] = None) -> SyncResponse:
        self._validate_inventory(products)
        batch_id = new_batch_id()
        now = datetime.utcnow()

        batch_variant_ids = {v.id for p in products for v in p.variants}
        created = updated = 0
        try:
            self._release_batch_barcodes(batch_variant_ids)
            for index, product_data in enumerate(products):
                was_created = self._upsert_product(product_data, batch_id, now, index, batch_variant_ids)
                if was_created:
                    created += 1
                else:
                    updated += 1

            self.repository.record_batch(batch_id, "product", terminal_id, len(products), created, updated, 0, now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"✅ Inventory batch {batch_id}: {created} created, {updated} updated")
        return SyncResponse(batch_id=batch_id, model="product", count=len(products), created=created, updated=updated)

    def _validate_inventory(self, products: List[ProductSync]):
        seen_products: Set[str] = set()
        seen_variants: Set[str] = set()
        active_barcodes: Dict[str, str] = {}

        for index, product in enumerate(products):
            if product.id in seen_products:
                raise BatchValidationError(f"Duplicate product id {product.id} in batch", index=index, record_id=product.id)
            seen_products.add(product.id)

            for variant in product.variants:
                if variant.id in seen_variants:
                    raise BatchValidationError(
                        f"Variant {variant.id} appears more than once in batch", index=index, record_id=variant.id
                    )
                seen_variants.add(variant.id)

                if variant.barcode and variant.is_active and product.is_active:
                    if variant.barcode in active_barcodes:
                        raise BatchValidationError(
                            f"Barcode {variant.barcode} is used by active variants "
                            f"{active_barcodes[variant.barcode]} and {variant.id}",
                            index=index,
                            record_id=variant.id
                        )
                    active_barcodes[variant.barcode] = variant.id

    def _ensure_category(self, data: Optional[CategorySync], batch_id: str, now: datetime) -> Optional[Category]:
        if data is None:
            return None
        return self._category_by_name(data.name, data.id, Provenance.IMPORTED, batch_id, now)

    def _category_by_name(
        self,
        name: str,
        category_id: Optional[str],
        origin: Provenance,
        batch_id: str,
        now: datetime
    ) -> Category:
        category = self.repository.get_category_by_name(name)
        if category is None:
            category = Category(
                id=category_id or str(uuid.uuid4()),
                name=name,
                origin=origin.value,
                batch_id=batch_id,
                imported_at=now
            )
            self.db.add(category)
            self.db.flush()
        return category

    def _release_batch_barcodes(self, variant_ids: Set[str]):
        """
        Deactivate the batch's variants before writing them back.

        A batch may move a barcode from one of its variants to another; only
        the final state has to be unique, so the old holders let go first.
        """
        released = self.repository.get_active_variants(variant_ids)
        for variant in released:
            variant.is_active = False
        if released:
            self.db.flush()

    def _upsert_product(
        self,
        data: ProductSync,
        batch_id: str,
        now: datetime,
        index: int,
        batch_variant_ids: Set[str]
    ) -> bool:
        category = self._ensure_category(data.category, batch_id, now)
        category_id = category.id if category else None

        product = self.repository.get_product(data.id)
        if product is None:
            product = self.repository.find_product_by_name(data.name, category_id)

        created = product is None
        if created:
            product = Product(id=data.id, created_at=data.created_at or now)
            self.db.add(product)

        product.name = data.name
        product.description = data.description
        product.hsn = data.hsn
        product.tax_rate = data.tax_rate
        product.is_active = data.is_active
        product.category_id = category_id
        product.hidden_by = None
        # Inventory pushed under a placeholder's id keeps it flagged for merge
        if product.origin != Provenance.PLACEHOLDER.value:
            product.origin = Provenance.IMPORTED.value
        product.batch_id = batch_id
        product.imported_at = now
        self.db.flush()

        for variant_data in data.variants:
            self._upsert_variant(product, variant_data, batch_id, now, index, batch_variant_ids)
        return created

    def _upsert_variant(
        self,
        product: Product,
        data: VariantSync,
        batch_id: str,
        now: datetime,
        index: int,
        batch_variant_ids: Set[str]
    ):
        is_active = data.is_active and product.is_active
        if data.barcode and is_active:
            # Collisions inside the batch were ruled out by _validate_inventory
            owner = self.repository.find_active_barcode_owner(data.barcode, batch_variant_ids)
            if owner is not None:
                raise BatchValidationError(
                    f"Barcode {data.barcode} already belongs to active variant {owner.id}",
                    index=index,
                    record_id=data.id
                )

        variant = self.repository.get_variant(data.id)
        if variant is None:
            variant = ProductVariant(id=data.id)
            self.db.add(variant)

        for field in VARIANT_FIELDS:
            setattr(variant, field, getattr(data, field))
        variant.is_active = is_active
        variant.hidden_by = None
        # Re-parent to the product carrying it (detaches it from any placeholder)
        variant.product_id = product.id
        variant.origin = Provenance.IMPORTED.value
        variant.batch_id = batch_id
        variant.imported_at = now
        self.db.flush()

    # ==================== SALES ====================

    def ingest_sales(self, sales: List[SaleSync], terminal_id: Optional[str] = None) -> SyncResponse:
        self._validate_sales(sales)
        batch_id = new_batch_id()
        now = datetime.utcnow()

        placeholders = PlaceholderSummary()
        created = updated = 0
        try:
            placeholders.products = self._ensure_variant_placeholders(sales, batch_id, now)

            for sale_data in sales:
                user_id = self._resolve_sale_user(sale_data, batch_id, now, placeholders)
                if self._upsert_sale(sale_data, user_id, batch_id, now):
                    created += 1
                else:
                    updated += 1

            placeholder_count = len(placeholders.users) + len(placeholders.products)
            self.repository.record_batch(
                batch_id, "sale", terminal_id, len(sales), created, updated, placeholder_count, now
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"✅ Sales batch {batch_id}: {created} created, {updated} updated, "
            f"{len(placeholders.users)} placeholder users, {len(placeholders.products)} placeholder products"
        )
        return SyncResponse(
            batch_id=batch_id,
            model="sale",
            count=len(sales),
            created=created,
            updated=updated,
            placeholders=placeholders
        )

    def _validate_sales(self, sales: List[SaleSync]):
        """
        All-or-nothing: the first invalid sale rejects the batch
        """
        seen_sales: Set[str] = set()
        seen_items: Set[str] = set()

        for index, sale in enumerate(sales):
            if sale.id in seen_sales:
                raise BatchValidationError(f"Duplicate sale id {sale.id} in batch", index=index, record_id=sale.id)
            seen_sales.add(sale.id)

            expected_total = sale.subtotal + sale.tax_amount - sale.discount
            if abs(expected_total - sale.grand_total) > TOTALS_TOLERANCE:
                raise BatchValidationError(
                    f"Sale {sale.bill_no}: subtotal + tax - discount = {expected_total:.2f} "
                    f"but grandTotal is {sale.grand_total:.2f}",
                    index=index,
                    record_id=sale.id
                )

            if sale.user is not None and sale.user.id != sale.user_id:
                raise BatchValidationError(
                    f"Sale {sale.bill_no}: embedded user {sale.user.id} does not match userId {sale.user_id}",
                    index=index,
                    record_id=sale.id
                )

            for item in sale.items:
                if item.id in seen_items:
                    raise BatchValidationError(
                        f"Sale item {item.id} appears more than once in batch", index=index, record_id=sale.id
                    )
                seen_items.add(item.id)

        # Embedded users are upserted too; check them before anything is written
        for index, sale in enumerate(sales):
            if sale.user is not None:
                self._check_username_available(sale.user, index)

    def _resolve_sale_user(
        self,
        sale: SaleSync,
        batch_id: str,
        now: datetime,
        placeholders: PlaceholderSummary
    ) -> str:
        if sale.user is not None:
            user, _ = self._upsert_user(sale.user, batch_id, now)
            return user.id

        if self.repository.get_user(sale.user_id) is not None:
            return sale.user_id

        logger.warning(f"Sale {sale.bill_no} references unknown user {sale.user_id}; creating placeholder")
        user = User(
            id=sale.user_id,
            username=f"unsynced-{sale.user_id}",
            name="Unsynced User",
            role="CASHIER",
            is_active=False,
            origin=Provenance.PLACEHOLDER.value,
            batch_id=batch_id,
            imported_at=now
        )
        self.db.add(user)
        self.db.flush()
        placeholders.users.append(user.id)
        return user.id

    def _ensure_variant_placeholders(self, sales: List[SaleSync], batch_id: str, now: datetime) -> List[str]:
        """
        One placeholder product (no variants) per variant id not known centrally
        """
        first_item_by_variant = {}
        for sale in sales:
            for item in sale.items:
                first_item_by_variant.setdefault(item.variant_id, item)

        known = self.repository.existing_variant_ids(first_item_by_variant.keys())
        missing = [vid for vid in first_item_by_variant if vid not in known]
        if not missing:
            return []

        logger.warning(f"⚠️ {len(missing)} variants unknown centrally; ensuring placeholders")
        fallback_category = None
        created_ids = []

        for variant_id in missing:
            if self.repository.get_placeholder_for_variant(variant_id) is not None:
                continue

            if fallback_category is None:
                fallback_category = self._category_by_name(
                    FALLBACK_CATEGORY, None, Provenance.PLACEHOLDER, batch_id, now
                )

            item = first_item_by_variant[variant_id]
            product = Product(
                id=str(uuid.uuid4()),
                name=(item.product_name or "Unknown Product") + PLACEHOLDER_SUFFIX,
                description="Created automatically during sales sync",
                category_id=fallback_category.id,
                tax_rate=item.tax_rate,
                origin=Provenance.PLACEHOLDER.value,
                placeholder_for_variant_id=variant_id,
                batch_id=batch_id,
                imported_at=now
            )
            self.db.add(product)
            created_ids.append(product.id)

        self.db.flush()
        return created_ids

    def _upsert_sale(self, data: SaleSync, user_id: str, batch_id: str, now: datetime) -> bool:
        sale = self.repository.get_sale(data.id)
        created = sale is None
        if created:
            sale = Sale(id=data.id, created_at=data.created_at or now)
            self.db.add(sale)

        for field in SALE_FIELDS:
            setattr(sale, field, getattr(data, field))
        sale.user_id = user_id
        sale.is_historical = True
        sale.origin = Provenance.IMPORTED.value
        sale.batch_id = batch_id
        sale.imported_at = now
        sale.updated_at = data.updated_at or now

        # Items: upsert by id, drop the ones the terminal no longer has
        existing_items = {item.id: item for item in sale.items}
        incoming_ids = set()
        for item_data in data.items:
            incoming_ids.add(item_data.id)
            item = existing_items.get(item_data.id)
            if item is None:
                item = SaleItem(id=item_data.id, created_at=data.created_at or now)
                sale.items.append(item)
            for field in SALE_ITEM_FIELDS:
                setattr(item, field, getattr(item_data, field))
        for item_id, item in existing_items.items():
            if item_id not in incoming_ids:
                sale.items.remove(item)

        # Payments: same treatment; ids missing on the wire are derived from position
        existing_payments = {payment.id: payment for payment in sale.payments}
        incoming_ids = set()
        for position, payment_data in enumerate(data.payments):
            payment_id = payment_data.id or f"{data.id}-p{position}"
            incoming_ids.add(payment_id)
            payment = existing_payments.get(payment_id)
            if payment is None:
                payment = InvoicePayment(id=payment_id, created_at=data.created_at or now)
                sale.payments.append(payment)
            payment.payment_mode = payment_data.payment_mode
            payment.amount = payment_data.amount
        for payment_id, payment in existing_payments.items():
            if payment_id not in incoming_ids:
                sale.payments.remove(payment)

        self.db.flush()
        return created

    # ==================== PLACEHOLDER CLEANUP ====================

    def cleanup_placeholders(self) -> CleanupResponse:
        """
        Delete placeholders nothing was attached to; report the rest for merge.
        Safe to run repeatedly.
        """
        placeholders = self.repository.get_placeholder_products()
        deleted: List[PlaceholderInfo] = []
        needs_merge: List[PlaceholderInfo] = []

        try:
            for product in placeholders:
                info = PlaceholderInfo(
                    id=product.id,
                    name=product.name,
                    variant_count=len(product.variants),
                    placeholder_for_variant_id=product.placeholder_for_variant_id
                )
                if not product.variants:
                    self.db.delete(product)
                    deleted.append(info)
                    continue

                candidate = self.repository.find_authoritative_product(self._base_name(product.name))
                info.merge_candidate_id = candidate.id if candidate else None
                needs_merge.append(info)
                logger.warning(
                    f"Placeholder {product.name} ({product.id}) has {info.variant_count} variants; manual merge required"
                )

            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        deleted_for = [info.placeholder_for_variant_id for info in deleted if info.placeholder_for_variant_id]
        known = self.repository.existing_variant_ids(deleted_for)
        awaiting = [variant_id for variant_id in deleted_for if variant_id not in known]
        if awaiting:
            logger.warning(f"⚠️ {len(awaiting)} sold variants still missing centrally; waiting for terminal inventory sync")

        logger.info(f"🗑️ Placeholder cleanup: scanned {len(placeholders)}, deleted {len(deleted)}, kept {len(needs_merge)}")
        return CleanupResponse(
            scanned=len(placeholders),
            deleted=deleted,
            needs_merge=needs_merge,
            awaiting_inventory=awaiting
        )

    @staticmethod
    def _base_name(name: str) -> str:
        if name.endswith(PLACEHOLDER_SUFFIX):
            return name[: -len(PLACEHOLDER_SUFFIX)]
        return name

    # ==================== LEDGER ====================

    def list_batches(self, limit: int = 50, model: Optional[str] = None):
        return self.repository.recent_batches(limit=limit, model=model)
