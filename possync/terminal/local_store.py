# possync/terminal/local_store.py
import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from possync.config.database import build_engine, init_db, session_scope
from possync.core.exceptions import InsufficientStockError, LocalStoreError
from possync.modules.sync.schemas import ProductSync, SaleSync, UserSync
from possync.shared.database.models import (
    Category, InventoryMovement, InvoicePayment, Product, ProductVariant,
    QueueStatus, Sale, SaleItem, SaleStatus, Setting, SyncAction,
    SyncQueueEntry, User, new_id
)
from .schemas import (
    CheckoutItem, CheckoutRequest, PaymentLine, QueueEntryView, QueueError,
    QueueStatusReport, ReturnLine
)

logger = logging.getLogger(__name__)

# model name -> (ORM class, wire schema)
SYNC_MODELS = {
    "user": (User, UserSync),
    "product": (Product, ProductSync),
    "sale": (Sale, SaleSync),
}

USER_FIELDS = (
    "username", "password", "name", "role", "is_active",
    "perm_void_sale", "perm_view_reports", "perm_manage_products",
    "perm_manage_inventory", "perm_manage_users", "perm_change_payment",
    "perm_edit_settings", "max_discount",
)
PRODUCT_FIELDS = ("name", "description", "hsn", "tax_rate", "is_active")
VARIANT_FIELDS = (
    "sku", "barcode", "size", "color", "mrp", "selling_price",
    "cost_price", "stock", "min_stock", "is_active",
)

def sync_model(model_name: str) -> Tuple[Any, Any]:
    try:
        return SYNC_MODELS[model_name]
    except KeyError:
        raise LocalStoreError(f"Unknown sync model '{model_name}'")

def serialize(model_name: str, row) -> Dict[str, Any]:
    """ORM row -> camelCase JSON payload, the shape the central endpoints accept"""
    _, schema = sync_model(model_name)
    return schema.model_validate(row).model_dump(mode="json", by_alias=True)

def _variant_info(variant: ProductVariant) -> str:
    return " / ".join(part for part in (variant.size, variant.color) if part)

def _price_line(line: SaleItem):
    base = round(line.quantity * line.selling_price - line.discount, 2)
    if base < 0:
        raise LocalStoreError(f"Line discount exceeds line amount for variant {line.variant_id}")
    line.tax_amount = round(base * line.tax_rate / 100, 2)
    line.total = round(base + line.tax_amount, 2)

def _apply_totals(sale: Sale):
    """Recompute the header so subtotal + tax - discount == grand_total"""
    subtotal = round(sum(i.quantity * i.selling_price - i.discount for i in sale.items), 2)
    tax = round(sum(i.tax_amount for i in sale.items), 2)
    sale.subtotal = subtotal
    sale.discount = round(min(sale.discount or 0, subtotal), 2)
    sale.tax_amount = tax
    sale.cgst = round(tax / 2, 2)
    sale.sgst = round(tax - sale.cgst, 2)
    sale.grand_total = round(subtotal + tax - sale.discount, 2)

def _settle(sale: Sale):
    paid = round(sum(p.amount for p in sale.payments), 2)
    sale.paid_amount = paid
    sale.change_amount = round(max(paid - sale.grand_total, 0), 2)
    modes = {p.payment_mode for p in sale.payments if p.amount > 0}
    if len(modes) > 1:
        sale.payment_method = "SPLIT"
    elif modes:
        sale.payment_method = modes.pop()

class LocalStore:
    """
    The terminal's relational store.

    Every point-of-sale write commits together with its sync queue entry,
    so a committed sale is always queued and a queued sale always exists.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @classmethod
    def from_url(cls, database_url: str, **engine_kwargs) -> "LocalStore":
        engine = build_engine(database_url, **engine_kwargs)
        init_db(engine)
        return cls(sessionmaker(autocommit=False, autoflush=False, bind=engine))

    def session(self):
        return session_scope(self.session_factory)

    # ==================== SETTINGS ====================

    def get_setting(self, key: str) -> Optional[str]:
        with self.session() as db:
            setting = db.query(Setting).filter(Setting.key == key).first()
            return setting.value if setting else None

    def set_setting(self, key: str, value: Optional[str]):
        with self.session() as db:
            setting = db.query(Setting).filter(Setting.key == key).first()
            if setting is None:
                setting = Setting(key=key)
                db.add(setting)
            setting.value = value

    # ==================== MASTER DATA ====================

    def save_user(self, data: UserSync, queue: bool = False) -> str:
        with self.session() as db:
            user = db.get(User, data.id)
            if user is None:
                user = User(id=data.id)
                db.add(user)
            for field in USER_FIELDS:
                setattr(user, field, getattr(data, field))
            user.is_synced = False
            if queue:
                db.flush()
                self._add_queue_entry(db, SyncAction.USER_UPSERT, "user", serialize("user", user), user.id)
            return user.id

    def save_product(self, data: ProductSync, queue: bool = False) -> str:
        """Create or update a product with its variants (stock included)"""
        with self.session() as db:
            category = None
            if data.category:
                category = db.query(Category).filter(Category.name == data.category.name).first()
                if category is None:
                    category = Category(id=data.category.id or new_id(), name=data.category.name)
                    db.add(category)

            product = db.get(Product, data.id)
            if product is None:
                product = Product(id=data.id)
                db.add(product)
            for field in PRODUCT_FIELDS:
                setattr(product, field, getattr(data, field))
            product.category = category
            product.is_synced = False

            for item in data.variants:
                variant = db.get(ProductVariant, item.id)
                if variant is None:
                    variant = ProductVariant(id=item.id)
                    db.add(variant)
                for field in VARIANT_FIELDS:
                    setattr(variant, field, getattr(item, field))
                variant.product = product

            if queue:
                db.flush()
                self._add_queue_entry(db, SyncAction.PRODUCT_UPSERT, "product", serialize("product", product), product.id)
            return product.id

    # ==================== SYNC BOOKKEEPING ====================

    def unsynced_records(self, model_name: str) -> List[Dict[str, Any]]:
        """Serialized payloads of every record not yet acknowledged by central"""
        model, _ = sync_model(model_name)
        with self.session() as db:
            rows = db.query(model).filter(
                model.is_synced.is_(False)
            ).order_by(model.created_at, model.id).all()
            return [serialize(model_name, row) for row in rows]

    def mark_synced(self, model_name: str, ids: Iterable[str], as_of: Optional[datetime] = None) -> int:
        """
        Flag records as synced.

        Rows modified after `as_of` are left unsynced: the payload that was
        acknowledged no longer reflects them.
        """
        model, _ = sync_model(model_name)
        ids = list(ids)
        if not ids:
            return 0
        with self.session() as db:
            query = db.query(model).filter(model.id.in_(ids))
            if as_of is not None:
                query = query.filter(model.updated_at <= as_of)
            return query.update({model.is_synced: True}, synchronize_session=False)

    # ==================== POINT OF SALE ====================

    def checkout(self, request: CheckoutRequest) -> str:
        """Record a sale: items, payments, stock decrement and queue entry in one transaction"""
        with self.session() as db:
            user = db.get(User, request.user_id)
            if user is None:
                raise LocalStoreError(f"Unknown user {request.user_id}")

            sale = Sale(
                id=new_id(),
                bill_no=self._next_bill_no(db),
                user=user,
                customer_name=request.customer_name,
                customer_phone=request.customer_phone,
                discount=request.discount,
                remarks=request.remarks,
                status=SaleStatus.COMPLETED.value,
                is_synced=False
            )
            db.add(sale)

            for item in request.items:
                self._add_line(db, sale, item, user.id, reason="SALE")
            _apply_totals(sale)

            payments = request.payments or [PaymentLine(payment_mode="CASH", amount=sale.grand_total)]
            for payment in payments:
                sale.payments.append(InvoicePayment(id=new_id(), payment_mode=payment.payment_mode, amount=payment.amount))
            _settle(sale)

            self._queue_sale(db, SyncAction.SALE_CHECKOUT, sale)
            logger.info(f"Sale #{sale.bill_no} recorded: {len(sale.items)} items, total {sale.grand_total}")
            return sale.id

    def update_payment(self, sale_id: str, payments: List[PaymentLine]) -> str:
        """Replace the payment split of an existing sale"""
        with self.session() as db:
            sale = self._get_sale(db, sale_id)
            sale.payments.clear()
            for payment in payments:
                sale.payments.append(InvoicePayment(id=new_id(), payment_mode=payment.payment_mode, amount=payment.amount))
            _settle(sale)
            sale.is_synced = False

            self._queue_sale(db, SyncAction.PAYMENT_UPDATE, sale)
            logger.info(f"Payment updated for sale #{sale.bill_no}: {sale.payment_method} {sale.paid_amount}")
            return sale.id

    def refund(self, sale_id: str, lines: List[ReturnLine], user_id: Optional[str] = None, reason: Optional[str] = None) -> str:
        """Return items to stock and pay the difference back"""
        if not lines:
            raise LocalStoreError("Nothing to refund")
        with self.session() as db:
            sale = self._get_sale(db, sale_id)
            if sale.status in (SaleStatus.REFUNDED.value, SaleStatus.VOIDED.value):
                raise LocalStoreError(f"Sale #{sale.bill_no} is {sale.status}")

            previous_total = sale.grand_total
            for line in lines:
                self._return_line(db, sale, line, user_id or sale.user_id, reason="REFUND")
            _apply_totals(sale)

            refunded = round(previous_total - sale.grand_total, 2)
            if refunded:
                sale.payments.append(InvoicePayment(id=new_id(), payment_mode="REFUND", amount=-refunded))
            _settle(sale)

            sale.status = SaleStatus.PARTIALLY_REFUNDED.value if sale.items else SaleStatus.REFUNDED.value
            if reason:
                sale.remarks = f"{sale.remarks}\n{reason}" if sale.remarks else reason
            sale.is_synced = False

            self._queue_sale(db, SyncAction.REFUND, sale)
            logger.info(f"Refund on sale #{sale.bill_no}: {refunded}")
            return sale.id

    def exchange(
        self,
        sale_id: str,
        returned: List[ReturnLine],
        new_items: List[CheckoutItem],
        user_id: Optional[str] = None,
        payment_mode: str = "CASH"
    ) -> str:
        """Swap returned lines for new ones; the price difference is settled in one payment"""
        if not returned and not new_items:
            raise LocalStoreError("Nothing to exchange")
        with self.session() as db:
            sale = self._get_sale(db, sale_id)
            if sale.status in (SaleStatus.REFUNDED.value, SaleStatus.VOIDED.value):
                raise LocalStoreError(f"Sale #{sale.bill_no} is {sale.status}")
            actor = user_id or sale.user_id

            previous_total = sale.grand_total
            for line in returned:
                self._return_line(db, sale, line, actor, reason="EXCHANGE")
            for item in new_items:
                self._add_line(db, sale, item, actor, reason="EXCHANGE")
            _apply_totals(sale)

            difference = round(sale.grand_total - previous_total, 2)
            if difference:
                mode = payment_mode if difference > 0 else "REFUND"
                sale.payments.append(InvoicePayment(id=new_id(), payment_mode=mode, amount=difference))
            _settle(sale)

            sale.status = SaleStatus.EXCHANGED.value
            sale.is_synced = False

            self._queue_sale(db, SyncAction.EXCHANGE, sale)
            logger.info(f"Exchange on sale #{sale.bill_no}: difference {difference}")
            return sale.id

    def _next_bill_no(self, db: Session) -> int:
        return (db.query(func.max(Sale.bill_no)).scalar() or 0) + 1

    def _get_sale(self, db: Session, sale_id: str) -> Sale:
        sale = db.get(Sale, sale_id)
        if sale is None:
            raise LocalStoreError(f"Sale {sale_id} not found")
        return sale

    def _add_line(self, db: Session, sale: Sale, item: CheckoutItem, user_id: str, reason: str):
        variant = db.get(ProductVariant, item.variant_id)
        if variant is None or not variant.is_active:
            raise LocalStoreError(f"Variant {item.variant_id} is not available")
        if variant.stock < item.quantity:
            raise InsufficientStockError(
                f"{variant.product.name}: {variant.stock} in stock, {item.quantity} requested"
            )

        line = SaleItem(
            id=new_id(),
            variant_id=variant.id,
            product_name=variant.product.name,
            variant_info=_variant_info(variant),
            quantity=item.quantity,
            mrp=variant.mrp,
            selling_price=item.selling_price if item.selling_price is not None else variant.selling_price,
            discount=item.discount,
            tax_rate=item.tax_rate if item.tax_rate is not None else variant.product.tax_rate
        )
        _price_line(line)
        sale.items.append(line)
        self._move_stock(db, variant, -item.quantity, reason, sale.id, user_id)

    def _return_line(self, db: Session, sale: Sale, line: ReturnLine, user_id: str, reason: str):
        item = next((i for i in sale.items if i.id == line.sale_item_id), None)
        if item is None:
            raise LocalStoreError(f"Item {line.sale_item_id} is not part of sale #{sale.bill_no}")
        if line.quantity > item.quantity:
            raise LocalStoreError(f"Cannot return {line.quantity} of {item.quantity} sold")

        variant = db.get(ProductVariant, item.variant_id)
        if variant is not None:
            self._move_stock(db, variant, line.quantity, reason, sale.id, user_id)

        remaining = item.quantity - line.quantity
        if remaining == 0:
            sale.items.remove(item)
        else:
            item.discount = round(item.discount * remaining / item.quantity, 2)
            item.quantity = remaining
            _price_line(item)

    def _move_stock(self, db: Session, variant: ProductVariant, delta: int, reason: str, reference: str, user_id: str):
        variant.stock += delta
        variant.product.is_synced = False
        db.add(InventoryMovement(
            variant_id=variant.id,
            type="IN" if delta > 0 else "OUT",
            quantity=abs(delta),
            reason=reason,
            reference=reference,
            created_by=user_id
        ))

    def _queue_sale(self, db: Session, action: SyncAction, sale: Sale):
        db.flush()
        self._add_queue_entry(db, action, "sale", serialize("sale", sale), sale.id)

    # ==================== SYNC QUEUE ====================

    def _add_queue_entry(self, db: Session, action, target_model: str, payload: Dict[str, Any], record_id: Optional[str]) -> SyncQueueEntry:
        entry = SyncQueueEntry(
            action=SyncAction(action).value,
            target_model=target_model,
            record_id=record_id,
            payload=json.dumps(payload),
            status=QueueStatus.PENDING.value,
            retry_count=0
        )
        db.add(entry)
        return entry

    def enqueue(self, action, target_model: str, payload: Dict[str, Any], record_id: Optional[str] = None) -> int:
        sync_model(target_model)
        with self.session() as db:
            entry = self._add_queue_entry(db, action, target_model, payload, record_id)
            db.flush()
            return entry.id

    def pending_queue_entries(self, limit: Optional[int] = None) -> List[QueueEntryView]:
        """PENDING entries in creation order, due or not"""
        with self.session() as db:
            query = db.query(SyncQueueEntry).filter(
                SyncQueueEntry.status == QueueStatus.PENDING.value
            ).order_by(SyncQueueEntry.created_at, SyncQueueEntry.id)
            if limit:
                query = query.limit(limit)
            return [QueueEntryView.model_validate(entry) for entry in query.all()]

    def mark_entry_synced(self, entry_id: int, now: datetime):
        with self.session() as db:
            entry = db.get(SyncQueueEntry, entry_id)
            entry.status = QueueStatus.SYNCED.value
            entry.synced_at = now
            entry.next_attempt_at = None
            target_model, record_id, created_at = entry.target_model, entry.record_id, entry.created_at

        if record_id:
            self.mark_synced(target_model, [record_id], as_of=created_at)

    def record_entry_failure(
        self,
        entry_id: int,
        error: str,
        next_attempt_at: Optional[datetime] = None,
        dead_letter: bool = False,
        count_attempt: bool = True
    ) -> int:
        """Keep the error; either schedule the next attempt or move the entry to FAILED"""
        with self.session() as db:
            entry = db.get(SyncQueueEntry, entry_id)
            if count_attempt:
                entry.retry_count += 1
            entry.last_error = error[:2000]
            entry.status = QueueStatus.FAILED.value if dead_letter else QueueStatus.PENDING.value
            entry.next_attempt_at = None if dead_letter else next_attempt_at
            return entry.retry_count

    def queue_status(self, error_limit: int = 10) -> QueueStatusReport:
        with self.session() as db:
            counts = dict(
                db.query(SyncQueueEntry.status, func.count(SyncQueueEntry.id))
                .group_by(SyncQueueEntry.status).all()
            )
            oldest = db.query(func.min(SyncQueueEntry.created_at)).filter(
                SyncQueueEntry.status == QueueStatus.PENDING.value
            ).scalar()
            errors = db.query(SyncQueueEntry).filter(
                SyncQueueEntry.last_error.isnot(None),
                SyncQueueEntry.status != QueueStatus.SYNCED.value
            ).order_by(SyncQueueEntry.updated_at.desc(), SyncQueueEntry.id.desc()).limit(error_limit).all()

            return QueueStatusReport(
                pending=counts.get(QueueStatus.PENDING.value, 0),
                synced=counts.get(QueueStatus.SYNCED.value, 0),
                failed=counts.get(QueueStatus.FAILED.value, 0),
                oldest_pending_at=oldest,
                recent_errors=[QueueError.model_validate(entry) for entry in errors]
            )

    def requeue_failed(self) -> int:
        with self.session() as db:
            return db.query(SyncQueueEntry).filter(
                SyncQueueEntry.status == QueueStatus.FAILED.value
            ).update({
                SyncQueueEntry.status: QueueStatus.PENDING.value,
                SyncQueueEntry.next_attempt_at: None
            }, synchronize_session=False)

    def purge_synced(self, older_than: datetime) -> int:
        with self.session() as db:
            return db.query(SyncQueueEntry).filter(
                SyncQueueEntry.status == QueueStatus.SYNCED.value,
                SyncQueueEntry.synced_at < older_than
            ).delete(synchronize_session=False)
