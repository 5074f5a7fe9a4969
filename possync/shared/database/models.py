import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, Text, ForeignKey, Index, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from possync.config.database import Base


def new_id() -> str:
    return str(uuid.uuid4())

# ===== ENUMS =====

class Provenance(str, enum.Enum):
    """Where a replicated row came from"""
    LOCAL = "LOCAL"
    PLACEHOLDER = "PLACEHOLDER"
    IMPORTED = "IMPORTED"

class SaleStatus(str, enum.Enum):
    COMPLETED = "COMPLETED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"
    REFUNDED = "REFUNDED"
    EXCHANGED = "EXCHANGED"
    VOIDED = "VOIDED"

class QueueStatus(str, enum.Enum):
    PENDING = "PENDING"
    SYNCED = "SYNCED"
    FAILED = "FAILED"

class SyncAction(str, enum.Enum):
    SALE_CHECKOUT = "SALE_CHECKOUT"
    PAYMENT_UPDATE = "PAYMENT_UPDATE"
    EXCHANGE = "EXCHANGE"
    REFUND = "REFUND"
    USER_UPSERT = "USER_UPSERT"
    PRODUCT_UPSERT = "PRODUCT_UPSERT"

# ===== MIXINS =====

class TimestampMixin:
    """Automatic timestamps"""
    created_at = Column(DateTime, default=datetime.utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

class ProvenanceMixin:
    """Ingestion provenance: origin tag plus the batch that last wrote the row"""
    origin = Column(String(20), default=Provenance.LOCAL.value, nullable=False, index=True)
    batch_id = Column(String(64), index=True)
    imported_at = Column(DateTime)

class SyncStateMixin:
    """Terminal side bookkeeping: False after every local write"""
    is_synced = Column(Boolean, default=False, nullable=False, index=True)

# ===== USERS =====

class User(Base, TimestampMixin, ProvenanceMixin, SyncStateMixin):
    """Terminal user; preserved by the maintenance reset"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    username = Column(String(255), unique=True, nullable=False)
    password = Column(String(255))
    name = Column(String(255), nullable=False, default="")
    role = Column(String(50), nullable=False, default="CASHIER")
    is_active = Column(Boolean, default=True, nullable=False)

    # Permission flags
    perm_void_sale = Column(Boolean, default=False, nullable=False)
    perm_view_reports = Column(Boolean, default=False, nullable=False)
    perm_manage_products = Column(Boolean, default=False, nullable=False)
    perm_manage_inventory = Column(Boolean, default=False, nullable=False)
    perm_manage_users = Column(Boolean, default=False, nullable=False)
    perm_change_payment = Column(Boolean, default=False, nullable=False)
    perm_edit_settings = Column(Boolean, default=False, nullable=False)
    max_discount = Column(Float, default=0, nullable=False)

    # Relationships
    sales = relationship("Sale", back_populates="user")

# ===== PRODUCTS =====

class Category(Base, TimestampMixin, ProvenanceMixin):
    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), unique=True, nullable=False)

    products = relationship("Product", back_populates="category")

class Product(Base, TimestampMixin, ProvenanceMixin, SyncStateMixin):
    """Product header. Placeholders have origin=PLACEHOLDER and stand in for one variant id"""
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text)
    category_id = Column(String(36), ForeignKey("categories.id"), index=True)
    hsn = Column(String(50))
    tax_rate = Column(Float, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    placeholder_for_variant_id = Column(String(36), unique=True)
    # Correction that soft deleted the row; cleared on restore
    hidden_by = Column(String(64), index=True)

    # Relationships
    category = relationship("Category", back_populates="products")
    variants = relationship("ProductVariant", back_populates="product", order_by="ProductVariant.id")

class ProductVariant(Base, TimestampMixin, ProvenanceMixin):
    __tablename__ = "product_variants"

    id = Column(String(36), primary_key=True, default=new_id)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False, index=True)
    sku = Column(String(100))
    barcode = Column(String(100), index=True)
    size = Column(String(50))
    color = Column(String(50))
    mrp = Column(Float, default=0, nullable=False)
    selling_price = Column(Float, default=0, nullable=False)
    cost_price = Column(Float, default=0, nullable=False)
    stock = Column(Integer, default=0, nullable=False)
    min_stock = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    hidden_by = Column(String(64), index=True)

    # Barcode unique among active variants only
    __table_args__ = (
        Index(
            "uq_active_variant_barcode", "barcode",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    # Relationships
    product = relationship("Product", back_populates="variants")

class Customer(Base, TimestampMixin):
    __tablename__ = "customers"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    phone = Column(String(50))
    email = Column(String(255))
    address = Column(Text)
    gstin = Column(String(50))

# ===== SALES =====

class Sale(Base, TimestampMixin, ProvenanceMixin, SyncStateMixin):
    """Sale header. subtotal + tax_amount - discount == grand_total"""
    __tablename__ = "sales"

    id = Column(String(36), primary_key=True, default=new_id)
    bill_no = Column(Integer, nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    customer_name = Column(String(255))
    customer_phone = Column(String(50))
    subtotal = Column(Float, default=0, nullable=False)
    discount = Column(Float, default=0, nullable=False)
    tax_amount = Column(Float, default=0, nullable=False)
    cgst = Column(Float, default=0, nullable=False)
    sgst = Column(Float, default=0, nullable=False)
    grand_total = Column(Float, default=0, nullable=False)
    payment_method = Column(String(50), default="CASH", nullable=False)
    paid_amount = Column(Float, default=0, nullable=False)
    change_amount = Column(Float, default=0, nullable=False)
    status = Column(String(30), default=SaleStatus.COMPLETED.value, nullable=False, index=True)
    remarks = Column(Text)
    is_historical = Column(Boolean, default=False, nullable=False)

    # Relationships
    user = relationship("User", back_populates="sales")
    items = relationship("SaleItem", back_populates="sale", cascade="all, delete-orphan", order_by="SaleItem.created_at")
    payments = relationship("InvoicePayment", back_populates="sale", cascade="all, delete-orphan", order_by="InvoicePayment.created_at")

class SaleItem(Base):
    """Line item. variant_id is a stable id that may point at a variant not yet known centrally"""
    __tablename__ = "sale_items"

    id = Column(String(36), primary_key=True, default=new_id)
    sale_id = Column(String(36), ForeignKey("sales.id"), nullable=False, index=True)
    variant_id = Column(String(36), nullable=False, index=True)
    product_name = Column(String(255))
    variant_info = Column(String(255))
    quantity = Column(Integer, nullable=False)
    mrp = Column(Float, default=0, nullable=False)
    selling_price = Column(Float, default=0, nullable=False)
    discount = Column(Float, default=0, nullable=False)
    tax_rate = Column(Float, default=0, nullable=False)
    tax_amount = Column(Float, default=0, nullable=False)
    total = Column(Float, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    sale = relationship("Sale", back_populates="items")

class InvoicePayment(Base):
    __tablename__ = "invoice_payments"

    id = Column(String(36), primary_key=True, default=new_id)
    sale_id = Column(String(36), ForeignKey("sales.id"), nullable=False, index=True)
    payment_mode = Column(String(50), nullable=False)
    amount = Column(Float, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    sale = relationship("Sale", back_populates="payments")

# ===== HISTORY =====

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    action = Column(String(100), nullable=False)
    details = Column(Text)
    user_id = Column(String(36), ForeignKey("users.id"), index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

class InventoryMovement(Base):
    __tablename__ = "inventory_movements"

    id = Column(String(36), primary_key=True, default=new_id)
    variant_id = Column(String(36), ForeignKey("product_variants.id"), nullable=False, index=True)
    type = Column(String(10), nullable=False)  # IN / OUT
    quantity = Column(Integer, nullable=False)
    reason = Column(String(50))
    reference = Column(String(64))
    created_by = Column(String(36))
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

# ===== CONFIG & SYNC =====

class Setting(Base):
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(100), unique=True, nullable=False)
    value = Column(Text)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

class SyncQueueEntry(Base):
    """Pending outbound mutation on a terminal"""
    __tablename__ = "sync_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action = Column(String(50), nullable=False)
    target_model = Column(String(50), nullable=False)
    record_id = Column(String(36), index=True)
    payload = Column(Text, nullable=False)
    status = Column(String(20), default=QueueStatus.PENDING.value, nullable=False, index=True)
    retry_count = Column(Integer, default=0, nullable=False)
    last_error = Column(Text)
    next_attempt_at = Column(DateTime)
    synced_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

class SyncBatch(Base):
    """Ledger of inbound batches accepted by the central store"""
    __tablename__ = "sync_batches"

    id = Column(String(64), primary_key=True)
    model = Column(String(50), nullable=False, index=True)
    terminal_id = Column(String(100))
    record_count = Column(Integer, default=0, nullable=False)
    created_count = Column(Integer, default=0, nullable=False)
    updated_count = Column(Integer, default=0, nullable=False)
    placeholders_created = Column(Integer, default=0, nullable=False)
    received_at = Column(DateTime, default=datetime.utcnow, nullable=False)
