# possync/modules/maintenance/service.py
import hmac
import logging
import uuid
from typing import Any, Dict, List, Optional, Set
from sqlalchemy.orm import Session

from possync.config.settings import settings
from possync.core.exceptions import MaintenanceAuthorizationError, ResetPartialFailure
from .repository import MaintenanceRepository, RESET_ORDER
from .schemas import ProductCorrectionFilter, ResetResponse, CorrectionResponse

logger = logging.getLogger(__name__)

def new_correction_id() -> str:
    return f"hide-{uuid.uuid4().hex}"

class MaintenanceService:
    """
    Administrative operations on the central store: destructive reset and
    reversible soft-delete corrections.
    """

    def __init__(self, db: Session, secret: Optional[str] = None):
        self.db = db
        self.repository = MaintenanceRepository(db)
        self.secret = secret if secret is not None else settings.maintenance_secret

    # ==================== AUTHORIZATION ====================

    def authorize(self, provided: Optional[str]):
        """Raise before any mutation when the shared secret does not match"""
        if provided is None or not hmac.compare_digest(self.secret.encode(), provided.strip().encode()):
            logger.warning("❌ Maintenance request with invalid secret rejected")
            raise MaintenanceAuthorizationError("Unauthorized: Invalid maintenance secret", status_code=403)

    @staticmethod
    def require_confirmation(confirm: Any):
        if confirm is not True:
            raise MaintenanceAuthorizationError("Confirmation required (confirm: true)", status_code=400)

    # ==================== RESET ====================

    def reset_all_data(self) -> ResetResponse:
        """
        Wipe transactional and master data, child tables first, keeping users.

        Each step commits on its own. A failing step stops the sequence and
        raises ResetPartialFailure; earlier steps stay deleted.
        """
        before = self.repository.count_rows()
        logger.warning(f"⚠️ STARTING FULL DATA WIPE (preserving {before['users']} users)")

        deleted: Dict[str, int] = {}
        for name, model in RESET_ORDER:
            try:
                deleted[name] = self.repository.delete_all(model)
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                remaining = self.repository.count_rows()
                logger.error(f"❌ Reset failed at {name} after {list(deleted)}: {e}")
                raise ResetPartialFailure(
                    f"Reset stopped at {name}: {e}",
                    completed_steps=list(deleted),
                    failed_step=name,
                    remaining_counts=remaining
                ) from e
            logger.info(f"Deleted {deleted[name]} rows from {name}")

        after = self.repository.count_rows()
        logger.warning("✅ DATA WIPE COMPLETED")
        return ResetResponse(
            message="All application data (sales, inventory, customers, settings) erased. Users were preserved.",
            deleted=deleted,
            before=before,
            after=after
        )

    # ==================== CORRECTIONS ====================

    def hide_products(self, flt: ProductCorrectionFilter, dry_run: bool = False) -> CorrectionResponse:
        """
        Soft delete matching active products and their active variants.

        Every row switched off is stamped with a correction id so a restore
        brings back exactly these rows and nothing that was already inactive.
        """
        products = self.repository.find_products(flt, hidden=False)
        variants = [v for p in products for v in p.variants if v.is_active]
        correction_id = None if dry_run else new_correction_id()

        if not dry_run:
            try:
                for product in products:
                    product.is_active = False
                    product.hidden_by = correction_id
                for variant in variants:
                    variant.is_active = False
                    variant.hidden_by = correction_id
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
        logger.info(f"Hid {len(products)} products and {len(variants)} variants (correction={correction_id}, dry_run={dry_run})")

        return CorrectionResponse(
            action="hide",
            correction_id=correction_id,
            dry_run=dry_run,
            matched_products=len(products),
            products_changed=len(products),
            variants_changed=len(variants),
            product_ids=[p.id for p in products]
        )

    def restore_products(self, flt: ProductCorrectionFilter, dry_run: bool = False) -> CorrectionResponse:
        """
        Undo earlier hides for products matching the predicate.

        Only rows stamped by a hide are reactivated, so running it twice is a
        no-op. A variant whose barcode is now held by another active variant
        stays hidden and is reported as a conflict.
        """
        products = self.repository.find_products(flt, hidden=True)
        variants_changed = 0
        conflicts: List[str] = []
        claimed: Set[str] = set()

        try:
            for product in products:
                restoring = [v for v in product.variants if v.hidden_by == product.hidden_by]
                for variant in restoring:
                    if variant.barcode:
                        owner = self.repository.find_active_barcode_owner(
                            variant.barcode, exclude_ids=[variant.id]
                        )
                        if owner is not None or variant.barcode in claimed:
                            conflicts.append(variant.id)
                            continue
                        claimed.add(variant.barcode)
                    if not dry_run:
                        variant.is_active = True
                        variant.hidden_by = None
                    variants_changed += 1
                if not dry_run:
                    product.is_active = True
                    product.hidden_by = None

            if not dry_run:
                self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if conflicts:
            logger.warning(f"Restore left {len(conflicts)} variants hidden: barcode now in use")
        logger.info(f"Restored {len(products)} products and {variants_changed} variants (dry_run={dry_run})")

        return CorrectionResponse(
            action="restore",
            dry_run=dry_run,
            matched_products=len(products),
            products_changed=len(products),
            variants_changed=variants_changed,
            product_ids=[p.id for p in products],
            conflicts=conflicts
        )
