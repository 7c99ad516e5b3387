# storefront/repos/checkout_repo.py
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from storefront.data.models.checkout import CheckoutModel


class CheckoutRepo:
    def __init__(self, db: Session):
        self.db = db

    def create_checkout(self, checkout: CheckoutModel) -> CheckoutModel:
        self.db.add(checkout)
        self.db.commit()
        self.db.refresh(checkout)
        return checkout

    def get_checkout(self, checkout_id: int) -> CheckoutModel | None:
        return self.db.get(CheckoutModel, checkout_id)

    def mark_paid(self, checkout_id: int, paid_at: datetime, payment_details: dict | None) -> int:
        """Only sessions that are not finalized accept payment updates."""
        result = self.db.execute(
            update(CheckoutModel)
            .where(
                CheckoutModel.id == checkout_id,
                CheckoutModel.is_finalized.is_(False),
            )
            .values(
                is_paid=True,
                payment_status="paid",
                paid_at=paid_at,
                payment_details=payment_details,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def claim_finalize(self, checkout_id: int, finalized_at: datetime) -> bool:
        """UPDATE checkouts SET is_finalized = true WHERE id = :id AND is_finalized = false

        True only for the single caller whose update applied.
        """
        result = self.db.execute(
            update(CheckoutModel)
            .where(
                CheckoutModel.id == checkout_id,
                CheckoutModel.is_finalized.is_(False),
            )
            .values(is_finalized=True, finalized_at=finalized_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def release_finalize(self, checkout_id: int) -> bool:
        result = self.db.execute(
            update(CheckoutModel)
            .where(
                CheckoutModel.id == checkout_id,
                CheckoutModel.is_finalized.is_(True),
            )
            .values(is_finalized=False, finalized_at=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def refresh(self, checkout: CheckoutModel) -> CheckoutModel:
        self.db.refresh(checkout)
        return checkout

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
