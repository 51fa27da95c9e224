from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, Unauthenticated, UnconfiguredError
from app.core.settings import settings
from app.models.credit_package import CreditPackage
from app.services.payments.dodo import CheckoutSession, DodoPaymentsClient, get_payments_client

logger = logging.getLogger(__name__)

CHECKOUT_SOURCE = "infographic-ai"


def list_packages(db: Session) -> list[CreditPackage]:
    return (
        db.query(CreditPackage)
        .filter(CreditPackage.is_active.is_(True))
        .order_by(CreditPackage.sort_order.asc(), CreditPackage.credits.asc())
        .all()
    )


def get_active_package(db: Session, package_id: str) -> CreditPackage:
    pkg = (
        db.query(CreditPackage)
        .filter(CreditPackage.id == package_id, CreditPackage.is_active.is_(True))
        .first()
    )
    if pkg is None:
        raise NotFoundError("Package not found or inactive")
    return pkg


def create_checkout(
    db: Session,
    user: Any,
    package_id: str,
    client: DodoPaymentsClient | None = None,
) -> CheckoutSession:
    """Open a hosted checkout for ``package_id``; nothing is written locally.

    The metadata attached here is echoed back on the payment webhook and is
    what lets the reconciler credit the right user.
    """
    user_id = str(getattr(user, "id", "") or "").strip()
    email = str(getattr(user, "email", "") or "").strip()
    if not user_id or not email:
        raise Unauthenticated("Unauthorized")

    pkg = get_active_package(db, package_id)
    if not pkg.dodo_product_id:
        raise UnconfiguredError("Package is not configured for Dodo checkout")

    client = client or get_payments_client()
    session = client.create_checkout_session(
        product_id=str(pkg.dodo_product_id),
        customer_email=email,
        customer_name=(str(getattr(user, "full_name", "") or "") or None),
        billing_country=(str(getattr(user, "country", "") or "") or "US"),
        return_url=settings.dodo_return_url or f"{settings.frontend_url}/payments/return",
        metadata={
            "user_id": user_id,
            "package_id": str(pkg.id),
            "credits": str(int(pkg.credits)),
            "source": CHECKOUT_SOURCE,
        },
    )
    logger.info(
        "checkout.create.ok user_id=%s package_id=%s session_id=%s",
        user_id,
        pkg.id,
        session.session_id,
    )
    return session
