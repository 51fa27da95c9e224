from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.database import Base
from app.core.security import CurrentUser
from app.models.credit_transaction import CreditTransaction
from app.models.generation import Generation
from app.models import credit_account, credit_package, profile, purchase  # noqa: F401
from app.services.credits_engine import get_balance, replay_balance
from app.services.generations import complete_generation, create_generation, fail_generation
from app.services.profiles import ensure_profile
from app.services.purchases import process_payment_event


def main() -> None:
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        user = CurrentUser(id="user-1", email="user@example.com")
        ensure_profile(db, user, signup_bonus=100)
        ensure_profile(db, user, signup_bonus=100)
        bal = get_balance(db, user.id).balance
        assert bal == 100, bal

        gen = create_generation(db, user.id, "Coffee production by country")
        complete_generation(db, user.id, gen.id, "aGVsbG8=")
        bal = get_balance(db, user.id).balance
        assert bal == 99, bal

        gen2 = create_generation(db, user.id, "Rainfall in Lisbon")
        assert fail_generation(db, user.id, gen2.id, "The request was blocked by safety filters.")
        assert not fail_generation(db, user.id, gen2.id, "again")
        bal2 = get_balance(db, user.id).balance
        assert bal2 == 99, bal2

        event = {
            "type": "payment.succeeded",
            "data": {
                "payment_id": "tx_1",
                "currency": "USD",
                "total_amount": 999,
                "metadata": {"user_id": user.id, "package_id": "pkg_50", "credits": "50"},
            },
        }
        first = process_payment_event(db, event)
        second = process_payment_event(db, event)
        assert first.status == "credited", first
        assert second.status == "duplicate", second
        bal3 = get_balance(db, user.id).balance
        assert bal3 == 149, bal3

        assert replay_balance(db, user.id) == bal3
        refunds = db.query(CreditTransaction).filter(CreditTransaction.type == "refund").count()
        assert refunds == 1, refunds
        statuses = sorted(g.status for g in db.query(Generation).all())
        assert statuses == ["completed", "failed"], statuses
    finally:
        db.close()


if __name__ == "__main__":
    main()
    print("OK")
