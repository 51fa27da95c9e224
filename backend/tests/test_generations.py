import unittest

from ledger_fixtures import FakeStorage, LedgerDatabase, make_user

from app.core.errors import ConflictError, InsufficientCreditsError, NotFoundError, ValidationError
from app.models.credit_transaction import CreditTransaction
from app.models.generation import Generation
from app.services import credits_engine, generations
from app.services.profiles import ensure_profile


class GenerationLifecycleTestCase(unittest.TestCase):
    def setUp(self):
        self.database = LedgerDatabase()
        self.db = self.database.Session()
        self.user = make_user()
        ensure_profile(self.db, self.user, signup_bonus=100)

    def tearDown(self):
        self.db.close()
        self.database.close()

    def balance(self, user_id="user-1"):
        return credits_engine.get_balance(self.db, user_id).balance

    def test_create_debits_and_opens_pending(self):
        gen = generations.create_generation(self.db, "user-1", "Coffee facts", "1:1", "1K")
        self.assertEqual(gen.status, "pending")
        self.assertEqual(gen.credits_used, 1)
        self.assertEqual(self.balance(), 99)

        usage = self.db.query(CreditTransaction).filter(CreditTransaction.type == "usage").one()
        self.assertEqual(usage.reference_id, gen.id)
        self.assertEqual(usage.balance_after, 99)

    def test_successful_generation_flow(self):
        gen = generations.create_generation(self.db, "user-1", "Coffee facts")
        self.assertTrue(generations.mark_processing(self.db, "user-1", gen.id))
        done = generations.complete_generation(
            self.db,
            "user-1",
            gen.id,
            "https://storage.test/public/user-1/x.png",
            "Here you go",
            is_storage_url=True,
            storage_path="user-1/x.png",
        )
        self.assertEqual(done.status, "completed")
        self.assertEqual(done.image_url, "https://storage.test/public/user-1/x.png")
        self.assertIsNone(done.image_data)
        self.assertIsNotNone(done.completed_at)
        self.assertEqual(done.generation_metadata["text_response"], "Here you go")
        self.assertEqual(self.balance(), 99)

        types = [r.type for r in credits_engine.list_transactions(self.db, "user-1")]
        self.assertEqual(types, ["usage", "bonus"])

    def test_complete_inline_keeps_image_data(self):
        gen = generations.create_generation(self.db, "user-1", "Coffee facts")
        done = generations.complete_generation(self.db, "user-1", gen.id, "aGVsbG8=")
        self.assertEqual(done.image_data, "aGVsbG8=")
        self.assertIsNone(done.image_url)

    def test_complete_twice_conflicts(self):
        gen = generations.create_generation(self.db, "user-1", "Coffee facts")
        generations.complete_generation(self.db, "user-1", gen.id, "aGVsbG8=")
        with self.assertRaises(ConflictError):
            generations.complete_generation(self.db, "user-1", gen.id, "aGVsbG8=")

    def test_failure_refunds_exactly_once(self):
        gen = generations.create_generation(self.db, "user-1", "Coffee facts")
        self.assertEqual(self.balance(), 99)

        self.assertTrue(generations.fail_generation(self.db, "user-1", gen.id, "Safety block"))
        self.assertFalse(generations.fail_generation(self.db, "user-1", gen.id, "Safety block"))

        self.assertEqual(self.balance(), 100)
        refunds = self.db.query(CreditTransaction).filter(CreditTransaction.type == "refund").all()
        self.assertEqual(len(refunds), 1)
        self.assertEqual(refunds[0].reference_id, gen.id)

        failed = generations.get_generation(self.db, "user-1", gen.id)
        self.assertEqual(failed.status, "failed")
        self.assertEqual(failed.error_message, "Safety block")
        self.assertEqual(credits_engine.replay_balance(self.db, "user-1"), 100)

    def test_fail_after_complete_does_not_refund(self):
        gen = generations.create_generation(self.db, "user-1", "Coffee facts")
        generations.complete_generation(self.db, "user-1", gen.id, "aGVsbG8=")
        self.assertFalse(generations.fail_generation(self.db, "user-1", gen.id, "late"))
        self.assertEqual(self.balance(), 99)

    def test_insufficient_credits_writes_nothing(self):
        broke = make_user("user-broke", "broke@example.com")
        ensure_profile(self.db, broke, signup_bonus=0)

        with self.assertRaises(InsufficientCreditsError):
            generations.create_generation(self.db, "user-broke", "Coffee facts")

        self.assertEqual(self.db.query(Generation).filter(Generation.user_id == "user-broke").count(), 0)
        self.assertEqual(
            self.db.query(CreditTransaction).filter(CreditTransaction.user_id == "user-broke").count(),
            0,
        )

    def test_invalid_input(self):
        with self.assertRaises(ValidationError):
            generations.create_generation(self.db, "user-1", "   ")
        with self.assertRaises(ValidationError):
            generations.create_generation(self.db, "user-1", "Coffee", aspect_ratio="2:1")
        with self.assertRaises(ValidationError):
            generations.create_generation(self.db, "user-1", "Coffee", image_size="4K")
        self.assertEqual(self.balance(), 100)

    def test_other_users_generation_is_not_found(self):
        gen = generations.create_generation(self.db, "user-1", "Coffee facts")
        with self.assertRaises(NotFoundError):
            generations.get_generation(self.db, "user-2", gen.id)
        with self.assertRaises(NotFoundError):
            generations.fail_generation(self.db, "user-2", gen.id, "nope")
        self.assertEqual(self.balance(), 99)

    def test_list_newest_first(self):
        first = generations.create_generation(self.db, "user-1", "First")
        second = generations.create_generation(self.db, "user-1", "Second")
        rows = generations.list_generations(self.db, "user-1")
        self.assertEqual([r.id for r in rows], [second.id, first.id])
        self.assertEqual(len(generations.list_generations(self.db, "user-1", limit=1)), 1)

    def test_delete_removes_row_and_artifact(self):
        storage = FakeStorage()
        gen = generations.create_generation(self.db, "user-1", "Coffee facts")
        generations.complete_generation(
            self.db,
            "user-1",
            gen.id,
            "https://storage.test/public/user-1/x.png",
            is_storage_url=True,
            storage_path="user-1/x.png",
        )
        generations.delete_generation(self.db, "user-1", gen.id, storage=storage)
        self.assertEqual(storage.deleted, ["user-1/x.png"])
        with self.assertRaises(NotFoundError):
            generations.get_generation(self.db, "user-1", gen.id)
        # The ledger keeps the usage row.
        self.assertEqual(credits_engine.replay_balance(self.db, "user-1"), 99)

    def test_delete_in_progress_conflicts(self):
        gen = generations.create_generation(self.db, "user-1", "Coffee facts")
        with self.assertRaises(ConflictError):
            generations.delete_generation(self.db, "user-1", gen.id)


if __name__ == "__main__":
    unittest.main()
