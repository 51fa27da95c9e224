import base64
import os
import tempfile

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.database import Base, engine_connect_args
from app.core.security import CurrentUser
from app.models import credit_account, credit_package, credit_transaction, generation, profile, purchase  # noqa: F401
from app.services.llm.gemini import GeneratorResult
from app.services.payments.dodo import CheckoutSession, sign_webhook
from app.services.storage.supabase_storage import StoredArtifact


class LedgerDatabase:
    """Throwaway SQLite file database with the full schema.

    A file (rather than ``:memory:``) lets concurrent tests give every
    thread its own connection against the same data.
    """

    def __init__(self) -> None:
        fd, self.path = tempfile.mkstemp(suffix=".db", prefix="ledger-test-")
        os.close(fd)
        url = f"sqlite:///{self.path}"
        self.engine = create_engine(url, connect_args=engine_connect_args(url))
        self.Session = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        Base.metadata.create_all(bind=self.engine)

    def close(self) -> None:
        self.engine.dispose()
        try:
            os.remove(self.path)
        except OSError:
            pass


def make_user(user_id: str = "user-1", email: str = "user@example.com", role: str = "user") -> CurrentUser:
    return CurrentUser(id=user_id, email=email, role=role, full_name="Test User")


PNG_BASE64 = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8z8BQDwAEhQGAhKmMIQAAAABJRU5ErkJggg=="


class FakeGenerator:
    def __init__(self, result: GeneratorResult | None = None, error: Exception | None = None) -> None:
        self.result = result or GeneratorResult(image_base64=PNG_BASE64, mime_type="image/png", text_response="Done")
        self.error = error
        self.calls: list[tuple[str, str, str]] = []
        self.closed = False

    async def generate(self, prompt: str, aspect_ratio: str = "9:16", image_size: str = "2K") -> GeneratorResult:
        self.calls.append((prompt, aspect_ratio, image_size))
        if self.error is not None:
            raise self.error
        return self.result

    async def aclose(self) -> None:
        self.closed = True


class FakeStorage:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []

    def put(self, data: bytes, content_type: str, path: str) -> StoredArtifact:
        if self.fail:
            raise RuntimeError("bucket unavailable")
        self.objects[path] = data
        return StoredArtifact(url=f"https://storage.test/public/{path}", path=path)

    def delete(self, path: str) -> None:
        self.deleted.append(path)
        self.objects.pop(path, None)


class FakePaymentsClient:
    def __init__(self) -> None:
        self.calls: list[dict] = []

    def create_checkout_session(self, **kwargs) -> CheckoutSession:
        self.calls.append(kwargs)
        return CheckoutSession(url="https://checkout.test/session/cs_1", session_id="cs_1")


WEBHOOK_SECRET = "whsec_" + base64.b64encode(b"super-secret-signing-key").decode("ascii")


def signed_headers(body: bytes, *, timestamp: int, webhook_id: str = "msg_1", secret: str = WEBHOOK_SECRET) -> dict:
    ts = str(timestamp)
    return {
        "webhook-id": webhook_id,
        "webhook-timestamp": ts,
        "webhook-signature": sign_webhook(body, webhook_id=webhook_id, timestamp=ts, secret=secret),
    }
