import unittest
from unittest import mock

import requests

from app.services.storage.supabase_storage import StorageError, SupabaseStorage, artifact_path, extension_for


class FakeResponse:
    def __init__(self, status_code=200, text=""):
        self.status_code = status_code
        self.text = text


class TestArtifactPaths(unittest.TestCase):
    def test_extension_for(self):
        self.assertEqual(extension_for("image/png"), "png")
        self.assertEqual(extension_for("image/jpeg"), "jpeg")
        self.assertEqual(extension_for("image/webp; charset=binary"), "webp")
        self.assertEqual(extension_for(None), "png")
        self.assertEqual(extension_for("garbage"), "png")

    def test_artifact_path(self):
        self.assertEqual(artifact_path("user-1", "gen-1", "image/png"), "user-1/gen-1.png")


class TestSupabaseStorage(unittest.TestCase):
    def setUp(self):
        self.storage = SupabaseStorage(
            supabase_url="https://proj.supabase.co/",
            service_key="service-key",
            bucket="infographics",
        )

    def test_put_upserts_and_returns_public_url(self):
        with mock.patch("app.services.storage.supabase_storage.requests.post") as post:
            post.return_value = FakeResponse(200)
            stored = self.storage.put(b"png-bytes", "image/png", "user-1/gen-1.png")

        self.assertEqual(stored.path, "user-1/gen-1.png")
        self.assertEqual(
            stored.url,
            "https://proj.supabase.co/storage/v1/object/public/infographics/user-1/gen-1.png",
        )
        args, kwargs = post.call_args
        self.assertEqual(args[0], "https://proj.supabase.co/storage/v1/object/infographics/user-1/gen-1.png")
        self.assertEqual(kwargs["headers"]["x-upsert"], "true")
        self.assertEqual(kwargs["headers"]["content-type"], "image/png")
        self.assertEqual(kwargs["data"], b"png-bytes")

    def test_put_error_status(self):
        with mock.patch("app.services.storage.supabase_storage.requests.post") as post:
            post.return_value = FakeResponse(403, "forbidden")
            with self.assertRaises(StorageError):
                self.storage.put(b"x", "image/png", "user-1/gen-1.png")

    def test_put_network_error(self):
        with mock.patch(
            "app.services.storage.supabase_storage.requests.post",
            side_effect=requests.ConnectionError("down"),
        ):
            with self.assertRaises(StorageError):
                self.storage.put(b"x", "image/png", "user-1/gen-1.png")

    def test_delete_tolerates_missing_object(self):
        with mock.patch("app.services.storage.supabase_storage.requests.delete") as delete:
            delete.return_value = FakeResponse(404)
            self.storage.delete("user-1/gen-1.png")
        self.assertEqual(delete.call_args.kwargs["json"], {"prefixes": ["user-1/gen-1.png"]})


if __name__ == "__main__":
    unittest.main()
