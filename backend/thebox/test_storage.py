from __future__ import annotations

from types import SimpleNamespace
from unittest import IsolatedAsyncioTestCase, mock

from azure.core.exceptions import HttpResponseError

from . import storage


class _FakeBlobClient:
    def __init__(self, blob_name: str):
        self.blob_name = blob_name
        self.url = f"https://example.com/screenshots/{blob_name}"


class _FakeContainerClient:
    def __init__(self, *, public_access: str | None = "blob", properties_error: Exception | None = None):
        self._public_access = public_access
        self._properties_error = properties_error
        self.properties_calls = 0
        self._latest_blob_client: _FakeBlobClient | None = None

    def get_container_properties(self):
        self.properties_calls += 1
        if self._properties_error:
            raise self._properties_error
        return SimpleNamespace(public_access=self._public_access)

    def get_blob_client(self, blob_name: str) -> _FakeBlobClient:
        self._latest_blob_client = _FakeBlobClient(blob_name)
        return self._latest_blob_client


class _FakeBlobService:
    def __init__(
        self,
        container_client: _FakeContainerClient,
        *,
        credential: object | None = None,
        user_delegation_key: object | None = None,
    ):
        self._container_client = container_client
        self.account_name = "account-name"
        self.credential = credential if credential is not None else SimpleNamespace(account_key="account-key")
        self._user_delegation_key = user_delegation_key

    def get_container_client(self, container_name: str) -> _FakeContainerClient:
        self.container_name = container_name
        return self._container_client

    def get_user_delegation_key(self, start, expiry):  # noqa: D401 - behaviour tested via assertions
        self.user_delegation_key_args = (start, expiry)
        if self._user_delegation_key is None:
            raise RuntimeError("user delegation key not configured")
        return self._user_delegation_key


_CONFIGURED = SimpleNamespace(
    AZURE_STORAGE_CONNECTION_STRING="UseDevelopmentStorage=true",
    AZURE_STORAGE_CONTAINER="screenshots",
    SCREENSHOT_URL_TTL_MINUTES=15,
)


class ScreenshotUrlTests(IsolatedAsyncioTestCase):
    def setUp(self) -> None:  # noqa: D401 - standard unittest hook
        storage._blob_service_client = None
        storage._container_is_private = None

    async def test_absolute_reference_is_returned_unchanged(self):
        with mock.patch("backend.thebox.storage.settings", _CONFIGURED), mock.patch(
            "backend.thebox.storage._get_blob_service"
        ) as mock_service:
            url = await storage.screenshot_url("https://cdn.example.com/shot.jpg")

        self.assertEqual(url, "https://cdn.example.com/shot.jpg")
        mock_service.assert_not_called()

    async def test_without_blob_storage_reference_is_returned_unchanged(self):
        unconfigured = SimpleNamespace(AZURE_STORAGE_CONNECTION_STRING=None)
        with mock.patch("backend.thebox.storage.settings", unconfigured):
            url = await storage.screenshot_url("shots/101.jpg")

        self.assertEqual(url, "shots/101.jpg")

    async def test_public_container(self):
        container = _FakeContainerClient()
        service = _FakeBlobService(container)

        with mock.patch("backend.thebox.storage.settings", _CONFIGURED), mock.patch(
            "backend.thebox.storage._get_blob_service", return_value=service
        ), mock.patch("backend.thebox.storage.generate_blob_sas") as mock_generate_sas:
            url = await storage.screenshot_url("/shots/101.jpg")
            await storage.screenshot_url("shots/102.jpg")

        self.assertEqual(url, "https://example.com/screenshots/shots/101.jpg")
        self.assertEqual(service.container_name, "screenshots")
        self.assertEqual(container.properties_calls, 1)
        mock_generate_sas.assert_not_called()

    async def test_private_container_generates_sas(self):
        container = _FakeContainerClient(public_access=None)
        service = _FakeBlobService(container)

        with mock.patch("backend.thebox.storage.settings", _CONFIGURED), mock.patch(
            "backend.thebox.storage._get_blob_service", return_value=service
        ), mock.patch("backend.thebox.storage.generate_blob_sas", return_value="sig") as mock_generate_sas:
            url = await storage.screenshot_url("shots/101.jpg")

        self.assertEqual(url, "https://example.com/screenshots/shots/101.jpg?sig")
        kwargs = mock_generate_sas.call_args.kwargs
        self.assertEqual(kwargs["account_name"], service.account_name)
        self.assertEqual(kwargs["container_name"], "screenshots")
        self.assertEqual(kwargs["blob_name"], "shots/101.jpg")
        self.assertEqual(kwargs["account_key"], "account-key")
        self.assertEqual(str(kwargs["permission"]), str(storage.BlobSasPermissions(read=True)))
        self.assertIn("expiry", kwargs)

    async def test_unreadable_container_properties_are_treated_as_private(self):
        error = HttpResponseError(message="forbidden")
        error.error_code = "AuthorizationPermissionMismatch"
        container = _FakeContainerClient(properties_error=error)
        service = _FakeBlobService(container)

        with mock.patch("backend.thebox.storage.settings", _CONFIGURED), mock.patch(
            "backend.thebox.storage._get_blob_service", return_value=service
        ), mock.patch("backend.thebox.storage.generate_blob_sas", return_value="sig"):
            url = await storage.screenshot_url("shots/101.jpg")

        self.assertTrue(url.endswith("?sig"))
        self.assertTrue(storage._container_is_private)

    async def test_private_container_uses_user_delegation_key_for_token_credentials(self):
        class _TokenCredential(storage.TokenCredential):
            def get_token(self, *args, **kwargs):  # pragma: no cover - interface stub
                raise NotImplementedError

        container = _FakeContainerClient(public_access=None)
        delegation_key = object()
        service = _FakeBlobService(
            container,
            credential=_TokenCredential(),
            user_delegation_key=delegation_key,
        )

        with mock.patch("backend.thebox.storage.settings", _CONFIGURED), mock.patch(
            "backend.thebox.storage._get_blob_service", return_value=service
        ), mock.patch("backend.thebox.storage.generate_blob_sas", return_value="sig") as mock_generate_sas:
            url = await storage.screenshot_url("shots/101.jpg")

        self.assertTrue(url.endswith("?sig"))
        kwargs = mock_generate_sas.call_args.kwargs
        self.assertEqual(kwargs["user_delegation_key"], delegation_key)
        self.assertNotIn("account_key", kwargs)
        start, expiry = service.user_delegation_key_args
        self.assertLessEqual(start, expiry)
