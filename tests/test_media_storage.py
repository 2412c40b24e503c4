import base64
import logging

import pytest
from botocore.stub import Stubber

from app.config import settings
from app.services.errors import PayloadTooLarge, StorageFailure, ValidationError
from app.services.media_storage import (
    LocalMediaStorage,
    MediaStorageConfigurationError,
    S3MediaStorage,
    StorageScope,
    decode_image_payload,
    get_media_storage,
    role_segment,
    sanitize_filename,
)

from conftest import PNG_BYTES, PNG_DATA_URL


@pytest.mark.parametrize(
    "filename, expected",
    [
        ("Site Logo (Clair).PNG", "site_logo_clair_.png"),
        ("hero", "hero.png"),
        ("__weird__name__.jpg", "weird_name_.jpg"),
        ("../../etc/passwd", "etc_passwd.png"),
        ("", "image.png"),
        (None, "image.png"),
    ],
)
def test_sanitize_filename(filename, expected):
    assert sanitize_filename(filename) == expected


def test_sanitize_filename_uses_given_extension():
    assert sanitize_filename("photo", default_ext="webp") == "photo.webp"


def test_decode_data_url():
    decoded = decode_image_payload(PNG_DATA_URL, max_bytes=1024)
    assert decoded.data == PNG_BYTES
    assert decoded.content_type == "image/png"


def test_decode_bare_base64_requires_default_type():
    bare = base64.b64encode(PNG_BYTES).decode()
    with pytest.raises(ValidationError):
        decode_image_payload(bare, max_bytes=1024)
    assert decode_image_payload(bare, max_bytes=1024, default_content_type="image/png").data == PNG_BYTES


def test_decode_rejects_oversize_and_non_images():
    with pytest.raises(PayloadTooLarge):
        decode_image_payload(PNG_DATA_URL, max_bytes=8)
    with pytest.raises(ValidationError):
        decode_image_payload("data:application/pdf;base64,JVBERi0x", max_bytes=1024)


def test_storage_scope_rejects_unsafe_ids():
    with pytest.raises(ValidationError):
        StorageScope.for_session("../other")
    assert StorageScope.for_request("abc-123").path == "requests/abc-123"


def test_local_storage_writes_and_cleans_up(tmp_path):
    storage = LocalMediaStorage(root_dir=tmp_path, public_prefix="/uploads")
    scope = StorageScope.for_session("session-1")

    stored = storage.save(PNG_DATA_URL, scope=scope, filename="Hero Image.png")

    assert stored.url == "/uploads/sessions/session-1/hero_image.png"
    assert stored.key == "sessions/session-1/hero_image.png"
    assert stored.size == len(PNG_BYTES)
    assert (tmp_path / "sessions" / "session-1" / "hero_image.png").read_bytes() == PNG_BYTES
    assert storage.is_reference(stored.url)
    assert not storage.is_reference("https://cdn.example.com/hero.png")

    storage.cleanup(scope)
    assert not (tmp_path / "sessions" / "session-1").exists()
    # Cleaning an absent scope is fine.
    storage.cleanup(scope)


@pytest.mark.parametrize(
    "role, expected",
    [
        ("hero", "hero"),
        ("service_1", "service_1"),
        ("../logo", "logo"),
        ("a/b", "a_b"),
        ("..", "image"),
        (None, ""),
    ],
)
def test_role_segment(role, expected):
    assert role_segment(role) == expected


def test_roles_sharing_a_filename_get_separate_keys(tmp_path):
    storage = LocalMediaStorage(root_dir=tmp_path, public_prefix="/uploads")
    scope = StorageScope.for_session("s1")

    hero = storage.save(PNG_DATA_URL, scope=scope, filename="photo.png", role="hero")
    logo = storage.save(PNG_DATA_URL, scope=scope, filename="photo.png", role="logo")

    assert hero.key == "sessions/s1/hero/photo.png"
    assert logo.key == "sessions/s1/logo/photo.png"
    assert logo.url == "/uploads/sessions/s1/logo/photo.png"
    assert (tmp_path / "sessions" / "s1" / "hero" / "photo.png").read_bytes() == PNG_BYTES
    assert (tmp_path / "sessions" / "s1" / "logo" / "photo.png").read_bytes() == PNG_BYTES


def test_local_storage_validates_before_writing(tmp_path):
    storage = LocalMediaStorage(root_dir=tmp_path, max_bytes=16)
    with pytest.raises(PayloadTooLarge):
        storage.save(PNG_DATA_URL, scope=StorageScope.for_request("r1"), filename="big.png")
    assert not any(tmp_path.iterdir())


def test_local_storage_write_failure(tmp_path):
    blocker = tmp_path / "requests"
    blocker.write_text("not a directory")
    storage = LocalMediaStorage(root_dir=tmp_path)
    with pytest.raises(StorageFailure):
        storage.save(PNG_DATA_URL, scope=StorageScope.for_request("r1"), filename="hero.png")


def test_cleanup_failure_is_logged_not_raised(tmp_path, monkeypatch, caplog):
    storage = LocalMediaStorage(root_dir=tmp_path)
    scope = StorageScope.for_request("r1")
    storage.save(PNG_DATA_URL, scope=scope, filename="hero.png")

    def _broken_rmtree(_path):
        raise PermissionError("read-only filesystem")

    monkeypatch.setattr("app.services.media_storage.shutil.rmtree", _broken_rmtree)
    with caplog.at_level(logging.WARNING, logger="app.services.media_storage"):
        storage.cleanup(scope)

    assert any(record.getMessage() == "media_storage.cleanup_failed" for record in caplog.records)


@pytest.fixture()
def s3_settings(monkeypatch):
    monkeypatch.setattr(settings, "MEDIA_STORAGE_BUCKET", "site-media")
    monkeypatch.setattr(settings, "MEDIA_STORAGE_ENDPOINT", "https://s3.test")
    monkeypatch.setattr(settings, "MEDIA_STORAGE_ACCESS_KEY", "test-access")
    monkeypatch.setattr(settings, "MEDIA_STORAGE_SECRET_KEY", "test-secret")
    monkeypatch.setattr(settings, "MEDIA_STORAGE_PREFIX", "dev")
    monkeypatch.setattr(settings, "PUBLIC_ASSET_BASE_URL", "https://cdn.test/")


def test_s3_storage_uploads_under_prefix(s3_settings):
    storage = S3MediaStorage()
    with Stubber(storage.client) as stubber:
        stubber.add_response(
            "put_object",
            {},
            {
                "Bucket": "site-media",
                "Key": "dev/requests/r1/hero.png",
                "Body": PNG_BYTES,
                "ContentType": "image/png",
                "CacheControl": "no-cache",
            },
        )
        stored = storage.save(PNG_DATA_URL, scope=StorageScope.for_request("r1"), filename="hero.png")
        stubber.assert_no_pending_responses()

    assert stored.url == "https://cdn.test/dev/requests/r1/hero.png"
    assert storage.is_reference(stored.url)


def test_s3_storage_upload_error_is_storage_failure(s3_settings):
    storage = S3MediaStorage()
    with Stubber(storage.client) as stubber:
        stubber.add_client_error("put_object", service_error_code="SlowDown", http_status_code=503)
        with pytest.raises(StorageFailure):
            storage.save(PNG_DATA_URL, scope=StorageScope.for_request("r1"), filename="hero.png")


def test_s3_cleanup_deletes_scope_objects(s3_settings):
    storage = S3MediaStorage()
    keys = ["dev/sessions/s1/hero.png", "dev/sessions/s1/logo.png"]
    with Stubber(storage.client) as stubber:
        stubber.add_response(
            "list_objects_v2",
            {"Contents": [{"Key": key} for key in keys], "IsTruncated": False, "KeyCount": 2},
            {"Bucket": "site-media", "Prefix": "dev/sessions/s1/"},
        )
        stubber.add_response(
            "delete_objects",
            {"Deleted": [{"Key": key} for key in keys]},
            {"Bucket": "site-media", "Delete": {"Objects": [{"Key": key} for key in keys], "Quiet": True}},
        )
        storage.cleanup(StorageScope.for_session("s1"))
        stubber.assert_no_pending_responses()


def test_s3_storage_requires_configuration(monkeypatch):
    monkeypatch.setattr(settings, "MEDIA_STORAGE_BUCKET", None)
    with pytest.raises(MediaStorageConfigurationError):
        S3MediaStorage()


def test_get_media_storage_backends(monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "MEDIA_STORAGE_BACKEND", "local")
    monkeypatch.setattr(settings, "MEDIA_STORAGE_LOCAL_ROOT", str(tmp_path))
    assert isinstance(get_media_storage(), LocalMediaStorage)

    monkeypatch.setattr(settings, "MEDIA_STORAGE_BACKEND", "ftp")
    with pytest.raises(MediaStorageConfigurationError):
        get_media_storage()
