import base64
import concurrent.futures
import threading

import pytest

from app.db.base import SessionLocal
from app.db.enums import RequestTypeEnum
from app.services.errors import NotFound, PayloadTooLarge, StorageFailure, ValidationError
from app.services.image_drafts import ImageDraftService

from conftest import PNG_BYTES, PNG_DATA_URL


def _save_concurrently(request_id, storage, roles):
    barrier = threading.Barrier(len(roles))

    def _save(role):
        session = SessionLocal()
        try:
            barrier.wait(timeout=10)
            return ImageDraftService(session, storage).save_draft(
                request_id, role=role, filename=f"{role}.png", data_url=PNG_DATA_URL
            )
        finally:
            session.close()

    with concurrent.futures.ThreadPoolExecutor(max_workers=len(roles)) as executor:
        return list(executor.map(_save, roles))


def test_save_draft_stores_slot_and_bumps_version(db_session, storage, make_request):
    request = make_request(request_type=RequestTypeEnum.images)
    service = ImageDraftService(db_session, storage)

    result = service.save_draft(request.id, role="hero", filename="Site Hero.png", data_url=PNG_DATA_URL)

    assert result.images_version == 1
    assert result.image["url"] == f"/uploads/requests/{request.id}/hero/site_hero.png"
    assert result.image["filename"] == "site_hero.png"
    assert result.image["updatedAt"] is not None
    assert set(result.images_draft) == {"hero"}
    assert storage.objects[f"requests/{request.id}/hero/site_hero.png"] == PNG_BYTES


def test_save_draft_uses_session_scope(db_session, storage, make_request, site_session):
    request = make_request(request_type=RequestTypeEnum.images, session_id=site_session.id)

    result = ImageDraftService(db_session, storage).save_draft(
        request.id, role="logo", filename="logo.png", data_url=PNG_DATA_URL
    )

    assert result.image["url"] == f"/uploads/sessions/{site_session.id}/logo/logo.png"


def test_resaving_a_role_replaces_the_slot(db_session, storage, make_request):
    request = make_request()
    service = ImageDraftService(db_session, storage)

    service.save_draft(request.id, role="hero", filename="first.png", data_url=PNG_DATA_URL)
    result = service.save_draft(request.id, role="hero", filename="second.png", data_url=PNG_DATA_URL)

    assert result.images_version == 2
    assert list(result.images_draft) == ["hero"]
    assert result.images_draft["hero"]["filename"] == "second.png"


def test_get_drafts_empty(db_session, storage, make_request):
    request = make_request()
    snapshot = ImageDraftService(db_session, storage).get_drafts(request.id)
    assert snapshot.images_draft == {}
    assert snapshot.images_version == 0


def test_unknown_request(db_session, storage):
    service = ImageDraftService(db_session, storage)
    missing = "00000000-0000-0000-0000-000000000000"
    with pytest.raises(NotFound):
        service.save_draft(missing, role="hero", filename="hero.png", data_url=PNG_DATA_URL)
    with pytest.raises(NotFound):
        service.get_drafts(missing)
    with pytest.raises(NotFound):
        service.delete_draft(missing, role="hero")


@pytest.mark.parametrize(
    "data_url, error",
    [
        ("data:image/png;base64," + base64.b64encode(b"\x00" * (10 * 1024 * 1024 + 1)).decode(), PayloadTooLarge),
        ("data:text/plain;base64,aGVsbG8gd29ybGQ=", ValidationError),
        ("data:image/png;base64,@@not-base64@@", ValidationError),
        (base64.b64encode(PNG_BYTES).decode(), ValidationError),
        ("", ValidationError),
    ],
)
def test_invalid_payload_leaves_drafts_unchanged(db_session, storage, make_request, data_url, error):
    request = make_request()
    service = ImageDraftService(db_session, storage)
    service.save_draft(request.id, role="logo", filename="logo.png", data_url=PNG_DATA_URL)
    written = dict(storage.objects)

    with pytest.raises(error):
        service.save_draft(request.id, role="hero", filename="hero.png", data_url=data_url)

    snapshot = service.get_drafts(request.id)
    assert list(snapshot.images_draft) == ["logo"]
    assert snapshot.images_version == 1
    assert storage.objects == written


def test_blank_role_is_rejected(db_session, storage, make_request):
    request = make_request()
    with pytest.raises(ValidationError):
        ImageDraftService(db_session, storage).save_draft(
            request.id, role="  ", filename="hero.png", data_url=PNG_DATA_URL
        )


def test_storage_failure_writes_nothing(db_session, storage, make_request):
    request = make_request()
    storage.fail_writes = True
    service = ImageDraftService(db_session, storage)

    with pytest.raises(StorageFailure):
        service.save_draft(request.id, role="hero", filename="hero.png", data_url=PNG_DATA_URL)

    snapshot = service.get_drafts(request.id)
    assert snapshot.images_draft == {}
    assert snapshot.images_version == 0


def test_delete_draft(db_session, storage, make_request):
    request = make_request()
    service = ImageDraftService(db_session, storage)
    service.save_draft(request.id, role="hero", filename="hero.png", data_url=PNG_DATA_URL)
    service.save_draft(request.id, role="logo", filename="logo.png", data_url=PNG_DATA_URL)

    snapshot = service.delete_draft(request.id, role="hero")
    assert list(snapshot.images_draft) == ["logo"]
    assert snapshot.images_version == 3

    # Deleting an absent role is a no-op that leaves the version alone.
    snapshot = service.delete_draft(request.id, role="hero")
    assert list(snapshot.images_draft) == ["logo"]
    assert snapshot.images_version == 3


def test_three_concurrent_roles(make_request, storage):
    request = make_request(request_type=RequestTypeEnum.images)

    _save_concurrently(request.id, storage, ["hero", "logo", "favicon"])

    session = SessionLocal()
    try:
        snapshot = ImageDraftService(session, storage).get_drafts(request.id)
    finally:
        session.close()
    assert snapshot.images_version == 3
    assert set(snapshot.images_draft) == {"hero", "logo", "favicon"}


def test_concurrent_saves_bump_version_by_n(make_request, storage):
    request = make_request(request_type=RequestTypeEnum.images)
    roles = [f"service_{index}" for index in range(8)]

    _save_concurrently(request.id, storage, roles)

    session = SessionLocal()
    try:
        snapshot = ImageDraftService(session, storage).get_drafts(request.id)
    finally:
        session.close()
    assert snapshot.images_version == len(roles)
    assert set(snapshot.images_draft) == set(roles)
