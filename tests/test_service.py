"""Tests for CronService: validation, ownership, partial updates."""

from datetime import datetime, time, timezone

import pytest

from fieldcron.core.cron.service import CronService
from fieldcron.core.cron.types import CronStatus
from fieldcron.core.errors import NotAuthorizedError, NotFoundError, ValidationError
from fieldcron.storage.store import SQLiteStore


@pytest.fixture
def store(tmp_path):
    return SQLiteStore(str(tmp_path / "test.db"))


@pytest.fixture
def service(store):
    return CronService(store)


def _body(**overrides):
    body = {
        "center_zip": "60601",
        "driving_radius": 25,
        "cron_start_at": "2026-01-01T00:00:00Z",
        "cron_end_at": "2026-12-31T00:00:00Z",
        "working_window_start_at": "08:00",
        "working_window_end_at": "17:00",
        "types_of_work_order": [3],
    }
    body.update(overrides)
    return body


class TestCreate:
    def test_create_sets_defaults(self, service):
        cron = service.create_cron("u1", _body())
        assert cron.user_id == "u1"
        assert cron.status == CronStatus.ACTIVE
        assert cron.requested_wo_ids == []
        assert cron.total_requested == 0
        assert cron.working_window_start_at == time(8, 0)

    def test_naive_datetime_is_utc(self, service):
        cron = service.create_cron("u1", _body(cron_start_at="2026-01-01T00:00:00"))
        assert cron.cron_start_at == datetime(2026, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"center_zip": "ABCDE"},
            {"driving_radius": 0},
            {"driving_radius": -5},
            {"types_of_work_order": []},
            {"cron_end_at": "2025-12-31T00:00:00Z"},
            {"timezone": "Mars/Olympus"},
            {"requested_wo_ids": [1]},
        ],
    )
    def test_invalid_input_rejected(self, service, overrides):
        with pytest.raises(ValidationError):
            service.create_cron("u1", _body(**overrides))

    @pytest.mark.parametrize("field", ["working_window_start_at", "working_window_end_at"])
    def test_window_time_with_offset_rejected(self, service, field):
        with pytest.raises(ValidationError, match=field):
            service.create_cron("u1", _body(**{field: "22:00:00Z"}))

    def test_missing_field_rejected(self, service):
        body = _body()
        del body["center_zip"]
        with pytest.raises(ValidationError, match="center_zip"):
            service.create_cron("u1", body)


class TestAccess:
    def test_owner_and_admin_can_read(self, service):
        cron = service.create_cron("u1", _body())
        assert service.get_cron(cron.cron_id, "u1", is_admin=False).cron_id == cron.cron_id
        assert service.get_cron(cron.cron_id, "admin", is_admin=True).cron_id == cron.cron_id

    def test_other_user_denied(self, service):
        cron = service.create_cron("u1", _body())
        with pytest.raises(NotAuthorizedError):
            service.get_cron(cron.cron_id, "u2", is_admin=False)
        with pytest.raises(NotAuthorizedError):
            service.update_cron(cron.cron_id, {"driving_radius": 5}, "u2", is_admin=False)
        with pytest.raises(NotAuthorizedError):
            service.soft_delete_cron(cron.cron_id, "u2", is_admin=False)

    def test_missing_cron(self, service):
        with pytest.raises(NotFoundError):
            service.get_cron(42)


class TestUpdate:
    def test_partial_update_keeps_other_fields(self, service):
        cron = service.create_cron("u1", _body(types_of_work_order=[3, 5]))
        updated = service.update_cron(cron.cron_id, {"driving_radius": 10})
        assert updated.driving_radius == 10
        assert updated.types_of_work_order == [3, 5]
        assert updated.center_zip == "60601"

    def test_update_can_deactivate(self, service, store):
        cron = service.create_cron("u1", _body())
        service.update_cron(cron.cron_id, {"status": "inactive"})
        assert store.load_active_crons() == []

    def test_update_keeps_run_state(self, service, store):
        cron = service.create_cron("u1", _body())
        store.persist_run_state(cron.with_requested([1, 2]))
        updated = service.update_cron(cron.cron_id, {"center_zip": "60602"})
        assert updated.requested_wo_ids == [1, 2]
        assert updated.total_requested == 2

    def test_merged_range_revalidated(self, service):
        cron = service.create_cron("u1", _body())
        with pytest.raises(ValidationError):
            service.update_cron(cron.cron_id, {"cron_end_at": "2025-06-01T00:00:00Z"})

    def test_null_rejected(self, service):
        cron = service.create_cron("u1", _body())
        with pytest.raises(ValidationError):
            service.update_cron(cron.cron_id, {"center_zip": None})

    def test_patch_window_time_with_offset_rejected(self, service):
        cron = service.create_cron("u1", _body())
        with pytest.raises(ValidationError):
            service.update_cron(cron.cron_id, {"working_window_end_at": "06:00:00+02:00"})

    def test_timezone_can_be_cleared(self, service):
        cron = service.create_cron("u1", _body(timezone="America/Chicago"))
        updated = service.update_cron(cron.cron_id, {"timezone": None})
        assert updated.timezone is None

    @pytest.mark.parametrize("field", ["requested_wo_ids", "total_requested", "deleted"])
    def test_run_state_not_patchable(self, service, field):
        cron = service.create_cron("u1", _body())
        with pytest.raises(ValidationError):
            service.update_cron(cron.cron_id, {field: [] if field == "requested_wo_ids" else 0})

    def test_empty_patch_is_noop(self, service):
        cron = service.create_cron("u1", _body())
        assert service.update_cron(cron.cron_id, {}) == cron


class TestDelete:
    def test_soft_delete_hides_cron(self, service, store):
        cron = service.create_cron("u1", _body())
        service.soft_delete_cron(cron.cron_id, "u1", is_admin=False)
        with pytest.raises(NotFoundError):
            service.get_cron(cron.cron_id)
        assert store.get_cron(cron.cron_id, include_deleted=True).deleted

    def test_delete_user_cascades(self, service):
        cron = service.create_cron("u1", _body())
        assert service.delete_user("u1")
        assert service.list_crons("u1") == []
        with pytest.raises(NotFoundError):
            service.get_cron(cron.cron_id)

    def test_delete_unknown_user(self, service):
        with pytest.raises(NotFoundError):
            service.delete_user("ghost")
