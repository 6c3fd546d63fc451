"""
Tests for anonymous temp builds, shared snapshots and the expiry sweep.
"""

from datetime import datetime, timedelta, timezone

import pytest

from hangar.core.exceptions import BuildNotFoundError
from hangar.models.build import Build, BuildPart, BuildStatus
from hangar.repositories.build_repository import BuildRepository
from hangar.schemas.build import BuildPartInput, CreateBuildParams, UpdateBuildParams


def _one_part_params():
    return CreateBuildParams(
        title="Whoop",
        parts=[BuildPartInput(gear_type="frame", catalog_item_id="frame-1")],
    )


class TestCreateTemp:
    def test_scenario_create_and_fetch(self, temp_links):
        """Temp build with one part is retrievable by token with a 24h expiry."""
        before = datetime.now(timezone.utc)
        created = temp_links.create_temp(_one_part_params())

        fetched = temp_links.get_temp_by_token(created.token)

        assert fetched.id == created.build.id
        assert fetched.status == BuildStatus.TEMP
        assert fetched.owner_user_id is None
        assert len(fetched.parts) == 1
        delta = fetched.expires_at - before
        assert timedelta(hours=23, minutes=59) < delta < timedelta(hours=24, minutes=1)

    def test_share_url_uses_public_base(self, temp_links):
        created = temp_links.create_temp(_one_part_params())
        assert created.url == f"https://hangar.example/builds/temp/{created.token}"

    def test_tokens_are_unique_and_long(self, temp_links):
        tokens = {temp_links.create_temp(_one_part_params()).token for _ in range(5)}
        assert len(tokens) == 5
        assert all(len(t) >= 32 for t in tokens)

    def test_unknown_or_blank_token(self, temp_links):
        assert temp_links.get_temp_by_token("nope") is None
        assert temp_links.get_temp_by_token("") is None

    def test_expired_temp_is_invisible(self, temp_links, db_session):
        created = temp_links.create_temp(_one_part_params())
        row = db_session.get(Build, created.build.id)
        row.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        db_session.commit()

        assert temp_links.get_temp_by_token(created.token) is None
        with pytest.raises(BuildNotFoundError):
            temp_links.update_temp_by_token(created.token, UpdateBuildParams(title="late"))


class TestShare:
    def test_scenario_share_keeps_temp_token(self, temp_links):
        created = temp_links.create_temp(_one_part_params())

        shared = temp_links.share_temp(created.token)

        assert shared.token != created.token
        assert shared.build.status == BuildStatus.SHARED
        assert shared.build.expires_at is None

        original = temp_links.get_temp_by_token(created.token)
        assert original.status == BuildStatus.TEMP
        assert original.id == created.build.id

        fetched = temp_links.get_temp_by_token(shared.token)
        assert fetched.status == BuildStatus.SHARED
        assert fetched.expires_at is None

    def test_sharing_a_shared_token_is_idempotent(self, temp_links, db_session):
        created = temp_links.create_temp(_one_part_params())
        shared = temp_links.share_temp(created.token)
        count = db_session.query(Build).count()

        again = temp_links.share_temp(shared.token)

        assert again.token == shared.token
        assert again.build.id == shared.build.id
        assert db_session.query(Build).count() == count

    def test_store_level_share_is_in_place(self, temp_links, db_session):
        created = temp_links.create_temp(_one_part_params())
        repo = BuildRepository(db_session)

        shared = repo.share_temp_by_token(created.token)
        assert shared.id == created.build.id
        assert shared.status == BuildStatus.SHARED
        assert shared.expires_at is None

        assert repo.share_temp_by_token(created.token).id == created.build.id

    def test_shared_build_cannot_be_edited(self, temp_links):
        created = temp_links.create_temp(_one_part_params())
        shared = temp_links.share_temp(created.token)

        with pytest.raises(BuildNotFoundError):
            temp_links.update_temp_by_token(shared.token, UpdateBuildParams(title="changed"))

        assert temp_links.get_temp_by_token(shared.token).title == "Whoop"

    def test_share_unknown_token(self, temp_links):
        with pytest.raises(BuildNotFoundError):
            temp_links.share_temp("missing")


class TestCopyOnWrite:
    def test_scenario_edit_rotates_token(self, temp_links):
        created = temp_links.create_temp(_one_part_params())

        edited = temp_links.update_temp_by_token(
            created.token,
            UpdateBuildParams(
                parts=[
                    BuildPartInput(gear_type="frame", catalog_item_id="frame-1"),
                    BuildPartInput(gear_type="motor", catalog_item_id="motor-1"),
                ]
            ),
        )

        assert edited.token != created.token
        assert edited.build.id != created.build.id
        assert edited.build.status == BuildStatus.TEMP
        assert edited.build.title == "Whoop"
        assert len(temp_links.get_temp_by_token(created.token).parts) == 1
        assert len(temp_links.get_temp_by_token(edited.token).parts) == 2

        first_share = temp_links.share_temp(created.token)
        second_share = temp_links.share_temp(edited.token)

        assert first_share.build.id != second_share.build.id
        assert len(first_share.build.parts) == 1
        assert len(second_share.build.parts) == 2

    def test_edit_without_parts_copies_parts(self, temp_links):
        created = temp_links.create_temp(_one_part_params())

        edited = temp_links.update_temp_by_token(created.token, UpdateBuildParams(title=" Renamed "))

        assert edited.build.title == "Renamed"
        assert [p.catalog_item_id for p in edited.build.parts] == ["frame-1"]
        assert temp_links.get_temp_by_token(created.token).title == "Whoop"

    def test_edit_gets_fresh_expiry(self, temp_links, db_session):
        created = temp_links.create_temp(_one_part_params())
        row = db_session.get(Build, created.build.id)
        row.expires_at = datetime.now(timezone.utc) + timedelta(minutes=5)
        db_session.commit()

        edited = temp_links.update_temp_by_token(created.token, UpdateBuildParams(title="x"))

        assert edited.build.expires_at - datetime.now(timezone.utc) > timedelta(hours=23)


class TestExpirySweep:
    def test_sweep_precision(self, db_session, temp_links):
        repo = BuildRepository(db_session)
        cutoff = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
        params = _one_part_params()

        expired = repo.create(BuildStatus.TEMP, params, token="t-expired", expires_at=cutoff - timedelta(hours=1))
        boundary = repo.create(BuildStatus.TEMP, params, token="t-boundary", expires_at=cutoff)
        fresh = repo.create(BuildStatus.TEMP, params, token="t-fresh", expires_at=cutoff + timedelta(seconds=1))
        no_expiry = repo.create(BuildStatus.TEMP, params, token="t-none")
        shared = repo.create(BuildStatus.SHARED, params, token="t-shared")
        draft = repo.create(BuildStatus.DRAFT, params, owner_user_id="pilot-1")
        # only TEMP rows are swept, whatever expires_at says
        stale_shared = repo.create(
            BuildStatus.SHARED, params, token="t-shared-old", expires_at=cutoff - timedelta(days=1)
        )
        stale_draft = repo.create(
            BuildStatus.DRAFT, params, owner_user_id="pilot-1", expires_at=cutoff - timedelta(days=1)
        )
        expired_id, boundary_id = expired.id, boundary.id
        survivors = {fresh.id, no_expiry.id, shared.id, draft.id, stale_shared.id, stale_draft.id}

        deleted = temp_links.cleanup_expired_temp(cutoff)

        assert deleted == 2
        remaining = {row.id for row in db_session.query(Build).all()}
        assert remaining == survivors
        part_owners = {row.build_id for row in db_session.query(BuildPart).all()}
        assert expired_id not in part_owners
        assert boundary_id not in part_owners

    def test_sweep_default_cutoff_is_now(self, temp_links, db_session):
        created = temp_links.create_temp(_one_part_params())
        assert temp_links.cleanup_expired_temp() == 0

        row = db_session.get(Build, created.build.id)
        row.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
        db_session.commit()

        assert temp_links.cleanup_expired_temp() == 1
        assert temp_links.get_temp_by_token(created.token) is None
