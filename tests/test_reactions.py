"""
Tests for build reactions.
"""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import sessionmaker

import hangar.repositories.reaction_repository as reaction_repository
from hangar.core.database import Base
from hangar.core.exceptions import BuildInputError, BuildNotFoundError
from hangar.models.build import Build, BuildReaction, BuildStatus, ReactionType
from hangar.models.types import utcnow
from hangar.repositories.reaction_repository import ReactionRepository, reaction_upsert


class TestSetReaction:
    """Upsert on (build, user) for published builds only."""

    def test_like_then_switch_to_dislike(self, build_service, make_published, db_session):
        published = make_published()

        view = build_service.set_reaction(published.id, "fan-1", "like")
        assert view.like_count == 1
        assert view.dislike_count == 0
        assert view.viewer_reaction == ReactionType.LIKE

        view = build_service.set_reaction(published.id, "fan-1", "DISLIKE")
        assert view.like_count == 0
        assert view.dislike_count == 1
        assert view.viewer_reaction == ReactionType.DISLIKE
        assert db_session.query(BuildReaction).count() == 1

    def test_counts_aggregate_across_users(self, build_service, make_published):
        published = make_published()
        build_service.set_reaction(published.id, "fan-1", ReactionType.LIKE)
        build_service.set_reaction(published.id, "fan-2", ReactionType.LIKE)
        build_service.set_reaction(published.id, "fan-3", ReactionType.DISLIKE)

        anonymous = build_service.get_public(published.id)
        assert (anonymous.like_count, anonymous.dislike_count) == (2, 1)
        assert anonymous.viewer_reaction is None

        viewer = build_service.get_public(published.id, "fan-3")
        assert viewer.viewer_reaction == ReactionType.DISLIKE

    def test_draft_build_is_not_found(self, build_service, complete_params):
        draft = build_service.create_draft("pilot-1", complete_params())
        with pytest.raises(BuildNotFoundError):
            build_service.set_reaction(draft.id, "fan-1", "LIKE")

    def test_unknown_build_is_not_found(self, build_service):
        with pytest.raises(BuildNotFoundError):
            build_service.set_reaction("missing", "fan-1", "LIKE")

    @pytest.mark.parametrize(
        "build_id,user_id,reaction,message",
        [
            ("", "fan-1", "LIKE", "build id is required"),
            ("b-1", "  ", "LIKE", "user id is required"),
            ("b-1", "fan-1", "LOVE", "reaction must be LIKE or DISLIKE"),
        ],
    )
    def test_input_errors(self, build_service, build_id, user_id, reaction, message):
        with pytest.raises(BuildInputError, match=message):
            build_service.set_reaction(build_id, user_id, reaction)


class TestClearReaction:
    def test_clear_removes_row(self, build_service, make_published):
        published = make_published()
        build_service.set_reaction(published.id, "fan-1", "LIKE")

        view = build_service.clear_reaction(published.id, "fan-1")
        assert view.like_count == 0
        assert view.viewer_reaction is None

    def test_clear_without_reaction_is_noop(self, build_service, make_published):
        published = make_published()
        view = build_service.clear_reaction(published.id, "fan-1")
        assert view.like_count == 0

    def test_clear_on_unpublished_build_is_not_found(self, build_service, make_published):
        published = make_published()
        build_service.set_reaction(published.id, "fan-1", "LIKE")
        build_service.unpublish_for_moderation(published.id)

        with pytest.raises(BuildNotFoundError):
            build_service.clear_reaction(published.id, "fan-1")

    def test_reactions_deleted_with_build(self, build_service, make_published, db_session):
        published = make_published()
        build_service.set_reaction(published.id, "fan-1", "LIKE")
        build_service.unpublish(published.id, "pilot-1")

        build_service.delete_by_owner(published.id, "pilot-1")
        assert db_session.query(BuildReaction).count() == 0


class TestConcurrentFirstReaction:
    """Two sessions racing on the first reaction of the same user."""

    @pytest.fixture
    def file_engine(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'reactions.db'}")
        Base.metadata.create_all(bind=engine)
        yield engine
        engine.dispose()

    def test_interleaved_first_reactions_upsert(self, file_engine, monkeypatch):
        factory = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
        session_a, session_b = factory(), factory()
        build = Build(owner_user_id="pilot-1", status=BuildStatus.PUBLISHED, title="Race")
        session_a.add(build)
        session_a.commit()
        build_id = build.id

        state = {"interleaved": False}

        def clock():
            # the other session writes its first reaction while this one is mid-call
            if not state["interleaved"]:
                state["interleaved"] = True
                assert ReactionRepository(session_a).set_reaction(build_id, "fan-1", ReactionType.LIKE)
            return utcnow()

        monkeypatch.setattr(reaction_repository, "utcnow", clock)

        assert ReactionRepository(session_b).set_reaction(build_id, "fan-1", ReactionType.DISLIKE)

        assert state["interleaved"]
        rows = session_a.query(BuildReaction).all()
        assert [(r.user_id, r.reaction) for r in rows] == [("fan-1", ReactionType.DISLIKE)]
        session_a.close()
        session_b.close()

    def test_upsert_is_one_postgres_statement(self):
        stmt = reaction_upsert("postgresql", "b-1", "fan-1", ReactionType.LIKE, utcnow())

        sql = str(stmt.compile(dialect=postgresql.dialect()))

        assert "INSERT INTO build_reactions" in sql
        assert "FROM builds" in sql
        assert "ON CONFLICT (build_id, user_id) DO UPDATE" in sql

    def test_unsupported_dialect(self):
        with pytest.raises(NotImplementedError):
            reaction_upsert("mysql", "b-1", "fan-1", ReactionType.LIKE, utcnow())

    def test_unpublished_build_writes_nothing(self, build_service, make_published, db_session):
        published = make_published()
        build_service.unpublish_for_moderation(published.id)

        with pytest.raises(BuildNotFoundError):
            build_service.set_reaction(published.id, "fan-1", "LIKE")
        assert db_session.query(BuildReaction).count() == 0
