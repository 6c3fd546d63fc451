"""
Pytest fixtures and configuration for hangar tests.

Provides:
- In-memory SQLite database, fresh schema per test
- Static catalog and recording image asset store
- Service fixtures and a helper that drives a build to PUBLISHED
"""

from typing import List

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import hangar.models  # noqa: F401  (registers tables on Base.metadata)
from hangar.core.config import Settings
from hangar.core.database import Base
from hangar.schemas.build import BuildPartInput, CatalogItemView, CreateBuildParams
from hangar.services.build_service import BuildService
from hangar.services.catalog import CATALOG_STATUS_PENDING, CATALOG_STATUS_PUBLISHED, StaticCatalog
from hangar.services.image_assets import ImageAssetStore
from hangar.services.temp_links import TempLinkService

OWNER = "pilot-1"
OTHER_OWNER = "pilot-2"


@pytest.fixture(scope="function")
def engine():
    """Single shared in-memory connection."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite: let SQLAlchemy emit BEGIN itself so SAVEPOINT behaves
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(engine):
    """Create fresh database session for each test."""
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(
        DATABASE_URL="sqlite://",
        PUBLIC_BASE_URL="https://hangar.example",
        TEMP_BUILD_TTL_HOURS=24,
    )


def _item(item_id: str, gear_type: str, status: str = CATALOG_STATUS_PUBLISHED, **kwargs):
    return CatalogItemView(id=item_id, gear_type=gear_type, status=status, **kwargs)


@pytest.fixture
def catalog():
    return StaticCatalog(
        [
            _item("frame-1", "frame", brand="ImpulseRC", model="Apex", variant="5in"),
            _item("frame-2", "frame", brand="TBS", model="Source One"),
            _item("motor-1", "motor", brand="T-Motor", model="F60"),
            _item("aio-1", "aio", brand="BetaFPV", model="F4 AIO"),
            _item("stack-1", "stack", brand="SpeedyBee", model="F405 V4"),
            _item("fc-1", "fc", brand="Matek", model="H743"),
            _item("esc-1", "esc", brand="Holybro", model="Tekko32"),
            _item("rx-1", "receiver", brand="RadioMaster", model="RP1"),
            _item("vtx-1", "vtx", brand="DJI", model="O3"),
            _item("frame-pending", "frame", status=CATALOG_STATUS_PENDING, brand="Custom"),
            _item("vtx-pending", "vtx", status=CATALOG_STATUS_PENDING, brand="Custom"),
        ]
    )


class RecordingImageStore(ImageAssetStore):
    """Remembers which assets the engine asked to delete."""

    def __init__(self):
        self.deleted: List[str] = []

    def delete_asset(self, asset_id: str) -> None:
        self.deleted.append(asset_id)


@pytest.fixture
def image_store():
    return RecordingImageStore()


@pytest.fixture
def build_service(db_session, catalog, image_store):
    return BuildService(db_session, catalog, image_store=image_store)


@pytest.fixture
def temp_links(db_session, catalog, settings):
    return TempLinkService(db_session, catalog, settings=settings)


def complete_parts():
    return [
        BuildPartInput(gear_type="frame", catalog_item_id="frame-1"),
        BuildPartInput(gear_type="motor", catalog_item_id="motor-1", position=0),
        BuildPartInput(gear_type="motor", catalog_item_id="motor-1", position=1),
        BuildPartInput(gear_type="aio", catalog_item_id="aio-1"),
        BuildPartInput(gear_type="receiver", catalog_item_id="rx-1"),
        BuildPartInput(gear_type="vtx", catalog_item_id="vtx-1"),
    ]


@pytest.fixture
def complete_params():
    """Factory for create params that pass publish validation once an image is set."""

    def _make(**overrides):
        values = {
            "title": "Freestyle 5in",
            "description": "Daily basher",
            "parts": complete_parts(),
        }
        values.update(overrides)
        return CreateBuildParams(**values)

    return _make


@pytest.fixture
def make_published(build_service, complete_params):
    """Drive a new draft through submit and approval."""

    def _make(owner: str = OWNER, image_asset_id: str = "asset-1", **overrides):
        draft = build_service.create_draft(owner, complete_params(**overrides))
        build_service.set_image(draft.id, owner, image_asset_id)
        build_service.submit(draft.id, owner)
        result = build_service.approve_for_moderation(draft.id)
        assert result.applied, result.validation.errors
        return result.build

    return _make
