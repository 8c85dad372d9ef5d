"""Shared fixtures: a fresh SQLite database per test."""

import pytest

from scholarship_pipeline.catalog import CatalogStore
from scholarship_pipeline.links import LinkStore
from scholarship_pipeline.storage import create_db_engine


@pytest.fixture
def db_engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'pipeline.db'}")
    yield engine
    engine.dispose()


@pytest.fixture
def link_store(db_engine):
    return LinkStore(db_engine)


@pytest.fixture
def catalog(db_engine):
    return CatalogStore(db_engine)
