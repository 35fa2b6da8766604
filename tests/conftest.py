"""
Pytest configuration and fixtures for Import Hub tests.

The database is a throwaway SQLite file; DATABASE_URL must be set before
the package is imported because settings are read at import time. Every
test starts from freshly created system tables and no destination tables.
"""

import os
import tempfile

_TEST_DB_DIR = tempfile.mkdtemp(prefix="import_hub_tests_")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'import_hub_test.db')}"
os.environ["QUEUE_AUTOSTART"] = "false"
os.environ["CREATE_TARGET_TABLES"] = "false"
os.environ["IMPORT_BATCH_PAUSE_SECONDS"] = "0"

import pytest
from sqlalchemy import MetaData

from import_hub.db.session import create_system_tables, get_engine
from import_hub.domain.imports.destination import SqlDestinationStore, create_destination_table
from import_hub.domain.imports.tables import TARGET_TABLES


@pytest.fixture(autouse=True)
def reset_database():
    """Drop every table (system and destination) and recreate the system tables."""
    engine = get_engine()
    metadata = MetaData()
    metadata.reflect(bind=engine)
    metadata.drop_all(bind=engine)
    create_system_tables()
    yield


@pytest.fixture
def store():
    return SqlDestinationStore()


@pytest.fixture
def productos_table():
    table = TARGET_TABLES["productos"]
    return create_destination_table(table.name, table.fields)
