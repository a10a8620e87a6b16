import pytest

from storesync.core.database import Database
from storesync.customers.matcher import IdentityMatcher


@pytest.fixture
def db(tmp_path):
    return Database(tmp_path / "test.db")


@pytest.fixture
def matcher(db):
    return IdentityMatcher(db)


@pytest.fixture
def add_customer(db):
    def _add(**values):
        values.setdefault('name', 'Cliente')
        return db.insert_customer(values)
    return _add
