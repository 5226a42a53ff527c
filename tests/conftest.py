import pytest
from services.config_service import ConfigManager
from services.database import DocumentStore, create_db_manager, init_db
from services.pricebook.repository import PricebookRepository
from app import create_app


@pytest.fixture
def app(tmp_path, monkeypatch):
    """Flask app backed by a throwaway database file (per-request connections need a real file)."""
    monkeypatch.setenv("PRICEBOOK_DATABASE", str(tmp_path / "pricebook.db"))
    app = create_app('Testing')
    yield app
    app.extensions["db_manager"].close()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture(scope="session")
def config_manager():
    """Fixture for initializing ConfigManager."""
    return ConfigManager()


@pytest.fixture
def get_db_manager():
    """Fixture for database manager with per-test isolation."""
    db_manager = create_db_manager(":memory:")  # Use an in-memory database for isolation
    init_db(db_manager=db_manager)
    yield db_manager
    db_manager.close()  # Ensure database connection is closed after the test


@pytest.fixture
def store(get_db_manager):
    return DocumentStore(get_db_manager)


@pytest.fixture
def repo(store):
    return PricebookRepository(store)


@pytest.fixture
def plumbing_categories(repo):
    """
    Plumbing (service)
      Repair
        Leaks
      Install
    Parts (material)
    """
    plumbing = repo.create_category("Plumbing", category_id="1")
    repair = repo.create_category("Repair", parent_id=plumbing.id, category_id="2")
    repo.create_category("Leaks", parent_id=repair.id, category_id="3")
    repo.create_category("Install", parent_id=plumbing.id, category_id="4")
    repo.create_category("Parts", category_type="material", category_id="5")
    return repo
