import pytest
import os
from fastapi.testclient import TestClient

TEST_DATABASE_URL = "sqlite:///./talenthub-test.db"

# Must be in place before the app modules build their engine and metrics sink
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ.setdefault("AWS_EMF_ENVIRONMENT", "Local")
os.environ.setdefault("LOG_FORMAT", "console")

# --- Alembic Imports ---
from alembic.config import Config
from alembic import command
# --- End Alembic Imports ---

# Import app and DB dependency function first
from main import app, get_db

# Import database components needed for setup
import actions
import models
import schemas
from auth import get_optional_identity
import database
from database import Base, build_engine
from settings import Settings, get_settings
from sqlalchemy.orm import Session, sessionmaker
from subscriptions import hub

test_engine = build_engine(TEST_DATABASE_URL)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

# Live snapshots are loaded through the test database too
hub.session_factory = TestSessionLocal


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create the test database from models and stamp with Alembic head."""
    db_path = TEST_DATABASE_URL.split("///")[-1]
    # main created the tables through the app engine on import
    database.engine.dispose()
    test_engine.dispose()
    for path in (db_path, db_path + "-wal", db_path + "-shm"):
        if os.path.exists(path):
            os.unlink(path)

    Base.metadata.create_all(bind=test_engine)

    alembic_cfg = Config("alembic.ini")  # Load base config
    alembic_cfg.set_main_option("sqlalchemy.url", TEST_DATABASE_URL)  # Point to test DB
    command.stamp(alembic_cfg, "head")  # Mark DB as up-to-date

    yield  # Tests run here

    test_engine.dispose()
    for path in (db_path, db_path + "-wal", db_path + "-shm"):
        if os.path.exists(path):
            try:
                os.unlink(path)
            except OSError as e:
                print(f"Error removing test database file {path}: {e}")


@pytest.fixture(autouse=True)
def clean_tables(setup_test_database):
    """Every test starts from empty collections and no leftover listeners."""
    yield
    session = TestSessionLocal()
    try:
        for table in reversed(Base.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
    finally:
        session.close()
    for subscription in list(hub._subscriptions.values()):
        subscription.close()
    actions.guard._keys.clear()


@pytest.fixture(scope="function")  # Function scope for session
def db_session(setup_test_database):  # Depends on DB setup
    """Yields a SQLAlchemy session directly from the test factory."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()


# Override the get_db dependency for tests
@pytest.fixture(scope="function")
def override_get_db():
    """Override the get_db dependency to use our test database.

    This creates a new session for each API call, allowing proper
    transaction handling within FastAPI endpoints.
    """

    def _override_get_db():
        db = TestSessionLocal()
        try:
            yield db
        finally:
            db.close()

    original = app.dependency_overrides.get(get_db)
    app.dependency_overrides[get_db] = _override_get_db

    yield

    if original:
        app.dependency_overrides[get_db] = original
    else:
        del app.dependency_overrides[get_db]


@pytest.fixture(scope="function")
def test_client(override_get_db):
    """Provides a test client configured with our test database session."""
    return TestClient(app)


@pytest.fixture(scope="function")
def sign_in():
    """Switch the caller of subsequent requests; ``None`` means anonymous."""

    def _sign_in(identity):
        app.dependency_overrides[get_optional_identity] = lambda: identity

    yield _sign_in

    app.dependency_overrides.pop(get_optional_identity, None)


@pytest.fixture(scope="function")
def override_settings():
    """Run requests against custom Settings, e.g. a different page size."""

    def _override(**values):
        settings = Settings(**values)
        app.dependency_overrides[get_settings] = lambda: settings
        return settings

    yield _override

    app.dependency_overrides.pop(get_settings, None)


def make_identity(user_id: str, name: str = None, email: str = None) -> schemas.Identity:
    return schemas.Identity(
        id=user_id,
        name=name or user_id.title(),
        email=email or f"{user_id}@example.com",
    )


def create_test_user(db: Session, user_id: str = "cand-1", is_admin: bool = False) -> models.User:
    """Helper to create an onboarded user directly in the test database."""
    user = models.User(
        id=user_id,
        name=user_id.title(),
        email=f"{user_id}@example.com",
        is_admin=is_admin,
        phone_number="555-0100",
        linkedin_url=f"https://linkedin.com/in/{user_id}",
        interested_roles="Backend",
        exploration_phase="actively_looking",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_test_job(db: Session, client: str = "Acme", position: str = "Backend Engineer", **overrides) -> str:
    fields = dict(
        client_name=client,
        position_name=position,
        location="Remote",
        exp_min=2,
        exp_max=5,
        tech_stack="Python, Go",
        domain="Fintech",
        number_of_positions=1,
    )
    fields.update(overrides)
    return actions.create_job(db, schemas.JobCreate(**fields), created_by="admin-1")

