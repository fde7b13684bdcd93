"""
Pytest configuration and fixtures for testing.
"""
import os
import sys
from datetime import date, datetime
from pathlib import Path
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add parent directory to path
TESTS_DIR = Path(__file__).resolve().parent
PROJECT_DIR = TESTS_DIR.parent
sys.path.insert(0, str(PROJECT_DIR))

# Settings are read on first import of the app; keep tests off real services
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("OPERATOR_NAME", "tester")
os.environ.setdefault("JENKINS_URL", "https://jenkins.example.com")
os.environ.setdefault("JENKINS_BUILD_TOKEN", "build-token")

from nightly_stats.models.db_models import Base, AutomationResult

# Wednesday nightly, results stamped the same UTC day
RUN_DATE = date(2024, 11, 20)
TODAY = date(2024, 11, 21)
CREATED = datetime(2024, 11, 20, 6, 30)

SEARCH_PROJECT = "qe-crm-ui-customer-search-v2"
ORDERS_PROJECT = "qe-crm-api-orders-dotnet"


def make_result(**overrides) -> AutomationResult:
    """Build an AutomationResult with nightly defaults."""
    values = dict(
        build_number=100,
        automation_type="ui",
        env="TEST",
        project_name=SEARCH_PROJECT,
        test_name="LoginTest",
        test_result="Failed",
        log_type="Nightly",
        rerun=0,
        error_msg=None,
        discount=0,
        discount_reason=None,
        browser="chrome",
        project_owner="Alice Smith",
        create_date_utc=CREATED,
    )
    values.update(overrides)
    return AutomationResult(**values)


def add_sample_results(db, created: datetime):
    """
    Insert one nightly run worth of results.

    Returns:
        Dict of name -> AutomationResult
    """
    rows = {
        'login_failed': make_result(
            test_name="LoginTest", error_msg="Element not found: #login", create_date_utc=created
        ),
        'search_prod_failed': make_result(
            env="PROD", test_name="SearchTest", error_msg="Timeout waiting for grid", create_date_utc=created
        ),
        'orders_discounted': make_result(
            project_name=ORDERS_PROJECT, automation_type="api", build_number=55, test_name="GetOrder",
            browser=None, project_owner=None, discount=4, discount_reason="Known change",
            error_msg="500 Internal Server Error", create_date_utc=created
        ),
        'checkout_passed': make_result(test_name="CheckoutTest", test_result="Passed", create_date_utc=created),
        'list_orders_passed': make_result(
            project_name=ORDERS_PROJECT, automation_type="api", build_number=55, test_name="ListOrders",
            test_result="Passed", browser=None, create_date_utc=created
        ),
        'slow_timeout': make_result(
            test_name="SlowTest", test_result="Timeout", browser="firefox", create_date_utc=created
        ),
        'weekly_failed': make_result(
            test_name="WeeklyTest", log_type="Weekly", create_date_utc=created
        ),
        'search_count': make_result(
            log_type="Count", test_name=None, test_result=None, test_run_time=5,
            create_date_utc=datetime(2024, 1, 1)
        ),
        'orders_count': make_result(
            project_name=ORDERS_PROJECT, automation_type="api", log_type="Count", test_name=None,
            test_result=None, test_run_time=2, create_date_utc=datetime(2024, 1, 1)
        ),
    }
    for row in rows.values():
        db.add(row)
    db.commit()
    for row in rows.values():
        db.refresh(row)
    return rows


@pytest.fixture(scope="function")
def test_db():
    """
    Create a temporary in-memory database for testing.
    Each test gets a fresh database.
    """
    # One shared connection so TestClient worker threads see the same data
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )

    # Create all tables
    Base.metadata.create_all(engine)

    # Create session factory
    TestSessionLocal = sessionmaker(bind=engine)

    # Create session
    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture(scope="function")
def sample_results(test_db):
    """Sample nightly results for RUN_DATE."""
    return add_sample_results(test_db, CREATED)


@pytest.fixture(scope="function")
def override_get_db(test_db):
    """
    Override FastAPI's database dependency to use the test database.

    Usage in test files:
        def test_endpoint(client, sample_results, override_get_db):
            response = client.get("/api/v1/endpoint")
    """
    from nightly_stats.main import app
    from nightly_stats.database import get_db

    def get_test_db():
        try:
            yield test_db
            test_db.commit()
        finally:
            pass  # Don't close test_db here, conftest handles it

    app.dependency_overrides[get_db] = get_test_db
    yield
    # Cleanup: Remove override after test
    app.dependency_overrides.clear()
