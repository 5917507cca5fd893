"""Test configuration and fixtures for the library circulation engine.

Every test gets:
1. An isolated SQLite database file, so concurrent transactions behave as in production
2. A frozen clock the test advances explicitly
3. A recording notifier to assert on member notices
4. A coordinator wired to all three, installed as the global one for tools and resources
"""

from collections.abc import Generator
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from library_circulation.collaborators import RecordingNotifier
from library_circulation.config import CirculationConfig, reset_config
from library_circulation.database import (
    CirculationCoordinator,
    DatabaseManager,
    reset_coordinator,
    set_coordinator,
)
from library_circulation.models import Member, MemberRole, Title
from library_circulation.observability import ObservabilityConfig, initialize_observability

START = datetime(2025, 3, 1, 9, 0, 0)


class FrozenClock:
    """Clock that only moves when a test says so."""

    def __init__(self, start: datetime = START):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, days: int = 0, hours: int = 0, minutes: int = 0) -> datetime:
        self.current += timedelta(days=days, hours=hours, minutes=minutes)
        return self.current


@pytest.fixture(scope="session", autouse=True)
def quiet_observability() -> None:
    """Keep logfire local: spans are created but never exported or printed."""
    initialize_observability(
        ObservabilityConfig(enabled=True, send_to_logfire=False, console_output=False)
    )


@pytest.fixture(autouse=True)
def isolated_config() -> Generator[None, None, None]:
    reset_config()
    yield
    reset_config()


# === Store Fixtures ===


@pytest.fixture
def test_db_path(tmp_path: Path) -> Path:
    return tmp_path / "circulation.db"


@pytest.fixture
def test_config(test_db_path: Path) -> CirculationConfig:
    """Default circulation policy on an isolated database, without retry sleeps."""
    return CirculationConfig(
        server_name="test-library-circulation",
        database_path=test_db_path,
        max_transaction_attempts=3,
        retry_backoff_seconds=0.0,
    )


@pytest.fixture
def db(test_config: CirculationConfig) -> Generator[DatabaseManager, None, None]:
    manager = DatabaseManager(test_config.get_database_url())
    manager.init_database()
    yield manager
    manager.close()


@pytest.fixture
def session(db: DatabaseManager):
    """A bare session for ledger-level tests; rolled back afterwards."""
    s = db.create_session()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def coordinator(
    db: DatabaseManager,
    clock: FrozenClock,
    notifier: RecordingNotifier,
    test_config: CirculationConfig,
) -> Generator[CirculationCoordinator, None, None]:
    coord = CirculationCoordinator(db=db, clock=clock, notifier=notifier, config=test_config)
    set_coordinator(coord)
    yield coord
    reset_coordinator()


# === Seed Data ===


@pytest.fixture
def librarian(coordinator: CirculationCoordinator) -> Member:
    return coordinator.register_member(
        "Nguyen Thi Lan", MemberRole.LIBRARIAN, email="lan@example.com"
    )


@pytest.fixture
def member(coordinator: CirculationCoordinator) -> Member:
    return coordinator.register_member("Tran Van An", email="an@example.com")


@pytest.fixture
def other_member(coordinator: CirculationCoordinator) -> Member:
    return coordinator.register_member("Le Thi Binh", email="binh@example.com")


@pytest.fixture
def third_member(coordinator: CirculationCoordinator) -> Member:
    return coordinator.register_member("Pham Minh Chau", email="chau@example.com")


@pytest.fixture
def title(coordinator: CirculationCoordinator) -> Title:
    """A title with two copies, barcodes 9786042088321-0001 and -0002."""
    return coordinator.add_title(
        "Dế Mèn phiêu lưu ký",
        authors=["Tô Hoài"],
        isbn="9786042088321",
        categories=["Children", "Classics"],
        copies=2,
        location="Floor 1 / Shelf A2",
    )


@pytest.fixture
def single_copy_title(coordinator: CirculationCoordinator) -> Title:
    return coordinator.add_title(
        "The Pragmatic Programmer",
        authors=["David Thomas", "Andrew Hunt"],
        isbn="9780135957059",
        copies=1,
    )


@pytest.fixture
def empty_title(coordinator: CirculationCoordinator) -> Title:
    return coordinator.add_title("Designing Data-Intensive Applications", ["Martin Kleppmann"])
