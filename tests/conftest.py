"""Shared test fixtures for the ledger reconciliation engine."""

import pytest
import pytest_asyncio

from recon.config import AlertSettings, AppSettings, ExchangeSettings, ScanSettings
from recon.data import FindingStore, LedgerDatabase, LedgerStore


@pytest.fixture
def mock_settings() -> AppSettings:
    """Return AppSettings with test defaults (gateway mode, dummy token)."""
    return AppSettings(
        log_level="DEBUG",
        exchange=ExchangeSettings(
            mode="gateway",
            gateway_url="http://gateway.test/functions/v1/binance-assets",
            gateway_token="test-token",  # type: ignore[arg-type]
        ),
        scan=ScanSettings(),
        alerts=AlertSettings(),
    )


@pytest_asyncio.fixture
async def ledger_db(tmp_path):
    """Connected ledger database in a temporary directory."""
    database = LedgerDatabase(str(tmp_path / "ledger.db"))
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def store(ledger_db: LedgerDatabase) -> LedgerStore:
    return LedgerStore(ledger_db)


@pytest.fixture
def finding_store(ledger_db: LedgerDatabase) -> FindingStore:
    return FindingStore(ledger_db)
