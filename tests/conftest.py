import pytest
from fastapi.testclient import TestClient

from invoice_oracle.infrastructure.memory_ledger import InMemoryLedger
from tests.utils import make_invoice


@pytest.fixture
def ledger() -> InMemoryLedger:
    """In-process ledger with invoices 1-3 registered."""
    ledger = InMemoryLedger()
    ledger.add_invoice(make_invoice("1", "Apple Inc", 50000, 60))
    ledger.add_invoice(make_invoice("2", "Late Payer Inc", 10000, -10))
    ledger.add_invoice(make_invoice("3", "Random Corp Ltd", 5000, 45))
    return ledger


@pytest.fixture
def client():
    from invoice_oracle.main import app

    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides.clear()
