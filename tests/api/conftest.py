"""Shared fixtures for API tests."""

import pytest
from fastapi.testclient import TestClient

from storefront.main import app


@pytest.fixture
def client(ledger, gateways) -> TestClient:
    """Create test client over the seeded ledger and stub gateways."""
    return TestClient(app)


@pytest.fixture
def order_body() -> dict:
    """Two widgets paid by card: 20.00 + 10.00 shipping + 3.00 tax."""
    return {
        "order_items": [{"product_id": "P1", "quantity": 2}],
        "shipping_address": {
            "street": "1 Main Street",
            "city": "Springfield",
            "postal_code": "12345",
            "country": "US",
        },
        "payment_method": "card",
        "payment_token": "pm_card_visa",
    }
