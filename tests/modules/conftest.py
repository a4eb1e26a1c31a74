"""
Shared fixtures for material request module tests.

DESIGN RULE: Every fixture is opt-in.  No autouse.  Each test declares
the service and the lifecycle state it starts from in its signature.
"""

from decimal import Decimal

import pytest

from procurement_config.schema import MaterialRequestPolicy
from procurement_modules.material_requests.models import (
    CreateRequest,
    NewItem,
    RequestPriority,
)
from procurement_modules.material_requests.service import MaterialRequestService

TEST_SUPPLIER_ID = "supplier-acme-01"


def make_items() -> tuple[NewItem, ...]:
    """Two lines totalling 150.00: 10 x 10.00 and 5 x 10.00."""
    return (
        NewItem(
            product_id="prod-cola-330",
            product_name="Cola 330ml",
            quantity=10,
            unit_price=Decimal("10.00"),
            product_sku="COLA-330",
        ),
        NewItem(
            product_id="prod-chips-50",
            product_name="Chips 50g",
            quantity=5,
            unit_price=Decimal("10.00"),
        ),
    )


def make_create(**overrides) -> CreateRequest:
    values = {
        "items": make_items(),
        "supplier_id": TEST_SUPPLIER_ID,
        "priority": RequestPriority.NORMAL,
        "notes": "Weekly restock",
    }
    values.update(overrides)
    return CreateRequest(**values)


@pytest.fixture
def create_command():
    """Factory for CreateRequest commands; keyword overrides replace defaults."""
    return make_create


@pytest.fixture
def make_service(session, deterministic_clock):
    """Build a MaterialRequestService with an optional policy override."""

    def _make(policy: MaterialRequestPolicy | None = None, **kwargs) -> MaterialRequestService:
        return MaterialRequestService(
            session,
            clock=deterministic_clock,
            policy=policy or MaterialRequestPolicy.with_defaults(),
            **kwargs,
        )

    return _make


@pytest.fixture
def service(make_service) -> MaterialRequestService:
    """MaterialRequestService with the default policy."""
    return make_service()


@pytest.fixture
def draft(service, caller):
    """A draft request with two items totalling 150.00."""
    return service.create(caller, make_create())


@pytest.fixture
def submitted(service, caller, draft):
    return service.submit(caller, draft.id)


@pytest.fixture
def approved(service, approver, submitted):
    return service.approve(approver, submitted.id)


@pytest.fixture
def rejected(service, approver, submitted):
    return service.reject(approver, submitted.id, "Over budget")


@pytest.fixture
def sent(service, caller, approved):
    return service.send_to_supplier(caller, approved.id)


@pytest.fixture
def partially_paid(service, caller, sent):
    return service.record_payment(caller, sent.id, Decimal("50.00"))


@pytest.fixture
def paid(service, caller, sent):
    return service.record_payment(caller, sent.id, Decimal("150.00"))


@pytest.fixture
def delivered(service, caller, paid):
    return service.confirm_delivery(caller, paid.id)


@pytest.fixture
def completed(service, caller, delivered):
    return service.complete(caller, delivered.id)


@pytest.fixture
def cancelled(service, caller, draft):
    return service.cancel(caller, draft.id, "No longer needed")
