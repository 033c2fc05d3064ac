import pytest

from partsbot.errors import AuthorizationError, ExpiredError, NotFoundError
from partsbot.models import ActionPayload, AiAction
from partsbot.pending_actions import PendingActionStore

from conftest import ManualClock


def make_action(product_id="p-ne555", quantity=1):
    return AiAction(payload=ActionPayload(productId=product_id, quantity=quantity))


def test_confirm_is_single_use():
    store = PendingActionStore(clock=ManualClock())
    created = store.create("u1", make_action(quantity=2))
    assert created.confirmationId

    confirmed = store.confirm(created.confirmationId, "u1")
    assert confirmed.payload.quantity == 2
    with pytest.raises(NotFoundError):
        store.confirm(created.confirmationId, "u1")


def test_create_issues_distinct_ids_and_leaves_input_untouched():
    store = PendingActionStore(clock=ManualClock())
    action = make_action()
    first = store.create("u1", action)
    second = store.create("u1", action)
    assert first.confirmationId != second.confirmationId
    assert action.confirmationId is None
    assert len(store) == 2


def test_other_user_cannot_redeem_and_record_survives():
    store = PendingActionStore(clock=ManualClock())
    created = store.create("u1", make_action())
    with pytest.raises(AuthorizationError):
        store.confirm(created.confirmationId, "u2")
    assert store.confirm(created.confirmationId, "u1").payload.productId == "p-ne555"


def test_expiry_at_ttl_boundary():
    clock = ManualClock()
    store = PendingActionStore(ttl_sec=600, clock=clock)
    created = store.create("u1", make_action())
    clock.advance(600)
    with pytest.raises(ExpiredError):
        store.confirm(created.confirmationId, "u1")
    with pytest.raises(NotFoundError):
        store.confirm(created.confirmationId, "u1")


def test_owner_check_precedes_expiry():
    clock = ManualClock()
    store = PendingActionStore(ttl_sec=600, clock=clock)
    created = store.create("u1", make_action())
    clock.advance(700)
    with pytest.raises(AuthorizationError):
        store.confirm(created.confirmationId, "u2")


def test_create_sweeps_expired_records():
    clock = ManualClock()
    store = PendingActionStore(ttl_sec=600, clock=clock)
    store.create("u1", make_action())
    store.create("u1", make_action())
    clock.advance(601)
    store.create("u2", make_action())
    assert len(store) == 1
