from unittest.mock import MagicMock

import pytest

from subscriptions import SubscriptionHub


@pytest.fixture
def store():
    """A fake collection whose loader ignores the session it is handed."""
    return {"jobs": ["a"], "users": ["u1"]}


@pytest.fixture
def fake_hub():
    return SubscriptionHub(session_factory=MagicMock)


def test_subscribe_delivers_initial_snapshot(fake_hub, store):
    received = []

    fake_hub.subscribe(lambda db: list(store["jobs"]), ["jobs"], received.append)

    assert received == [["a"]]
    assert len(fake_hub) == 1


def test_notify_pushes_full_snapshot_only_to_interested_subscribers(fake_hub, store):
    jobs_seen, users_seen = [], []
    fake_hub.subscribe(lambda db: list(store["jobs"]), ["jobs"], jobs_seen.append)
    fake_hub.subscribe(lambda db: list(store["users"]), ["users"], users_seen.append)

    store["jobs"].append("b")
    fake_hub.notify("jobs")

    assert jobs_seen == [["a"], ["a", "b"]]
    assert users_seen == [["u1"]]


def test_closed_subscription_receives_nothing_and_close_is_idempotent(fake_hub, store):
    received = []
    subscription = fake_hub.subscribe(lambda db: list(store["jobs"]), ["jobs"], received.append)

    subscription.close()
    subscription.close()
    fake_hub.notify("jobs")

    assert received == [["a"]]
    assert not subscription.active
    assert len(fake_hub) == 0


def test_context_manager_closes_subscription(fake_hub, store):
    with fake_hub.subscribe(lambda db: list(store["jobs"]), ["jobs"], lambda items: None) as subscription:
        assert subscription.active
    assert not subscription.active


def test_release_owner_closes_only_that_owners_subscriptions(fake_hub, store):
    mine = fake_hub.subscribe(lambda db: [], ["jobs"], lambda items: None, owner="alice")
    also_mine = fake_hub.subscribe(lambda db: [], ["users"], lambda items: None, owner="alice")
    theirs = fake_hub.subscribe(lambda db: [], ["jobs"], lambda items: None, owner="bob")

    assert fake_hub.release_owner("alice") == 2

    assert not mine.active and not also_mine.active
    assert theirs.active


def test_failing_listener_does_not_starve_the_others(fake_hub, store):
    received = []

    def broken(items):
        raise RuntimeError("listener bug")

    fake_hub.subscribe(lambda db: list(store["jobs"]), ["jobs"], broken)
    fake_hub.subscribe(lambda db: list(store["jobs"]), ["jobs"], received.append)
    store["jobs"].append("c")
    fake_hub.notify("jobs")

    assert received == [["a"], ["a", "c"]]
