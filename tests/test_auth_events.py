"""Tests for auth/events.py -- subscriber fan-out and user document seeding."""

import json

from auth.events import SIGNED_IN, SIGNED_OUT, SIGNED_UP, AuthEvent, AuthStateNotifier, initialize_user_document
from auth.models import User
from auth.store import DEFAULT_PREFERENCES


def test_publish_reaches_every_subscriber():
    notifier = AuthStateNotifier()
    seen_a, seen_b = [], []
    notifier.subscribe(seen_a.append)
    notifier.subscribe(seen_b.append)
    event = AuthEvent(kind=SIGNED_IN, user_id=1, email="ada@example.com")
    notifier.publish(event)
    assert seen_a == [event]
    assert seen_b == [event]


def test_unsubscribe_is_idempotent():
    notifier = AuthStateNotifier()
    seen = []
    unsubscribe = notifier.subscribe(seen.append)
    assert len(notifier) == 1
    unsubscribe()
    unsubscribe()
    assert len(notifier) == 0
    notifier.publish(AuthEvent(kind=SIGNED_OUT, user_id=1))
    assert seen == []


def test_failing_subscriber_does_not_stop_others(caplog):
    notifier = AuthStateNotifier()
    seen = []

    def boom(event):
        raise RuntimeError("subscriber bug")

    notifier.subscribe(boom)
    notifier.subscribe(seen.append)
    notifier.publish(AuthEvent(kind=SIGNED_UP, user_id=1))
    assert len(seen) == 1
    assert "failed on signed_up" in caplog.text


def test_initialize_user_document_seeds_once(user_store):
    uid = user_store.create_user(User(email="new@example.com", hashed_password="x"))
    subscriber = initialize_user_document(user_store)

    subscriber(AuthEvent(kind=SIGNED_UP, user_id=uid))
    assert json.loads(user_store.get_by_id(uid).preferences) == DEFAULT_PREFERENCES

    user_store.update_preferences(uid, {"theme": "dark"})
    subscriber(AuthEvent(kind=SIGNED_IN, user_id=uid))
    assert user_store.get_preferences(uid)["theme"] == "dark"


def test_initialize_user_document_ignores_sign_out(user_store):
    uid = user_store.create_user(User(email="quiet@example.com", hashed_password="x"))
    initialize_user_document(user_store)(AuthEvent(kind=SIGNED_OUT, user_id=uid))
    assert not user_store.get_by_id(uid).preferences
