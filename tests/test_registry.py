"""Tests for SubscriptionRegistry: lifecycle transitions, snapshots, thread safety."""

import threading

import pytest

from fanout.errors import InvalidStateError, MalformedPolicyError, NotFoundError, TypeMismatchError
from fanout.filtering import FilterPolicy
from fanout.registry import ConfirmationState, SubscriptionRegistry


class TestRegister:
    def test_register_creates_pending(self) -> None:
        registry = SubscriptionRegistry()
        sub_id = registry.register("https://a.example.com", name="audit")
        sub = registry.get(sub_id)
        assert sub.confirmation_state is ConfirmationState.PENDING
        assert sub.endpoint_descriptor == "https://a.example.com"
        assert sub.filter_policy is None
        assert sub.name == "audit"

    def test_register_compiles_raw_policy(self) -> None:
        registry = SubscriptionRegistry()
        sub_id = registry.register("ep", {"event_name": [{"prefix": "ObjectRemoved:"}]})
        assert isinstance(registry.get(sub_id).filter_policy, FilterPolicy)

    def test_register_rejects_bad_policy(self) -> None:
        registry = SubscriptionRegistry()
        with pytest.raises(MalformedPolicyError):
            registry.register("ep", {"nope": ["x"]})
        with pytest.raises(TypeMismatchError):
            registry.register("ep", {"event_name": [{"numeric": [">", 0]}]})
        assert registry.list_all() == []

    def test_ids_are_unique(self) -> None:
        registry = SubscriptionRegistry()
        ids = {registry.register("ep") for _ in range(50)}
        assert len(ids) == 50


class TestConfirm:
    def test_pending_to_confirmed(self) -> None:
        registry = SubscriptionRegistry()
        sub_id = registry.register("ep")
        registry.confirm(sub_id)
        assert registry.get(sub_id).confirmation_state is ConfirmationState.CONFIRMED

    def test_confirm_twice_is_noop(self) -> None:
        registry = SubscriptionRegistry()
        sub_id = registry.register("ep")
        registry.confirm(sub_id)
        registry.confirm(sub_id)
        assert registry.get(sub_id).confirmation_state is ConfirmationState.CONFIRMED

    def test_confirm_unknown_raises(self) -> None:
        with pytest.raises(NotFoundError):
            SubscriptionRegistry().confirm("missing")

    def test_confirm_removed_raises(self) -> None:
        registry = SubscriptionRegistry()
        sub_id = registry.register("ep")
        registry.remove(sub_id)
        with pytest.raises(InvalidStateError):
            registry.confirm(sub_id)


class TestRemove:
    def test_remove_is_idempotent(self) -> None:
        registry = SubscriptionRegistry()
        sub_id = registry.register("ep")
        registry.confirm(sub_id)
        registry.remove(sub_id)
        registry.remove(sub_id)
        assert registry.get(sub_id).confirmation_state is ConfirmationState.REMOVED

    def test_remove_pending(self) -> None:
        registry = SubscriptionRegistry()
        sub_id = registry.register("ep")
        registry.remove(sub_id)
        assert registry.get(sub_id).confirmation_state is ConfirmationState.REMOVED

    def test_remove_unknown_raises(self) -> None:
        with pytest.raises(NotFoundError):
            SubscriptionRegistry().remove("missing")


class TestListConfirmed:
    def test_only_confirmed_in_insertion_order(self) -> None:
        registry = SubscriptionRegistry()
        a = registry.register("a")
        b = registry.register("b")
        c = registry.register("c")
        d = registry.register("d")
        registry.confirm(c)
        registry.confirm(a)
        registry.confirm(d)
        registry.remove(d)
        assert [s.id for s in registry.list_confirmed()] == [a, c]
        assert b not in {s.id for s in registry.list_confirmed()}

    def test_snapshot_not_affected_by_later_changes(self) -> None:
        registry = SubscriptionRegistry()
        sub_id = registry.register("ep")
        registry.confirm(sub_id)
        snapshot = registry.list_confirmed()
        registry.remove(sub_id)
        assert snapshot[0].confirmation_state is ConfirmationState.CONFIRMED
        assert registry.list_confirmed() == []

    def test_concurrent_mutations_and_reads(self) -> None:
        registry = SubscriptionRegistry()
        errors: list[Exception] = []

        def writer() -> None:
            try:
                for _ in range(200):
                    sub_id = registry.register("ep")
                    registry.confirm(sub_id)
                    registry.remove(sub_id)
            except Exception as e:
                errors.append(e)

        def reader() -> None:
            try:
                for _ in range(500):
                    for sub in registry.list_confirmed():
                        assert sub.confirmation_state is ConfirmationState.CONFIRMED
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer) for _ in range(4)]
        threads += [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert errors == []
        assert len(registry.list_all()) == 800
        assert registry.list_confirmed() == []
