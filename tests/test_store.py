"""Tests for tutor_chat.store — the in-memory per-scenario message log."""

from datetime import datetime, timedelta, timezone

import pytest

from tutor_chat.errors import NoActiveScenario, WrongChannel
from tutor_chat.models import InteractionMessage, NarrationMessage
from tutor_chat.store import MessageStore


def _user(scenario_id: str = "a", content: str = "hi", **kwargs) -> InteractionMessage:
    return InteractionMessage(scenario_id=scenario_id, role="user", content=content, **kwargs)


def _narration(scenario_id: str = "a", content: str = "Welcome!", **kwargs) -> NarrationMessage:
    return NarrationMessage(scenario_id=scenario_id, content=content, **kwargs)


@pytest.fixture
def store() -> MessageStore:
    s = MessageStore()
    s.register("a")
    s.register("b")
    return s


class TestRegistration:
    def test_unknown_scenario(self) -> None:
        s = MessageStore()
        assert not s.is_known("a")
        assert s.get_all("a") == []
        assert len(s) == 0

    def test_register_is_idempotent(self, store: MessageStore) -> None:
        store.append("a", _user())
        store.register("a")
        assert len(store.get_all("a")) == 1

    def test_known_ids(self, store: MessageStore) -> None:
        assert store.known_ids() == ["a", "b"]
        assert len(store) == 2

    def test_clear_keeps_scenario_known(self, store: MessageStore) -> None:
        store.append("a", _user())
        store.clear("a")
        assert store.is_known("a")
        assert store.get_all("a") == []

    def test_clear_unknown_is_noop(self, store: MessageStore) -> None:
        store.clear("zzz")
        assert not store.is_known("zzz")

    def test_evict_forgets_scenario(self, store: MessageStore) -> None:
        store.append("a", _user())
        store.evict("a")
        assert not store.is_known("a")
        assert store.get_all("a") == []
        store.evict("a")


class TestAppend:
    def test_append_to_unknown_raises(self) -> None:
        with pytest.raises(NoActiveScenario):
            MessageStore().append("a", _user())

    def test_append_preserves_order(self, store: MessageStore) -> None:
        msgs = [_user(content=str(i)) for i in range(5)]
        for m in msgs:
            store.append("a", m)
        assert store.get_all("a") == msgs

    def test_owner_mismatch_rejected(self, store: MessageStore) -> None:
        with pytest.raises(ValueError, match="belongs to"):
            store.append("a", _user("b"))

    def test_older_timestamp_rejected(self, store: MessageStore) -> None:
        now = datetime.now(timezone.utc)
        store.append("a", _user(timestamp=now))
        with pytest.raises(ValueError, match="older"):
            store.append("a", _user(timestamp=now - timedelta(seconds=1)))

    def test_equal_timestamps_allowed(self, store: MessageStore) -> None:
        now = datetime.now(timezone.utc)
        store.append("a", _user(timestamp=now))
        store.append("a", _user(timestamp=now))
        assert len(store.get_all("a")) == 2

    def test_scenarios_isolated(self, store: MessageStore) -> None:
        store.append("a", _user("a", "for a"))
        store.append("b", _user("b", "for b"))
        assert [m.content for m in store.get_all("a")] == ["for a"]
        assert [m.content for m in store.get_all("b")] == ["for b"]

    def test_channel_checked_appends(self, store: MessageStore) -> None:
        store.append_narration("a", _narration())
        store.append_interaction("a", _user())
        with pytest.raises(WrongChannel):
            store.append_narration("a", _user())
        with pytest.raises(WrongChannel):
            store.append_interaction("a", _narration())
        assert len(store.get_all("a")) == 2

    def test_load_appends_in_order(self, store: MessageStore) -> None:
        msgs = [_narration(), _user(content="q"), _user(content="r")]
        store.load("a", msgs)
        assert store.get_all("a") == msgs


class TestStreamingUpdates:
    def test_replace_streaming_message(self, store: MessageStore) -> None:
        partial = InteractionMessage(
            scenario_id="a", role="assistant", content="Hel", is_streaming=True
        )
        store.append("a", partial)
        store.replace("a", partial.model_copy(update={"content": "Hello"}))
        assert store.get_all("a")[0].content == "Hello"
        assert store.get_all("a")[0].id == partial.id

    def test_finished_message_is_immutable(self, store: MessageStore) -> None:
        done = _user()
        store.append("a", done)
        with pytest.raises(ValueError, match="finished"):
            store.replace("a", done.model_copy(update={"content": "changed"}))

    def test_replace_cannot_change_channel(self, store: MessageStore) -> None:
        partial = InteractionMessage(
            scenario_id="a", role="assistant", content="x", is_streaming=True
        )
        store.append("a", partial)
        swapped = NarrationMessage(id=partial.id, scenario_id="a", content="y")
        with pytest.raises(ValueError, match="channel"):
            store.replace("a", swapped)

    def test_replace_unknown_id(self, store: MessageStore) -> None:
        with pytest.raises(ValueError, match="No message"):
            store.replace("a", _user())

    def test_withdraw_streaming(self, store: MessageStore) -> None:
        partial = InteractionMessage(
            scenario_id="a", role="assistant", content="x", is_streaming=True
        )
        store.append("a", partial)
        store.withdraw("a", partial.id)
        assert store.get_all("a") == []

    def test_withdraw_finished_rejected(self, store: MessageStore) -> None:
        done = _user()
        store.append("a", done)
        with pytest.raises(ValueError):
            store.withdraw("a", done.id)


class TestReads:
    def test_get_all_returns_copy(self, store: MessageStore) -> None:
        store.append("a", _user())
        store.get_all("a").clear()
        assert len(store.get_all("a")) == 1

    def test_channel_views(self, store: MessageStore) -> None:
        n = _narration()
        u = _user()
        store.append("a", n)
        store.append("a", u)
        assert store.get_narration("a") == [n]
        assert store.get_interaction("a") == [u]

    def test_find_and_last(self, store: MessageStore) -> None:
        first, second = _user(content="1"), _user(content="2")
        store.append("a", first)
        store.append("a", second)
        assert store.find("a", first.id) == first
        assert store.find("b", first.id) is None
        assert store.last("a") == second
        assert store.last("b") is None
