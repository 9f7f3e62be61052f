import asyncio

import pytest

from chatbot.client.navigation import NavigationSynchronizer
from chatbot.client.router import Router, parse_path, route_path
from chatbot.client.state import ConversationStateMachine
from tests.mocks.fake_store import FakeConversationStore, network_error


class _Recorder:
    def __init__(self):
        self.seen: list[str | None] = []

    async def __call__(self, conversation_id: str | None) -> None:
        self.seen.append(conversation_id)


# ── Router ───────────────────────────────────────────────────────────────────


def test_route_paths():
    assert route_path(None) == "/"
    assert route_path("abc") == "/chat/abc"
    assert parse_path("/chat/abc") == "abc"
    assert parse_path("/chat/abc/") == "abc"
    assert parse_path("/chat/") is None
    assert parse_path("/") is None
    assert parse_path("/settings") is None


def test_from_path():
    assert Router.from_path("/chat/abc").current_id == "abc"
    assert Router.from_path("/").current_id is None


@pytest.mark.asyncio
async def test_navigate_notifies_listeners():
    router = Router()
    recorder = _Recorder()
    router.subscribe(recorder)

    router.navigate("a")
    router.navigate("b")
    await router.settle()

    assert recorder.seen == ["a", "b"]
    assert router.path == "/chat/b"
    assert router.history == [None, "a", "b"]


@pytest.mark.asyncio
async def test_navigate_to_current_route_is_noop():
    router = Router("a")
    recorder = _Recorder()
    router.subscribe(recorder)

    router.navigate("a")
    await router.settle()

    assert recorder.seen == []
    assert router.history == ["a"]


@pytest.mark.asyncio
async def test_back_and_forward():
    router = Router()
    router.navigate("a")
    router.navigate("b")

    assert router.back() is True
    assert router.current_id == "a"
    assert router.back() is True
    assert router.current_id is None
    assert router.back() is False

    assert router.forward() is True
    assert router.forward() is True
    assert router.current_id == "b"
    assert router.forward() is False
    await router.settle()


@pytest.mark.asyncio
async def test_navigate_drops_forward_history():
    router = Router()
    router.navigate("a")
    router.navigate("b")
    router.back()
    router.navigate("c")

    assert router.history == [None, "a", "c"]
    assert router.forward() is False
    await router.settle()


@pytest.mark.asyncio
async def test_replace_rewrites_current_entry():
    router = Router("missing")
    recorder = _Recorder()
    router.subscribe(recorder)

    router.replace(None)
    await router.settle()

    assert router.history == [None]
    assert recorder.seen == [None]


# ── NavigationSynchronizer ───────────────────────────────────────────────────


@pytest.fixture
def store():
    return FakeConversationStore()


@pytest.fixture
def wired(store):
    router = Router()
    state = ConversationStateMachine(store, router)
    synchronizer = NavigationSynchronizer(state, router)
    return state, router, synchronizer


def _contents(state) -> list[str]:
    return [m.content for m in state.messages]


class TestNavigationSynchronizer:
    @pytest.mark.asyncio
    async def test_route_change_loads_conversation(self, store, wired):
        state, router, _ = wired
        conversation = store.add_conversation("A", ["a1", "a2"])
        await state.initialize()

        router.navigate(conversation.id)
        await router.settle()

        assert state.selected.id == conversation.id
        assert _contents(state) == ["a1", "a2"]

    @pytest.mark.asyncio
    async def test_back_and_forward_follow_history(self, store, wired):
        state, router, _ = wired
        first = store.add_conversation("A", ["a1", "a2"])
        second = store.add_conversation("B", ["b1", "b2"])
        await state.initialize()

        await state.select_conversation(first.id)
        await router.settle()
        await state.select_conversation(second.id)
        await router.settle()

        router.back()
        await router.settle()
        assert state.selected.id == first.id
        assert _contents(state) == ["a1", "a2"]

        router.forward()
        await router.settle()
        assert state.selected.id == second.id
        assert _contents(state) == ["b1", "b2"]

        router.back()
        router.back()
        await router.settle()
        assert state.selected is None
        assert state.messages == ()

    @pytest.mark.asyncio
    async def test_unknown_conversation_redirects_home(self, store, wired):
        state, router, _ = wired
        store.add_conversation("A", ["a1", "a2"])
        await state.initialize()

        router.navigate("deleted-elsewhere")
        await router.settle()

        assert router.current_id is None
        assert state.selected is None

    @pytest.mark.asyncio
    async def test_same_conversation_not_reloaded(self, store, wired):
        state, router, synchronizer = wired
        conversation = store.add_conversation("A", ["a1", "a2"])
        await state.initialize()
        router.navigate(conversation.id)
        await router.settle()

        await synchronizer.on_route_change(conversation.id)

        assert len(store.calls_to("get_conversation_detail")) == 1

    @pytest.mark.asyncio
    async def test_load_failure_reports_error(self, store, wired):
        state, router, _ = wired
        conversation = store.add_conversation("A", ["a1", "a2"])
        await state.initialize()
        store.fail("get_conversation_detail", network_error())

        router.navigate(conversation.id)
        await router.settle()

        assert state.selected.id == conversation.id
        assert state.messages == ()
        assert state.error == "Failed to load messages"

    @pytest.mark.asyncio
    async def test_stale_fetch_discarded(self, store, wired):
        state, router, _ = wired
        slow = store.add_conversation("A", ["a1", "a2"])
        fast = store.add_conversation("B", ["b1", "b2"])
        await state.initialize()
        gate = store.gate(slow.id)

        router.navigate(slow.id)
        await asyncio.sleep(0)
        router.navigate(fast.id)
        await asyncio.sleep(0)
        assert _contents(state) == ["b1", "b2"]

        gate.set()
        await router.settle()

        assert state.selected.id == fast.id
        assert _contents(state) == ["b1", "b2"]

    @pytest.mark.asyncio
    async def test_superseded_route_change_skipped(self, store, wired):
        state, router, _ = wired
        first = store.add_conversation("A", ["a1", "a2"])
        second = store.add_conversation("B", ["b1", "b2"])
        await state.initialize()

        router.navigate(first.id)
        router.navigate(second.id)
        await router.settle()

        assert state.selected.id == second.id
        assert [c[1] for c in store.calls_to("get_conversation_detail")] == [second.id]

    @pytest.mark.asyncio
    async def test_route_changes_deferred_until_initialized(self, store, wired):
        state, router, _ = wired
        conversation = store.add_conversation("A", ["a1", "a2"])

        router.navigate(conversation.id)
        await router.settle()
        assert state.selected is None
        assert store.calls_to("get_conversation_detail") == []

        await state.initialize()

        assert state.selected.id == conversation.id
        assert _contents(state) == ["a1", "a2"]
        assert len(store.calls_to("get_conversation_detail")) == 1

    @pytest.mark.asyncio
    async def test_send_during_load_not_duplicated(self, store, wired):
        state, router, _ = wired
        conversation = store.add_conversation("A", ["a1", "a2"])
        await state.initialize()
        gate = store.gate("get_conversation_detail")

        router.navigate(conversation.id)
        await asyncio.sleep(0)
        assert await state.send_message("Hello") is True

        gate.set()
        await router.settle()

        assert _contents(state)[:3] == ["a1", "a2", "Hello"]
        assert len(state.messages) == 4

    @pytest.mark.asyncio
    async def test_load_landing_mid_send_not_duplicated(self, store, wired):
        state, router, _ = wired
        conversation = store.add_conversation("A", ["a1", "a2"])
        await state.initialize()
        load_gate = store.gate("get_conversation_detail")
        reply_gate = store.gate("reply")

        router.navigate(conversation.id)
        await asyncio.sleep(0)
        send = asyncio.create_task(state.send_message("Hello"))
        await asyncio.sleep(0)

        # The stored user message arrives with the load while the reply is pending
        load_gate.set()
        await router.settle()
        reply_gate.set()
        assert await send is True

        assert _contents(state) == ["a1", "a2", "Hello", "Reply to: Hello"]
        assert [m.id for m in state.messages] == [m.id for m in store.messages[conversation.id]]

    @pytest.mark.asyncio
    async def test_back_from_empty_conversation_deletes_it(self, store, wired):
        state, router, _ = wired
        await state.initialize()
        empty = await state.start_new_conversation()
        await router.settle()

        router.back()
        await router.settle()

        assert router.current_id is None
        assert state.selected is None
        assert empty.id not in store.conversation_ids()
        assert state.find_conversation(empty.id) is None

    @pytest.mark.asyncio
    async def test_back_to_previous_conversation_deletes_empty_one(self, store, wired):
        state, router, _ = wired
        existing = store.add_conversation("A", ["a1", "a2"])
        await state.initialize()
        await state.select_conversation(existing.id)
        await router.settle()
        empty = await state.start_new_conversation()
        await router.settle()

        router.back()
        await router.settle()

        assert state.selected.id == existing.id
        assert _contents(state) == ["a1", "a2"]
        assert store.conversation_ids() == [existing.id]

        # Forward points at the deleted conversation and falls back home
        router.forward()
        await router.settle()
        assert router.current_id is None
        assert state.selected is None
        assert empty.id not in store.conversation_ids()

    @pytest.mark.asyncio
    async def test_leaving_conversation_with_messages_keeps_it(self, store, wired):
        state, router, _ = wired
        first = store.add_conversation("A", ["a1", "a2"])
        second = store.add_conversation("B", ["b1", "b2"])
        await state.initialize()

        await state.select_conversation(first.id)
        await router.settle()
        await state.select_conversation(second.id)
        await router.settle()

        assert store.conversation_ids() == [second.id, first.id]
        assert store.calls_to("delete_conversation") == []

    @pytest.mark.asyncio
    async def test_close_discards_in_flight_fetch(self, store, wired):
        state, router, synchronizer = wired
        conversation = store.add_conversation("A", ["a1", "a2"])
        await state.initialize()
        gate = store.gate(conversation.id)

        router.navigate(conversation.id)
        await asyncio.sleep(0)
        synchronizer.close()
        gate.set()
        await router.settle()

        assert state.messages == ()
