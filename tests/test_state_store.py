import time

from homeops.schemas.wecom import TemplateCardButton
from homeops.services.state_store import ConversationState, StateStore, Step


class TestGetSet:
    def test_set_then_get(self, state_store):
        state_store.set("u", ConversationState(step=Step.AWAITING_INPUT.value, service_key="unraid", action="restart"))
        state, found = state_store.get("u")
        assert found is True
        assert state.service_key == "unraid"
        assert state.action == "restart"
        assert state.step == Step.AWAITING_INPUT

    def test_missing_user(self, state_store):
        state, found = state_store.get("nobody")
        assert found is False
        assert state == ConversationState()

    def test_expired_entry_is_deleted_on_get(self, state_store, clock):
        state_store.set("u", ConversationState(service_key="unraid"))
        clock.advance(61)
        _, found = state_store.get("u")
        assert found is False
        assert len(state_store) == 0

    def test_set_slides_expiry(self, state_store, clock):
        state_store.set("u", ConversationState(service_key="unraid"))
        clock.advance(50)
        state, _ = state_store.get("u")
        state_store.set("u", state)
        clock.advance(50)
        _, found = state_store.get("u")
        assert found is True

    def test_get_does_not_slide_expiry(self, state_store, clock):
        state_store.set("u", ConversationState(service_key="unraid"))
        clock.advance(50)
        state_store.get("u")
        clock.advance(11)
        _, found = state_store.get("u")
        assert found is False

    def test_clear(self, state_store):
        state_store.set("u", ConversationState(service_key="unraid"))
        state_store.clear("u")
        state_store.clear("u")
        _, found = state_store.get("u")
        assert found is False

    def test_returned_state_is_a_copy(self, state_store):
        state_store.set("u", ConversationState(pending_buttons=[TemplateCardButton(text="a", key="k")]))
        state, _ = state_store.get("u")
        state.pending_buttons.clear()
        state.service_key = "changed"
        stored, _ = state_store.get("u")
        assert len(stored.pending_buttons) == 1
        assert stored.service_key == ""

    def test_payload_is_not_shared_with_reads(self, state_store):
        state_store.set("u", ConversationState(service_key="qinglong", payload={"task": {"id": 1}}))
        state, _ = state_store.get("u")
        state.payload["task"]["id"] = 99
        assert state_store.get("u")[0].payload == {"task": {"id": 1}}

    def test_payload_is_not_shared_with_writer(self, state_store):
        payload = {"task": {"id": 1}}
        state_store.set("u", ConversationState(service_key="qinglong", payload=payload))
        payload["task"]["id"] = 99
        assert state_store.get("u")[0].payload == {"task": {"id": 1}}


class TestPayload:
    def test_payload_scoped_to_owner(self):
        state = ConversationState(service_key="qinglong", payload={"instance": "home"})
        assert state.payload_for("qinglong") == {"instance": "home"}
        assert state.payload_for("unraid") is None
        assert state.payload_for("") is None

    def test_awaiting_confirm(self):
        assert ConversationState(step=Step.AWAITING_CONFIRM.value).awaiting_confirm is True
        assert ConversationState(step="provider_sub_step").awaiting_confirm is False


class TestLifecycle:
    def test_real_clock_ttl(self):
        store = StateStore(ttl_seconds=0.02, sweep_interval=0)
        store.set("u", ConversationState(service_key="unraid"))
        assert store.get("u")[1] is True
        time.sleep(0.03)
        assert store.get("u")[1] is False
        store.close()

    def test_prune_expired(self, state_store, clock):
        state_store.set("a", ConversationState())
        clock.advance(30)
        state_store.set("b", ConversationState())
        clock.advance(31)
        assert state_store.prune_expired() == 1
        assert len(state_store) == 1

    def test_close_without_sweep_is_safe(self):
        store = StateStore(ttl_seconds=-1, sweep_interval=0)
        store.close()
        store.close()
