"""
Tests for the binding orchestrator.

Covers:
- bind validation order and atomicity (nothing persisted on rejection)
- the sink: substitution, reaction run, execution records, failure capture
- deactivate, sibling restart, restore on startup
- grouped catalogue listings and placeholders
"""
import base64
import json
import threading
import uuid

import pytest

from area_engine.core.errors import (
    BindingNotFoundError,
    DuplicateBindingError,
    InvalidBindingIdError,
    InvalidConfigError,
    NoPlaceholdersError,
    ProviderNotLinkedError,
    UnknownActionError,
    UnknownReactionError,
)
from area_engine.models import ActionDefinition, Area, EventLog, ReactionDefinition
from area_engine.services.actions import DetectedEvent, DetectionCode
from area_engine.services.actions.base import ActionDetector
from area_engine.services.actions.discord import MESSAGE_CREATE_TOPIC
from area_engine.services.manager import BindingState, active_binding_key, parse_binding_id
from area_engine.services.reactions.gmail import SEND_URL, USERINFO_URL
from area_engine.services.repository import BindingRecord

USER = "user-1"


def discord_event(message_id, timestamp, channel_id="c1", content="hello"):
    return {
        "id": message_id,
        "channel_id": channel_id,
        "timestamp": timestamp,
        "content": content,
        "author": {"id": "42", "username": "alice"},
    }


def counts(db):
    db.expire_all()
    return (
        db.query(Area).count(),
        db.query(ActionDefinition).count(),
        db.query(ReactionDefinition).count(),
    )


# ---------------------------------------------------------------------------
# bind
# ---------------------------------------------------------------------------

class TestBindValidation:
    async def test_unlinked_spotify_rejected(self, orchestrator, runtime, db):
        with pytest.raises(ProviderNotLinkedError) as exc:
            await orchestrator.bind(USER, "spotify_has_likes", "log_event", {}, {})
        assert exc.value.details["provider"] == "spotify"
        assert counts(db) == (0, 0, 0)
        assert runtime.registry.running_keys() == []

    async def test_unknown_action(self, orchestrator, db):
        with pytest.raises(UnknownActionError):
            await orchestrator.bind(USER, "nope", "log_event", {}, {})
        assert counts(db) == (0, 0, 0)

    async def test_unknown_reaction(self, orchestrator, db):
        with pytest.raises(UnknownReactionError):
            await orchestrator.bind(USER, "discord_new_message", "nope", {"channelId": "c1"}, {})
        assert counts(db) == (0, 0, 0)

    async def test_invalid_reaction_config(self, orchestrator, runtime, gateway, db):
        gateway.link("discord", "google")
        with pytest.raises(InvalidConfigError) as exc:
            await orchestrator.bind(
                USER, "discord_new_message", "send_email",
                {"channelId": "c1"}, {"to": "not-an-email", "subject": "s", "body": "b"},
            )
        assert exc.value.field == "to"
        assert counts(db) == (0, 0, 0)
        assert runtime.registry.running_keys() == []

    async def test_missing_action_field(self, orchestrator, gateway, db):
        gateway.link("discord")
        with pytest.raises(InvalidConfigError) as exc:
            await orchestrator.bind(USER, "discord_new_message", "log_event", {}, {})
        assert exc.value.field == "channelId"
        assert counts(db) == (0, 0, 0)

    async def test_reaction_provider_checked_too(self, orchestrator, gateway, db):
        gateway.link("discord")
        with pytest.raises(ProviderNotLinkedError) as exc:
            await orchestrator.bind(
                USER, "discord_new_message", "send_email",
                {"channelId": "c1"}, {"to": "a@b.io", "subject": "s", "body": "b"},
            )
        assert exc.value.details["provider"] == "google"
        assert counts(db) == (0, 0, 0)


class TestBind:
    async def test_bind_persists_caches_and_starts(self, orchestrator, runtime, gateway, cache, db):
        gateway.link("discord")
        area_id = await orchestrator.bind(
            USER, "discord_new_message", "log_event", {"channelId": "c1"}, {"message": "hi"}
        )
        assert uuid.UUID(area_id).version == 4
        assert counts(db) == (1, 1, 1)
        assert orchestrator.state_of(area_id) == BindingState.RUNNING
        assert runtime.registry.is_running("discord_new_message", USER)
        assert runtime.hub.subscriber_count(MESSAGE_CREATE_TOPIC) == 1

        summary = json.loads(await cache.get(active_binding_key(area_id)))
        assert summary["action"] == "discord_new_message"
        assert summary["action_config"] == {"channelId": "c1"}

    async def test_catalogue_rows_reused(self, orchestrator, gateway, db):
        gateway.link("discord")
        await orchestrator.bind(USER, "discord_new_message", "log_event", {"channelId": "c1"}, {})
        await orchestrator.bind(USER, "discord_new_message", "log_event", {"channelId": "c2"}, {})
        assert counts(db) == (2, 1, 1)

    async def test_failed_bind_leaves_no_state(self, orchestrator):
        with pytest.raises(UnknownActionError):
            await orchestrator.bind(USER, "nope", "log_event", {}, {})
        assert orchestrator._states == {}

    async def test_second_area_on_same_source_refused(self, orchestrator, runtime, gateway, db):
        gateway.link("discord")
        first = await orchestrator.bind(USER, "discord_new_message", "log_event", {"channelId": "c1"}, {})
        with pytest.raises(DuplicateBindingError) as exc:
            await orchestrator.bind(USER, "discord_new_message", "log_event", {"channelId": "c1"}, {"message": "x"})
        assert exc.value.http_status == 409
        assert exc.value.details["existing_area_id"] == first
        assert counts(db) == (1, 1, 1)

        # other users and other channels are unaffected
        await orchestrator.bind("user-2", "discord_new_message", "log_event", {"channelId": "c1"}, {})
        await orchestrator.bind(USER, "discord_new_message", "log_event", {"channelId": "c2"}, {})

    async def test_same_source_bindable_after_deactivate(self, orchestrator, gateway):
        gateway.link("discord")
        first = await orchestrator.bind(USER, "discord_new_message", "log_event", {"channelId": "c1"}, {})
        await orchestrator.deactivate(first)
        second = await orchestrator.bind(USER, "discord_new_message", "log_event", {"channelId": "c1"}, {})
        assert orchestrator.state_of(second) == BindingState.RUNNING


# ---------------------------------------------------------------------------
# Sink
# ---------------------------------------------------------------------------

class TestDispatch:
    async def test_push_event_runs_reaction_and_records_execution(
        self, orchestrator, runtime, gateway, discord_api, db
    ):
        gateway.link("discord")
        discord_api.post("c1", "m1", "2023-12-10T15:30:00.000Z")
        area_id = await orchestrator.bind(
            USER, "discord_new_message", "discord_send_message",
            {"channelId": "c1"},
            {"channelId": "c9", "message": "{{DISCORD_MESSAGE_AUTHOR_USERNAME}} said {{DISCORD_MESSAGE_CONTENT}}"},
        )
        assert discord_api.sent == []

        await runtime.hub.publish(MESSAGE_CREATE_TOPIC, discord_event("m2", "2023-12-10T16:00:00.000Z", content="yo"))
        assert discord_api.sent[0]["content"] == "alice said yo"
        assert discord_api.sent[0]["channel_id"] == "c9"

        (record,) = runtime.repository.list_logs(area_id)
        assert record.event_type == "AREA_EXECUTED"
        assert record.metadata["actionResult"]["code"] == 0
        assert record.metadata["actionResult"]["data"]["DISCORD_MESSAGE_ID"] == "m2"
        assert record.metadata["processedConfig"]["message"] == "alice said yo"
        assert record.metadata["reactionResult"] == {"success": True, "messageId": "sent-1"}

    async def test_failed_reaction_recorded_and_not_replayed(
        self, orchestrator, runtime, gateway, discord_api, watermarks
    ):
        gateway.link("discord")
        area_id = await orchestrator.bind(
            USER, "discord_new_message", "discord_send_message",
            {"channelId": "c1"}, {"channelId": "c9", "message": "x"},
        )
        discord_api.status_override = 500
        event = discord_event("m2", "2023-12-10T16:00:00.000Z")
        await runtime.hub.publish(MESSAGE_CREATE_TOPIC, event)
        await runtime.hub.publish(MESSAGE_CREATE_TOPIC, event)

        (record,) = runtime.repository.list_logs(area_id)
        assert record.event_type == "AREA_EXECUTION_FAILED"
        assert record.metadata["reactionResult"]["success"] is False
        assert record.metadata["reactionResult"]["code"] == "EXECUTION_FAILURE"
        assert await watermarks.get("discord", USER, "c1") == "2023-12-10T16:00:00.000Z"
        assert runtime.repository.find_by_id(area_id).is_active
        assert runtime.registry.is_running("discord_new_message", USER)

    async def test_send_email_gets_substituted_config(self, orchestrator, runtime, gateway):
        gateway.link("google")
        gateway.route(USERINFO_URL, (200, {"email": "me@gmail.com"}))
        gateway.route(SEND_URL, (200, {"id": "gm-1"}), method="POST")
        binding = BindingRecord(
            id=str(uuid.uuid4()),
            user_id=USER,
            action_name="spotify_has_likes",
            action_provider="spotify",
            reaction_name="send_email",
            reaction_provider="google",
            reaction_config={
                "to": "friend@example.com",
                "subject": "New like: {{SPOTIFY_LIKED_SONG_NAME}}",
                "body": "By {{SPOTIFY_LIKED_SONG_ARTIST}} {{UNKNOWN_KEY}}",
            },
        )
        event = DetectedEvent(
            DetectionCode.TRIGGERED,
            {"SPOTIFY_LIKED_SONG_NAME": "Bohemian Rhapsody", "SPOTIFY_LIKED_SONG_ARTIST": "Queen"},
        )
        await orchestrator.dispatch(binding, event)

        _, _, spec = gateway.requests[-1]
        raw = spec.json["raw"]
        message = base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4)).decode()
        assert "To: friend@example.com" in message
        assert "Subject: New like: Bohemian Rhapsody" in message
        assert "By Queen {{UNKNOWN_KEY}}" in message

        (record,) = runtime.repository.list_logs(binding.id)
        assert record.event_type == "AREA_EXECUTED"
        assert record.metadata["reactionResult"]["messageId"] == "gm-1"

    async def test_execution_record_written_off_the_event_loop(self, orchestrator, runtime, monkeypatch):
        threads = []
        append_log = runtime.repository.append_log

        def recording(**kwargs):
            threads.append(threading.get_ident())
            return append_log(**kwargs)

        monkeypatch.setattr(runtime.repository, "append_log", recording)
        binding = BindingRecord(
            id=str(uuid.uuid4()), user_id=USER,
            action_name="spotify_has_likes", action_provider="spotify",
            reaction_name="log_event", reaction_provider="default",
        )
        await orchestrator.dispatch(binding, DetectedEvent(DetectionCode.TRIGGERED, {}))
        assert len(threads) == 2
        assert threading.get_ident() not in threads

    async def test_unavailable_and_unchanged_do_nothing(self, orchestrator, runtime, db):
        binding = BindingRecord(
            id=str(uuid.uuid4()), user_id=USER,
            action_name="spotify_has_likes", action_provider="spotify",
            reaction_name="log_event", reaction_provider="default",
        )
        await orchestrator.dispatch(binding, DetectedEvent.unavailable())
        await orchestrator.dispatch(binding, DetectedEvent.unchanged())
        assert db.query(EventLog).count() == 0

    async def test_log_event_reaction_writes_triggered_row(self, orchestrator, runtime, db):
        binding = BindingRecord(
            id=str(uuid.uuid4()), user_id=USER,
            action_name="spotify_has_likes", action_provider="spotify",
            reaction_name="log_event", reaction_provider="default",
            reaction_config={"message": "liked {{SPOTIFY_LIKED_SONG_NAME}}"},
        )
        await orchestrator.dispatch(
            binding, DetectedEvent(DetectionCode.TRIGGERED, {"SPOTIFY_LIKED_SONG_NAME": "X"})
        )
        rows = {r.event_type: r for r in db.query(EventLog).all()}
        assert rows["AREA_TRIGGERED"].description == "liked X"
        assert rows["AREA_EXECUTED"].area_id == binding.id


# ---------------------------------------------------------------------------
# deactivate / restore
# ---------------------------------------------------------------------------

class TestDeactivate:
    def test_parse_binding_id(self):
        value = str(uuid.uuid4())
        assert parse_binding_id(value) == value
        assert parse_binding_id(value.upper()) == value
        v1 = str(uuid.uuid1())
        assert parse_binding_id(v1) == v1
        v5 = str(uuid.uuid5(uuid.NAMESPACE_URL, "area"))
        assert parse_binding_id(v5) == v5
        nil = str(uuid.UUID(int=0))
        v7 = "01890a5d-ac96-774b-bcce-b302099a8057"
        for bad in ("abc", nil, v7, value.replace("-", "")):
            with pytest.raises(InvalidBindingIdError):
                parse_binding_id(bad)

    async def test_invalid_and_unknown_ids(self, orchestrator):
        with pytest.raises(InvalidBindingIdError):
            await orchestrator.deactivate("not-a-uuid")
        with pytest.raises(BindingNotFoundError):
            await orchestrator.deactivate(str(uuid.uuid4()))

    async def test_deactivate_stops_and_evicts(self, orchestrator, runtime, gateway, cache):
        gateway.link("discord")
        area_id = await orchestrator.bind(USER, "discord_new_message", "log_event", {"channelId": "c1"}, {})
        binding = await orchestrator.deactivate(area_id)

        assert binding.id == area_id
        assert runtime.repository.find_by_id(area_id).is_active is False
        assert await cache.get(active_binding_key(area_id)) is None
        assert orchestrator.state_of(area_id) == BindingState.STOPPED
        assert runtime.hub.subscriber_count(MESSAGE_CREATE_TOPIC) == 0

        await runtime.hub.publish(MESSAGE_CREATE_TOPIC, discord_event("m2", "2023-12-10T16:00:00.000Z"))
        assert runtime.repository.list_logs(area_id) == []

    async def test_stopped_states_are_bounded(self, orchestrator, gateway):
        gateway.link("discord")
        orchestrator._stopped_history = 2
        ids = []
        for channel in ("c1", "c2", "c3"):
            area_id = await orchestrator.bind(USER, "discord_new_message", "log_event", {"channelId": channel}, {})
            ids.append(area_id)
        for area_id in ids:
            await orchestrator.deactivate(area_id)
        assert orchestrator.state_of(ids[0]) is None
        assert orchestrator.state_of(ids[1]) == BindingState.STOPPED
        assert orchestrator.state_of(ids[2]) == BindingState.STOPPED
        assert len(orchestrator._states) == 2

    async def test_sibling_areas_keep_running(self, orchestrator, runtime, gateway):
        gateway.link("discord")
        first = await orchestrator.bind(USER, "discord_new_message", "log_event", {"channelId": "c1"}, {})
        second = await orchestrator.bind(USER, "discord_new_message", "log_event", {"channelId": "c2"}, {})
        await orchestrator.deactivate(first)

        keys = runtime.registry.running_keys()
        assert [k.resource for k in keys] == ["c2"]
        await runtime.hub.publish(MESSAGE_CREATE_TOPIC, discord_event("m5", "2030-01-01T00:00:00.000Z", channel_id="c2"))
        assert [r.event_type for r in runtime.repository.list_logs(second)] == ["AREA_EXECUTED"]


class TestRestore:
    def _persist(self, repository, action="discord_new_message", config=None, active=True):
        binding = repository.create(
            user_id=USER,
            action_name=action,
            action_provider="discord",
            action_description="",
            reaction_name="log_event",
            reaction_provider="default",
            reaction_description="",
            action_config=config or {"channelId": "c1"},
            reaction_config={},
        )
        if not active:
            repository.set_active(binding.id, False)
        return binding

    async def test_restores_active_areas_only(self, orchestrator, runtime, gateway):
        gateway.link("discord")
        active = self._persist(runtime.repository)
        self._persist(runtime.repository, config={"channelId": "c2"}, active=False)
        self._persist(runtime.repository, action="removed_action", config={"channelId": "c3"})

        assert await orchestrator.restore_active_bindings() == 1
        assert [k.resource for k in runtime.registry.running_keys()] == ["c1"]
        assert orchestrator.state_of(active.id) == BindingState.RUNNING

    async def test_restore_does_not_replay_history(self, orchestrator, runtime, gateway, discord_api, watermarks):
        gateway.link("discord")
        await watermarks.set("discord", USER, "c1", "2023-12-10T16:00:00.000Z")
        discord_api.post("c1", "m2", "2023-12-10T16:00:00.000Z")
        binding = self._persist(runtime.repository)

        await orchestrator.restore_active_bindings()
        assert runtime.repository.list_logs(binding.id) == []


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------

class TestListings:
    async def test_actions_grouped_by_provider(self, orchestrator, gateway):
        gateway.link("spotify")
        groups = await orchestrator.list_available_actions(USER)
        assert set(groups) == {"spotify", "google", "discord"}
        assert groups["spotify"]["is_linked"] is True
        assert groups["google"]["is_linked"] is False
        (item,) = groups["discord"]["items"]
        assert item["name"] == "discord_new_message"
        assert item["delivery"] == "push"
        assert item["fields"][0]["name"] == "channelId"

    async def test_reactions_grouped_by_provider(self, orchestrator):
        groups = await orchestrator.list_available_reactions(USER)
        assert groups["default"]["is_linked"] is True
        assert {i["name"] for i in groups["default"]["items"]} == {"log_event", "discord_send_message"}
        assert groups["google"]["is_linked"] is False

    def test_placeholders(self, runtime):
        keys = [p["key"] for p in runtime.orchestrator.list_placeholders("gmail_new_email")]
        assert "GMAIL_SUBJECT" in keys
        with pytest.raises(UnknownActionError):
            runtime.orchestrator.list_placeholders("nope")

    def test_action_without_placeholders(self, runtime, gateway, watermarks):
        class Silent(ActionDetector):
            action_name = "silent"
            provider = "default"

            def placeholders(self):
                return []

            async def fetch_latest(self, user_id, config):
                return None

            def marker(self, item):
                return None

            def extract_placeholders(self, item):
                return {}

        runtime.registry.register(Silent(gateway, watermarks))
        with pytest.raises(NoPlaceholdersError):
            runtime.orchestrator.list_placeholders("silent")

    async def test_bindings_for_user(self, orchestrator, gateway):
        gateway.link("discord")
        await orchestrator.bind(USER, "discord_new_message", "log_event", {"channelId": "c1"}, {})
        await orchestrator.bind("someone-else", "discord_new_message", "log_event", {"channelId": "c1"}, {})
        (binding,) = orchestrator.list_bindings_for_user(USER)
        assert binding.action_name == "discord_new_message"
        assert binding.reaction_name == "log_event"
