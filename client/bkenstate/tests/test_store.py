"""
EntityStore unit tests.

Covers:
  - roster replace / upsert / remove / rename and the membership map
  - chat create (including redelivery), edit, soft delete, pin, link preview
  - reaction sets: idempotent adds, no-op removes, pruning
  - video state is present only while active
  - every mutator is a no-op for unknown ids
"""

import pytest

from bkenstate.config import settings
from bkenstate.schemas.channel import Channel
from bkenstate.schemas.message import ChatMessage, LinkPreview
from bkenstate.schemas.user import User
from bkenstate.schemas.video import VideoLayer
from bkenstate.state.store import EntityStore


@pytest.fixture()
def store():
    return EntityStore()


def _msg(msg_id: int, channel_id: int = 0, text: str = "hi", sender_id: int = 1) -> ChatMessage:
    return ChatMessage(msg_id=msg_id, sender_id=sender_id, username="Alice", text=text, channel_id=channel_id)


# ---------------------------------------------------------------------------
# Users / membership
# ---------------------------------------------------------------------------


class TestUsers:
    def test_replace_users_sets_membership_for_listed_ids(self, store):
        store.replace_users([User(id=1, username="Alice"), User(id=2, username="Bob")], channels={2: 3})
        assert [u.username for u in store.get_users()] == ["Alice", "Bob"]
        assert store.channel_of(1) == 0
        assert store.channel_of(2) == 3

    def test_replace_users_leaves_membership_of_absent_ids(self, store):
        store.move_user(9, 4)
        store.replace_users([User(id=1, username="Alice")])
        assert store.get_user_channels()[9] == 4

    def test_replace_users_keeps_known_membership_without_channel(self, store):
        store.replace_users([User(id=1, username="Alice")], channels={1: 5})
        store.replace_users([User(id=1, username="Alice")])
        assert store.channel_of(1) == 5

    def test_upsert_then_remove(self, store):
        store.upsert_user(User(id=2, username="Bob"))
        assert store.get_user(2).username == "Bob"
        assert store.channel_of(2) == 0
        store.remove_user(2)
        assert store.get_user(2) is None
        assert 2 not in store.get_user_channels()

    def test_rename_user(self, store):
        store.upsert_user(User(id=1, username="Alice"))
        store.rename_user(1, "Alice2")
        assert store.get_users()[0].username == "Alice2"

    def test_unknown_ids_are_noops(self, store):
        store.remove_user(404)
        store.rename_user(404, "ghost")
        assert store.get_users() == []

    def test_channel_of_unknown_user_defaults_to_lobby(self, store):
        assert store.channel_of(77) == 0


class TestChannels:
    def test_lobby_always_exists(self, store):
        assert store.has_channel(0)
        assert store.channel_name(0) == settings.LOBBY_NAME
        assert not store.has_channel(1)

    def test_replace_channels(self, store):
        store.replace_channels([Channel(id=1, name="General"), Channel(id=2, name="Music")])
        assert store.has_channel(2)
        assert store.channel_name(1) == "General"
        store.replace_channels([Channel(id=3, name="Other")])
        assert not store.has_channel(1)
        assert [c.id for c in store.get_channels()] == [3]


# ---------------------------------------------------------------------------
# Chat messages
# ---------------------------------------------------------------------------


class TestChatMessages:
    def test_create_appends_in_arrival_order(self, store):
        later = _msg(2)
        later.ts = 100
        earlier = _msg(1)
        earlier.ts = 50
        assert store.apply_chat_create(later) is True
        assert store.apply_chat_create(earlier) is True
        assert [m.msg_id for m in store.get_messages(0)] == [2, 1]

    def test_redelivered_create_overwrites_in_place(self, store):
        store.apply_chat_create(_msg(1, text="first"))
        store.apply_chat_create(_msg(2))
        assert store.apply_chat_create(_msg(1, text="again")) is False
        msgs = store.get_messages(0)
        assert [m.msg_id for m in msgs] == [1, 2]
        assert msgs[0].text == "again"

    def test_messages_are_kept_per_channel(self, store):
        store.apply_chat_create(_msg(1, channel_id=0))
        store.apply_chat_create(_msg(2, channel_id=5))
        assert [m.msg_id for m in store.get_messages(5)] == [2]
        assert set(store.get_all_messages()) == {0, 5}

    def test_edit_keeps_identity_and_reactions(self, store):
        store.apply_chat_create(_msg(100, text="Original"))
        store.apply_reaction_added(100, "👍", 2)
        store.apply_chat_edit(100, "Edited text", 1234)
        msg = store.get_message(100)
        assert msg.text == "Edited text"
        assert msg.edited is True
        assert msg.edited_ts == 1234
        assert msg.msg_id == 100
        assert msg.sender_id == 1
        assert msg.reactions == {"👍": {2}}

    def test_delete_is_soft(self, store):
        store.apply_chat_create(_msg(200, text="To delete"))
        store.apply_reaction_added(200, "🎉", 3)
        store.apply_chat_delete(200)
        msg = store.get_message(200)
        assert msg.deleted is True
        assert msg.text == ""
        assert msg.sender_id == 1
        assert msg.reactions == {"🎉": {3}}
        assert len(store.get_messages(0)) == 1

    def test_pin_and_unpin(self, store):
        store.apply_chat_create(_msg(500))
        store.apply_pin(500, True)
        assert store.get_message(500).pinned is True
        store.apply_pin(500, False)
        assert store.get_message(500).pinned is False

    def test_link_preview(self, store):
        store.apply_chat_create(_msg(800))
        store.apply_link_preview(800, LinkPreview(url="http://example.com", title="Example"))
        assert store.get_message(800).link_preview.title == "Example"

    def test_unknown_msg_id_is_noop_everywhere(self, store):
        store.apply_chat_edit(9, "x", 1)
        store.apply_chat_delete(9)
        store.apply_reaction_added(9, "👍", 1)
        store.apply_reaction_removed(9, "👍", 1)
        store.apply_pin(9, True)
        store.apply_link_preview(9, LinkPreview(url="http://x"))
        assert store.get_message(9) is None
        assert store.get_all_messages() == {}

    def test_system_lines_get_negative_ids(self, store):
        first = store.append_system(0, "Bob joined", 1)
        second = store.append_system(0, "Bob left", 2)
        assert first.msg_id == -1
        assert second.msg_id == -2
        assert first.system is True
        assert [m.text for m in store.get_messages(0)] == ["Bob joined", "Bob left"]

    def test_history_limit_evicts_oldest(self, store, monkeypatch):
        monkeypatch.setattr(settings, "MAX_MESSAGES_PER_CHANNEL", 2)
        for msg_id in (1, 2, 3):
            store.apply_chat_create(_msg(msg_id))
        assert [m.msg_id for m in store.get_messages(0)] == [2, 3]
        assert store.get_message(1) is None


# ---------------------------------------------------------------------------
# Reactions
# ---------------------------------------------------------------------------


class TestReactions:
    def test_duplicate_add_is_idempotent(self, store):
        store.apply_chat_create(_msg(300))
        store.apply_reaction_added(300, "👍", 2)
        store.apply_reaction_added(300, "👍", 2)
        info = store.get_message(300).reaction_list()
        assert len(info) == 1
        assert info[0].count == 1
        assert info[0].user_ids == [2]

    def test_remove_absent_reactor_is_noop(self, store):
        store.apply_chat_create(_msg(300))
        store.apply_reaction_added(300, "👍", 2)
        store.apply_reaction_removed(300, "👍", 5)
        store.apply_reaction_removed(300, "❤️", 2)
        assert store.get_message(300).reactions == {"👍": {2}}

    def test_emptied_bucket_is_pruned(self, store):
        store.apply_chat_create(_msg(400))
        store.apply_reaction_added(400, "👍", 2)
        store.apply_reaction_removed(400, "👍", 2)
        store.apply_reaction_removed(400, "👍", 2)
        msg = store.get_message(400)
        assert msg.reactions == {}
        assert msg.reaction_list() == []

    def test_counts_follow_set_size(self, store):
        store.apply_chat_create(_msg(1))
        for uid in (1, 2, 3, 2):
            store.apply_reaction_added(1, "🔥", uid)
        store.apply_reaction_added(1, "👍", 1)
        counts = {r.emoji: r.count for r in store.get_message(1).reaction_list()}
        assert counts == {"🔥": 3, "👍": 1}


# ---------------------------------------------------------------------------
# Video / recording / unread
# ---------------------------------------------------------------------------


class TestVideoAndRecording:
    def test_deactivation_removes_entry(self, store):
        store.set_video_state(1, True, False)
        assert store.get_video_states()[1].active is True
        store.set_video_state(1, False, False)
        assert 1 not in store.get_video_states()

    def test_layers_survive_state_update_unless_replaced(self, store):
        layer = VideoLayer(quality="high", width=1920, height=1080, bitrate=2000)
        store.set_video_state(1, True, False)
        store.set_video_layers(1, [layer])
        store.set_video_state(1, True, True)
        state = store.get_video_states()[1]
        assert state.screen_share is True
        assert state.layers == [layer]

    def test_layers_for_inactive_user_are_dropped(self, store):
        store.set_video_layers(1, [VideoLayer(quality="low", width=320, height=180, bitrate=150)])
        assert store.get_video_states() == {}

    def test_recording_live_only_while_true(self, store):
        store.set_recording(1, True, "Admin")
        assert store.get_recording_states()[1].started_by == "Admin"
        store.set_recording(1, False, "")
        assert store.get_recording_states() == {}


class TestUnread:
    def test_increment_and_reset(self, store):
        store.increment_unread(5)
        store.increment_unread(5)
        assert store.get_unread(5) == 2
        store.reset_unread(5)
        assert store.get_unread(5) == 0
        assert store.get_unread(6) == 0


def test_reset_forgets_everything(store):
    store.set_server_name("Test")
    store.upsert_user(User(id=1, username="Alice"))
    store.apply_chat_create(_msg(1))
    store.increment_unread(3)
    store.reset()
    assert store.server_name == ""
    assert store.get_users() == []
    assert store.get_all_messages() == {}
    assert store.get_unread_counts() == {}


def test_reset_restarts_system_numbering(store):
    store.append_system(0, "Bob joined", 1)
    store.set_video_state(1, True, False)
    store.reset()
    assert store.get_video_states() == {}
    assert store.append_system(0, "Carol joined", 2).msg_id == -1
