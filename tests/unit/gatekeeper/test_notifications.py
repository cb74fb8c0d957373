"""Tests for the notification dispatcher and push channels."""

import asyncio
import uuid
from unittest.mock import AsyncMock

import httpx
import pytest

from gatekeeper.core.config import Settings
from gatekeeper.db.models import NotificationEvent, PushStatus
from gatekeeper.services.notifications import (
    NotificationDispatcher,
    build_push_channel,
    deliver_notifications,
)
from gatekeeper.services.push import (
    NullPushChannel,
    RecipientUnreachable,
    WebhookPushChannel,
)

from tests.factories import ADMIN_ID, FakePushChannel, create_subject


class SlowPushChannel(FakePushChannel):

    async def send(self, recipient_id, payload):
        await asyncio.sleep(5)


class BrokenPushChannel(FakePushChannel):

    async def send(self, recipient_id, payload):
        raise RuntimeError("gateway exploded")


def _decide(db_session, transition_engine, owner_id="alice", status="approved", reason=None, kind="vehicle_listing"):
    subject = create_subject(db_session, owner_id=owner_id, kind=kind)
    outcome = transition_engine.apply_transition(subject.id, status, reason, ADMIN_ID)
    assert outcome.committed
    return outcome.notification


class TestRecord:

    def test_notice_content(self, db_session, transition_engine):
        event = _decide(db_session, transition_engine, status="rejected", reason="expired insurance",
                        kind="booking_request")

        assert event.recipient_id == "alice"
        assert event.event_type == "subject_rejected"
        assert event.title == "Your booking request was declined"
        assert "expired insurance" in event.message
        assert event.data["status"] == "rejected"
        assert event.data["reason"] == "expired insurance"
        assert event.push_status == PushStatus.PENDING.value

    def test_sequence_follows_commit_order_per_recipient(self, db_session, transition_engine):
        a1 = _decide(db_session, transition_engine, owner_id="alice")
        b1 = _decide(db_session, transition_engine, owner_id="bob")
        a2 = _decide(db_session, transition_engine, owner_id="alice", status="rejected", reason="spam")
        a3 = _decide(db_session, transition_engine, owner_id="alice")

        assert [a1.sequence_no, a2.sequence_no, a3.sequence_no] == [1, 2, 3]
        assert b1.sequence_no == 1

    def test_list_in_sequence_order(self, db_session, transition_engine, dispatcher):
        for _ in range(3):
            _decide(db_session, transition_engine, owner_id="alice")

        items, total = dispatcher.list_for_recipient("alice")

        assert total == 3
        assert [n.sequence_no for n in items] == [1, 2, 3]

    def test_list_pagination(self, db_session, transition_engine, dispatcher):
        for _ in range(5):
            _decide(db_session, transition_engine, owner_id="alice")

        items, total = dispatcher.list_for_recipient("alice", limit=2, offset=2)

        assert total == 5
        assert [n.sequence_no for n in items] == [3, 4]


class TestReadState:

    def test_mark_read_is_idempotent(self, db_session, transition_engine, dispatcher):
        event = _decide(db_session, transition_engine)

        first = dispatcher.mark_read(event.id, "alice")
        db_session.commit()
        first_read_at = first.read_at
        second = dispatcher.mark_read(event.id, "alice")

        assert first_read_at is not None
        assert second.read_at == first_read_at
        assert dispatcher.unread_count("alice") == 0

    def test_mark_read_of_someone_elses_notice(self, db_session, transition_engine, dispatcher):
        event = _decide(db_session, transition_engine, owner_id="alice")
        assert dispatcher.mark_read(event.id, "bob") is None
        assert dispatcher.mark_read(uuid.uuid4(), "alice") is None

    def test_mark_all_read(self, db_session, transition_engine, dispatcher):
        for _ in range(3):
            _decide(db_session, transition_engine, owner_id="alice")
        _decide(db_session, transition_engine, owner_id="bob")

        assert dispatcher.mark_all_read("alice") == 3
        db_session.commit()
        assert dispatcher.mark_all_read("alice") == 0
        assert dispatcher.unread_count("alice") == 0
        assert dispatcher.unread_count("bob") == 1

        items, total = dispatcher.list_for_recipient("alice", unread_only=True)
        assert total == 0


class TestPush:

    def test_push_to_reachable_recipient(self, db_session, transition_engine, dispatcher, push_channel):
        event = _decide(db_session, transition_engine)

        status = asyncio.run(dispatcher.push(event))

        assert status == PushStatus.SENT
        assert push_channel.sent[0]["recipient_id"] == "alice"
        assert push_channel.sent[0]["sequence_no"] == event.sequence_no
        assert event.push_status == "sent"
        assert event.push_attempts == 1
        assert event.pushed_at is not None

    def test_unreachable_recipient_is_skipped(self, db_session, transition_engine, settings):
        event = _decide(db_session, transition_engine)
        channel = FakePushChannel(reachable=False)

        status = asyncio.run(NotificationDispatcher(db_session, channel, settings).push(event))

        assert status == PushStatus.SKIPPED
        assert channel.sent == []
        # Still retrievable through the store
        items, _ = NotificationDispatcher(db_session, channel, settings).list_for_recipient("alice")
        assert [n.id for n in items] == [event.id]

    def test_timeout_marks_failed(self, db_session, transition_engine):
        event = _decide(db_session, transition_engine)
        dispatcher = NotificationDispatcher(
            db_session, SlowPushChannel(), Settings(push_timeout_seconds=0.01)
        )

        status = asyncio.run(dispatcher.push(event))

        assert status == PushStatus.FAILED
        assert "timed out" in event.push_error

    def test_channel_error_never_escapes(self, db_session, transition_engine, settings):
        event = _decide(db_session, transition_engine)

        status = asyncio.run(NotificationDispatcher(db_session, BrokenPushChannel(), settings).push(event))

        assert status == PushStatus.FAILED
        assert event.push_error == "gateway exploded"
        assert db_session.get(NotificationEvent, event.id).subject.status == "approved"

    def test_recipient_unreachable_from_channel(self, db_session, transition_engine, settings):
        event = _decide(db_session, transition_engine)
        channel = FakePushChannel()
        channel.send = AsyncMock(side_effect=RecipientUnreachable("alice"))

        status = asyncio.run(NotificationDispatcher(db_session, channel, settings).push(event))

        assert status == PushStatus.SKIPPED

    def test_deliver_notifications_uses_its_own_session(self, db_session, session_factory, transition_engine):
        events = [_decide(db_session, transition_engine, owner_id="alice") for _ in range(2)]
        channel = FakePushChannel()

        summary = asyncio.run(deliver_notifications(
            [e.id for e in events], session_factory=session_factory, channel=channel
        ))

        assert summary == {"sent": 2}
        assert [p["sequence_no"] for p in channel.sent] == [1, 2]


class TestPushChannels:

    def test_default_channel_without_webhook(self):
        assert isinstance(build_push_channel(Settings(push_webhook_url=None)), NullPushChannel)

    def test_webhook_channel_when_configured(self):
        channel = build_push_channel(Settings(push_webhook_url="http://gateway.local/push"))
        assert isinstance(channel, WebhookPushChannel)

    def test_null_channel_is_never_reachable(self):
        assert asyncio.run(NullPushChannel().is_reachable("alice")) is False

    def test_webhook_posts_payload(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["body"] = request.content
            return httpx.Response(202)

        async def run():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                channel = WebhookPushChannel("http://gateway.local/push", client=client)
                await channel.send("alice", {"title": "hello"})

        asyncio.run(run())
        assert b'"recipient_id":"alice"' in captured["body"].replace(b" ", b"")

    def test_webhook_gone_means_unreachable(self):
        async def run():
            transport = httpx.MockTransport(lambda request: httpx.Response(410))
            async with httpx.AsyncClient(transport=transport) as client:
                channel = WebhookPushChannel("http://gateway.local/push", client=client)
                await channel.send("alice", {"title": "hello"})

        with pytest.raises(RecipientUnreachable):
            asyncio.run(run())

    def test_webhook_payload_template(self):
        channel = WebhookPushChannel(
            "http://gateway.local/push",
            payload_template='{"to": "{{ recipient_id }}", "text": "{{ title }}"}',
        )
        assert channel._render("alice", {"title": "Approved"}) == {"to": "alice", "text": "Approved"}
