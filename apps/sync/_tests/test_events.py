from unittest.mock import MagicMock

from django.test import SimpleTestCase

from apps.sync.events import EventBroadcaster, SyncEvent


class EventBroadcasterTests(SimpleTestCase):
    def setUp(self):
        self.broadcaster = EventBroadcaster()

    def test_publish_reaches_every_subscriber(self):
        first, second = [], []
        self.broadcaster.subscribe(first.append)
        self.broadcaster.subscribe(second.append)

        event = self.broadcaster.publish("sync_started", runId="abc")

        self.assertEqual(first, [event])
        self.assertEqual(second, [event])
        self.assertEqual(event.payload, {"runId": "abc"})

    def test_broken_subscriber_is_pruned(self):
        received = []
        broken = MagicMock(side_effect=BrokenPipeError("client went away"))
        self.broadcaster.subscribe(broken)
        self.broadcaster.subscribe(received.append)

        delivered = self.broadcaster.broadcast(SyncEvent(kind="sync_started"))
        self.broadcaster.publish("sync_completed")

        self.assertEqual(delivered, 1)
        self.assertEqual(broken.call_count, 1)
        self.assertEqual([e.kind for e in received], ["sync_started", "sync_completed"])
        self.assertEqual(self.broadcaster.subscriber_count, 1)

    def test_publish_without_subscribers(self):
        event = self.broadcaster.publish("sync_started")
        self.assertEqual(event.kind, "sync_started")

    def test_unsubscribe(self):
        received = []
        self.broadcaster.subscribe(received.append)
        self.broadcaster.unsubscribe(received.append)

        self.broadcaster.publish("sync_started")

        self.assertEqual(received, [])

    def test_wire_shape(self):
        event = SyncEvent(kind="data_source_sync", payload={"dataSourceId": 3})

        message = event.to_message()

        self.assertEqual(message["type"], "data_source_sync")
        self.assertEqual(message["data"]["dataSourceId"], 3)
        self.assertEqual(message["data"]["timestamp"], event.timestamp.isoformat())


class EventStreamTests(SimpleTestCase):
    def setUp(self):
        self.broadcaster = EventBroadcaster()

    def test_welcome_then_events(self):
        stream = self.broadcaster.open_stream()
        self.broadcaster.publish("sync_started")

        self.assertEqual(stream.get(timeout=0).kind, "welcome")
        self.assertEqual(stream.get(timeout=0).kind, "sync_started")
        self.assertIsNone(stream.get(timeout=0))

    def test_full_queue_drops_for_that_stream_only(self):
        slow = self.broadcaster.open_stream(maxsize=2)
        received = []
        self.broadcaster.subscribe(received.append)

        for _ in range(3):
            self.broadcaster.publish("data_source_sync")

        self.assertEqual(slow.dropped, 2)
        self.assertEqual(len(received), 3)
        self.assertEqual(self.broadcaster.subscriber_count, 2)

    def test_close_unsubscribes(self):
        stream = self.broadcaster.open_stream()

        stream.close()

        self.assertEqual(self.broadcaster.subscriber_count, 0)
