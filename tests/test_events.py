import json
from unittest import mock

import fakeredis
import redis

from conftest import dashboard_body
from dashboard_operator.events import CHANNEL, EventPublisher, stream_key
from dashboard_operator.models import ObjectIdentity
from dashboard_operator.reconciler import DashboardReconciler

IDENTITY = ObjectIdentity("monitoring", "team-overview")


def test_published_events_are_readable_in_order():
    publisher = EventPublisher(fakeredis.FakeRedis(decode_responses=True))

    publisher.publish(IDENTITY, "REMOTE_CREATED", "Remote dashboard d1 created", "Pending")
    publisher.publish(IDENTITY, "PROVISIONED", "Dashboard d1 provisioned", "Provisioned")

    history = publisher.history(IDENTITY)
    assert [e["event"] for e in history] == ["REMOTE_CREATED", "PROVISIONED"]
    assert history[1]["phase"] == "Provisioned"
    assert stream_key(IDENTITY) == "dashboard:events:monitoring/team-overview"


def test_events_are_broadcast_on_channel():
    client = fakeredis.FakeRedis(decode_responses=True)
    pubsub = client.pubsub()
    pubsub.subscribe(CHANNEL)
    pubsub.get_message(timeout=1)  # subscribe confirmation

    EventPublisher(client).publish(IDENTITY, "FINALIZER_REMOVED", "Finalizer removed", "Deleting")

    message = pubsub.get_message(timeout=1)
    assert json.loads(message["data"])["dashboard"] == "monitoring/team-overview"


def test_disabled_publisher_is_a_no_op():
    publisher = EventPublisher(None)

    publisher.publish(IDENTITY, "PROVISIONED", "ok")

    assert publisher.enabled is False
    assert publisher.history(IDENTITY) == []


def test_redis_failure_does_not_propagate():
    client = mock.Mock()
    client.xadd.side_effect = redis.ConnectionError("down")
    client.xrange.side_effect = redis.ConnectionError("down")
    publisher = EventPublisher(client)

    publisher.publish(IDENTITY, "PROVISIONED", "ok")
    assert publisher.history(IDENTITY) == []


def test_from_url_without_url_is_disabled():
    assert EventPublisher.from_url("").enabled is False


def test_reconciler_records_lifecycle_events(store, remote, settings):
    publisher = EventPublisher(fakeredis.FakeRedis(decode_responses=True))
    reconciler = DashboardReconciler(store, remote, events=publisher, settings=settings)
    identity = store.put(dashboard_body())

    reconciler.reconcile(identity)
    store.request_deletion(identity)
    reconciler.reconcile(identity)

    assert [e["event"] for e in publisher.history(identity)] == [
        "REMOTE_CREATED", "PROVISIONED", "REMOTE_DELETED", "FINALIZER_REMOVED",
    ]
