import json
import threading
from unittest.mock import MagicMock

import redis

from contextualiser.notifications import Notification, RedisNotifier


def test_notification_defaults_to_the_progress_channel():
    assert Notification("Reading").channel == "contextualiser"


def test_publish_targets_the_user_channel():
    client = MagicMock()
    client.publish.return_value = 1

    reached = RedisNotifier(client=client).publish("u1", "progress", {"message": "Reading"})

    assert reached == 1
    client.publish.assert_called_once_with("contextualiser:u1:progress", json.dumps({"message": "Reading"}))


def test_notify_publishes_in_background():
    done = threading.Event()
    client = MagicMock()
    client.publish.side_effect = lambda topic, data: done.set()

    RedisNotifier(client=client).notify("u1", "progress", {"message": "Reading"})

    assert done.wait(timeout=2)


def test_notify_does_not_raise_when_redis_is_down():
    done = threading.Event()
    client = MagicMock()

    def unavailable(topic, data):
        done.set()
        raise redis.ConnectionError("down")

    client.publish.side_effect = unavailable

    RedisNotifier(client=client).notify("u1", "progress", {"message": "Reading"})

    assert done.wait(timeout=2)
