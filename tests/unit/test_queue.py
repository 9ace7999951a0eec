import pytest
from core.queue import (InMemoryNotificationQueue, RedisNotificationQueue, build_job, dispatch_notification,
    SEND_VERIFICATION_EMAIL, SEND_WELCOME_EMAIL)


def test_build_job_shape():
    job = build_job(SEND_WELCOME_EMAIL, {"email": "a@example.com", "name": "A"})

    assert job["kind"] == SEND_WELCOME_EMAIL
    assert job["payload"] == {"email": "a@example.com", "name": "A"}
    assert job["id"]
    assert job["enqueued_at"]


def test_build_job_unknown_kind():
    with pytest.raises(ValueError):
        build_job("send-sms", {})


def test_jobs_are_delivered_oldest_first():
    queue = InMemoryNotificationQueue()
    first = queue.enqueue(SEND_VERIFICATION_EMAIL, {"email": "a@example.com"})
    second = queue.enqueue(SEND_WELCOME_EMAIL, {"email": "b@example.com"})

    assert [job["id"] for job in queue.jobs()] == [first, second]
    assert [job["id"] for job in queue.jobs(SEND_WELCOME_EMAIL)] == [second]
    assert queue.dequeue(timeout=0)["id"] == first
    assert queue.dequeue(timeout=0)["id"] == second
    assert queue.dequeue(timeout=0) is None


def test_queue_is_bounded():
    queue = InMemoryNotificationQueue(max_length=2)
    for i in range(5):
        queue.enqueue(SEND_WELCOME_EMAIL, {"email": f"user{i}@example.com"})

    assert len(queue) == 2
    assert [job["payload"]["email"] for job in queue.jobs()] == ["user3@example.com", "user4@example.com"]


class BrokenQueue:
    def enqueue(self, kind, payload):
        raise ConnectionError("queue down")


def test_dispatch_notification_never_raises():
    assert dispatch_notification(BrokenQueue(), SEND_WELCOME_EMAIL, {"email": "a@example.com"}) is None


def test_dispatch_notification_logs_masked_payload(caplog):
    dispatch_notification(BrokenQueue(), SEND_VERIFICATION_EMAIL,
                          {"email": "a@example.com", "token": "supersecretvalue123"})

    record = next(r for r in caplog.records if "Failed to enqueue" in r.getMessage())
    assert record.payload["token"] == "supersec..."
    assert "supersecretvalue123" not in str(record.payload)


def test_dispatch_notification_returns_job_id():
    queue = InMemoryNotificationQueue()

    job_id = dispatch_notification(queue, SEND_WELCOME_EMAIL, {"email": "a@example.com"})

    assert queue.jobs()[0]["id"] == job_id


def test_redis_queue_delivers_oldest_first(redis_client):
    queue = RedisNotificationQueue("redis://test", "email", max_length=10, client=redis_client)
    first = queue.enqueue(SEND_VERIFICATION_EMAIL, {"email": "a@example.com"})
    second = queue.enqueue(SEND_WELCOME_EMAIL, {"email": "b@example.com"})

    assert len(queue) == 2
    assert queue.dequeue(timeout=1)["id"] == first
    job = queue.dequeue(timeout=1)
    assert job["id"] == second
    assert job["kind"] == SEND_WELCOME_EMAIL
    assert job["payload"] == {"email": "b@example.com"}
    assert len(queue) == 0


def test_redis_queue_is_bounded(redis_client):
    queue = RedisNotificationQueue("redis://test", "email", max_length=2, client=redis_client)
    for i in range(5):
        queue.enqueue(SEND_WELCOME_EMAIL, {"email": f"user{i}@example.com"})

    assert len(queue) == 2
    assert queue.dequeue(timeout=1)["payload"]["email"] == "user3@example.com"
    assert queue.dequeue(timeout=1)["payload"]["email"] == "user4@example.com"


def test_redis_queue_uses_named_list(redis_client):
    queue = RedisNotificationQueue("redis://test", "email", max_length=10, client=redis_client)

    queue.enqueue(SEND_WELCOME_EMAIL, {"email": "a@example.com"})

    assert redis_client.llen("queue:email") == 1
