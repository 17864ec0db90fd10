from replication_monitor.services.models import HealthSnapshot, HealthState
from replication_monitor.services.publisher import SnapshotPublisher


def test_every_subscriber_receives_every_snapshot_in_order(logger):
    publisher = SnapshotPublisher(logger)
    first, second = [], []
    publisher.subscribe(first.append)
    publisher.subscribe(second.append)

    snapshots = [HealthSnapshot(status=HealthState.HEALTHY), HealthSnapshot(status=HealthState.CRITICAL)]
    for snapshot in snapshots:
        publisher.publish(snapshot)

    assert first == snapshots
    assert second == snapshots
    assert publisher.latest() is snapshots[-1]


def test_closed_subscription_stops_delivery(logger):
    publisher = SnapshotPublisher(logger)
    received = []

    with publisher.subscribe(received.append) as subscription:
        publisher.publish(HealthSnapshot.empty())

    publisher.publish(HealthSnapshot.empty())

    assert len(received) == 1
    assert not subscription.active
    assert publisher.subscriber_count == 0


def test_failing_subscriber_does_not_block_others(logger):
    publisher = SnapshotPublisher(logger)
    received = []

    def broken(snapshot):
        raise RuntimeError("dashboard disconnected")

    publisher.subscribe(broken)
    publisher.subscribe(received.append)
    publisher.publish(HealthSnapshot.empty())

    assert len(received) == 1


def test_unsubscribing_during_publish_keeps_neighbours(logger):
    publisher = SnapshotPublisher(logger)
    received = []
    holder = {}

    def once(snapshot):
        holder["subscription"].close()

    holder["subscription"] = publisher.subscribe(once)
    publisher.subscribe(received.append)
    publisher.publish(HealthSnapshot.empty())

    assert len(received) == 1
    assert publisher.subscriber_count == 1
