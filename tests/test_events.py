from cinder.events import EventHub, EventKind, SyncEvent


def test_subscribe_and_unsubscribe():
    hub = EventHub()
    received = []
    unsubscribe = hub.subscribe(received.append)

    hub.emit(SyncEvent(kind=EventKind.FILE_LOADED, name="ping"))
    unsubscribe()
    hub.emit(SyncEvent(kind=EventKind.FILE_RETIRED, name="ping"))

    assert [event.kind for event in received] == [EventKind.FILE_LOADED]
    assert len(hub.history()) == 2


def test_failing_listener_does_not_block_others():
    hub = EventHub()
    received = []

    def _broken(_event):
        raise RuntimeError("listener bug")

    hub.subscribe(_broken)
    hub.subscribe(received.append)
    hub.emit(SyncEvent(kind=EventKind.STORE_DEGRADED, detail="disk full"))

    assert len(received) == 1


def test_history_is_bounded_and_filterable():
    hub = EventHub(history_size=3)
    for idx in range(5):
        hub.emit(SyncEvent(kind=EventKind.FILE_LOADED, name=f"cmd{idx}"))
    hub.emit(SyncEvent(kind=EventKind.PARTITION_FAILED, partition="global"))

    assert [event.name for event in hub.history(EventKind.FILE_LOADED)] == ["cmd3", "cmd4"]
    assert hub.history(EventKind.PARTITION_FAILED)[0].to_dict()["partition"] == "global"
