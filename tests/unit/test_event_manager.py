from raffle.event_manager import ActivityStore, EventEmitter
from raffle.models import ENTERED, REQUESTED_RANDOMNESS, WINNER_PICKED


def test_emitter_delivers_in_registration_order():
    emitter = EventEmitter()
    calls = []
    emitter.on("x", lambda payload: calls.append(("first", payload)))
    emitter.on("x", lambda payload: calls.append(("second", payload)))

    emitter.emit("x", 1)

    assert calls == [("first", 1), ("second", 1)]


def test_once_listener_is_removed_after_delivery():
    emitter = EventEmitter()
    calls = []
    emitter.once("x", calls.append)

    emitter.emit("x", 1)
    emitter.emit("x", 2)

    assert calls == [1]
    assert emitter.listener_count("x") == 0


def test_off_unknown_listener_returns_false():
    emitter = EventEmitter()
    assert emitter.off("x", print) is False


def test_failing_listener_does_not_stop_others():
    emitter = EventEmitter()
    calls = []

    def broken(payload):
        raise RuntimeError("bad listener")

    emitter.on("x", broken)
    emitter.on("x", calls.append)
    emitter.emit("x", "payload")

    assert calls == ["payload"]


def test_store_tracks_a_round(raffle, store, coordinator, accounts, entrance_fee, start, interval):
    updates = []
    store.add_listener("round_update", updates.append)
    history_updates = []
    store.add_listener("history_update", history_updates.append)

    raffle.enter(accounts[0], entrance_fee, now=start)
    raffle.enter(accounts[1], entrance_fee, now=start)
    request_id = raffle.perform_upkeep(start + interval)
    coordinator.fulfill_random_words(request_id, [1], now=start + interval + 1)

    feed = store.get_live_feed()
    assert [item.event_type for item in feed] == [ENTERED, ENTERED, REQUESTED_RANDOMNESS, WINNER_PICKED]
    assert feed[-1].details["winner"] == accounts[1]

    history = store.get_round_history()
    assert len(history) == 1
    assert history[0].round_id == 1
    assert history[0].winner == accounts[1]
    assert history[0].prize == 2 * entrance_fee
    assert history[0].participant_count == 2

    assert len(updates) == 4
    assert updates[-1]["stateLabel"] == "OPEN"
    assert updates[-1]["roundId"] == 2
    assert history_updates[-1]["rounds"][0]["winner"] == accounts[1]


def test_store_attach_is_idempotent(raffle, store, account, entrance_fee):
    store.attach(raffle)
    raffle.enter(account, entrance_fee)
    assert len(store.get_live_feed()) == 1


def test_store_capacities_and_clear(raffle, store, account, entrance_fee):
    for _ in range(12):
        raffle.enter(account, entrance_fee)
    assert len(store.get_live_feed()) == 10
    assert len(store.get_live_feed(limit=3)) == 3

    store.set_feed_capacity(4)
    assert len(store.get_live_feed()) == 4

    store.clear_all_data()
    assert store.get_live_feed() == []
    assert store.get_round_history() == []


def test_history_capacity_keeps_latest():
    store = ActivityStore(history_capacity=2)
    store.set_history_capacity(1)
    store.add_live_feed(event_type="note", message="hello", details={"roundId": 3}, event_time=7)

    item = store.get_live_feed()[0]
    assert item.get_item_id() == "3-7-note"
    assert store.serialize_feed_item(item)["message"] == "hello"
