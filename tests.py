
import json
import logging
import threading
import time

import pytest

from accounts import Account, AccountCache
from cache import LRUIndex, RankedCache, replace_value
from protocol import ProtocolHandler
from ranking import RankingIndex


def filled(capacity=4, top_capacity=3):
    c = RankedCache(capacity, top_capacity)
    for k in (1, 2, 3, 4):
        c.put(k, k * 100)
    return c


def test_basic():
    c = RankedCache(4, 3)
    c.put("a", 1)
    assert c.get("a") == 1
    assert c.get("b") is None
    assert c.hits() == 1
    assert c.stats()["misses"] == 1


def test_top_n_and_lru_eviction():
    c = filled()
    assert c.top_n(3) == [4, 3, 2]
    assert c.top_values(3) == [400, 300, 200]
    c.put(5, 500)
    assert c.get(1) is None  # first inserted is LRU
    assert c.top_n(3) == [5, 4, 3]
    assert len(c) == 4


def test_eviction_follows_access_order():
    c = filled()
    for k in (4, 1, 2, 3):
        assert c.get(k) is not None
    c.put(5, 500)
    assert c.get(4) is None
    for k in (1, 2, 3, 5):
        assert c.get(k) is not None
    # 400 left the ranking with its key
    assert c.top_n(3) == [5, 3, 2]


def test_peek_and_contains_do_not_touch_recency():
    c = filled()
    assert c.primary.peek(1) == 100
    assert 1 in c
    assert c.hits() == 0
    c.put(5, 500)
    assert 1 not in c


def test_keys_most_recent_first():
    idx = LRUIndex(3, replace_value)
    for k in "abc":
        idx.put(k, k)
    idx.get("a")
    assert idx.keys() == ["a", "c", "b"]


def test_capacity_and_ranking_bounds():
    c = RankedCache(5, 2)
    for i in range(50):
        c.put(i % 13, (i * 37) % 101)
        assert len(c) <= 5
        assert len(c.ranking) <= 2
        for key in c.top_n(2):
            assert key in c


def test_top_n_rejects_more_than_top_capacity():
    c = filled()
    with pytest.raises(ValueError):
        c.top_n(4)
    assert c.top_n(0) == []


def test_invalid_capacities():
    with pytest.raises(ValueError):
        RankedCache(0, 1)
    with pytest.raises(ValueError):
        RankedCache(2, 0)


def test_top_capacity_above_capacity_is_logged(caplog):
    with caplog.at_level(logging.WARNING, logger="cache"):
        RankedCache(2, 5)
    assert "cache.top_capacity_exceeds_capacity" in caplog.text


def test_replacing_immutable_value_reranks():
    c = RankedCache(4, 3)
    c.put("a", 1)
    c.put("a", 2)
    assert c.get("a") == 2
    assert c.ranking.items() == [(2, "a")]


def test_failed_update_keeps_previous_rank():
    def non_negative(current, incoming):
        if incoming < 0:
            raise ValueError("negative value")
        return incoming

    c = RankedCache(4, 3, update=non_negative)
    c.put("a", 10)
    with pytest.raises(ValueError):
        c.put("a", -1)
    assert c.get("a") == 10
    assert c.ranking.items() == [(10, "a")]
    assert c.top_n(1) == ["a"]


def test_top_values_skips_keys_missing_from_lru():
    c = RankedCache(2, 2)
    c.put("a", 1)
    c.put("b", 2)
    c.primary.put("c", 3)  # evicts "a" without the ranking cascade
    assert c.top_n(2) == ["b", "a"]
    assert c.top_values(2) == [2]


def test_overlapping_puts_on_one_key_rank_the_stored_value():
    entered, release = threading.Event(), threading.Event()

    def slow_rank(v):
        if v == 1:
            entered.set()
            release.wait(5)
        return v

    c = RankedCache(4, 3, rank_key=slow_rank)
    c.put("j", 1.5)
    first = threading.Thread(target=c.put, args=("k", 1))
    first.start()
    assert entered.wait(5)
    second = threading.Thread(target=c.put, args=("k", 2))
    second.start()
    time.sleep(0.05)
    release.set()
    first.join()
    second.join()
    assert c.get("k") == 2
    assert c.ranking.rank_of("k") == 2
    assert c.top_values(2) == [2, 1.5]


def test_equal_ranks_collapse_to_latest_writer():
    c = RankedCache(4, 3)
    c.put("a", 10)
    c.put("b", 10)
    assert c.top_n(1) == ["b"]
    assert "a" not in c.ranking
    assert len(c.ranking) == 1


def test_eviction_cascade_only_for_tracked_key():
    c = RankedCache(2, 2)
    c.put("a", 10)
    c.put("b", 10)  # takes the rank slot from "a"
    c.put("c", 5)   # evicts "a", which no longer holds a slot
    assert "a" not in c
    assert c.top_n(2) == ["b", "c"]


def test_ranking_index_upsert_paths():
    r = RankingIndex(2)
    assert r.upsert(5, "a")
    assert r.upsert(7, "b")
    assert not r.upsert(1, "c")  # below the minimum of a full index
    assert r.top_n(2) == ["b", "a"]
    assert r.upsert(5, "d")  # same rank changes hands
    assert r.top_n(2) == ["b", "d"]
    assert "a" not in r
    assert r.upsert(6, "e")  # displaces the minimum
    assert r.top_n(2) == ["b", "e"]
    assert r.rank_of("d") is None


def test_ranking_index_key_moves_rank():
    r = RankingIndex(3)
    r.upsert(1, "a")
    r.upsert(9, "a")
    assert r.items() == [(9, "a")]
    assert r.discard("a") == 9
    assert r.discard("a") is None
    assert len(r) == 0


def test_ranking_index_remove():
    r = RankingIndex(2)
    r.upsert(7, "b")
    assert r.remove(7) == "b"
    assert r.remove(99) is None
    assert "b" not in r


def test_ranking_index_rejects_bad_args():
    with pytest.raises(ValueError):
        RankingIndex(0)
    r = RankingIndex(2)
    with pytest.raises(ValueError):
        r.top_n(3)
    with pytest.raises(ValueError):
        r.top_n(-1)


def test_notifications_on_every_put():
    c = RankedCache(4, 3)
    seen = []
    c.subscribe(seen.append)
    c.put("a", 1)
    c.put("b", 2)
    c.put("b", 2)  # no change still notifies
    assert seen == [1, 2, 2]


def test_observers_called_in_subscription_order():
    c = RankedCache(4, 3)
    order = []
    c.subscribe(lambda v: order.append(("first", v)))
    c.subscribe(lambda v: order.append(("second", v)))
    c.put("a", 1)
    assert order == [("first", 1), ("second", 1)]


def test_failing_observer_is_isolated(caplog):
    c = RankedCache(4, 3)
    seen = []

    def broken(value):
        raise RuntimeError("boom")

    c.subscribe(broken)
    c.subscribe(seen.append)
    with caplog.at_level(logging.ERROR, logger="notify"):
        c.put("a", 1)
    assert seen == [1]
    assert c.get("a") == 1
    assert c.stats()["notify_errors"] == 1
    assert "notify.observer_failed" in caplog.text


def test_cancelled_subscription_stops_notifications():
    c = RankedCache(4, 3)
    seen = []
    sub = c.subscribe(seen.append)
    c.put("a", 1)
    sub.cancel()
    sub.cancel()
    c.put("a", 2)
    assert seen == [1]
    assert c.stats()["subscribers"] == 0


def test_subscribe_requires_callable():
    c = RankedCache(4, 3)
    with pytest.raises(TypeError):
        c.subscribe("not callable")


def test_concurrent_hit_accounting():
    c = RankedCache(64, 3)
    counts = [0] * 10

    def worker(n):
        for j in range(4):
            c.put(j, j * 100)
            if c.get(j) is not None:
                counts[n] += 1

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sum(counts) == 40
    assert c.hits() == 40


def test_concurrent_puts_keep_top_values():
    c = RankedCache(1000, 5)

    def worker(n):
        for j in range(50):
            key = n * 50 + j
            c.put(key, key)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(c) == 400
    assert c.top_n(5) == [399, 398, 397, 396, 395]


# --- accounts ---

def test_account_lookup_and_hit_count():
    accounts = AccountCache(4, 3)
    a1, a2 = Account(1, 100), Account(2, 200)
    accounts.put_account(a1)
    accounts.put_account(a2)
    assert accounts.get_account_by_id(1) == a1
    assert accounts.get_account_by_id(2) == a2
    assert accounts.get_account_by_id(3) is None
    assert accounts.get_account_by_id_hit_count() == 2


def test_top_accounts_by_balance():
    accounts = AccountCache(4, 3)
    batch = [Account(i, i * 100) for i in (1, 2, 3, 4)]
    for a in batch:
        accounts.put_account(a)
    assert accounts.get_top_accounts_by_balance() == [batch[3], batch[2], batch[1]]


def test_account_merge_keeps_identity():
    accounts = AccountCache(4, 3)
    a1 = Account(1, 100)
    accounts.put_account(a1)
    stored = accounts.put_account(Account(1, 900))
    assert stored is a1
    assert a1.balance == 900
    assert accounts.cache.ranking.items() == [((900, 1), 1)]


def test_mutated_account_is_reranked():
    accounts = AccountCache(4, 3)
    updates = []
    accounts.subscribe_for_account_updates(updates.append)
    a1, a2 = Account(1, 100), Account(2, 200)
    accounts.put_account(a1)
    accounts.put_account(a2)
    a1.balance = 250
    accounts.put_account(a1)
    assert len(updates) == 3
    assert updates[-1] is a1
    assert accounts.cache.ranking.items() == [((250, 1), 1), ((200, 2), 2)]


def test_equal_balances_both_ranked():
    accounts = AccountCache(4, 3)
    accounts.put_account(Account(1, 100))
    accounts.put_account(Account(2, 100))
    assert [a.id for a in accounts.get_top_accounts_by_balance(2)] == [2, 1]


# --- protocol ---

def make_handler(capacity=4, top_capacity=3):
    out = []
    accounts = AccountCache(capacity, top_capacity)
    return ProtocolHandler(accounts, out.append), out


def test_protocol_put_get():
    h, out = make_handler()
    h.on_data(b"PUT 1 100\nGET 1\nGET 2\nHITS\n")
    assert out == [b"OK\n", b"ACCOUNT 1 100\n", b"NOT_FOUND\n", b"HITS 1\n"]


def test_protocol_split_reads():
    h, out = make_handler()
    h.on_data(b"PU")
    h.on_data(b"T 7 70")
    assert out == []
    h.on_data(b"\n\nget 7\n")
    assert out == [b"OK\n", b"ACCOUNT 7 70\n"]


def test_protocol_top():
    h, out = make_handler()
    h.on_data(b"TOP 3\n")
    for i in (1, 2, 3, 4):
        h.on_data(f"PUT {i} {i * 100}\n".encode())
    out.clear()
    h.on_data(b"TOP 3\nTOP 4\n")
    assert out[0] == b"TOP 4:400 3:300 2:200\n"
    assert out[1].startswith(b"ERR ")


def test_protocol_errors():
    h, out = make_handler()
    h.on_data(b"PUT x 1\nGET\nTOP many\nFLUSH\n")
    assert out == [
        b"ERR invalid PUT args\n",
        b"ERR unknown or invalid command\n",
        b"ERR invalid TOP args\n",
        b"ERR unknown or invalid command\n",
    ]


def test_protocol_stats():
    h, out = make_handler()
    h.on_data(b"PUT 1 100\nSTATS\n")
    prefix, body = out[1].split(b" ", 1)
    assert prefix == b"STATS"
    stats = json.loads(body)
    assert stats["keys"] == 1
    assert stats["ranked"] == 1
    assert stats["top_capacity"] == 3


def test_protocol_watch():
    accounts = AccountCache(4, 3)
    watched, other = [], []
    watcher = ProtocolHandler(accounts, watched.append)
    writer = ProtocolHandler(accounts, other.append)
    watcher.on_data(b"WATCH\n")
    writer.on_data(b"PUT 3 30\n")
    assert watched == [b"WATCHING\n", b"UPDATE 3 30\n"]
    watcher.close()
    writer.on_data(b"PUT 3 31\n")
    assert watched[-1] == b"UPDATE 3 30\n"
    assert accounts.stats()["subscribers"] == 0


if __name__ == "__main__":
    raise SystemExit(pytest.main([__file__]))
