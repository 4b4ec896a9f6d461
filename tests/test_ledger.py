from zenhanzi.ledger import MasteryLedger
from zenhanzi.models import HanziData


def item(char):
    return HanziData(char, "", "")


def test_failure_queues_once():
    ledger = MasteryLedger()
    assert ledger.record_failure(item("我")) is True
    assert ledger.record_failure(item("我")) is False
    assert ledger.retry_count == 1


def test_mastery_removes_from_retry():
    ledger = MasteryLedger()
    ledger.record_failure(item("我"))
    ledger.record_mastery("我", 2)
    assert not ledger.in_retry("我")
    assert ledger.level_of("我") == 2


def test_failure_unmasters():
    ledger = MasteryLedger()
    ledger.record_mastery("我", 1)
    ledger.record_failure(item("我"))
    assert not ledger.is_mastered("我")
    assert ledger.in_retry("我")


def test_last_mastery_level_wins():
    ledger = MasteryLedger()
    ledger.record_mastery("一", 1)
    ledger.record_mastery("一", 99)
    assert ledger.level_of("一") == 99
    assert ledger.mastered_count() == 1


def test_retry_queue_is_fifo():
    ledger = MasteryLedger()
    for c in "一二三":
        ledger.record_failure(item(c))
    assert [i.char for i in ledger.retry_queue_snapshot()] == ["一", "二", "三"]


def test_load_dedupes_and_keeps_sets_disjoint():
    ledger = MasteryLedger()
    ledger.load({"我": 1}, [item("你"), item("你"), item("我")])
    assert [i.char for i in ledger.retry_queue_snapshot()] == ["你"]
    assert ledger.mastered_snapshot() == {"我": 1}


def test_mastered_count_with_predicate():
    ledger = MasteryLedger()
    ledger.record_mastery("一", 1)
    ledger.record_mastery("二", 99)
    assert ledger.mastered_count(lambda glyph, level: level == 99) == 1


def test_snapshots_are_copies():
    ledger = MasteryLedger()
    ledger.record_mastery("一", 1)
    ledger.mastered_snapshot()["二"] = 1
    ledger.retry_queue_snapshot().append(item("三"))
    assert ledger.mastered_count() == 1
    assert ledger.retry_count == 0


def test_listeners_are_notified_until_unsubscribed():
    ledger = MasteryLedger()
    calls = []
    unsubscribe = ledger.subscribe(lambda l: calls.append(l.mastered_count()))

    ledger.record_mastery("一", 1)
    ledger.remove_from_retry("不在")        # no change, no notification
    unsubscribe()
    ledger.record_mastery("二", 1)
    assert calls == [1]
