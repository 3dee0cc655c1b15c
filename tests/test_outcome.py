from mail_relay.ledger import UsageLedger
from mail_relay.outcome import Delivered, OtherFailure, QuotaExceeded, apply_outcome


def test_delivered_counts_and_releases_slot():
    ledger = UsageLedger(2)
    ledger.reserve(0)

    assert apply_outcome(ledger, 0, Delivered()) == 1
    assert ledger.in_flight == {}
    assert not ledger.is_exhausted(0)

    ledger.reserve(0)
    assert apply_outcome(ledger, 0, Delivered()) == 2
    assert ledger.is_exhausted(0)


def test_quota_exceeded_exhausts_immediately():
    ledger = UsageLedger(1400)
    ledger.usage[0] = 3
    ledger.reserve(0)

    assert apply_outcome(ledger, 0, QuotaExceeded("Service invoked too many times")) == 3
    assert ledger.is_exhausted(0)
    assert ledger.in_flight == {}


def test_other_failure_leaves_ledger_untouched():
    ledger = UsageLedger(10)
    ledger.usage[0] = 4
    ledger.reserve(0)

    assert apply_outcome(ledger, 0, OtherFailure("HTTP 500", status=500)) == 4
    assert ledger.usage == {0: 4}
    assert ledger.exhausted == set()
    assert ledger.in_flight == {}
