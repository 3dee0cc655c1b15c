from prometheus_client import CollectorRegistry

from mail_relay.prometheus import RelayMetrics


def test_metrics_use_webapp_labels():
    metrics = RelayMetrics(registry=CollectorRegistry())
    metrics.inc_sent(0, 12)
    metrics.inc_error(2)
    metrics.inc_quota_exceeded(2)
    metrics.set_exhausted(1)

    output = metrics.generate_latest().decode()

    assert 'mr_sent_total{webapp="1"} 1.0' in output
    assert 'mr_webapp_usage{webapp="1"} 12.0' in output
    assert 'mr_errors_total{webapp="3"} 1.0' in output
    assert 'mr_quota_exceeded_total{webapp="3"} 1.0' in output
    assert "mr_exhausted_webapps 1.0" in output


def test_reset_usage_drops_gauges_but_keeps_counters():
    metrics = RelayMetrics()
    metrics.inc_sent(1, 40)
    metrics.set_exhausted(2)

    metrics.reset_usage()
    output = metrics.generate_latest().decode()

    assert "mr_webapp_usage{" not in output
    assert "mr_exhausted_webapps 0.0" in output
    assert 'mr_sent_total{webapp="2"} 1.0' in output


def test_separate_registries_do_not_collide():
    RelayMetrics()
    RelayMetrics()
