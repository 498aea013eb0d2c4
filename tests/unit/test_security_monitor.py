"""
Unit tests for portal/services/security_monitor.py

  - IP brute force: 10 failures from one IP within 15 minutes
  - Credential stuffing: 5 distinct accounts from one IP
  - Account brute force: 5 failures against one account
  - Each alert fires once per window; sweeping forgets idle records
"""

from datetime import datetime, timedelta

from portal.services.security_monitor import (
    ALERT_ACCOUNT_BRUTE_FORCE,
    ALERT_CREDENTIAL_STUFFING,
    ALERT_IP_BRUTE_FORCE,
    SecurityMonitor,
)

NOW = datetime(2026, 3, 1, 12, 0, 0)


def _types(alerts):
    return [a.type for a in alerts]


def test_ip_brute_force_alert_fires_once_at_threshold():
    monitor = SecurityMonitor()
    fired = []
    for i in range(12):
        # rotate through 3 accounts so neither the stuffing nor account alert interferes
        fired.extend(monitor.record_failed_login(f"user{i % 3}@x.test", "10.0.0.1", NOW + timedelta(seconds=i)))
    assert _types(fired).count(ALERT_IP_BRUTE_FORCE) == 1
    assert monitor.get_ip_attempts("10.0.0.1") == 12


def test_credential_stuffing_detects_many_accounts_from_one_ip():
    monitor = SecurityMonitor()
    fired = []
    for i in range(5):
        fired.extend(monitor.record_failed_login(f"victim{i}@x.test", "10.0.0.2", NOW))
    stuffing = [a for a in fired if a.type == ALERT_CREDENTIAL_STUFFING]
    assert len(stuffing) == 1
    assert len(stuffing[0].accounts) == 5


def test_account_brute_force_counts_across_ips_and_normalises_email():
    monitor = SecurityMonitor()
    fired = []
    for i in range(5):
        fired.extend(monitor.record_failed_login("  Target@X.test ", f"10.0.1.{i}", NOW))
    assert _types(fired) == [ALERT_ACCOUNT_BRUTE_FORCE]
    assert monitor.get_account_attempts("target@x.test") == 5


def test_reset_account_clears_counter():
    monitor = SecurityMonitor()
    monitor.record_failed_login("a@x.test", "10.0.0.3", NOW)
    monitor.reset_account("A@x.test")
    assert monitor.get_account_attempts("a@x.test") == 0


def test_sweep_drops_records_older_than_window():
    monitor = SecurityMonitor()
    monitor.record_failed_login("a@x.test", "10.0.0.4", NOW)
    assert monitor.sweep(NOW + timedelta(minutes=5)) == 0
    assert monitor.sweep(NOW + timedelta(minutes=16)) == 2
    assert monitor.tracked_ips == 0
    assert monitor.tracked_accounts == 0


def test_alert_can_fire_again_after_window_expires():
    monitor = SecurityMonitor(account_threshold=2)
    first = monitor.record_failed_login("a@x.test", None, NOW)
    first += monitor.record_failed_login("a@x.test", None, NOW)
    later = NOW + timedelta(minutes=20)
    second = monitor.record_failed_login("a@x.test", None, later)
    second += monitor.record_failed_login("a@x.test", None, later)
    assert _types(first) == [ALERT_ACCOUNT_BRUTE_FORCE]
    assert _types(second) == [ALERT_ACCOUNT_BRUTE_FORCE]
