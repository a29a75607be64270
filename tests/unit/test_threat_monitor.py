#!/usr/bin/env python3
"""Unit tests for threat monitor."""

import threading

import pytest

from requestguard.request import GuardRequest
from requestguard.threat_monitor import ThreatMonitor


BROWSER_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (X11; Linux x86_64)',
    'Accept': 'text/html',
}


def make_request(url="/search?q=weather", body=None, headers=None, identity="8.8.4.4"):
    return GuardRequest(
        method="GET",
        url=url,
        headers=dict(headers or BROWSER_HEADERS),
        body=body,
        client_host=identity,
    )


@pytest.fixture
def monitor():
    return ThreatMonitor()


class TestClassify:
    """Test request classification."""

    def test_benign_request(self, monitor):
        assert monitor.classify(make_request()) is None

    def test_sql_injection_in_url(self, monitor):
        assert monitor.classify(make_request("/items?id=1 UNION SELECT 1")) == 'sql_injection'

    def test_xss_in_body(self, monitor):
        request = make_request("/comment", body={"text": "<script>alert(1)</script>"})
        # 'script' is also a SQL keyword, so the SQL heuristic fires first
        assert monitor.classify(request) == 'sql_injection'

    def test_xss_without_sql_keyword(self, monitor):
        request = make_request("/comment", body={"text": "<iframe src=//evil>"})
        assert monitor.classify(request) == 'xss'

    @pytest.mark.parametrize("url", [
        "/files/../../etc/hosts",
        "/files/..\\boot.ini",
        "/files/%2e%2e%2fsecret",
        "/view?f=/etc/passwd",
        "/view?f=c:/windows/system32/config",
    ])
    def test_path_traversal(self, monitor, url):
        assert monitor.classify(make_request(url)) == 'path_traversal'

    @pytest.mark.parametrize("user_agent", [
        "python-requests/2.31",
        "curl/8.0",
        "Wget/1.21",
        "Apache-HttpClient/4.5",
        "Googlebot/2.1",
        "SomeCrawler",
        "spider-x",
    ])
    def test_automated_clients(self, monitor, user_agent):
        request = make_request(headers={'User-Agent': user_agent, 'Accept': '*/*'})
        assert monitor.classify(request) == 'automated_client'


class TestInspect:
    """Test activity recording."""

    def test_benign_record(self, monitor):
        record = monitor.inspect(make_request())

        assert not record.suspicious
        assert record.identity == "8.8.4.4"
        assert monitor.activity_log == [record]
        assert monitor.suspicious_activities == []

    def test_suspicious_record(self, monitor):
        record = monitor.inspect(make_request("/view?f=/etc/passwd"))

        assert record.suspicious
        assert record.category == 'path_traversal'
        assert monitor.suspicious_activities == [record]

    def test_activity_log_trim(self):
        monitor = ThreatMonitor(max_activities=10, trim_to=5)

        for i in range(11):
            monitor.inspect(make_request(f"/page/{i}"))

        log = monitor.activity_log
        assert len(log) == 5
        assert [r.url for r in log] == [f"/page/{i}" for i in range(6, 11)]

    def test_default_cap_keeps_newest_500(self, monitor):
        for i in range(1001):
            monitor.inspect(make_request(f"/page/{i}"))

        log = monitor.activity_log
        assert len(log) == 500
        assert log[-1].url == "/page/1000"

    def test_log_never_exceeds_cap_under_concurrency(self):
        monitor = ThreatMonitor(max_activities=100, trim_to=50)

        def worker():
            for i in range(200):
                monitor.inspect(make_request(f"/p/{i}"))

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert 50 <= len(monitor.activity_log) <= 100

    def test_suspicious_list_not_trimmed(self):
        monitor = ThreatMonitor(max_activities=10, trim_to=5)

        for _ in range(20):
            monitor.inspect(make_request("/view?f=/etc/passwd"))

        assert len(monitor.suspicious_activities) == 20

    def test_invalid_limits(self):
        with pytest.raises(ValueError):
            ThreatMonitor(max_activities=10, trim_to=10)


class TestAlertMode:
    """Test alert mode blocking."""

    def test_suspicious_not_blocked_by_default(self, monitor):
        record = monitor.inspect(make_request("/view?f=/etc/passwd"))
        assert not monitor.should_block(record)

    def test_suspicious_blocked_in_alert_mode(self, monitor):
        monitor.activate_alert_mode()
        record = monitor.inspect(make_request("/view?f=/etc/passwd"))
        assert monitor.should_block(record)

    def test_benign_never_blocked(self, monitor):
        monitor.activate_alert_mode()
        record = monitor.inspect(make_request())
        assert not monitor.should_block(record)

    def test_snapshot_overrides_current_flag(self, monitor):
        record = monitor.inspect(make_request("/view?f=/etc/passwd"))
        monitor.activate_alert_mode()

        assert not monitor.should_block(record, alert_mode=False)

    def test_deactivate(self, monitor):
        monitor.activate_alert_mode()
        monitor.deactivate_alert_mode()
        assert not monitor.alert_mode


class TestStats:
    """Test statistics and configuration."""

    def test_get_stats(self, monitor):
        monitor.inspect(make_request())
        suspicious = monitor.inspect(make_request("/view?f=/etc/passwd"))

        stats = monitor.get_stats()

        assert stats['total_activities'] == 2
        assert stats['suspicious_activities'] == 1
        assert stats['alert_mode'] is False
        assert stats['last_suspicious'] == suspicious.to_dict()

    def test_from_config(self):
        monitor = ThreatMonitor.from_config({'monitor': {'max_activities': 20, 'trim_to': 10}})
        assert monitor.max_activities == 20
        assert monitor.trim_to == 10

    def test_from_config_invalid(self):
        with pytest.raises(ValueError, match="Invalid monitor configuration"):
            ThreatMonitor.from_config({'monitor': {'max_activities': 5, 'trim_to': 50}})
