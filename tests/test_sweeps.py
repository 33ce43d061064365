"""
Monitoring sweep tests
"""
import asyncio
import logging
from datetime import timedelta

import pytest

from models import (
    AlertType,
    CertificateInfo,
    CertificateRecord,
    CertificateStatus,
    Channel,
    NotificationLogEntry,
    NotificationStatus,
    ReachabilityResult,
    TargetStatus,
)
from monitors.ssl_monitor import CertificateFailure, CertificateUnavailable, classify_certificate
from notifications.dispatcher import NotificationDispatcher
from scheduler.sweeps import MonitoringSweeps

from conftest import NOW, FailingTransport, RecordingTransport


def certificate(domain, days, issuer="Let's Encrypt"):
    valid_until = NOW + timedelta(days=days)
    return CertificateInfo(
        domain=domain,
        issuer=issuer,
        valid_from=valid_until - timedelta(days=90),
        valid_until=valid_until,
        status=classify_certificate(valid_until, NOW)
    )


class FakeCertificates:
    """Certificate checker returning canned results per domain"""

    def __init__(self, results=None):
        self.results = results or {}
        self.calls = []

    async def __call__(self, domain):
        self.calls.append(domain)
        result = self.results[domain]
        if isinstance(result, Exception):
            raise result
        return result


class FakeReachability:

    def __init__(self, down=(), broken=()):
        self.down = set(down)
        self.broken = set(broken)
        self.calls = []

    async def __call__(self, domain):
        self.calls.append(domain)
        if domain in self.broken:
            raise RuntimeError(f"check crashed for {domain}")
        if domain in self.down:
            return ReachabilityResult(url=f"https://{domain}", is_up=False, error='Request timeout')
        return ReachabilityResult(url=f"https://{domain}", is_up=True, status_code=200)


@pytest.fixture
def transports(email_transport, sms_transport):
    return {Channel.EMAIL: email_transport, Channel.SMS: sms_transport}


def make_sweeps(storage, transports, certificates=None, reachability=None):
    return MonitoringSweeps(
        storage,
        NotificationDispatcher(transports),
        clock=lambda: NOW,
        certificate_checker=certificates or FakeCertificates(),
        reachability_checker=reachability or FakeReachability()
    )


class TestExpiryWindow:

    @pytest.mark.parametrize("expires_in_days,threshold,expected", [
        (10, 30, 1),
        (30, 30, 1),
        (31, 60, 0),
        (20, 10, 0),
        (10, 10, 1),
        (1, 30, 1),
    ])
    @pytest.mark.asyncio
    async def test_rule_threshold_and_window(self, storage, transports, expires_in_days, threshold, expected):
        storage.add_target(1, 'example.com', expires_in_days=expires_in_days)
        storage.add_rule(1, AlertType.DOMAIN_EXPIRY, days_before_expiry=threshold)

        report = await make_sweeps(storage, transports).run_alert_sweep()

        assert report.alerts_sent == expected

    @pytest.mark.parametrize("expires_in_days", [0, -3])
    @pytest.mark.asyncio
    async def test_no_alert_once_expired(self, storage, transports, expires_in_days):
        storage.add_target(1, 'example.com', expires_in_days=expires_in_days)
        storage.add_rule(1, AlertType.DOMAIN_EXPIRY)

        report = await make_sweeps(storage, transports).run_alert_sweep()

        assert report.alerts_sent == 0
        assert storage.targets[0].status == TargetStatus.ACTIVE


class TestExpirySweep:

    @pytest.mark.asyncio
    async def test_domain_expiring_in_ten_days(self, storage, transports, email_transport):
        storage.add_target(1, 'example.com', expires_in_days=10)
        storage.add_rule(1, AlertType.DOMAIN_EXPIRY, days_before_expiry=30)

        report = await make_sweeps(storage, transports).run_expiry_sweep()

        assert report.processed == 1
        assert report.alerts_sent == 1
        assert len(email_transport.sent) == 1
        address, message = email_transport.sent[0]
        assert address == 'owner@example.com'
        assert 'example.com' in message.subject
        assert '10 days' in message.sms_body

        entry, = storage.logs
        assert entry.target_id == 1
        assert entry.user_id == 1
        assert entry.alert_type == AlertType.DOMAIN_EXPIRY
        assert entry.method == 'automated'
        assert entry.status == NotificationStatus.SENT
        assert entry.sent_at == NOW
        assert entry.error_detail is None

    @pytest.mark.asyncio
    async def test_recent_notification_suppresses(self, storage, transports, email_transport):
        storage.add_target(1, 'example.com', expires_in_days=10)
        storage.add_rule(1, AlertType.DOMAIN_EXPIRY)
        storage.logs.append(NotificationLogEntry(
            target_id=1, user_id=1, alert_type=AlertType.DOMAIN_EXPIRY, sent_at=NOW - timedelta(hours=1)
        ))

        report = await make_sweeps(storage, transports).run_expiry_sweep()

        assert report.alerts_suppressed == 1
        assert report.alerts_sent == 0
        assert email_transport.sent == []
        assert len(storage.logs) == 1

    @pytest.mark.asyncio
    async def test_notification_older_than_cooldown_does_not_suppress(self, storage, transports):
        storage.add_target(1, 'example.com', expires_in_days=10)
        storage.add_rule(1, AlertType.DOMAIN_EXPIRY)
        storage.logs.append(NotificationLogEntry(
            target_id=1, user_id=1, alert_type=AlertType.DOMAIN_EXPIRY, sent_at=NOW - timedelta(hours=25)
        ))

        report = await make_sweeps(storage, transports).run_expiry_sweep()

        assert report.alerts_sent == 1
        assert len(storage.logs) == 2

    @pytest.mark.asyncio
    async def test_threshold_below_days_remaining(self, storage, transports, email_transport):
        storage.add_target(1, 'example.com', expires_in_days=20)
        storage.add_rule(1, AlertType.DOMAIN_EXPIRY, days_before_expiry=10)

        report = await make_sweeps(storage, transports).run_expiry_sweep()

        assert report.alerts_sent == 0
        assert storage.logs == []
        assert email_transport.sent == []

    @pytest.mark.asyncio
    async def test_outside_thirty_day_window(self, storage, transports):
        storage.add_target(1, 'example.com', expires_in_days=45)
        storage.add_rule(1, AlertType.DOMAIN_EXPIRY, days_before_expiry=60)

        report = await make_sweeps(storage, transports).run_expiry_sweep()

        assert report.alerts_sent == 0

    @pytest.mark.asyncio
    async def test_no_rule_no_alert(self, storage, transports, email_transport):
        storage.add_target(1, 'example.com', expires_in_days=5)

        report = await make_sweeps(storage, transports).run_expiry_sweep()

        assert report.processed == 1
        assert storage.logs == []
        assert email_transport.sent == []

    @pytest.mark.parametrize("expires_in_days", [0, -3])
    @pytest.mark.asyncio
    async def test_expired_domain_is_marked(self, storage, transports, email_transport, expires_in_days):
        target = storage.add_target(1, 'example.com', expires_in_days=expires_in_days)
        storage.add_rule(1, AlertType.DOMAIN_EXPIRY)

        report = await make_sweeps(storage, transports).run_expiry_sweep()

        assert target.status == TargetStatus.EXPIRED
        assert report.alerts_sent == 0
        assert email_transport.sent == []

    @pytest.mark.asyncio
    async def test_email_failure_is_recorded_in_log(self, storage, sms_transport):
        storage.add_target(1, 'example.com', expires_in_days=10, phone='+15550100')
        storage.add_rule(1, AlertType.DOMAIN_EXPIRY, sms_enabled=True)
        transports = {Channel.EMAIL: FailingTransport(), Channel.SMS: sms_transport}

        report = await make_sweeps(storage, transports).run_expiry_sweep()

        assert report.alerts_sent == 1
        assert len(sms_transport.sent) == 1
        entry, = storage.logs
        assert entry.status == NotificationStatus.SENT
        assert entry.error_detail == 'email: SMTP authentication failed'

    @pytest.mark.asyncio
    async def test_owner_without_contact(self, storage, transports):
        storage.add_target(1, 'example.com', expires_in_days=10, email=None)
        storage.add_rule(1, AlertType.DOMAIN_EXPIRY, sms_enabled=True)

        await make_sweeps(storage, transports).run_expiry_sweep()

        entry, = storage.logs
        assert entry.error_detail == 'No deliverable channel'

    @pytest.mark.asyncio
    async def test_load_failure_ends_sweep(self, storage, transports):
        storage.add_target(1, 'example.com', expires_in_days=10)
        storage.fail_loading = True

        report = await make_sweeps(storage, transports).run_expiry_sweep()

        assert report.error == 'database unavailable'
        assert report.processed == 0
        assert report.targets == 0

    @pytest.mark.asyncio
    async def test_cancelled_before_first_target(self, storage, transports):
        storage.add_target(1, 'a.example.com', expires_in_days=10)
        storage.add_target(2, 'b.example.com', expires_in_days=10)
        sweeps = make_sweeps(storage, transports)

        sweeps.request_cancel()
        report = await sweeps.run_expiry_sweep()

        assert report.cancelled is True
        assert report.targets == 2
        assert report.processed == 0

        sweeps.clear_cancel()
        report = await sweeps.run_expiry_sweep()
        assert report.cancelled is False
        assert report.processed == 2


class TestAlertSweep:

    @pytest.mark.asyncio
    async def test_domain_expiring_in_ten_days(self, storage, transports, email_transport):
        storage.add_target(1, 'example.com', expires_in_days=10)
        storage.add_rule(1, AlertType.DOMAIN_EXPIRY)

        report = await make_sweeps(storage, transports).run_alert_sweep()

        assert report.alerts_sent == 1
        assert len(email_transport.sent) == 1
        assert storage.logs[0].alert_type == AlertType.DOMAIN_EXPIRY

    @pytest.mark.asyncio
    async def test_second_job_in_same_day_is_suppressed(self, storage, transports, email_transport):
        storage.add_target(1, 'example.com', expires_in_days=10)
        storage.add_rule(1, AlertType.DOMAIN_EXPIRY)
        sweeps = make_sweeps(storage, transports)

        await sweeps.run_expiry_sweep()
        report = await sweeps.run_alert_sweep()

        assert report.alerts_suppressed == 1
        assert len(storage.logs) == 1
        assert len(email_transport.sent) == 1

    @pytest.mark.asyncio
    async def test_stored_certificate_matched(self, storage, transports):
        storage.add_target(1, 'example.com', expires_in_days=365)
        storage.add_rule(1, AlertType.SSL_EXPIRY, days_before_expiry=14)
        storage.certificates[1] = CertificateRecord(
            target_id=1,
            issuer='R3',
            valid_from=NOW - timedelta(days=80),
            valid_until=NOW + timedelta(days=7),
            status=CertificateStatus.EXPIRING_SOON
        )

        report = await make_sweeps(storage, transports).run_alert_sweep()

        assert report.alerts_sent == 1
        assert storage.logs[0].alert_type == AlertType.SSL_EXPIRY

    @pytest.mark.asyncio
    async def test_target_without_certificate(self, storage, transports):
        storage.add_target(1, 'example.com', expires_in_days=365)
        storage.add_rule(1, AlertType.SSL_EXPIRY)

        report = await make_sweeps(storage, transports).run_alert_sweep()

        assert report.processed == 1
        assert storage.logs == []


class TestCertificateSweep:

    @pytest.mark.asyncio
    async def test_certificate_expiring_soon(self, storage, transports, email_transport):
        storage.add_target(1, 'example.com')
        storage.add_rule(1, AlertType.SSL_EXPIRY)
        checker = FakeCertificates({'example.com': certificate('example.com', 10)})

        report = await make_sweeps(storage, transports, certificates=checker).run_certificate_sweep()

        assert report.alerts_sent == 1
        record = storage.certificates[1]
        assert record.status == CertificateStatus.EXPIRING_SOON
        assert record.issuer == "Let's Encrypt"
        assert record.last_checked == NOW
        assert storage.logs[0].alert_type == AlertType.SSL_EXPIRY
        assert 'SSL' in email_transport.sent[0][1].subject

    @pytest.mark.asyncio
    async def test_expired_certificate_with_invalid_rule(self, storage, transports):
        storage.add_target(1, 'example.com')
        storage.add_rule(1, AlertType.SSL_EXPIRY)
        storage.add_rule(1, AlertType.SSL_INVALID)
        checker = FakeCertificates({'example.com': certificate('example.com', -5)})

        report = await make_sweeps(storage, transports, certificates=checker).run_certificate_sweep()

        assert storage.certificates[1].status == CertificateStatus.EXPIRED
        assert [e.alert_type for e in storage.logs] == [AlertType.SSL_INVALID]
        assert report.alerts_sent == 1

    @pytest.mark.asyncio
    async def test_expired_certificate_without_invalid_rule(self, storage, transports, email_transport):
        storage.add_target(1, 'example.com')
        storage.add_rule(1, AlertType.SSL_EXPIRY)
        checker = FakeCertificates({'example.com': certificate('example.com', -5)})

        await make_sweeps(storage, transports, certificates=checker).run_certificate_sweep()

        assert storage.certificates[1].status == CertificateStatus.EXPIRED
        assert storage.logs == []
        assert email_transport.sent == []

    @pytest.mark.parametrize("reason", [CertificateFailure.HANDSHAKE_FAILED, CertificateFailure.NO_CERTIFICATE])
    @pytest.mark.asyncio
    async def test_unavailable_certificate(self, storage, transports, reason):
        storage.add_target(1, 'example.com')
        storage.add_rule(1, AlertType.SSL_INVALID)
        failure = CertificateUnavailable('example.com', reason, 'handshake failure')
        checker = FakeCertificates({'example.com': failure})

        report = await make_sweeps(storage, transports, certificates=checker).run_certificate_sweep()

        assert report.processed == 1
        assert report.failed == 0
        assert 1 not in storage.certificates
        assert storage.logs[0].alert_type == AlertType.SSL_INVALID

    @pytest.mark.asyncio
    async def test_unreachable_host_is_left_to_uptime(self, storage, transports, email_transport):
        storage.add_target(1, 'example.com')
        storage.add_rule(1, AlertType.SSL_INVALID)
        failure = CertificateUnavailable('example.com', CertificateFailure.UNREACHABLE, 'DNS resolution failed')
        checker = FakeCertificates({'example.com': failure})

        report = await make_sweeps(storage, transports, certificates=checker).run_certificate_sweep()

        assert report.processed == 1
        assert report.alerts_sent == 0
        assert storage.logs == []
        assert email_transport.sent == []
        assert 1 not in storage.certificates

    @pytest.mark.asyncio
    async def test_one_failing_check_does_not_stop_sweep(self, storage, transports, caplog):
        storage.add_target(1, 'a.example.com')
        storage.add_target(2, 'b.example.com')
        storage.add_target(3, 'c.example.com')
        checker = FakeCertificates({
            'a.example.com': certificate('a.example.com', 200),
            'b.example.com': RuntimeError('parser exploded'),
            'c.example.com': certificate('c.example.com', 200),
        })

        with caplog.at_level(logging.ERROR, logger='scheduler.sweeps'):
            report = await make_sweeps(storage, transports, certificates=checker).run_certificate_sweep()

        assert checker.calls == ['a.example.com', 'b.example.com', 'c.example.com']
        assert report.processed == 2
        assert report.failed == 1
        assert report.failed_targets == ['b.example.com']
        assert set(storage.certificates) == {1, 3}
        assert 'b.example.com' in caplog.text


class TestReachabilitySweep:

    @pytest.mark.asyncio
    async def test_down_domain_alerts(self, storage, transports, email_transport):
        storage.add_target(1, 'example.com')
        storage.add_rule(1, AlertType.DOMAIN_DOWNTIME)
        checker = FakeReachability(down={'example.com'})

        report = await make_sweeps(storage, transports, reachability=checker).run_reachability_sweep()

        assert report.alerts_sent == 1
        assert storage.logs[0].alert_type == AlertType.DOMAIN_DOWNTIME
        assert 'Request timeout' in email_transport.sent[0][1].sms_body

    @pytest.mark.asyncio
    async def test_up_domain_is_quiet(self, storage, transports):
        storage.add_target(1, 'example.com')
        storage.add_rule(1, AlertType.DOMAIN_DOWNTIME)

        report = await make_sweeps(storage, transports).run_reachability_sweep()

        assert report.alerts_sent == 0
        assert storage.logs == []

    @pytest.mark.asyncio
    async def test_down_without_rule(self, storage, transports):
        storage.add_target(1, 'example.com')
        checker = FakeReachability(down={'example.com'})

        report = await make_sweeps(storage, transports, reachability=checker).run_reachability_sweep()

        assert report.processed == 1
        assert storage.logs == []

    @pytest.mark.asyncio
    async def test_isolation(self, storage, transports, caplog):
        for target_id, domain in enumerate(['a.example.com', 'b.example.com', 'c.example.com'], start=1):
            storage.add_target(target_id, domain)
            storage.add_rule(target_id, AlertType.DOMAIN_DOWNTIME)
        checker = FakeReachability(down={'c.example.com'}, broken={'b.example.com'})

        with caplog.at_level(logging.ERROR, logger='scheduler.sweeps'):
            report = await make_sweeps(storage, transports, reachability=checker).run_reachability_sweep()

        assert checker.calls == ['a.example.com', 'b.example.com', 'c.example.com']
        assert report.processed == 2
        assert report.failed == 1
        assert [e.target_id for e in storage.logs] == [3]
        assert 'check crashed for b.example.com' in caplog.text

    @pytest.mark.asyncio
    async def test_expired_targets_are_skipped(self, storage, transports):
        storage.add_target(1, 'example.com').status = TargetStatus.EXPIRED
        checker = FakeReachability()

        report = await make_sweeps(storage, transports, reachability=checker).run_reachability_sweep()

        assert report.targets == 0
        assert checker.calls == []


class SlowTransport(RecordingTransport):
    """Records deliveries after a short network-like delay"""

    async def send(self, address, message):
        await asyncio.sleep(0.05)
        await super().send(address, message)


class TestConcurrentSweeps:

    @pytest.mark.asyncio
    async def test_expiry_and_alert_jobs_at_same_time(self, storage):
        storage.add_target(1, 'example.com', expires_in_days=10)
        storage.add_rule(1, AlertType.DOMAIN_EXPIRY, days_before_expiry=30)
        email = SlowTransport()
        sweeps = make_sweeps(storage, {Channel.EMAIL: email})

        expiry, alerts = await asyncio.gather(sweeps.run_expiry_sweep(), sweeps.run_alert_sweep())

        assert len(storage.logs) == 1
        assert len(email.sent) == 1
        assert expiry.alerts_sent + alerts.alerts_sent == 1
        assert expiry.alerts_suppressed + alerts.alerts_suppressed == 1

    @pytest.mark.asyncio
    async def test_different_alert_types_do_not_wait_on_each_other(self, storage):
        storage.add_target(1, 'example.com', expires_in_days=10)
        storage.add_rule(1, AlertType.DOMAIN_EXPIRY)
        storage.add_rule(1, AlertType.DOMAIN_DOWNTIME)
        email = SlowTransport()
        sweeps = make_sweeps(storage, {Channel.EMAIL: email}, reachability=FakeReachability(down={'example.com'}))

        await asyncio.gather(sweeps.run_expiry_sweep(), sweeps.run_reachability_sweep())

        assert sorted(e.alert_type.value for e in storage.logs) == ['domain_downtime', 'domain_expiry']


class TestMalformedTargets:

    @pytest.mark.asyncio
    async def test_malformed_expiry_date_fails_only_that_domain(self, storage, transports, caplog):
        storage.add_target(1, 'a.example.com', expires_in_days=10)
        storage.add_target(2, 'b.example.com').expiry_date = 'not-a-date'
        storage.add_target(3, 'c.example.com', expires_in_days=10)
        storage.add_rule(1, AlertType.DOMAIN_EXPIRY)
        storage.add_rule(3, AlertType.DOMAIN_EXPIRY)

        with caplog.at_level(logging.ERROR, logger='scheduler.sweeps'):
            report = await make_sweeps(storage, transports).run_expiry_sweep()

        assert report.error is None
        assert report.processed == 2
        assert report.failed == 1
        assert report.failed_targets == ['b.example.com']
        assert [e.target_id for e in storage.logs] == [1, 3]
        assert 'b.example.com' in caplog.text
