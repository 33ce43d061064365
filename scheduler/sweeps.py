"""
Monitoring sweeps.

Each sweep loads its targets from storage and processes them one at a time.
A failure on one target is logged and counted, and the sweep moves on to the
next target. A failure loading the target list ends that sweep only; the next
scheduled run starts from scratch.

Sweeps of different jobs may run at the same time (the daily expiry job and
the hourly alert job both fire at 09:00 UTC). Triggering an alert is
serialized per (domain, alert type), so the deduplication check, the delivery
and the log entry of one alert complete before the next check for that pair.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Tuple

from interfaces import StorageInterface
from models import (
    AlertRule,
    AlertType,
    CertificateInfo,
    CertificateStatus,
    ExpiryUrgency,
    MonitoredTarget,
    NotificationLogEntry,
    NotificationStatus,
    ReachabilityResult,
    SweepReport,
)
from monitors.domain_monitor import ExpiryEvaluation, evaluate_expiry
from monitors.ssl_monitor import CertificateUnavailable, check_certificate
from monitors.uptime_monitor import check_reachability
from notifications.dedup import DeduplicationGate
from notifications.dispatcher import NotificationDispatcher, summarize_failures
from utils.formatters import format_alert_message

logger = logging.getLogger(__name__)

CertificateChecker = Callable[[str], Awaitable[CertificateInfo]]
ReachabilityChecker = Callable[[str], Awaitable[ReachabilityResult]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MonitoringSweeps:
    """The four monitoring jobs run by the scheduler"""

    def __init__(
        self,
        storage: StorageInterface,
        dispatcher: NotificationDispatcher,
        gate: Optional[DeduplicationGate] = None,
        clock: Callable[[], datetime] = utc_now,
        certificate_checker: Optional[CertificateChecker] = None,
        reachability_checker: Optional[ReachabilityChecker] = None,
        ssl_timeout: float = 10,
        uptime_timeout: float = 10
    ):
        self.storage = storage
        self.dispatcher = dispatcher
        self.gate = gate or DeduplicationGate(storage)
        self.clock = clock
        self.certificate_checker = certificate_checker or (
            lambda domain: check_certificate(domain, timeout=ssl_timeout)
        )
        self.reachability_checker = reachability_checker or (
            lambda domain: check_reachability(domain, timeout=uptime_timeout)
        )
        self._cancel = asyncio.Event()
        self._alert_locks: Dict[Tuple[int, AlertType], asyncio.Lock] = defaultdict(asyncio.Lock)

    def request_cancel(self):
        """Stop in-flight sweeps at the next target boundary"""
        self._cancel.set()

    def clear_cancel(self):
        self._cancel.clear()

    async def run_expiry_sweep(self) -> SweepReport:
        """Daily job: alert on expiring domain registrations, mark expired ones"""
        return await self._sweep('domain_expiry', self.storage.list_active_targets, self._check_domain_expiry)

    async def run_certificate_sweep(self) -> SweepReport:
        """Every 6 hours: probe certificates, store them and alert"""
        return await self._sweep(
            'ssl_certificates',
            self.storage.list_targets_with_certificates,
            lambda pair, report: self._check_certificate(pair[0], report)
        )

    async def run_reachability_sweep(self) -> SweepReport:
        """Every 30 minutes: alert on domains that do not answer"""
        return await self._sweep('uptime', self.storage.list_active_targets, self._check_reachability)

    async def run_alert_sweep(self) -> SweepReport:
        """Hourly: match stored expiry dates against alert rules"""
        return await self._sweep(
            'alert_matching',
            self.storage.list_targets_with_certificates,
            self._match_stored_alerts
        )

    async def _sweep(
        self,
        job: str,
        load: Callable[[], Iterable[Any]],
        process: Callable[[Any, SweepReport], Awaitable[None]]
    ) -> SweepReport:
        report = SweepReport(job=job)
        logger.info(f"Running {job} sweep...")

        try:
            items = list(load())
        except Exception as e:
            logger.error(f"Error in {job} sweep, could not load domains: {e}")
            report.error = str(e)
            return report

        report.targets = len(items)

        for item in items:
            if self._cancel.is_set():
                logger.warning(f"{job} sweep cancelled after {report.processed + report.failed} of {report.targets} domains")
                report.cancelled = True
                break

            target = item[0] if isinstance(item, tuple) else item
            try:
                await process(item, report)
                report.processed += 1
            except Exception:
                logger.exception(f"Error in {job} sweep for domain {target.domain_name}")
                report.failed += 1
                report.failed_targets.append(target.domain_name)

        logger.info(
            f"{job} sweep completed: {report.processed} processed, {report.failed} failed, "
            f"{report.alerts_sent} alerts sent, {report.alerts_suppressed} suppressed"
        )
        return report

    async def _check_domain_expiry(self, target: MonitoredTarget, report: SweepReport):
        evaluation = evaluate_expiry(target.expiry_date, self.clock())

        if evaluation.is_expired:
            self.storage.mark_target_expired(target.id)
            logger.info(
                f"Domain {target.domain_name} expired {-evaluation.days_remaining} days ago, status set to expired"
            )
            return

        await self._alert_domain_expiry(target, evaluation, report)

    async def _alert_domain_expiry(self, target: MonitoredTarget, evaluation: ExpiryEvaluation,
                                   report: SweepReport):
        rule = self._matching_rule(target, AlertType.DOMAIN_EXPIRY, evaluation)
        if rule:
            await self._trigger_alert(target, rule, report, {
                'days_remaining': evaluation.days_remaining,
                'expiry_date': target.expiry_date.isoformat(),
            })

    async def _check_certificate(self, target: MonitoredTarget, report: SweepReport):
        now = self.clock()

        try:
            info = await self.certificate_checker(target.domain_name)
        except CertificateUnavailable as e:
            if e.is_unreachable:
                # Downtime is reported by the reachability sweep
                logger.warning(f"Skipping certificate check for {target.domain_name}, host unreachable: {e}")
                return

            logger.warning(f"No certificate for {target.domain_name}: {e}")
            rule = self._matching_rule(target, AlertType.SSL_INVALID)
            if rule:
                await self._trigger_alert(target, rule, report, {'error': str(e)})
            return

        self.storage.upsert_certificate_record(target.id, info.to_record(target.id, now))

        await self._alert_certificate_expiry(target, info.valid_until, info.issuer, report)

        if info.status == CertificateStatus.EXPIRED:
            rule = self._matching_rule(target, AlertType.SSL_INVALID)
            if rule:
                await self._trigger_alert(target, rule, report, {
                    'error': f"Certificate expired on {info.valid_until.date().isoformat()}",
                    'expiry_date': info.valid_until,
                    'issuer': info.issuer,
                })

    async def _alert_certificate_expiry(self, target: MonitoredTarget, valid_until: datetime,
                                        issuer: str, report: SweepReport):
        evaluation = evaluate_expiry(valid_until, self.clock())
        rule = self._matching_rule(target, AlertType.SSL_EXPIRY, evaluation)
        if rule:
            await self._trigger_alert(target, rule, report, {
                'days_remaining': evaluation.days_remaining,
                'expiry_date': valid_until,
                'issuer': issuer,
            })

    async def _check_reachability(self, target: MonitoredTarget, report: SweepReport):
        result = await self.reachability_checker(target.domain_name)
        if result.is_up:
            return

        logger.warning(f"Domain {target.domain_name} appears to be down: {result.error}")
        rule = self._matching_rule(target, AlertType.DOMAIN_DOWNTIME)
        if rule:
            await self._trigger_alert(target, rule, report, {
                'error': result.error or 'Domain appears to be down',
                'timestamp': self.clock().isoformat(),
            })

    async def _match_stored_alerts(self, pair, report: SweepReport):
        target, record = pair
        evaluation = evaluate_expiry(target.expiry_date, self.clock())
        await self._alert_domain_expiry(target, evaluation, report)

        if record is not None:
            await self._alert_certificate_expiry(target, record.valid_until, record.issuer, report)

    def _matching_rule(self, target: MonitoredTarget, alert_type: AlertType,
                       evaluation: Optional[ExpiryEvaluation] = None) -> Optional[AlertRule]:
        """
        The alert rule that applies to target, or None

        Expiry rules apply only while the date is expiring soon and no
        further away than the rule's days_before_expiry.
        """
        if evaluation is not None and evaluation.urgency != ExpiryUrgency.EXPIRING_SOON:
            return None

        rules = self.storage.list_alert_rules(target.id, alert_type)
        if not rules:
            return None
        if len(rules) > 1:
            logger.warning(f"Domain {target.domain_name} has {len(rules)} {alert_type.value} rules, using the first")

        rule = rules[0]
        if evaluation is not None and evaluation.days_remaining > rule.days_before_expiry:
            return None
        return rule

    async def _trigger_alert(self, target: MonitoredTarget, rule: AlertRule,
                             report: SweepReport, details: Dict[str, Any]):
        async with self._alert_locks[(target.id, rule.alert_type)]:
            if self.gate.should_suppress(target.id, rule.alert_type, self.clock()):
                report.alerts_suppressed += 1
                return

            message = format_alert_message(rule.alert_type, target, details)
            outcomes = await self.dispatcher.dispatch(target.owner, message, rule.enabled_channels)

            self.storage.append_notification_log(NotificationLogEntry(
                target_id=target.id,
                user_id=target.owner.user_id,
                alert_type=rule.alert_type,
                sent_at=self.clock(),
                status=NotificationStatus.SENT,
                error_detail=summarize_failures(outcomes)
            ))

        report.alerts_sent += 1
        logger.info(f"{rule.alert_type.value} alert triggered for {target.domain_name} ({len(outcomes)} channels attempted)")
