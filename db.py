"""
Database module for DomainSentinel.
Handles SQLite operations for users, domains, SSL certificates, alert rules
and notification logs.
"""

import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Optional, List, Dict, Any, Tuple
import logging

from interfaces import StorageInterface
from models import (
    AlertRule,
    AlertType,
    CertificateRecord,
    CertificateStatus,
    MonitoredTarget,
    NotificationLogEntry,
    NotificationStatus,
    Recipient,
    TargetStatus,
)

logger = logging.getLogger(__name__)

DB_PATH = 'domainsentinel.db'

# Fixed-width UTC timestamps: string order in SQL is chronological
TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S.%f'

MAX_DAYS_BEFORE_EXPIRY = 365


@contextmanager
def get_db_connection(db_path: str = DB_PATH):
    """Context manager for safe DB connections with automatic commit/rollback"""
    conn = sqlite3.connect(db_path, timeout=10.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def to_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def from_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def init_db(db_path: str = DB_PATH):
    """Initialize database with all tables"""
    with get_db_connection(db_path) as conn:
        # Domain owners
        conn.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                email TEXT UNIQUE,
                first_name TEXT,
                last_name TEXT,
                phone TEXT,
                telegram_chat_id TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Domains to monitor
        conn.execute("""
            CREATE TABLE IF NOT EXISTS domains (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                domain_name TEXT NOT NULL,
                registrar TEXT,
                expiry_date DATE NOT NULL,
                status TEXT NOT NULL DEFAULT 'active'
                    CHECK(status IN ('active', 'expired', 'inactive', 'suspended')),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # At most one certificate per domain
        conn.execute("""
            CREATE TABLE IF NOT EXISTS ssl_certificates (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                domain_id INTEGER NOT NULL UNIQUE REFERENCES domains(id) ON DELETE CASCADE,
                issuer TEXT,
                subject TEXT,
                valid_from TIMESTAMP,
                valid_until TIMESTAMP,
                status TEXT NOT NULL DEFAULT 'unknown'
                    CHECK(status IN ('valid', 'expiring_soon', 'expired', 'unknown')),
                serial_number TEXT,
                fingerprint TEXT,
                last_checked TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Alert rules
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS alerts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER REFERENCES users(id) ON DELETE CASCADE,
                domain_id INTEGER NOT NULL REFERENCES domains(id) ON DELETE CASCADE,
                type TEXT NOT NULL
                    CHECK(type IN ('domain_expiry', 'ssl_expiry', 'ssl_invalid', 'domain_downtime')),
                email_enabled BOOLEAN DEFAULT 1,
                sms_enabled BOOLEAN DEFAULT 0,
                telegram_enabled BOOLEAN DEFAULT 0,
                days_before_expiry INTEGER NOT NULL DEFAULT 30
                    CHECK(days_before_expiry > 0 AND days_before_expiry <= {MAX_DAYS_BEFORE_EXPIRY}),
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Notifications log (append only)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS notification_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER REFERENCES users(id),
                domain_id INTEGER REFERENCES domains(id) ON DELETE CASCADE,
                type TEXT NOT NULL,
                method TEXT NOT NULL,
                status TEXT NOT NULL,
                sent_at TIMESTAMP NOT NULL,
                error_message TEXT
            )
        """)

        # Create indexes
        conn.execute("CREATE INDEX IF NOT EXISTS idx_domains_status ON domains(status)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_alerts_domain_type ON alerts(domain_id, type)")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_notification_logs_lookup ON notification_logs(domain_id, type, sent_at)")

    logger.info(f"Database initialized successfully at {db_path}")


def _parse_expiry_date(row: sqlite3.Row):
    # Malformed dates are returned as the stored text
    value = row['expiry_date']
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        logger.warning(f"Domain {row['domain_name']} has a malformed expiry date: {value!r}")
        return value


def _row_to_target(row: sqlite3.Row) -> MonitoredTarget:
    name = ' '.join(part for part in (row['first_name'], row['last_name']) if part)
    owner = Recipient(
        user_id=row['user_id'],
        name=name,
        email=row['email'],
        phone=row['phone'],
        telegram_chat_id=row['telegram_chat_id']
    )
    return MonitoredTarget(
        id=row['id'],
        domain_name=row['domain_name'],
        owner=owner,
        expiry_date=_parse_expiry_date(row),
        status=TargetStatus(row['status']),
        registrar=row['registrar']
    )


def _row_to_certificate(row: sqlite3.Row) -> CertificateRecord:
    return CertificateRecord(
        target_id=row['domain_id'],
        issuer=row['issuer'],
        valid_from=from_timestamp(row['valid_from']),
        valid_until=from_timestamp(row['valid_until']),
        status=CertificateStatus(row['status']),
        last_checked=from_timestamp(row['last_checked']),
        subject=row['subject'],
        serial_number=row['serial_number'],
        fingerprint=row['fingerprint']
    )


def _joined_certificate(row: sqlite3.Row) -> Optional[CertificateRecord]:
    """Certificate columns of a domains/ssl_certificates join, None when unreadable"""
    try:
        return CertificateRecord(
            target_id=row['domain_id'],
            issuer=row['issuer'],
            valid_from=from_timestamp(row['valid_from']),
            valid_until=from_timestamp(row['valid_until']),
            status=CertificateStatus(row['cert_status']),
            last_checked=from_timestamp(row['last_checked']),
            subject=row['subject'],
            serial_number=row['serial_number'],
            fingerprint=row['fingerprint']
        )
    except ValueError as e:
        logger.warning(f"Ignoring unreadable SSL certificate for domain {row['domain_id']}: {e}")
        return None


TARGET_QUERY = """
    SELECT d.id, d.user_id, d.domain_name, d.registrar, d.expiry_date, d.status,
           u.email, u.first_name, u.last_name, u.phone, u.telegram_chat_id
    FROM domains d
    JOIN users u ON d.user_id = u.id
"""


class SQLiteStorage(StorageInterface):
    """Storage collaborator backed by the SQLite schema created by init_db"""

    def __init__(self, db_path: str = DB_PATH):
        self.db_path = db_path

    def list_active_targets(self) -> List[MonitoredTarget]:
        """List all active domains with their owners"""
        try:
            with get_db_connection(self.db_path) as conn:
                cursor = conn.execute(TARGET_QUERY + " WHERE d.status = 'active' ORDER BY d.id")
                return [_row_to_target(row) for row in cursor.fetchall()]
        except Exception as e:
            logger.error(f"Error listing active domains: {e}")
            raise

    def list_targets_with_certificates(self) -> List[Tuple[MonitoredTarget, Optional[CertificateRecord]]]:
        """List active domains with their stored certificate, if any"""
        try:
            with get_db_connection(self.db_path) as conn:
                cursor = conn.execute("""
                    SELECT d.id, d.user_id, d.domain_name, d.registrar, d.expiry_date, d.status,
                           u.email, u.first_name, u.last_name, u.phone, u.telegram_chat_id,
                           s.domain_id, s.issuer, s.subject, s.valid_from, s.valid_until,
                           s.status AS cert_status, s.serial_number, s.fingerprint, s.last_checked
                    FROM domains d
                    JOIN users u ON d.user_id = u.id
                    LEFT JOIN ssl_certificates s ON s.domain_id = d.id
                    WHERE d.status = 'active'
                    ORDER BY d.id
                """)
                results = []
                for row in cursor.fetchall():
                    target = _row_to_target(row)
                    record = None
                    if row['domain_id'] is not None and row['valid_until']:
                        record = _joined_certificate(row)
                    results.append((target, record))
                return results
        except Exception as e:
            logger.error(f"Error listing domains with certificates: {e}")
            raise

    def upsert_certificate_record(self, target_id: int, record: CertificateRecord) -> None:
        """Insert or replace the certificate of a domain"""
        checked_at = record.last_checked or datetime.now(timezone.utc)
        try:
            with get_db_connection(self.db_path) as conn:
                conn.execute("""
                    INSERT INTO ssl_certificates (
                        domain_id, issuer, subject, valid_from, valid_until, status,
                        serial_number, fingerprint, last_checked, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(domain_id) DO UPDATE SET
                        issuer = excluded.issuer,
                        subject = excluded.subject,
                        valid_from = excluded.valid_from,
                        valid_until = excluded.valid_until,
                        status = excluded.status,
                        serial_number = excluded.serial_number,
                        fingerprint = excluded.fingerprint,
                        last_checked = excluded.last_checked,
                        updated_at = excluded.updated_at
                """, (
                    target_id,
                    record.issuer,
                    record.subject,
                    to_timestamp(record.valid_from) if record.valid_from else None,
                    to_timestamp(record.valid_until),
                    record.status.value,
                    record.serial_number,
                    record.fingerprint,
                    to_timestamp(checked_at),
                    to_timestamp(checked_at)
                ))
            logger.info(f"SSL certificate updated for domain {target_id}, status: {record.status.value}")
        except Exception as e:
            logger.error(f"Error updating SSL certificate for domain {target_id}: {e}")
            raise

    def get_certificate_record(self, target_id: int) -> Optional[CertificateRecord]:
        """Get the stored certificate of a domain"""
        try:
            with get_db_connection(self.db_path) as conn:
                cursor = conn.execute(
                    "SELECT * FROM ssl_certificates WHERE domain_id = ?",
                    (target_id,)
                )
                row = cursor.fetchone()
                return _row_to_certificate(row) if row else None
        except Exception as e:
            logger.error(f"Error getting SSL certificate for domain {target_id}: {e}")
            raise

    def list_alert_rules(self, target_id: int, alert_type: AlertType) -> List[AlertRule]:
        """List alert rules of one type for a domain"""
        try:
            with get_db_connection(self.db_path) as conn:
                cursor = conn.execute("""
                    SELECT id, domain_id, type, days_before_expiry,
                           email_enabled, sms_enabled, telegram_enabled
                    FROM alerts WHERE domain_id = ? AND type = ?
                    ORDER BY id
                """, (target_id, alert_type.value))
                return [
                    AlertRule(
                        id=row['id'],
                        target_id=row['domain_id'],
                        alert_type=AlertType(row['type']),
                        days_before_expiry=row['days_before_expiry'],
                        email_enabled=bool(row['email_enabled']),
                        sms_enabled=bool(row['sms_enabled']),
                        telegram_enabled=bool(row['telegram_enabled'])
                    )
                    for row in cursor.fetchall()
                ]
        except Exception as e:
            logger.error(f"Error listing alert rules for domain {target_id}: {e}")
            raise

    def has_recent_notification(self, target_id: int, alert_type: AlertType, since: datetime) -> bool:
        """Check whether a notification was logged for (domain, type) after since"""
        try:
            with get_db_connection(self.db_path) as conn:
                cursor = conn.execute("""
                    SELECT 1 FROM notification_logs
                    WHERE domain_id = ? AND type = ? AND sent_at > ?
                    LIMIT 1
                """, (target_id, alert_type.value, to_timestamp(since)))
                return cursor.fetchone() is not None
        except Exception as e:
            logger.error(f"Error checking recent notifications for domain {target_id}: {e}")
            raise

    def append_notification_log(self, entry: NotificationLogEntry) -> None:
        """Log a triggered notification"""
        try:
            with get_db_connection(self.db_path) as conn:
                conn.execute("""
                    INSERT INTO notification_logs (user_id, domain_id, type, method, status, sent_at, error_message)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    entry.user_id,
                    entry.target_id,
                    entry.alert_type.value,
                    entry.method,
                    entry.status.value,
                    to_timestamp(entry.sent_at),
                    entry.error_detail
                ))
            logger.info(f"Notification logged: type={entry.alert_type.value} for domain {entry.target_id}")
        except Exception as e:
            logger.error(f"Error logging notification for domain {entry.target_id}: {e}")
            raise

    def list_notification_logs(self, target_id: Optional[int] = None, limit: int = 50) -> List[NotificationLogEntry]:
        """Get notification history, newest first, optionally filtered by domain"""
        try:
            with get_db_connection(self.db_path) as conn:
                if target_id is not None:
                    cursor = conn.execute("""
                        SELECT * FROM notification_logs WHERE domain_id = ?
                        ORDER BY sent_at DESC, id DESC LIMIT ?
                    """, (target_id, limit))
                else:
                    cursor = conn.execute("""
                        SELECT * FROM notification_logs ORDER BY sent_at DESC, id DESC LIMIT ?
                    """, (limit,))
                return [
                    NotificationLogEntry(
                        target_id=row['domain_id'],
                        user_id=row['user_id'],
                        alert_type=AlertType(row['type']),
                        sent_at=from_timestamp(row['sent_at']),
                        method=row['method'],
                        status=NotificationStatus(row['status']),
                        error_detail=row['error_message']
                    )
                    for row in cursor.fetchall()
                ]
        except Exception as e:
            logger.error(f"Error getting notification history: {e}")
            raise

    def mark_target_expired(self, target_id: int) -> None:
        """Set domain status to expired"""
        try:
            with get_db_connection(self.db_path) as conn:
                conn.execute("""
                    UPDATE domains SET status = 'expired', updated_at = CURRENT_TIMESTAMP
                    WHERE id = ?
                """, (target_id,))
            logger.info(f"Domain {target_id} marked as expired")
        except Exception as e:
            logger.error(f"Error marking domain {target_id} expired: {e}")
            raise

    # Seeding helpers for local runs and tests. Records are normally created
    # by the management API.
    def add_user(self, email: Optional[str], first_name: str = '', last_name: str = '',
                 phone: Optional[str] = None, telegram_chat_id: Optional[str] = None) -> int:
        """Add a domain owner"""
        try:
            with get_db_connection(self.db_path) as conn:
                cursor = conn.execute("""
                    INSERT INTO users (email, first_name, last_name, phone, telegram_chat_id)
                    VALUES (?, ?, ?, ?, ?)
                """, (email, first_name, last_name, phone, telegram_chat_id))
                logger.info(f"User added: {email}")
                return cursor.lastrowid
        except Exception as e:
            logger.error(f"Error adding user {email}: {e}")
            raise

    def add_domain(self, user_id: int, domain_name: str, expiry_date: date,
                   registrar: Optional[str] = None, status: TargetStatus = TargetStatus.ACTIVE) -> int:
        """Add domain to monitoring list"""
        try:
            with get_db_connection(self.db_path) as conn:
                cursor = conn.execute("""
                    INSERT INTO domains (user_id, domain_name, registrar, expiry_date, status)
                    VALUES (?, ?, ?, ?, ?)
                """, (user_id, domain_name.lower().strip(), registrar, expiry_date.isoformat(), status.value))
                logger.info(f"Domain added: {domain_name} for user {user_id}")
                return cursor.lastrowid
        except Exception as e:
            logger.error(f"Error adding domain {domain_name}: {e}")
            raise

    def add_alert_rule(self, target_id: int, alert_type: AlertType, days_before_expiry: int = 30,
                       email_enabled: bool = True, sms_enabled: bool = False,
                       telegram_enabled: bool = False) -> int:
        """Add an alert rule for a domain"""
        try:
            with get_db_connection(self.db_path) as conn:
                cursor = conn.execute("""
                    INSERT INTO alerts (user_id, domain_id, type, email_enabled, sms_enabled,
                                        telegram_enabled, days_before_expiry)
                    SELECT user_id, id, ?, ?, ?, ?, ? FROM domains WHERE id = ?
                """, (alert_type.value, email_enabled, sms_enabled, telegram_enabled,
                      days_before_expiry, target_id))
                if cursor.rowcount == 0:
                    raise ValueError(f"Domain {target_id} does not exist")
                return cursor.lastrowid
        except Exception as e:
            logger.error(f"Error adding {alert_type.value} alert for domain {target_id}: {e}")
            raise

    def get_domain(self, target_id: int) -> Optional[Dict[str, Any]]:
        """Get single domain row"""
        try:
            with get_db_connection(self.db_path) as conn:
                cursor = conn.execute("SELECT * FROM domains WHERE id = ?", (target_id,))
                row = cursor.fetchone()
                return dict(row) if row else None
        except Exception as e:
            logger.error(f"Error getting domain {target_id}: {e}")
            raise
