"""
SSL Certificate Monitoring Module

Retrieves the certificate a domain presents on port 443 and classifies its
expiry. The chain is not verified; self-signed and otherwise untrusted
certificates are inspected like any other.
"""

import asyncio
import hashlib
import logging
import socket
import ssl
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from cryptography import x509
from cryptography.x509.oid import NameOID

from models import CertificateInfo, CertificateStatus

logger = logging.getLogger(__name__)

DEFAULT_PORT = 443
DEFAULT_TIMEOUT = 10
EXPIRING_SOON_DAYS = 30


class CertificateFailure(str, Enum):
    UNREACHABLE = 'unreachable'
    HANDSHAKE_FAILED = 'handshake_failed'
    NO_CERTIFICATE = 'no_certificate'


class CertificateUnavailable(Exception):
    """No certificate could be obtained for a domain"""

    def __init__(self, domain: str, reason: CertificateFailure, detail: str = ''):
        self.domain = domain
        self.reason = reason
        self.detail = detail
        super().__init__(f"{domain}: {reason.value}" + (f" ({detail})" if detail else ''))

    @property
    def is_unreachable(self) -> bool:
        return self.reason == CertificateFailure.UNREACHABLE


async def check_certificate(
    domain: str,
    port: int = DEFAULT_PORT,
    timeout: float = DEFAULT_TIMEOUT,
    now: Optional[datetime] = None
) -> CertificateInfo:
    """
    Check the SSL certificate presented by domain

    Args:
        domain: Domain name (scheme, path and port are stripped)
        port: SSL port (default 443)
        timeout: Connection timeout in seconds (default 10)
        now: Reference time for status classification (default: current UTC time)

    Returns:
        CertificateInfo with issuer, validity window and status

    Raises:
        CertificateUnavailable: if the host cannot be reached or presents no
            usable certificate
    """
    host = clean_domain(domain)

    # Run blocking socket operations in executor
    loop = asyncio.get_running_loop()
    der = await loop.run_in_executor(None, _fetch_peer_certificate, host, port, timeout)

    info = parse_certificate(der, host, now=now)
    logger.debug(f"Certificate for {host}: {info.status.value}, valid until {info.valid_until.isoformat()}")
    return info


def clean_domain(domain: str) -> str:
    """Strip scheme, path and port from a domain string"""
    domain = domain.strip()
    if domain.startswith('https://'):
        domain = domain[8:]
    elif domain.startswith('http://'):
        domain = domain[7:]

    domain = domain.split('/')[0]
    domain = domain.split(':')[0]

    return domain.strip().lower()


def _fetch_peer_certificate(host: str, port: int, timeout: float) -> bytes:
    """
    Blocking function returning the DER encoded peer certificate.
    Every socket error is converted to CertificateUnavailable.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE

    try:
        with socket.create_connection((host, port), timeout=timeout) as sock:
            with context.wrap_socket(sock, server_hostname=host) as ssock:
                der = ssock.getpeercert(binary_form=True)

    except ssl.SSLError as e:
        logger.error(f"SSL handshake failed for {host}: {e}")
        raise CertificateUnavailable(host, CertificateFailure.HANDSHAKE_FAILED, str(e)) from e

    except socket.gaierror as e:
        logger.error(f"DNS resolution failed for {host}: {e}")
        raise CertificateUnavailable(host, CertificateFailure.UNREACHABLE, f"DNS resolution failed: {e}") from e

    except (socket.timeout, TimeoutError) as e:
        logger.error(f"SSL check timeout for {host}")
        raise CertificateUnavailable(host, CertificateFailure.UNREACHABLE, 'Connection timeout') from e

    except OSError as e:
        logger.error(f"Connection to {host}:{port} failed: {e}")
        raise CertificateUnavailable(host, CertificateFailure.UNREACHABLE, str(e)) from e

    if not der:
        raise CertificateUnavailable(host, CertificateFailure.NO_CERTIFICATE, 'Peer presented no certificate')

    return der


def parse_certificate(der: bytes, domain: str, now: Optional[datetime] = None) -> CertificateInfo:
    """Decode a DER certificate into CertificateInfo"""
    try:
        cert = x509.load_der_x509_certificate(der)
    except ValueError as e:
        raise CertificateUnavailable(domain, CertificateFailure.NO_CERTIFICATE, f"Unparseable certificate: {e}") from e

    valid_from = cert.not_valid_before_utc
    valid_until = cert.not_valid_after_utc

    return CertificateInfo(
        domain=domain,
        issuer=_issuer_name(cert),
        valid_from=valid_from,
        valid_until=valid_until,
        status=classify_certificate(valid_until, now),
        subject=_name_attribute(cert.subject, NameOID.COMMON_NAME) or domain,
        serial_number=format(cert.serial_number, 'X'),
        fingerprint=hashlib.sha256(der).hexdigest().upper(),
    )


def classify_certificate(valid_until: datetime, now: Optional[datetime] = None) -> CertificateStatus:
    """
    Classify a certificate by its not-after date

    expired: valid_until < now
    expiring_soon: now <= valid_until < now + 30 days
    valid: otherwise
    """
    if now is None:
        now = datetime.now(timezone.utc)

    if valid_until < now:
        return CertificateStatus.EXPIRED
    if valid_until < now + timedelta(days=EXPIRING_SOON_DAYS):
        return CertificateStatus.EXPIRING_SOON
    return CertificateStatus.VALID


def _issuer_name(cert: x509.Certificate) -> str:
    # Common name first, then organization
    return (
        _name_attribute(cert.issuer, NameOID.COMMON_NAME)
        or _name_attribute(cert.issuer, NameOID.ORGANIZATION_NAME)
        or 'Unknown'
    )


def _name_attribute(name: x509.Name, oid) -> Optional[str]:
    attributes = name.get_attributes_for_oid(oid)
    if not attributes:
        return None
    value = attributes[0].value
    return value if isinstance(value, str) else value.decode('utf-8', errors='replace')
