"""
DomainSentinel Monitoring Modules

This package contains the probes for SSL certificates and uptime, and the
expiry evaluation used for domain registrations.
"""

from .ssl_monitor import (
    CertificateFailure,
    CertificateUnavailable,
    check_certificate,
    classify_certificate,
)
from .uptime_monitor import check_reachability
from .domain_monitor import ExpiryEvaluation, days_remaining, evaluate_expiry

__all__ = [
    'CertificateFailure',
    'CertificateUnavailable',
    'check_certificate',
    'classify_certificate',
    'check_reachability',
    'ExpiryEvaluation',
    'days_remaining',
    'evaluate_expiry',
]
