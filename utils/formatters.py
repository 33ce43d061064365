"""
Message formatters for DomainSentinel alerts.
Builds the email HTML, the SMS text and the Telegram markdown for one alert.
"""

from datetime import datetime, timezone
from html import escape
from typing import Dict, Any

from models import AlertMessage, AlertType, MonitoredTarget

EMOJI_MAP = {
    AlertType.DOMAIN_EXPIRY: '⏰',
    AlertType.SSL_EXPIRY: '⚠️',
    AlertType.SSL_INVALID: '🔒',
    AlertType.DOMAIN_DOWNTIME: '🔴',
}

EMAIL_TEMPLATE = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <div style="background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); color: white; padding: 20px; text-align: center;">
    <h1 style="margin: 0;">Domain Manager Alert</h1>
  </div>
  <div style="padding: 20px; background: #f9f9f9;">
    <p>Hello {user_name},</p>
    <div style="background: white; padding: 15px; border-radius: 5px; margin: 15px 0;">
      {message}
    </div>
    <p style="color: #666; font-size: 12px;">
      This is an automated alert from your Domain Manager system.
      <br>
      Please log in to your dashboard to take action.
    </p>
  </div>
  <div style="background: #333; color: white; padding: 15px; text-align: center; font-size: 12px;">
    &copy; {year} Domain Manager. All rights reserved.
  </div>
</div>
"""


def _format_date(value: Any) -> str:
    if value is None:
        return 'Unknown'
    if isinstance(value, datetime):
        return value.strftime('%Y-%m-%d')
    return str(value)


def format_alert_message(alert_type: AlertType, target: MonitoredTarget, details: Dict[str, Any]) -> AlertMessage:
    """
    Render an alert for every channel.

    Args:
        alert_type: Type of alert
        target: Domain the alert is about
        details: Alert-specific details ('days_remaining', 'expiry_date',
            'issuer', 'error', 'timestamp')

    Returns:
        AlertMessage
    """
    domain = target.domain_name
    safe_domain = escape(domain)
    emoji = EMOJI_MAP.get(alert_type, '⚠️')
    days = details.get('days_remaining')

    if alert_type == AlertType.DOMAIN_EXPIRY:
        expiry = _format_date(details.get('expiry_date', target.expiry_date))
        registrar = target.registrar or 'Not specified'
        subject = f"Domain Expiry Alert - {domain}"
        body = (
            f"<h3>Domain Expiry Warning</h3>"
            f"<p>Your domain <strong>{safe_domain}</strong> will expire in <strong>{days} days</strong>.</p>"
            f"<p><strong>Expiry Date:</strong> {escape(expiry)}</p>"
            f"<p><strong>Registrar:</strong> {escape(registrar)}</p>"
            f"<p>Please renew your domain to avoid service interruption.</p>"
        )
        sms = f"Domain {domain} expires in {days} days"
        chat = (
            f"{emoji} **Domain Registration Expiring!**\n\n"
            f"Domain: **{domain}**\n"
            f"Days Remaining: **{days}**\n"
            f"Expiry Date: {expiry}\n"
            f"Registrar: {registrar}\n\n"
            f"Action Required: Renew domain registration"
        )

    elif alert_type == AlertType.SSL_EXPIRY:
        expiry = _format_date(details.get('expiry_date'))
        issuer = details.get('issuer') or 'Unknown'
        subject = f"SSL Certificate Expiry Alert - {domain}"
        body = (
            f"<h3>SSL Certificate Expiry Warning</h3>"
            f"<p>The SSL certificate for <strong>{safe_domain}</strong> will expire in <strong>{days} days</strong>.</p>"
            f"<p><strong>Expiry Date:</strong> {escape(expiry)}</p>"
            f"<p><strong>Issuer:</strong> {escape(issuer)}</p>"
            f"<p>Please renew your SSL certificate to maintain secure connections.</p>"
        )
        sms = f"SSL certificate for {domain} expires in {days} days"
        chat = (
            f"{emoji} **SSL Certificate Expiring Soon!**\n\n"
            f"Domain: **{domain}**\n"
            f"Days Remaining: **{days}**\n"
            f"Expiry Date: {expiry}\n"
            f"Issuer: {issuer}\n\n"
            f"Action Required: Renew certificate before expiry"
        )

    elif alert_type == AlertType.SSL_INVALID:
        error = details.get('error') or 'Certificate is not valid'
        subject = f"SSL Certificate Problem - {domain}"
        body = (
            f"<h3>SSL Certificate Problem Detected</h3>"
            f"<p>The SSL certificate for <strong>{safe_domain}</strong> could not be validated.</p>"
            f"<p><strong>Problem:</strong> {escape(error)}</p>"
            f"<p>Please check the certificate installed on your server.</p>"
        )
        sms = f"SSL certificate problem for {domain}: {error}"
        chat = (
            f"{emoji} **SSL Certificate Problem!**\n\n"
            f"Domain: **{domain}**\n"
            f"Problem: {error}\n\n"
            f"Action Required: Check the installed certificate"
        )

    elif alert_type == AlertType.DOMAIN_DOWNTIME:
        error = details.get('error') or 'Domain appears to be down'
        timestamp = details.get('timestamp') or datetime.now(timezone.utc).isoformat()
        subject = f"Domain Downtime Alert - {domain}"
        body = (
            f"<h3>Domain Downtime Detected</h3>"
            f"<p>Your domain <strong>{safe_domain}</strong> appears to be down or unreachable.</p>"
            f"<p><strong>Error:</strong> {escape(error)}</p>"
            f"<p><strong>Time:</strong> {escape(str(timestamp))}</p>"
            f"<p>Please check your domain's status and take necessary action.</p>"
        )
        sms = f"Domain {domain} is down: {error}"
        chat = (
            f"{emoji} **Website Down!**\n\n"
            f"Domain: **{domain}**\n"
            f"Status: **DOWN**\n"
            f"Error: {error}\n"
            f"Timestamp: {timestamp}\n\n"
            f"Action Required: Check website immediately"
        )

    else:
        raise ValueError(f"Unsupported alert type: {alert_type}")

    html_body = EMAIL_TEMPLATE.format(
        user_name=escape(target.owner.name or 'there'),
        message=body,
        year=datetime.now(timezone.utc).year
    )

    return AlertMessage(subject=subject, html_body=html_body, sms_body=sms, chat_text=chat)
