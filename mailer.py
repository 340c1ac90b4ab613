import logging
import smtplib
from email.message import EmailMessage
from email.utils import formataddr
from socket import gaierror, timeout

from config_models import AppConfig, EmailConfig

logger = logging.getLogger(__name__)


class MailerError(Exception):
    """Exception raised for email sending errors."""

    pass


_VERIFICATION_TEXT = """\
Hello,

thank you for registering with {app_name}. Please confirm your e-mail
address by opening the link below:

{url}

If you did not create an account, you can ignore this message.
"""

_VERIFICATION_HTML = """\
<p>Hello,</p>
<p>thank you for registering with {app_name}. Please confirm your e-mail
address by clicking the link below:</p>
<p><a href="{url}">Verify e-mail</a></p>
<p>If you did not create an account, you can ignore this message.</p>
"""

_INVITATION_TEXT = """\
Hello,

you have been invited to join {tenant_name} on {app_name}. Open the link
below to choose your password:

{url}
"""

_INVITATION_HTML = """\
<p>Hello,</p>
<p>you have been invited to join <strong>{tenant_name}</strong> on {app_name}.
Click the link below to choose your password:</p>
<p><a href="{url}">Accept invitation</a></p>
"""


def send_email(
    config: EmailConfig,
    subject: str,
    recipient: str,
    text_body: str,
    html_body: str = "",
) -> bool:
    """Send a plain-text e-mail with an optional HTML alternative.

    Args:
        config: Email configuration.
        subject: Email subject.
        recipient: Email recipient address.
        text_body: Plain-text body.
        html_body: HTML body (optional).

    Returns:
        True if email was sent, False if sending is disabled.

    Raises:
        MailerError: If email sending fails.
    """
    if not config.enabled:
        logger.info(f"Email disabled, not sending '{subject}' to {recipient}")
        return False

    message = EmailMessage()
    message["Subject"] = subject
    message["From"] = formataddr((config.sender_name, config.sender))
    message["To"] = recipient
    message.set_content(text_body)
    if html_body:
        message.add_alternative(html_body, subtype="html")

    try:
        logger.info(f"Sending email to {recipient} with subject: {subject}")
        with smtplib.SMTP(config.smtp_host, config.smtp_port, timeout=30) as server:
            server.starttls()
            if config.smtp_user:
                server.login(config.smtp_user, config.smtp_password)
            server.send_message(message)
        logger.info(f"Email sent successfully to {recipient}")
        return True

    except smtplib.SMTPAuthenticationError as e:
        logger.error(f"SMTP authentication failed: {e}")
        raise MailerError(f"Email authentication failed: {e}")

    except smtplib.SMTPRecipientsRefused as e:
        logger.error(f"Recipients refused: {e}")
        raise MailerError(f"Email recipients refused: {e}")

    except smtplib.SMTPException as e:
        logger.error(f"SMTP error: {e}")
        raise MailerError(f"Failed to send email: {e}")

    except (gaierror, timeout) as e:
        logger.error(f"Network error while sending email: {e}")
        raise MailerError(f"Network error: could not connect to mail server: {e}")

    except OSError as e:
        logger.error(f"OS error while sending email: {e}")
        raise MailerError(f"Failed to send email: {e}")


def send_verification_email(
    config: EmailConfig, app_cfg: AppConfig, recipient: str, token: str
) -> bool:
    url = f"{app_cfg.frontend_url.rstrip('/')}/verify-email?token={token}"
    return send_email(
        config,
        f"Verify your e-mail - {app_cfg.name}",
        recipient,
        _VERIFICATION_TEXT.format(app_name=app_cfg.name, url=url),
        _VERIFICATION_HTML.format(app_name=app_cfg.name, url=url),
    )


def send_invitation_email(
    config: EmailConfig,
    app_cfg: AppConfig,
    recipient: str,
    token: str,
    tenant_name: str,
) -> bool:
    url = f"{app_cfg.frontend_url.rstrip('/')}/accept-invitation?token={token}"
    return send_email(
        config,
        f"You have been invited to {app_cfg.name}",
        recipient,
        _INVITATION_TEXT.format(app_name=app_cfg.name, tenant_name=tenant_name, url=url),
        _INVITATION_HTML.format(app_name=app_cfg.name, tenant_name=tenant_name, url=url),
    )
