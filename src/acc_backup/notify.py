"""E-mail delivery of the backup summary."""

import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr

from .config import Config

logger = logging.getLogger(__name__)


def build_message(config: Config, subject: str, lines: list[str]) -> MIMEMultipart:
    """Build a plain text plus HTML message; each summary line is one paragraph."""
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = formataddr((config.smtp_from_name, config.smtp_from_address))
    msg["To"] = ", ".join(config.smtp_to_addresses)

    msg.attach(MIMEText("\n".join(lines), "plain", "utf-8"))
    body = "<h2>ACCBackup Backup Summary</h2>" + "".join(f"<p>{html.escape(line)}</p>" for line in lines)
    msg.attach(MIMEText(body, "html", "utf-8"))
    return msg


def send_summary(config: Config, subject: str, lines: list[str]) -> bool:
    """
    E-mail the backup summary when SMTP is configured.

    Delivery problems are logged and never interrupt the run.

    Returns:
        True if the message was handed to the SMTP server
    """
    if not config.smtp_configured:
        logger.debug("SMTP host, from or to address not set, summary e-mail skipped")
        return False

    try:
        msg = build_message(config, subject, lines)
        logger.debug("Connecting to SMTP server %s:%d", config.smtp_host, config.smtp_port)
        with smtplib.SMTP(config.smtp_host, config.smtp_port) as server:
            if config.smtp_enable_ssl:
                server.starttls()
            if config.smtp_username and config.smtp_password:
                server.login(config.smtp_username, config.smtp_password)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Error emailing backup summary: %s", e)
        return False

    logger.info("Backup summary e-mailed to %d recipients", len(config.smtp_to_addresses))
    return True
