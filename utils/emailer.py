import smtplib
from email.message import EmailMessage

from flask import current_app

from utils.errors import DeliveryError


def send_email(to_email: str, subject: str, body: str):
    host = current_app.config.get("SMTP_HOST")
    port = current_app.config.get("SMTP_PORT", 587)
    username = current_app.config.get("SMTP_USERNAME")
    password = current_app.config.get("SMTP_PASSWORD")
    from_email = current_app.config.get("SMTP_FROM_EMAIL") or username
    use_tls = current_app.config.get("SMTP_USE_TLS", True)
    timeout = current_app.config.get("SMTP_TIMEOUT_SECONDS", 10)

    if not host or not from_email:
        return False, "Email not configured"

    msg = EmailMessage()
    msg["From"] = from_email
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)

    try:
        with smtplib.SMTP(host, port, timeout=timeout) as server:
            if use_tls:
                server.starttls()
            if username and password:
                server.login(username, password)
            server.send_message(msg)
        return True, None
    except (smtplib.SMTPException, OSError) as exc:
        return False, str(exc)


class EmailSender:
    """Channel adapter used by the notification dispatcher."""

    channel = "email"

    def is_configured(self) -> bool:
        cfg = current_app.config
        return bool(cfg.get("SMTP_HOST") and (cfg.get("SMTP_FROM_EMAIL") or cfg.get("SMTP_USERNAME")))

    def send(self, to_email: str, subject: str, body: str) -> bool:
        ok, error = send_email(to_email, subject, body)
        if not ok:
            raise DeliveryError(f"email to {to_email} failed: {error}")
        return True
