import smtplib
from email.message import EmailMessage

from flask import current_app


def mail_configured() -> bool:
    cfg = current_app.config
    return bool(cfg.get('MAIL_USERNAME') and cfg.get('MAIL_PASSWORD'))


def send_email(to: str, subject: str, body: str) -> bool:
    """Send a plain-text mail over SMTP (SSL).

    Returns False without sending when SMTP credentials are not configured.
    Transport errors propagate to the caller.
    """
    cfg = current_app.config
    if not mail_configured():
        current_app.logger.warning(f"[mail] not configured, mail to {to} not sent")
        return False

    sender = cfg.get('MAIL_FROM_EMAIL') or cfg['MAIL_USERNAME']
    msg = EmailMessage()
    msg['From'] = f"{cfg.get('MAIL_FROM_NAME', 'TaleOn')} <{sender}>"
    msg['To'] = to
    msg['Subject'] = subject
    msg.set_content(body)

    with smtplib.SMTP_SSL(cfg['MAIL_SERVER'], int(cfg['MAIL_PORT'])) as smtp:
        smtp.login(cfg['MAIL_USERNAME'], cfg['MAIL_PASSWORD'])
        smtp.send_message(msg)
    current_app.logger.info(f"[mail] sent '{subject}' to {to}")
    return True
