"""
Outbound email over SMTP.
"""
import smtplib
from email.message import EmailMessage

from logging_config import get_logger
from settings import settings

logger = get_logger("shopsmart.mailer")


class Mailer:
    """Sends HTML mail through the configured SMTP relay."""

    def __init__(self, host: str, port: int, user: str, password: str, use_tls: bool = True):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls

    @property
    def admin_address(self) -> str:
        return self.user

    def send(self, to: str, subject: str, html: str) -> None:
        message = EmailMessage()
        message["From"] = f"ShopSmart <{self.user}>"
        message["To"] = to
        message["Subject"] = subject
        message.set_content("This message requires an HTML capable mail client.")
        message.add_alternative(html, subtype="html")

        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.user:
                smtp.login(self.user, self.password)
            smtp.send_message(message)
        logger.info("Mail sent", to=to, subject=subject)


mailer = Mailer(
    host=settings.MAIL_HOST,
    port=settings.MAIL_PORT,
    user=settings.MAIL_USER,
    password=settings.MAIL_PASSWORD,
    use_tls=settings.MAIL_USE_TLS,
)


def get_mailer() -> Mailer:
    return mailer
