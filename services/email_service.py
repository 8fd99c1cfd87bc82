"""Email channel for OTP delivery.

If SMTP environment variables are not configured, falls back to dev mode and
logs a masked notice instead of sending an email.

Env vars:
  SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS, SMTP_FROM, SMTP_TIMEOUT_SECONDS
"""
import logging
import os
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape
from typing import Dict, Optional

from services.errors import DeliveryError
from utils.principals import mask_code, mask_principal

logger = logging.getLogger(__name__)

SUBJECT = "Your Unique OrozcoRealty Verification Code"
LOGO_URL = "https://cdn.prod.website-files.com/68cecb820ec3dbdca3ef9099/690045801fe6ec061af6b131_1394a00d76ce9dd861ade690dfb1a058_TOR-p-2600.png"


def _greeting_name(context: Dict) -> str:
    rank = (context.get("rank") or "").strip()
    last_name = (context.get("last_name") or context.get("lastName") or "").strip()
    return " ".join(part for part in (rank, last_name) if part) or "there"


def build_otp_bodies(code: str, context: Dict, ttl_minutes: int) -> tuple:
    """Return (text, html) bodies for the verification email."""
    name = _greeting_name(context)
    text = (
        f"Hi {name},\n\n"
        f"Your verification code is: {code}\n\n"
        f"This code expires in {ttl_minutes} minutes."
    )
    html = f"""
  <div style="font-family: Arial, sans-serif; background: #f9f9f9; padding: 30px;">
    <div style="max-width: 600px; margin: auto; background: white; border-radius: 12px; padding: 40px;">
      <h2 style="color: #3b715b; margin-top: 0;">Welcome to The Orozco Realty:</h2>
      <p style="font-size: 16px; margin: 20px 0;">Hi <strong>{escape(name)}</strong>,</p>
      <p style="font-size: 16px;">Your Unique verification code for <strong>OrozcoRealty</strong> is:</p>
      <div style="background: #f0f2f7; padding: 25px; text-align: center; border-radius: 8px; font-size: 30px; font-weight: bold; letter-spacing: 2px; margin: 20px 0;">
        {code}
      </div>
      <p style="font-size: 14px; color: #666;">This code expires in {ttl_minutes} minutes. Please safeguard it and do not share it with anyone.</p>
      <hr style="margin: 40px 0; border: none; border-top: 1px solid #eee;" />
      <div style="display: flex; align-items: center;">
        <img src="{LOGO_URL}" width="100" height="100" style="margin-right: 20px; border-radius: 12px;" alt="The Orozco Realty logo" />
        <div>
          <p style="margin: 0; font-size: 15px;">Sincerely Yours,</p>
          <p style="margin: 5px 0 0; font-weight: bold;">Elena</p>
          <p style="margin: 0;">A.I. Concierge</p>
        </div>
      </div>
    </div>
  </div>"""
    return text, html


class EmailService:
    def __init__(self, host: Optional[str] = None, port: Optional[int] = None, user: Optional[str] = None,
                 password: Optional[str] = None, sender: Optional[str] = None):
        self.host = host or os.getenv("SMTP_HOST")
        self.port = port if port is not None else int(os.getenv("SMTP_PORT", "0") or 0)
        self.user = user or os.getenv("SMTP_USER")
        self.password = password or os.getenv("SMTP_PASS")
        self.sender = sender or os.getenv("SMTP_FROM", self.user or "RealtySaSS <noreply@example.com>")
        self.timeout = float(os.getenv("SMTP_TIMEOUT_SECONDS", "15"))

    @property
    def enabled(self) -> bool:
        return all([self.host, self.port, self.user, self.password, self.sender]) and self.port > 0

    def send_otp_email(self, to_email: str, code: str, context: Optional[Dict] = None, ttl_minutes: int = 10) -> bool:
        """Synchronous send. Returns True if a real email was sent, False in dev mode.

        Raises DeliveryError when the SMTP server rejects the message or times out."""
        if not self.enabled:
            logger.info("Dev mode (no SMTP configured). OTP for %s: %s", mask_principal(to_email), mask_code(code))
            return False
        text, html = build_otp_bodies(code, context or {}, ttl_minutes)
        msg = MIMEMultipart("alternative")
        msg.attach(MIMEText(text, "plain"))
        msg.attach(MIMEText(html, "html"))
        msg["Subject"] = SUBJECT
        msg["From"] = self.sender
        msg["To"] = to_email
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls()
                server.login(self.user, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed sending OTP email to %s: %s", mask_principal(to_email), e.__class__.__name__)
            raise DeliveryError("Email send failed", channel="email") from e
        logger.info("Sent OTP email to %s", mask_principal(to_email))
        return True
