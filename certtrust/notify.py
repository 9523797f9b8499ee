import io
import os
import logging
import smtplib
from email.message import EmailMessage
from email.utils import make_msgid

import qrcode

from .uploads import display_name

logger = logging.getLogger(__name__)


def create_qr_png(data: str, size: int = 200) -> bytes:
    qr = qrcode.QRCode(box_size=10, border=2)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white").convert("RGBA")
    img = img.resize((size, size))
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    return buffer.getvalue()


def build_html(recipient_name, transaction_hash, verification_url, qr_cid):
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
      <h1 style="color: #2563eb;">Certificate Issued</h1>
      <h2>Dear {recipient_name},</h2>
      <p>Your academic certificate has been issued and recorded on the blockchain.
         The certificate file is attached to this email.</p>
      <h3>Transaction Hash:</h3>
      <p style="font-family: monospace; word-break: break-all;">{transaction_hash}</p>
      <h3>Verify Your Certificate:</h3>
      <p>Open this <a href="{verification_url}">verification link</a> or scan the QR code below.</p>
      <img src="cid:{qr_cid[1:-1]}" alt="QR Code for verification" width="180" height="180"/>
    </div>
    """


class CertificateMailer:
    """Best-effort delivery of an issued certificate to its recipient."""

    def __init__(self, settings):
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.user = settings.smtp_user
        self.password = settings.smtp_pass
        self.sender = settings.smtp_from or settings.smtp_user

    @property
    def configured(self):
        return bool(self.host and self.user and self.password)

    def build_message(self, recipient_email, recipient_name, transaction_hash, attachment_path, verification_url):
        msg = EmailMessage()
        msg["Subject"] = "Your Academic Certificate - Blockchain Verified"
        msg["From"] = self.sender
        msg["To"] = recipient_email
        msg.set_content(
            f"Dear {recipient_name}, your certificate has been issued on the blockchain. "
            f"Transaction hash: {transaction_hash}. Verification link: {verification_url}"
        )

        qr_cid = make_msgid()
        msg.add_alternative(build_html(recipient_name, transaction_hash, verification_url, qr_cid), subtype="html")
        msg.get_payload()[1].add_related(
            create_qr_png(verification_url), maintype="image", subtype="png", cid=qr_cid,
            filename="verification-qrcode.png",
        )

        if attachment_path and os.path.exists(attachment_path):
            with open(attachment_path, "rb") as f:
                data = f.read()
            subtype = "pdf" if attachment_path.lower().endswith(".pdf") else "octet-stream"
            filename = display_name(attachment_path)
            msg.add_attachment(data, maintype="application", subtype=subtype, filename=filename)
        return msg

    def send(self, recipient_email, recipient_name, transaction_hash, attachment_path, verification_url) -> bool:
        if not self.configured:
            logger.info("SMTP not configured; skipping email to %s", recipient_email)
            return False
        msg = self.build_message(recipient_email, recipient_name, transaction_hash, attachment_path, verification_url)

        if self.port == 465:
            server = smtplib.SMTP_SSL(self.host, self.port)
        else:
            server = smtplib.SMTP(self.host, self.port or 587)
            server.starttls()
        try:
            server.login(self.user, self.password)
            server.send_message(msg)
        finally:
            server.quit()
        logger.info("Certificate email sent to %s", recipient_email)
        return True
