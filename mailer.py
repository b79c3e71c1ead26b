import logging
import os
import secrets

import resend

logger = logging.getLogger(__name__)

RESEND_API_KEY = (os.getenv("RESEND_API_KEY") or "").strip()
MAIL_FROM = os.getenv("MAIL_FROM", "Flame & Crumble <no-reply@flameandcrumble.com>")
VERIFICATION_CODE_LENGTH = 6


def generate_verification_code(length: int = VERIFICATION_CODE_LENGTH) -> str:
    return f"{secrets.randbelow(10 ** length):0{length}d}"


def send_verification_email(email: str, code: str, ttl_minutes: int) -> bool:
    """Deliver a verification code. Returns False when delivery failed.

    Without RESEND_API_KEY the code is only logged, which is enough for local
    development.
    """
    if not RESEND_API_KEY:
        logger.info("Verification code for %s: %s (email delivery not configured)", email, code)
        return True

    resend.api_key = RESEND_API_KEY
    payload = {
        "from": MAIL_FROM,
        "to": [email],
        "subject": "Verify your email",
        "text": f"Your verification code is {code}. Enter it within {ttl_minutes} minutes to confirm this email.",
    }
    try:
        response = resend.Emails.send(payload)
    except Exception as e:
        logger.error("Verification email to %s failed: %s", email, e)
        return False
    if not isinstance(response, dict) or not response.get("id"):
        logger.error("Verification email to %s failed: %s", email, response)
        return False
    return True
