import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from core.config import settings
from core.queue import SEND_VERIFICATION_EMAIL, SEND_PASSWORD_RESET_EMAIL, SEND_WELCOME_EMAIL
from utils.logger import get_logger

# Setup logger
logger = get_logger(__name__)


def send_email(to_email: str, subject: str, body: str):
    # Skip email sending in test environment
    if settings.ENV == "testing":
        logger.info(
            "[TEST MODE] Email skipped",
            extra={"recipient": to_email, "subject": subject}
        )
        return

    logger.debug(
        "Attempting to send email",
        extra={"recipient": to_email, "subject": subject}
    )

    message = MIMEMultipart("alternative")
    message["Subject"] = subject
    message["From"] = settings.MAIL_FROM
    message["To"] = to_email
    message.attach(MIMEText(body, "html"))

    try:
        with smtplib.SMTP(settings.MAIL_SERVER, settings.MAIL_PORT) as server:
            server.starttls()
            server.login(settings.MAIL_USERNAME, settings.MAIL_PASSWORD)
            server.sendmail(settings.MAIL_FROM, to_email, message.as_string())

        logger.info(
            "Email sent successfully",
            extra={"recipient": to_email, "subject": subject}
        )

    except smtplib.SMTPException as e:
        logger.error(
            f"Failed to send email: {str(e)}",
            extra={
                "recipient": to_email,
                "subject": subject,
                "error": str(e),
                "error_type": type(e).__name__
            },
            exc_info=True
        )
        raise


def build_verification_email(name: str, token: str) -> tuple[str, str]:
    verify_url = f"{settings.FRONTEND_URL}/verify-email?token={token}"
    body = f"""
    <html>
    <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
        <h2>Welcome, {name}!</h2>
        <p>Please confirm your email address:</p>
        <a href="{verify_url}">Verify Email</a>
        <p>This link expires in {settings.EMAIL_VERIFICATION_EXPIRE_HOURS} hours.</p>
        <p>If you didn't create an account, please ignore this email.</p>
    </body>
    </html>
    """
    return "Verify Your Email", body


def build_password_reset_email(name: str, token: str) -> tuple[str, str]:
    reset_url = f"{settings.FRONTEND_URL}/reset-password?token={token}"
    body = f"""
    <html>
    <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
        <h2>Password Reset Request</h2>
        <p>Hi {name}, we received a request to reset your password.</p>
        <a href="{reset_url}">Reset Password</a>
        <p>This link expires in {settings.PASSWORD_RESET_EXPIRE_MINUTES} minutes.</p>
        <p><strong>Security Notice:</strong> If you didn't request this, ignore this email.
        Your password will remain unchanged.</p>
    </body>
    </html>
    """
    return "Reset Your Password", body


def build_welcome_email(name: str) -> tuple[str, str]:
    body = f"""
    <html>
    <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
        <h2>Your email is verified</h2>
        <p>Thanks {name}, your account is ready.</p>
    </body>
    </html>
    """
    return "Welcome!", body


def process_job(job: dict):
    """Renders and sends the email described by a notification job."""
    kind = job.get("kind")
    payload = job.get("payload", {})

    if kind == SEND_VERIFICATION_EMAIL:
        subject, body = build_verification_email(payload["name"], payload["token"])
    elif kind == SEND_PASSWORD_RESET_EMAIL:
        subject, body = build_password_reset_email(payload["name"], payload["token"])
    elif kind == SEND_WELCOME_EMAIL:
        subject, body = build_welcome_email(payload["name"])
    else:
        logger.warning("Unknown email job type", extra={"job_kind": kind, "job_id": job.get("id")})
        return

    send_email(to_email=payload["email"], subject=subject, body=body)
