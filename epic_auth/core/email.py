"""
Email-related utilities.

This module contains the functions to send emails. It can use SMTP or Mailjet
to send emails, depending on the EMAIL_METHOD setting. It is the delivery
channel of the verification codes: a failed send raises an HTTPException,
which the verification flows surface as a retryable delivery failure.
"""
from datetime import datetime, timedelta, timezone
import smtplib
import ssl
from email.mime.text import MIMEText
from fastapi import Request
from fastapi.exceptions import HTTPException
from mailjet_rest import Client
from starlette.concurrency import run_in_threadpool

from epic_auth.core.config import settings, logger
from epic_auth.core.utils import get_info_from_request, read_html_template, render_html_template


SUBJECTS = {
    "onboarding": "Welcome to {PROJECT_NAME}",
    "reset-password": "{PROJECT_NAME} Password Reset",
    "change-email": "{PROJECT_NAME} Email Change Verification",
}


def _send_mj_email(recipients: list[str], subject: str, html_content: str) -> bool:
    mailjet = Client(auth=(settings.MJ_APIKEY_PUBLIC,
                           settings.MJ_APIKEY_PRIVATE), version='v3.1')
    data = {
        'Messages': [
            {
                "From": {
                    "Email": settings.MJ_SENDER_EMAIL,
                    "Name": settings.PROJECT_NAME
                },
                "To": [{"Email": recipient}],
                "Subject": subject,
                "HTMLPart": html_content
            }
            for recipient in recipients
        ]
    }
    result = mailjet.send.create(data=data)
    if result.status_code == 200:
        logger.info(
            f"""Email Sent with MailJet API
            - To {recipients}
            - From {settings.MJ_SENDER_EMAIL}
            - Subject: {subject}""")
        return True
    logger.error(f"Failed to send email to {recipients}")
    logger.error(result.json())
    raise HTTPException(
        status_code=502, detail=f"Failed to send email. {result.json()}")


def _send_smtp_email(recipients: list[str], subject: str, html_content: str) -> bool:
    try:
        context = ssl.create_default_context()
        with smtplib.SMTP(host=settings.SMTP_HOST, port=settings.SMTP_PORT) as server:
            server.ehlo()
            if settings.SMTP_TLS:
                server.starttls(context=context)
                server.ehlo()
            server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
            for recipient in recipients:
                html_message = MIMEText(html_content, "html")
                html_message["Subject"] = subject
                html_message["From"] = f"{settings.PROJECT_NAME} <{settings.SMTP_SENDER_EMAIL}>"
                html_message["To"] = recipient
                server.sendmail(settings.SMTP_USER, recipient,
                                html_message.as_string())
        logger.info(
            f"""Email Sent with SMTP Server
                - Host: {settings.SMTP_HOST}
                - To {recipients}
                - From {settings.SMTP_SENDER_EMAIL}
                - Subject: {subject}""")
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email to {recipients}")
        logger.error(e)
        raise HTTPException(
            status_code=502, detail=f"Failed to send email. {e}") from e


async def send_email(recipients: list[str] | str, subject: str, html_content: str) -> bool:
    """
    Send an email to a single recipient or a list of recipients.

    :param list[str] | str recipients: the recipient(s) of the email.
    :param str subject: the subject of the email.
    :param str html_content: the content of the email.
    :return bool: True if the email was handed to the provider (or discarded
        because EMAIL_METHOD is 'none').
    :raises HTTPException: 502 if the provider refused the email.
    """
    if isinstance(recipients, str):
        recipients = [recipients]
    html_content = render_html_template(html_content)

    match settings.EMAIL_METHOD:
        case "smtp":
            logger.debug("Email sent via SMTP")
            return await run_in_threadpool(_send_smtp_email, recipients, subject, html_content)
        case "mj":
            logger.debug("Email sent via MailJet API")
            return await run_in_threadpool(_send_mj_email, recipients, subject, html_content)
        case "none":
            logger.warning("Email Method is set to 'none', NO EMAIL SENT")
            return True
        case _:
            logger.critical("Invalid Email Method")
            raise HTTPException(status_code=500, detail="Invalid Email Method")


async def send_verification_email(
    recipient: str,
    otp_code: str,
    verify_url: str,
    verification_type: str,
    expires_in: int = settings.OTP_EMAIL_INTERVAL,
    request: Request = None
) -> bool:
    """
    Send an email with a verification code and a link that submits it.

    :param str recipient: the recipient of the email.
    :param str otp_code: the one-time code to be sent.
    :param str verify_url: the link that verifies the code in one click.
    :param str verification_type: the flow the code belongs to, selects the subject.
    :param int expires_in: the lifetime of the code in seconds.
    :param Request request: the request object.
        If not provided, the email sent will not contain any information about the
        device, browser, or IP address that asked for the code.
    :return bool: True if the email was sent.
    """
    info = get_info_from_request(request)
    expiration_date = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
    context = {
        "LOCATION": info["location"],
        "DEVICE": info["device"],
        "BROWSER": info["browser"],
        "IP_ADDRESS": info["ip_address"],
        "OTP_CODE": otp_code,
        "VERIFY_URL": verify_url,
        "EXPIRATION_DATE": expiration_date.strftime("%B %d, %Y %H:%M:%S %Z"),
    }
    html = render_html_template(read_html_template("email_verification.html"), context)
    subject = SUBJECTS.get(verification_type, "{PROJECT_NAME} Verification Code").format(
        PROJECT_NAME=settings.PROJECT_NAME)
    logger.debug(f"Sending Verification Email ({verification_type}): {recipient}")
    return await send_email(recipient, subject, html)


async def send_email_change_notice(recipient: str, new_email: str) -> bool:
    """
    Notify the previous address of an account that its email was changed.

    :param str recipient: the previous email of the account.
    :param str new_email: the new email of the account.
    :return bool: True if the email was sent.
    """
    html = render_html_template(read_html_template("email_change_notice.html"), {
        "NEW_EMAIL": new_email,
    })
    logger.debug(f"Sending Email Change Notice: {recipient}")
    return await send_email(recipient, f"{settings.PROJECT_NAME} email changed", html)
