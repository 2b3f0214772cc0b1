"""
Async-safe email and SMS notifications.

smtplib is blocking, so every send runs in the loop's default executor and the
event loop never waits on SMTP. Without SMTP settings the message is logged
instead, which is also how local development and tests observe OTPs.
"""
import asyncio
import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from wishfund.core.config import settings

logger = logging.getLogger("wishfund.mailer")

_pending: set[asyncio.Future] = set()


def _naira(amount: float) -> str:
    return f"₦{amount:,.2f}"


def _get_base_html_template(
    title: str,
    content_html: str,
    button_text: str | None = None,
    button_link: str | None = None,
) -> str:
    """Wrap pre-escaped body HTML in the WishFund email layout."""
    safe_title = html.escape(title)
    button_html = ""
    if button_text and button_link:
        safe_button_text = html.escape(button_text)
        safe_button_link = html.escape(button_link, quote=True)
        button_html = f'''
        <div style="text-align: center; margin: 30px 0;">
            <a href="{safe_button_link}" style="display: inline-block; padding: 14px 28px; background-color: #f97316; color: #ffffff; text-decoration: none; border-radius: 8px; font-weight: 600; font-size: 16px;">
                {safe_button_text}
            </a>
        </div>'''

    return f'''<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{safe_title}</title>
</head>
<body style="margin: 0; padding: 0; background-color: #f3f4f6; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif;">
    <table role="presentation" width="100%" cellspacing="0" cellpadding="0" style="max-width: 600px; margin: 0 auto; padding: 20px;">
        <tr>
            <td style="background-color: #ffffff; border-radius: 16px; padding: 40px;">
                <div style="text-align: center; margin-bottom: 30px;">
                    <h1 style="margin: 0; font-size: 28px; color: #f97316; font-weight: 700;">🎁 WishFund</h1>
                </div>
                <h2 style="margin: 0 0 20px 0; font-size: 22px; color: #1f2937; text-align: center;">{safe_title}</h2>
                <div style="color: #4b5563; font-size: 16px; line-height: 1.6;">{content_html}</div>
                {button_html}
                <div style="margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; text-align: center;">
                    <p style="margin: 0; color: #9ca3af; font-size: 14px;">This is an automated message from WishFund</p>
                </div>
            </td>
        </tr>
    </table>
</body>
</html>'''


def _send_sync(to_email: str, subject: str, text_body: str, html_body: str) -> None:
    """Blocking SMTP send; run it in an executor."""
    message = MIMEMultipart("alternative")
    message["Subject"] = subject
    message["From"] = settings.smtp_from_email
    message["To"] = to_email
    message.attach(MIMEText(text_body, "plain", "utf-8"))
    message.attach(MIMEText(html_body, "html", "utf-8"))

    if settings.smtp_use_tls:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=15) as server:
            server.starttls()
            if settings.smtp_username:
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(message)
    else:
        with smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=15) as server:
            if settings.smtp_username:
                server.login(settings.smtp_username, settings.smtp_password)
            server.send_message(message)


async def _send_async(to_email: str, subject: str, text_body: str, html_body: str) -> None:
    loop = asyncio.get_running_loop()
    try:
        await loop.run_in_executor(None, _send_sync, to_email, subject, text_body, html_body)
        logger.info("Email sent to %s subject=%r", to_email, subject)
    except (smtplib.SMTPException, OSError):
        logger.exception("Failed to send email to %s subject=%r", to_email, subject)


def _send_email(to_email: str | None, subject: str, text_body: str, html_body: str) -> None:
    """Fire-and-forget email; logs instead of sending when SMTP is not configured."""
    if not to_email:
        return
    if not settings.email_notifications_enabled:
        logger.info("Email notifications disabled. Skipping email to %s: %s", to_email, subject)
        return
    if not settings.smtp_host:
        logger.info("SMTP not configured. Email for %s would be sent: %s", to_email, subject)
        logger.debug("Email body for %s: %s", to_email, text_body)
        return

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        try:
            _send_sync(to_email, subject, text_body, html_body)
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to send email to %s subject=%r", to_email, subject)
        return
    task = loop.create_task(_send_async(to_email, subject, text_body, html_body))
    _pending.add(task)
    task.add_done_callback(_pending.discard)


def send_otp_email(to_email: str, first_name: str | None, otp: str) -> None:
    greeting = f"Hi {first_name}," if first_name else "Hi,"
    text_body = (
        f"{greeting}\n\nYour WishFund verification code is {otp}.\n"
        f"It expires in {settings.otp_expire_minutes} minutes."
    )
    content = (
        f"<p>{html.escape(greeting)}</p>"
        f'<p style="font-size: 32px; font-weight: 700; letter-spacing: 8px; text-align: center;">{html.escape(otp)}</p>'
        f"<p>This code expires in {settings.otp_expire_minutes} minutes.</p>"
    )
    _send_email(to_email, "Your WishFund verification code", text_body, _get_base_html_template("Verify it's you", content))


def send_otp_sms(phone: str, otp: str) -> None:
    """SMS provider adapter; the message is only logged."""
    logger.info("SMS OTP for %s: code issued (expires in %d min)", phone, settings.otp_expire_minutes)
    logger.debug("SMS body for %s: Your WishFund code is %s", phone, otp)


def send_login_email(to_email: str | None, first_name: str | None, login_time: str) -> None:
    name = first_name or "there"
    text_body = f"Hi {name},\n\nA new sign-in to your WishFund account happened on {login_time}."
    content = (
        f"<p>Hi {html.escape(name)},</p>"
        f"<p>A new sign-in to your account happened on <strong>{html.escape(login_time)}</strong>.</p>"
        "<p>If this wasn't you, reset your password right away.</p>"
    )
    _send_email(to_email, "New sign-in to WishFund", text_body, _get_base_html_template("New sign-in", content))


def send_welcome_email(to_email: str | None, first_name: str | None) -> None:
    name = first_name or "there"
    link = f"{settings.frontend_url}/wishlists/new"
    text_body = f"Welcome to WishFund, {name}!\n\nCreate your first wishlist: {link}"
    content = (
        f"<p>Welcome aboard, {html.escape(name)}!</p>"
        "<p>Create a wishlist for your next celebration and share the link with friends.</p>"
    )
    _send_email(
        to_email,
        "Welcome to WishFund",
        text_body,
        _get_base_html_template("Welcome to WishFund", content, "Create a wishlist", link),
    )


def send_password_reset_email(to_email: str, first_name: str | None, reset_link: str) -> None:
    name = first_name or "there"
    text_body = (
        f"Hi {name},\n\nReset your WishFund password here:\n{reset_link}\n\n"
        f"The link expires in {settings.password_reset_token_expire_minutes} minutes. "
        "If you did not request this, ignore this email."
    )
    content = (
        f"<p>Hi {html.escape(name)},</p>"
        "<p>We received a request to reset your password.</p>"
        f"<p>The link expires in {settings.password_reset_token_expire_minutes} minutes.</p>"
    )
    _send_email(
        to_email,
        "Reset your WishFund password",
        text_body,
        _get_base_html_template("Password reset", content, "Reset password", reset_link),
    )


def send_password_changed_email(to_email: str | None, first_name: str | None) -> None:
    name = first_name or "there"
    text_body = f"Hi {name},\n\nYour WishFund password was changed."
    content = f"<p>Hi {html.escape(name)},</p><p>Your password was changed successfully.</p>"
    _send_email(to_email, "Your WishFund password was changed", text_body, _get_base_html_template("Password changed", content))


def send_contribution_received_email(
    to_email: str | None,
    item_name: str,
    wishlist_link: str,
    amount: float,
    total_collected: float,
    target_amount: float,
    contributor_name: str | None,
) -> None:
    progress = min(100, int(total_collected / target_amount * 100)) if target_amount > 0 else 0
    who = contributor_name or "Someone"
    text_body = (
        f"{who} contributed {_naira(amount)} toward {item_name}.\n"
        f"Progress: {_naira(total_collected)} / {_naira(target_amount)} ({progress}%)\n\n"
        f"Open your wishlist: {wishlist_link}"
    )
    content = f'''
    <p style="text-align: center; font-size: 18px;"><strong>{html.escape(who)}</strong> contributed toward <strong>{html.escape(item_name)}</strong></p>
    <p style="text-align: center; font-size: 24px; font-weight: 700; color: #10b981;">{_naira(amount)}</p>
    <div style="background-color: #e5e7eb; border-radius: 8px; height: 12px; overflow: hidden;">
        <div style="background: #f97316; height: 100%; width: {progress}%;"></div>
    </div>
    <p style="text-align: center;">{_naira(total_collected)} of {_naira(target_amount)} raised</p>
    '''
    _send_email(
        to_email,
        "💰 New contribution to your wishlist",
        text_body,
        _get_base_html_template("New contribution", content, "Open wishlist", wishlist_link),
    )


def send_contributor_reply_email(
    to_email: str | None,
    contributor_name: str,
    owner_name: str,
    reply: str,
) -> None:
    text_body = f"Hi {contributor_name},\n\n{owner_name} replied to your gift:\n\n{reply}"
    content = (
        f"<p>Hi {html.escape(contributor_name)},</p>"
        f"<p>{html.escape(owner_name)} replied to your gift:</p>"
        f'<blockquote style="border-left: 4px solid #f97316; margin: 0; padding-left: 12px;">{html.escape(reply)}</blockquote>'
    )
    _send_email(to_email, f"{owner_name} says thank you", text_body, _get_base_html_template("A note for you", content))


def send_withdrawal_email(
    to_email: str | None,
    amount: float,
    succeeded: bool,
    reason: str | None = None,
) -> None:
    if succeeded:
        subject = "Your withdrawal is on its way"
        text_body = f"Your withdrawal of {_naira(amount)} has been completed."
        content = f"<p>Your withdrawal of <strong>{_naira(amount)}</strong> has been completed.</p>"
    else:
        subject = "Your withdrawal failed"
        text_body = (
            f"Your withdrawal of {_naira(amount)} failed: {reason or 'unknown error'}. "
            "The funds are back in your wallet."
        )
        content = (
            f"<p>Your withdrawal of <strong>{_naira(amount)}</strong> failed.</p>"
            f"<p>Reason: {html.escape(reason or 'unknown error')}</p>"
            "<p>The funds are back in your wallet.</p>"
        )
    _send_email(to_email, subject, text_body, _get_base_html_template(subject, content))
