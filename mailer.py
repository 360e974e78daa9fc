"""
Transactional email for the helpdesk and the store.

Messages go out through Resend. Without RESEND_API_KEY nothing is sent and
the message is only logged, which keeps local development quiet.
"""
import logging
import os
from datetime import datetime, timezone
from html import escape
from typing import Iterable, List

import resend

logger = logging.getLogger(__name__)

APP_NAME = os.getenv("APP_NAME", "HelpDeskPro")
APP_URL = os.getenv("APP_URL", os.getenv("FRONTEND_URL", "http://localhost:3000"))
MAIL_FROM = os.getenv("MAIL_FROM", f"{APP_NAME} <onboarding@resend.dev>")
RESEND_API_KEY = (os.getenv("RESEND_API_KEY") or "").strip()


class MailerError(Exception):
    pass


def send_email(to: str, subject: str, html: str):
    if not RESEND_API_KEY:
        logger.info("RESEND_API_KEY not set, skipping email %r to %s", subject, to)
        return False
    resend.api_key = RESEND_API_KEY
    payload = {"from": MAIL_FROM, "to": [to], "subject": subject, "html": html}
    try:
        response = resend.Emails.send(payload)
    except Exception as exc:
        raise MailerError(f"Failed to send {subject!r} to {to}: {exc}") from exc
    logger.info("Sent %r to %s", subject, to)
    return response


def send_quietly(func, *args) -> bool:
    """Run a send_* helper on the request path; True only when the message went out."""
    try:
        return func(*args) is not False
    except MailerError as exc:
        logger.warning("%s", exc)
        return False


def _card(title: str, body: str, link: str, link_label: str, footer: str) -> str:
    return f"""
    <div style="font-family: Arial, sans-serif; background:#f5f5f5; padding:30px;">
      <div style="max-width:600px;margin:auto;background:#ffffff;border-radius:12px;padding:24px;">
        <h2 style="text-align:center;font-size:22px;color:#111;">{title}</h2>
        {body}
        <div style="text-align:center;margin-top:24px;">
          <a href="{link}" style="background:#111;color:#fff;padding:10px 22px;border-radius:8px;text-decoration:none;">
            {link_label}
          </a>
        </div>
        <p style="font-size:12px;color:#888;margin-top:24px;text-align:center;">{footer}</p>
      </div>
    </div>
    """


def send_welcome_email(to: str, name: str):
    year = datetime.now(timezone.utc).year
    body = f"""
        <p>Hello <strong>{escape(name or "")}</strong>,</p>
        <p>Your account has been created. You can now submit support tickets,
        track your requests and shop our latest drops.</p>
    """
    html = _card(f"Welcome to {APP_NAME}", body, APP_URL, f"Go to {APP_NAME}",
                 f"&copy; {year} {APP_NAME}. All rights reserved.")
    return send_email(to, f"Welcome to {APP_NAME}", html)


def send_ticket_created_email(to: str, ticket_id: str, title: str):
    body = f"""
        <p>We received your support request:</p>
        <p style="font-weight:600;">"{escape(title)}"</p>
        <p>Our support team will review it and get back to you as soon as possible.</p>
    """
    html = _card(f"Ticket created in {APP_NAME}", body, f"{APP_URL}/support/{ticket_id}",
                 "View ticket", f"Thanks for trusting {APP_NAME}.")
    return send_email(to, f"[{APP_NAME}] Ticket created", html)


def send_ticket_reply_email(to: str, ticket_id: str, title: str, reply: str):
    body = f"""
        <p>A new reply was added to your ticket:</p>
        <p style="font-weight:600;">"{escape(title)}"</p>
        <div style="background:#f7f7f7;border-radius:8px;padding:12px 14px;">
          <p style="white-space:pre-line;margin:0;">{escape(reply)}</p>
        </div>
    """
    html = _card("New reply on your ticket", body, f"{APP_URL}/support/{ticket_id}",
                 "View conversation", f"{APP_NAME} support team.")
    return send_email(to, f"[{APP_NAME}] New reply on your ticket", html)


def send_ticket_resolved_email(to: str, ticket_id: str, title: str):
    body = f"""
        <p>The following ticket was marked as <strong>resolved</strong>:</p>
        <p style="font-weight:600;">"{escape(title)}"</p>
    """
    html = _card("Your ticket has been resolved", body, f"{APP_URL}/support/{ticket_id}",
                 "View ticket", "If the problem persists you can open a new ticket.")
    return send_email(to, f"[{APP_NAME}] Ticket resolved", html)


def send_pending_reminder_email(to: str, ticket_id: str, title: str):
    body = f"""
        <p>This ticket needs attention:</p>
        <p style="font-weight:600;">{escape(title)}</p>
        <p>It was created more than 24 hours ago and has no agent reply.</p>
    """
    html = _card("Pending ticket without reply", body, f"{APP_URL}/agent/{ticket_id}",
                 "Open ticket", f"{APP_NAME} reminders.")
    return send_email(to, "Reminder: ticket without reply", html)


def render_new_products(products: Iterable[dict]) -> str:
    blocks: List[str] = []
    for p in products:
        images = p.get("images") or []
        img = ""
        if images and images[0].get("url"):
            img = f'<img src="{escape(images[0]["url"])}" width="220" style="border-radius:8px;" />'
        blocks.append(
            f'<div style="margin-bottom:20px;">{img}'
            f'<h3>{escape(p.get("title", ""))}</h3>'
            f'<p><strong>${p.get("price", 0):.2f}</strong></p></div>'
        )
    return "".join(blocks)


def send_new_products_email(to: str, products: List[dict]):
    body = f"""
        <h3 style="font-family:sans-serif;">New arrivals in the last 24 hours</h3>
        {render_new_products(products)}
    """
    html = _card("New drops today", body, f"{APP_URL}/products", "Shop now", APP_NAME)
    return send_email(to, "New KOI drops today!", html)
