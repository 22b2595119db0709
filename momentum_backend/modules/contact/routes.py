"""
Momentum AI - Contact Form Route
"""
import os
import re
import html
import logging

from flask import Blueprint, jsonify

from ...security_config import limiter, limit_body, json_body, CONTACT_LIMIT
from ..trials.trial_validation import get_client_ip
from .email_sender import send_email, is_smtp_configured

logger = logging.getLogger(__name__)

contact_bp = Blueprint('contact', __name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_STRIP_RE = re.compile(r"[^0-9+\-() ]")
ALLOWED_SUBJECTS = ("general", "sales", "enterprise", "support", "partnership", "other")
DEFAULT_CONTACT_EMAIL = "sales@momentumai.com"


def _text(value) -> str:
    return str(value if value is not None else "").strip()


def sanitize_contact_form(body: dict) -> dict:
    return {
        "name": re.sub(r"[<>]", "", _text(body.get("name")))[:100],
        "email": _text(body.get("email")).lower()[:100],
        "subject": _text(body.get("subject")).lower(),
        "message": _text(body.get("message")).replace("\0", "")[:5000],
        "company": re.sub(r"[<>]", "", _text(body.get("company")))[:100],
        "phone": PHONE_STRIP_RE.sub("", _text(body.get("phone")))[:20],
    }


def validate_contact_form(form: dict):
    """(error, message) for the first failing field, or None"""
    if not form["name"]:
        return "Invalid name", "Please provide a valid name"
    if not EMAIL_RE.match(form["email"]):
        return "Invalid email format", "Please provide a valid email address"
    if not form["message"]:
        return "Invalid message", "Message cannot be empty"
    if form["subject"] not in ALLOWED_SUBJECTS:
        return "Invalid subject", "Please select a valid subject"
    return None


def _render_email(form: dict):
    company = form["company"] or "N/A"
    phone = form["phone"] or "N/A"
    text = (
        f"Name: {form['name']}\n"
        f"Email: {form['email']}\n"
        f"Company: {company}\n"
        f"Phone: {phone}\n"
        f"Subject: {form['subject']}\n\n"
        f"Message:\n{form['message']}\n"
    )
    esc = html.escape
    body = (
        "<h2>New Contact Form Submission</h2>\n"
        f"<p><strong>Name:</strong> {esc(form['name'])}</p>\n"
        f"<p><strong>Email:</strong> <a href=\"mailto:{esc(form['email'])}\">{esc(form['email'])}</a></p>\n"
        f"<p><strong>Company:</strong> {esc(company)}</p>\n"
        f"<p><strong>Phone:</strong> {esc(phone)}</p>\n"
        f"<p><strong>Subject:</strong> {esc(form['subject'])}</p>\n"
        "<h3>Message:</h3>\n"
        f"<p>{esc(form['message']).replace(chr(10), '<br>')}</p>\n"
    )
    return text, body


@contact_bp.route('/api/contact', methods=['POST'])
@limiter.limit(CONTACT_LIMIT)
@limit_body()
def contact():
    body = json_body()

    if body.get("_honeypot"):
        logger.warning(f"Honeypot field filled, likely spam (ip={get_client_ip()})")
        return jsonify({"success": True, "message": "Message sent successfully"})

    if not all(body.get(field) for field in ("name", "email", "subject", "message")):
        return jsonify({
            "error": "Missing required fields",
            "message": "Name, email, subject, and message are required",
        }), 400

    form = sanitize_contact_form(body)
    invalid = validate_contact_form(form)
    if invalid:
        error, message = invalid
        return jsonify({"error": error, "message": message}), 400

    logger.info(f"Contact form submission received: subject={form['subject']} "
                f"company={form['company'] or 'N/A'} ip={get_client_ip()}")

    try:
        if is_smtp_configured():
            text, body_html = _render_email(form)
            send_email(
                os.getenv("CONTACT_EMAIL") or DEFAULT_CONTACT_EMAIL,
                f"Contact Form: {form['subject']} - from {form['name']}",
                text,
                body_html,
                reply_to=form["email"],
            )
        else:
            logger.warning("SMTP not configured, email not sent. Contact form data logged only.")

        return jsonify({
            "success": True,
            "message": "Message sent successfully. We will get back to you soon!",
        })

    except Exception as e:
        logger.error(f"❌ Error processing contact form: {e}")
        return jsonify({
            "error": "Failed to send message",
            "details": "An error occurred while processing your request. Please try again later.",
        }), 500
