"""
Digest email rendering and sending via Resend API.

render_digest() turns approved tools plus a recipient into a message dict;
send_email() delivers one message. Both are the defaults used by the
dispatcher and can be swapped for other callables with the same shape.
"""

import os
from datetime import date
from html import escape
from typing import Any, Dict, List
import resend

from models import Recipient, ToolSummary
from models.types import WEEKLY


# Initialize Resend with API key from environment
resend.api_key = os.getenv('RESEND_API_KEY')

DESCRIPTION_LIMIT = 120


def _frontend_base_url() -> str:
    return os.getenv('FRONTEND_BASE_URL', 'http://localhost:3000').rstrip('/')


def _prepare_tool_data(tools: List[ToolSummary], max_tools: int) -> List[Dict[str, Any]]:
    """
    Extract and format display fields for the tools shown in one digest.

    Args:
        tools: Approved tools in the window, newest first
        max_tools: Maximum number of tools listed in the email

    Returns:
        List of dicts with all formatted fields ready for display
    """
    prepared_tools = []
    for tool in tools[:max_tools]:
        description = tool.description or ''
        if len(description) > DESCRIPTION_LIMIT:
            description = description[:DESCRIPTION_LIMIT] + '...'

        prepared_tools.append({
            'name': tool.name,
            'description': description,
            'tool_url': tool.url or f"{_frontend_base_url()}/tools/{tool.id}",
            'image_url': tool.image_url,
        })

    return prepared_tools


def _build_subject(kind: str, tool_count: int, digest_date: date | None = None) -> str:
    date_str = (digest_date or date.today()).strftime('%b %d')
    label = 'This Week' if kind == WEEKLY else 'Today'
    noun = 'Tool' if tool_count == 1 else 'Tools'
    return f"{tool_count} New AI {noun} {label} - {date_str}"


def _build_digest_html(
    kind: str,
    prepared_tools: List[Dict[str, Any]],
    tool_count: int,
    unsubscribe_url: str
) -> str:
    """
    Build HTML email body for a tool digest.

    Args:
        kind: 'daily' or 'weekly'
        prepared_tools: Tools with display fields pre-extracted
        tool_count: Total tools in the window (may exceed the listed tools)
        unsubscribe_url: Recipient-specific unsubscribe link

    Returns:
        HTML string
    """
    period = 'this week' if kind == WEEKLY else 'today'

    html = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Your AI Tools Digest</title>
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; color: #333; max-width: 600px; margin: 0 auto; padding: 20px; background-color: #f5f5f5;">
    <div style="background-color: white; padding: 30px; border-radius: 8px;">
        <h1 style="margin: 0 0 8px; font-size: 26px;">Fresh AI Tools for You</h1>
        <p style="margin: 0 0 24px; color: #6b7280;">{tool_count} new tools were approved {period}.</p>
"""

    for tool in prepared_tools:
        name = escape(tool['name'])
        tool_url = escape(tool['tool_url'], quote=True)
        html += f"""
        <div style="margin-bottom: 20px; border: 1px solid #e5e7eb; border-radius: 12px; overflow: hidden;">
"""
        if tool['image_url']:
            html += f"""
            <a href="{tool_url}"><img src="{escape(tool['image_url'], quote=True)}" alt="{name}" style="width: 100%; height: 200px; object-fit: cover; display: block;" /></a>
"""
        html += f"""
            <div style="padding: 16px;">
                <h3 style="margin: 0 0 8px; font-size: 18px;"><a href="{tool_url}" style="color: #1f2937; text-decoration: none;">{name}</a></h3>
                <p style="margin: 0 0 12px; font-size: 14px; color: #4b5563;">{escape(tool['description'])}</p>
                <a href="{tool_url}" style="color: #2563eb; font-weight: 600; text-decoration: none;">Explore Tool →</a>
            </div>
        </div>
"""

    if tool_count > len(prepared_tools):
        html += f"""
        <p style="text-align: center; color: #6b7280;">And {tool_count - len(prepared_tools)} more on the site.</p>
"""

    html += f"""
        <div style="margin-top: 30px; padding-top: 20px; border-top: 1px solid #e5e7eb; font-size: 13px; color: #6b7280; text-align: center;">
            <a href="{escape(_frontend_base_url(), quote=True)}" style="color: #2563eb;">Browse all tools</a>
            <br>
            <a href="{escape(unsubscribe_url, quote=True)}" style="color: #9ca3af;">Unsubscribe</a>
        </div>
    </div>
</body>
</html>
"""

    return html


def _build_digest_text(
    kind: str,
    prepared_tools: List[Dict[str, Any]],
    tool_count: int,
    unsubscribe_url: str
) -> str:
    """Build plain text email body for a tool digest."""
    period = 'this week' if kind == WEEKLY else 'today'
    text = f"""FRESH AI TOOLS FOR YOU
{tool_count} new tools were approved {period}:

"""

    for i, tool in enumerate(prepared_tools, 1):
        text += f"{i}. {tool['name']}\n"
        if tool['description']:
            text += f"{tool['description']}\n"
        text += f"Explore: {tool['tool_url']}\n\n"

    if tool_count > len(prepared_tools):
        text += f"And {tool_count - len(prepared_tools)} more on the site.\n\n"

    text += f"""---
Browse all tools: {_frontend_base_url()}
Unsubscribe: {unsubscribe_url}
"""

    return text


def render_digest(
    kind: str,
    tools: List[ToolSummary],
    recipient: Recipient,
    unsubscribe_url: str,
    max_tools: int = 10,
    digest_date: date | None = None
) -> Dict[str, Any]:
    """
    Render one recipient's digest message.

    Args:
        kind: 'daily' or 'weekly'
        tools: Approved tools in the window
        recipient: Resolved recipient
        unsubscribe_url: Recipient-specific unsubscribe link
        max_tools: Maximum number of tools listed
        digest_date: Local date shown in the subject (defaults to today)

    Returns:
        Message dict with 'to', 'subject', 'html', 'text', 'headers'
    """
    prepared_tools = _prepare_tool_data(tools, max_tools)

    return {
        'to': recipient.email,
        'subject': _build_subject(kind, len(tools), digest_date),
        'html': _build_digest_html(kind, prepared_tools, len(tools), unsubscribe_url),
        'text': _build_digest_text(kind, prepared_tools, len(tools), unsubscribe_url),
        'headers': {
            'List-Unsubscribe': f"<{unsubscribe_url}>",
        },
    }


def send_email(message: Dict[str, Any]) -> Dict[str, Any]:
    """
    Send one rendered message via Resend.

    Args:
        message: Message dict from render_digest()

    Returns:
        Dictionary with 'success' (bool), 'email_id' (str if success), 'error' (str if failed)
    """
    from_email = os.getenv('NOTIFICATION_FROM_EMAIL', 'digest@aitoolshub.app')

    try:
        response = resend.Emails.send({
            "from": f"AI Tools Hub <{from_email}>",
            "to": message['to'],
            "subject": message['subject'],
            "html": message['html'],
            "text": message['text'],
            "headers": message.get('headers', {}),
        })

        return {
            'success': True,
            'email_id': response.get('id')
        }

    except Exception as e:
        return {
            'success': False,
            'error': str(e)
        }
