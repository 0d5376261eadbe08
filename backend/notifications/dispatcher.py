"""
Rate-limited digest dispatch.

Sends one message per recipient, strictly one after another, pausing a
fixed delay after every attempt so the provider's send-rate ceiling is
never exceeded. A failure for one recipient is logged and the loop moves
on; nothing is retried within the run.
"""

import time
from typing import Any, Callable, Dict, List, Optional

from models import DispatchResult, Recipient, ToolSummary
from notifications.email_sender import render_digest, send_email
from notifications.error_logger import log_notification_error
from notifications.unsubscribe_tokens import build_unsubscribe_url

# render(kind, tools, recipient, unsubscribe_url) -> message
Renderer = Callable[[str, List[ToolSummary], Recipient, str], Dict[str, Any]]
# send(message) -> {'success': bool, 'email_id' | 'error': str}
Sender = Callable[[Dict[str, Any]], Dict[str, Any]]


class RateLimitedDispatcher:
    """Sequential per-recipient sender with a fixed inter-send delay."""

    def __init__(
        self,
        renderer: Optional[Renderer] = None,
        sender: Optional[Sender] = None,
        delay_seconds: float = 0.8,
        sleep: Callable[[float], None] = time.sleep,
        on_sent: Optional[Callable[[Recipient], None]] = None,
        on_attempt: Optional[Callable[[Recipient], None]] = None,
    ):
        self.renderer = renderer or render_digest
        self.sender = sender or send_email
        self.delay_seconds = delay_seconds
        self.sleep = sleep
        self.on_sent = on_sent
        self.on_attempt = on_attempt

    def _send_one(
        self, kind: str, tools: List[ToolSummary], recipient: Recipient
    ) -> Dict[str, Any]:
        try:
            unsubscribe_url = build_unsubscribe_url(recipient)
            message = self.renderer(kind, tools, recipient, unsubscribe_url)
            return self.sender(message)
        except Exception as e:
            return {"success": False, "error": str(e)}

    def dispatch(
        self, kind: str, tools: List[ToolSummary], recipients: List[Recipient]
    ) -> DispatchResult:
        """
        Send the digest to every recipient.

        Args:
            kind: 'daily' or 'weekly'
            tools: Approved tools in the window
            recipients: Deduplicated audience

        Returns:
            DispatchResult with attempted/succeeded/failed counts
        """
        result = DispatchResult()

        for recipient in recipients:
            result.attempted += 1
            outcome = self._send_one(kind, tools, recipient)

            if outcome.get("success"):
                result.succeeded += 1
                print(f"  ✓ Sent {kind} digest to {recipient.email}")
                if self.on_sent:
                    self.on_sent(recipient)
            else:
                error_msg = outcome.get("error", "Unknown error")
                result.failed += 1
                result.failed_emails.append(recipient.email)
                print(f"  ✗ Failed to send to {recipient.email}: {error_msg}")
                log_notification_error(
                    error_type="sending",
                    error_message=error_msg,
                    context={
                        "kind": kind,
                        "email": recipient.email,
                        "source": recipient.source,
                        "tool_count": len(tools),
                    },
                )

            if self.on_attempt:
                self.on_attempt(recipient)

            # Rate limiting: pause after every attempt, success or not
            self.sleep(self.delay_seconds)

        return result
