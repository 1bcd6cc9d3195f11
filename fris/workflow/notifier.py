"""
Workflow notification delivery.

Delivery is fire-and-forget: the workflow manager calls a notifier only after
the transition is committed and logs any exception raised here.
"""

import logging

import requests

logger = logging.getLogger(__name__)


class Notifier:
    def notify(self, workflow, event_type: str) -> None:
        raise NotImplementedError

    def sla_warning(self, workflow, sla_percent: float, threshold: int) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    def notify(self, workflow, event_type: str) -> None:
        logger.info(
            "Notification: %s for workflow %s (action=%s, priority=%s, assigned_to=%s)",
            event_type,
            workflow.id,
            workflow.action_type,
            workflow.priority,
            workflow.assigned_to or "Unassigned",
        )

    def sla_warning(self, workflow, sla_percent: float, threshold: int) -> None:
        logger.warning(
            "SLA warning: workflow %s at %.1f%% of SLA (threshold %d%%, action=%s)",
            workflow.id,
            sla_percent,
            threshold,
            workflow.action_type,
        )


def format_workflow(workflow, headline: str) -> str:
    return (
        f"<b>{headline}</b>\n"
        f"• [{workflow.priority}] {workflow.action_type} on {workflow.declaration_id}\n"
        f"    workflow: {workflow.id}\n"
        f"    status: {workflow.status}\n"
        f"    assigned: {workflow.assigned_to or 'Unassigned'}"
    )


class TelegramNotifier(LoggingNotifier):
    """Pushes workflow events to a Telegram chat through the Bot API."""

    def __init__(self, token: str, chat_id: str, timeout: float = 10):
        self.token = token
        self.chat_id = chat_id
        self.timeout = timeout

    def notify(self, workflow, event_type: str) -> None:
        super().notify(workflow, event_type)
        self.send_message(format_workflow(workflow, f"Workflow {event_type}"))

    def sla_warning(self, workflow, sla_percent: float, threshold: int) -> None:
        super().sla_warning(workflow, sla_percent, threshold)
        self.send_message(format_workflow(workflow, f"SLA {threshold}% reached ({sla_percent:.1f}%)"))

    def send_message(self, text: str) -> None:
        url = f"https://api.telegram.org/bot{self.token}/sendMessage"
        resp = requests.post(
            url,
            json={
                "chat_id": self.chat_id,
                "text": text,
                "parse_mode": "HTML",
                "disable_web_page_preview": True,
            },
            timeout=self.timeout,
        )
        resp.raise_for_status()


def build_notifier(token=None, chat_id=None) -> Notifier:
    if token and chat_id:
        return TelegramNotifier(token, chat_id)
    return LoggingNotifier()
