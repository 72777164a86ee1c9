"""Main notification service orchestrator"""

import logging
import json
from typing import Dict, Any, List, Optional
from datetime import datetime, timedelta

from .providers.base import (
    NotificationMessage, NotificationChannel, NotificationEvent,
    NotificationPriority, SendResult
)
from .providers.webhook import WebhookProvider

logger = logging.getLogger(__name__)

DEDUP_WINDOW = timedelta(minutes=5)


def format_gb(size_bytes: int) -> str:
    return f"{(size_bytes or 0) / (1024 ** 3):.2f} GB"


class NotificationService:
    """Central notification service for orchestrating notifications"""

    def __init__(self):
        self.providers: Dict[NotificationChannel, Any] = {}
        self.enabled = False
        self.rules: Dict[str, Any] = {}
        self._recent: Dict[str, datetime] = {}

    async def initialize(self, config: Dict[str, Any]):
        """Initialize notification service with configuration"""
        self.providers = {}
        self.enabled = config.get('enabled', False)

        if not self.enabled:
            logger.info("Notification service is disabled")
            return

        if 'webhook' in config:
            self.providers[NotificationChannel.WEBHOOK] = WebhookProvider(config['webhook'])

        # event type -> {"channels": [...]}; events without a rule go to every provider
        self.rules = config.get('rules', {})

        for channel, provider in self.providers.items():
            is_valid, error = provider.validate_config()
            if not is_valid:
                logger.error(f"Invalid config for {channel}: {error}")
                provider.enabled = False

        logger.info(f"Notification service initialized with {len(self.providers)} providers")

    async def send_event(
        self,
        event_type: str,
        data: Dict[str, Any],
        priority: NotificationPriority = NotificationPriority.NORMAL,
        channels: Optional[List[NotificationChannel]] = None
    ) -> List[SendResult]:
        """Send notification for an event"""
        if not self.enabled:
            return []

        if channels is None:
            channels = self._get_channels_for_event(event_type)

        if not channels:
            logger.debug(f"No channels configured for event {event_type}")
            return []

        message = self._create_message(event_type, data, priority)

        if self._is_duplicate(message):
            logger.debug(f"Skipping duplicate notification for {event_type}")
            return []

        results = []
        for channel in channels:
            provider = self.providers.get(channel)
            if provider and provider.is_enabled():
                result = await provider.send(message)
                results.append(result)
                self._record_send(channel, message, result)

        return results

    def _get_channels_for_event(self, event_type: str) -> List[NotificationChannel]:
        """Get notification channels for an event based on rules"""
        if event_type in self.rules:
            channels = self.rules[event_type].get('channels', [])
            valid = [c.value for c in NotificationChannel]
            return [NotificationChannel(ch) for ch in channels if ch in valid]
        return list(self.providers.keys())

    def _create_message(
        self,
        event_type: str,
        data: Dict[str, Any],
        priority: NotificationPriority
    ) -> NotificationMessage:
        """Create notification message from event data"""
        return NotificationMessage(
            event_type=event_type,
            title=self._format_title(event_type, data),
            content=self._format_default_content(event_type, data),
            priority=priority,
            metadata=data
        )

    def _format_title(self, event_type: str, data: Dict[str, Any]) -> str:
        count = data.get('count', 0)
        if event_type == NotificationEvent.DELETION_PROPOSED:
            return f"{count} Deletions Pending"
        if event_type == NotificationEvent.DELETION_EXECUTED:
            return f"{count} Deletions Executed"
        return event_type.replace('.', ' ').title()

    def _format_default_content(self, event_type: str, data: Dict[str, Any]) -> str:
        """Format default content for deletion events"""
        count = data.get('count', 0)
        size = data.get('size', 0)
        size_str = f" ({format_gb(size)})" if size else ""

        if event_type == NotificationEvent.DELETION_PROPOSED:
            return f"{count} media files are pending deletion{size_str} by rule '{data.get('rule_name', 'unknown')}'"
        elif event_type == NotificationEvent.DELETION_EXECUTED:
            failed = data.get('failed', 0)
            failed_str = f", {failed} failed" if failed else ""
            return f"{count} media files have been deleted{size_str}{failed_str}"
        elif event_type == NotificationEvent.DELETION_FAILED:
            return f"{data.get('failed', 0)} deletions failed: {data.get('error', 'Unknown error')}"
        elif event_type == NotificationEvent.SCHEDULER_ERROR:
            return f"Deletion scheduler error: {data.get('error', 'Unknown error')}"
        return json.dumps(data, indent=2, default=str)[:500]

    def _is_duplicate(self, message: NotificationMessage) -> bool:
        """Check the idempotency key against messages sent in the last few minutes"""
        now = datetime.utcnow()
        self._recent = {k: t for k, t in self._recent.items() if now - t < DEDUP_WINDOW}
        key = message.get_idempotency_key()
        if key in self._recent:
            return True
        self._recent[key] = now
        return False

    def _record_send(
        self,
        channel: NotificationChannel,
        message: NotificationMessage,
        result: SendResult
    ):
        if result.success:
            logger.info(f"Notification sent via {channel.value} for {message.event_type}")
        else:
            logger.error(f"Notification failed via {channel.value}: {result.error}")
