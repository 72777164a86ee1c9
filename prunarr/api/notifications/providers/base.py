"""Base provider interface for notification system"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, List
from enum import Enum
from pydantic import BaseModel, Field
from datetime import datetime
import hashlib
import json


class NotificationChannel(str, Enum):
    """Supported notification channels"""
    WEBHOOK = "webhook"


class NotificationPriority(str, Enum):
    """Notification priority levels"""
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class NotificationEvent(str, Enum):
    """Notification event types"""
    DELETION_PROPOSED = "deletion.proposed"
    DELETION_EXECUTED = "deletion.executed"
    DELETION_FAILED = "deletion.failed"
    SCHEDULER_ERROR = "scheduler.error"


class SendResult(BaseModel):
    """Result of a send operation"""
    success: bool
    channel: NotificationChannel
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class NotificationMessage(BaseModel):
    """Unified notification message"""
    event_type: str
    title: Optional[str] = None
    content: str
    priority: NotificationPriority = NotificationPriority.NORMAL
    metadata: Dict[str, Any] = {}

    def get_idempotency_key(self) -> str:
        """Generate idempotency key for deduplication"""
        data = f"{self.event_type}:{self.content}:{json.dumps(self.metadata, sort_keys=True, default=str)}"
        return hashlib.sha256(data.encode()).hexdigest()


class BaseProvider(ABC):
    """Base class for notification providers"""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self.enabled = config.get('enabled', False)

    @abstractmethod
    def validate_config(self) -> tuple[bool, Optional[str]]:
        """
        Validate provider configuration
        Returns (is_valid, error_message)
        """
        pass

    @abstractmethod
    async def send(self, message: NotificationMessage) -> SendResult:
        """Send a notification through this provider"""
        pass

    @abstractmethod
    def format_message(self, message: NotificationMessage) -> Dict[str, Any]:
        """Format message for this provider's API"""
        pass

    def is_enabled(self) -> bool:
        """Check if provider is enabled"""
        return self.enabled
