import os
import json
import logging
from typing import Any, Dict, Optional
from datetime import datetime
import nats
from nats.js import JetStreamContext
from nats.js.api import StreamConfig

logger = logging.getLogger(__name__)

class NATSService:
    """Publishes deletion workflow events; disabled when NATS_URL is unset"""

    def __init__(self, url: Optional[str] = None):
        self.url = url if url is not None else os.getenv("NATS_URL", "")
        self.nc: Optional[nats.NATS] = None
        self.js: Optional[JetStreamContext] = None
        self._connected = False

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def connect(self) -> None:
        """Connect to NATS server and initialize JetStream"""
        if not self.enabled:
            logger.info("NATS_URL not set, event publishing disabled")
            return

        try:
            self.nc = await nats.connect(
                servers=[self.url],
                name="prunarr-api",
                reconnect_time_wait=2,
                max_reconnect_attempts=60,
                error_cb=self._error_callback,
                disconnected_cb=self._disconnected_callback,
                reconnected_cb=self._reconnected_callback,
            )

            self.js = self.nc.jetstream()
            await self._create_streams()

            self._connected = True
            logger.info(f"Connected to NATS at {self.url}")

        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    async def disconnect(self) -> None:
        """Disconnect from NATS"""
        if self.nc and not self.nc.is_closed:
            await self.nc.drain()
            await self.nc.close()
            self._connected = False
            logger.info("Disconnected from NATS")

    async def _create_streams(self) -> None:
        """Create the JetStream stream holding deletion events"""
        stream_config = {
            "name": "PRUNARR_DELETIONS",
            "subjects": ["events.deletion.>"],
            "max_age": 86400 * 7,  # 7 days
            "max_msgs": 100000,
            "storage": "file",
            "retention": "limits",
            "discard": "old",
        }
        try:
            await self.js.add_stream(StreamConfig(**stream_config))
            logger.info(f"Created/updated stream: {stream_config['name']}")
        except Exception as e:
            if "stream name already in use" not in str(e):
                logger.error(f"Failed to create stream {stream_config['name']}: {e}")

    async def publish_event(self, event_type: str, event_data: Dict[str, Any]) -> None:
        """Publish an event; a no-op while disconnected"""
        if not self._connected:
            return

        subject = f"events.{event_type}"
        message = {
            "type": event_type,
            "data": event_data,
            "timestamp": datetime.utcnow().isoformat(),
        }

        try:
            await self.nc.publish(
                subject,
                json.dumps(message, default=str).encode(),
            )
        except Exception as e:
            logger.error(f"Failed to publish event {event_type}: {e}")

    async def _error_callback(self, e):
        logger.error(f"NATS error: {e}")

    async def _disconnected_callback(self):
        logger.warning("Disconnected from NATS")
        self._connected = False

    async def _reconnected_callback(self):
        logger.info("Reconnected to NATS")
        self._connected = True

    @property
    def is_connected(self) -> bool:
        return self._connected
