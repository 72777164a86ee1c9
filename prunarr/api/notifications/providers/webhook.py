"""Generic webhook notification provider"""

import asyncio
import aiohttp
import logging
import hashlib
import hmac
import json
from typing import Dict, Any, Optional
from datetime import datetime

from .base import BaseProvider, NotificationMessage, SendResult, NotificationChannel, NotificationEvent

logger = logging.getLogger(__name__)


class WebhookProvider(BaseProvider):
    """Generic webhook notification provider"""

    def validate_config(self) -> tuple[bool, Optional[str]]:
        """Validate webhook configuration"""
        if not self.config.get('endpoints'):
            return False, "At least one webhook endpoint is required"

        for endpoint in self.config['endpoints']:
            url = endpoint.get('url')
            if not url:
                return False, "Webhook URL is required for each endpoint"
            if not url.startswith(('http://', 'https://')):
                return False, f"Invalid webhook URL: {url}"
            unknown = set(endpoint.get('events') or []) - {e.value for e in NotificationEvent}
            if unknown:
                return False, f"Unknown webhook events: {', '.join(sorted(unknown))}"

        return True, None

    async def send(self, message: NotificationMessage) -> SendResult:
        """Send notification to all configured webhooks"""
        if not self.enabled:
            return SendResult(
                success=False,
                channel=NotificationChannel.WEBHOOK,
                error="Webhook notifications are disabled"
            )

        results = []
        for endpoint in self.config.get('endpoints', []):
            # An endpoint without an events list receives every event
            subscribed = endpoint.get('events')
            if subscribed and message.event_type not in subscribed:
                continue
            results.append(await self._send_to_endpoint(message, endpoint))

        # Success if at least one webhook accepted it
        successes = [r for r in results if r.success]
        if successes:
            return successes[0]
        if results:
            return results[0]
        return SendResult(
            success=False,
            channel=NotificationChannel.WEBHOOK,
            error="No webhook endpoint subscribed to this event"
        )

    async def _send_to_endpoint(self, message: NotificationMessage, endpoint: Dict[str, Any]) -> SendResult:
        """Send notification to a single webhook endpoint"""
        url = endpoint['url']
        payload = self.format_message(message)

        headers = {
            'Content-Type': 'application/json',
            'User-Agent': 'Prunarr/1.0'
        }
        if endpoint.get('secret'):
            headers['X-Prunarr-Signature'] = self._generate_signature(payload, endpoint['secret'])
        if endpoint.get('headers'):
            headers.update(endpoint['headers'])

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    url,
                    json=payload,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=10)
                ) as response:
                    if 200 <= response.status < 300:
                        return SendResult(
                            success=True,
                            channel=NotificationChannel.WEBHOOK,
                            provider_message_id=endpoint.get('name', url)
                        )
                    error = await response.text()
                    logger.error(f"Webhook failed for {url}: {response.status} - {error}")
                    return SendResult(
                        success=False,
                        channel=NotificationChannel.WEBHOOK,
                        error=f"Webhook error ({response.status}): {error[:100]}"
                    )

        except asyncio.TimeoutError:
            return SendResult(
                success=False,
                channel=NotificationChannel.WEBHOOK,
                error=f"Webhook timeout: {url}"
            )
        except aiohttp.ClientError as e:
            logger.error(f"Webhook send failed: {e}")
            return SendResult(
                success=False,
                channel=NotificationChannel.WEBHOOK,
                error=str(e)
            )

    def format_message(self, message: NotificationMessage) -> Dict[str, Any]:
        """Format message as webhook payload"""
        return {
            "event": message.event_type,
            "instance": self.config.get('instance_name', 'Prunarr'),
            "priority": message.priority.value,
            "timestamp": datetime.utcnow().isoformat(),
            "data": {
                "title": message.title,
                "content": message.content,
                "metadata": message.metadata
            },
            "idempotency_key": message.get_idempotency_key(),
        }

    def _generate_signature(self, payload: Dict[str, Any], secret: str) -> str:
        """Generate HMAC-SHA256 signature for webhook payload"""
        payload_json = json.dumps(payload, separators=(',', ':'), sort_keys=True, default=str)
        signature = hmac.new(
            secret.encode('utf-8'),
            payload_json.encode('utf-8'),
            hashlib.sha256
        ).hexdigest()
        return f"sha256={signature}"
