"""
Slack Infrastructure
====================

Slack Web API chat client built on slack_sdk's AsyncWebClient.
"""

import asyncio
from typing import List, Optional

import aiohttp
from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from core import ChatPlatformException
from shared.infrastructure.logging import get_logger
from status_timer.application.services import IChatClient

logger = get_logger(__name__)

# conversations.join errors that still leave the bot able to post
_JOIN_IGNORABLE = {"already_in_channel", "method_not_supported_for_channel_type", "is_archived"}


class SlackChatClient(IChatClient):
    """
    Outbound Slack operations used by the alert sweep and notifications.

    SlackApiError and aiohttp transport failures are translated into
    ChatPlatformException so callers never depend on slack_sdk.
    """

    def __init__(self, token: Optional[str] = None, client: Optional[AsyncWebClient] = None):
        self._client = client or AsyncWebClient(token=token)

    async def join_channel(self, channel_id: str) -> None:
        try:
            await self._client.conversations_join(channel=channel_id)
        except SlackApiError as e:
            error = e.response.get("error")
            if error in _JOIN_IGNORABLE:
                logger.debug("Channel join skipped", extra={"channel": channel_id, "reason": error})
                return
            raise ChatPlatformException(
                f"Failed to join channel {channel_id}: {error}",
                details={"channel": channel_id}
            ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ChatPlatformException(
                f"Failed to join channel {channel_id}: {e!r}",
                details={"channel": channel_id}
            ) from e

    async def post_message(self, channel_id: str, text: str, blocks: List[dict]) -> None:
        try:
            await self._client.chat_postMessage(channel=channel_id, text=text, blocks=blocks)
        except SlackApiError as e:
            error = e.response.get("error")
            logger.error("Slack message failed", extra={"channel": channel_id, "error": error})
            raise ChatPlatformException(
                f"Failed to post to {channel_id}: {error}",
                details={"channel": channel_id}
            ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("Slack unreachable", extra={"channel": channel_id, "error": repr(e)})
            raise ChatPlatformException(
                f"Failed to post to {channel_id}: {e!r}",
                details={"channel": channel_id}
            ) from e

        logger.info("Slack message sent", extra={"channel": channel_id})
