from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

import httpx

from .config import Settings
from .models import RequestContext, TrackingResult
from .utils import gen_id, hash_user_data

logger = logging.getLogger(__name__)

GRAPH_URL = "https://graph.facebook.com"


def _user_data(email: str, context: RequestContext) -> Dict[str, Any]:
    data = {
        "em": hash_user_data(email),
        "client_ip_address": context.client_ip,
        "client_user_agent": context.user_agent,
        "fbc": context.fbc,
        "fbp": context.fbp,
    }
    return {k: v for k, v in data.items() if v}


def build_lead_event(email: str, prize_amount: int, context: RequestContext,
                     event_id: Optional[str] = None) -> Dict[str, Any]:
    event = {
        "event_name": "Lead",
        "event_time": int(time.time()),
        "user_data": _user_data(email, context),
        "custom_data": {
            "value": prize_amount,
            "currency": "USD",
            "content_name": "email_submission",
            "content_category": "conversion",
        },
        "action_source": "website",
        "event_id": event_id or gen_id(),
    }
    if context.referer:
        event["event_source_url"] = context.referer
    return event


def build_purchase_event(email: str, prize_amount: int, context: RequestContext,
                         event_id: Optional[str] = None) -> Dict[str, Any]:
    event = {
        "event_name": "Purchase",
        "event_time": int(time.time()),
        "user_data": _user_data(email, context),
        "custom_data": {
            "value": prize_amount,
            "currency": "USD",
            "content_ids": ["raffle_entry"],
            "content_name": "Raffle Entry",
            "content_category": "Gaming",
            "num_items": 1,
        },
        "action_source": "website",
        "event_id": event_id or gen_id(),
    }
    if context.referer:
        event["event_source_url"] = context.referer
    return event


class MetaConversionsSink:
    """Server-side Lead/Purchase events for the Meta Conversions API.

    Best effort: every failure is logged and reported as a False flag, never raised.
    """

    def __init__(
        self,
        pixel_id: str,
        access_token: str,
        *,
        api_version: str = "v18.0",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.pixel_id = pixel_id
        self.access_token = access_token
        self.api_version = api_version
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "MetaConversionsSink":
        return cls(
            settings.meta_pixel_id,
            settings.meta_access_token,
            api_version=settings.meta_api_version,
        )

    @property
    def configured(self) -> bool:
        return bool(self.pixel_id and self.access_token)

    @property
    def events_url(self) -> str:
        return f"{GRAPH_URL}/{self.api_version}/{self.pixel_id}/events"

    async def send(self, event: Dict[str, Any], client: httpx.AsyncClient) -> bool:
        try:
            resp = await client.post(
                self.events_url,
                json={"data": [event], "access_token": self.access_token},
            )
        except httpx.HTTPError as exc:
            logger.warning("meta.send failed event=%s err=%s", event["event_name"], exc)
            return False
        if resp.is_success:
            logger.info("meta.send ok event=%s id=%s", event["event_name"], event["event_id"])
            return True
        logger.warning(
            "meta.send rejected event=%s status=%d body=%s",
            event["event_name"], resp.status_code, resp.text[:500],
        )
        return False

    async def track(self, email: str, prize_amount: int,
                    context: Optional[RequestContext] = None) -> TrackingResult:
        if not self.configured:
            logger.error("Meta Pixel ID or Access Token not configured")
            return TrackingResult()

        context = context or RequestContext()
        event_id = gen_id()
        lead = build_lead_event(email, prize_amount, context, event_id)
        purchase = build_purchase_event(email, prize_amount, context, f"{event_id}_purchase")

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            lead_sent = await self.send(lead, client)
            purchase_sent = await self.send(purchase, client)
        return TrackingResult(lead_sent=lead_sent, purchase_sent=purchase_sent)
