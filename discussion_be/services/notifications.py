# discussion_be/services/notifications.py
# Session-scoped phase-change broadcasts. Delivery is best-effort:
# clients poll /api/sessions/status as a fallback, so publish never raises.
import logging
from typing import Any, Dict, Protocol

import requests

from discussion_be.config import settings

logger = logging.getLogger(__name__)


def session_topic(session_id: str) -> str:
    return f"session_status_{session_id}"


class Broadcaster(Protocol):
    def publish(self, topic: str, event: str, payload: Dict[str, Any]) -> bool:
        ...


class LogBroadcaster:
    """Used when no realtime backend is configured (local runs)."""

    def publish(self, topic: str, event: str, payload: Dict[str, Any]) -> bool:
        logger.info("[BROADCAST] (local) topic=%s event=%s payload=%s", topic, event, payload)
        return True


class SupabaseBroadcaster:
    """Supabase Realtime broadcast over its REST endpoint (no socket needed server-side)."""

    def __init__(self, supabase_url: str, service_key: str, timeout: float = 10.0):
        self._endpoint = supabase_url.rstrip("/") + "/realtime/v1/api/broadcast"
        self._headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }
        self._timeout = timeout

    def publish(self, topic: str, event: str, payload: Dict[str, Any]) -> bool:
        body = {"messages": [{"topic": topic, "event": event, "payload": payload}]}
        try:
            res = requests.post(self._endpoint, json=body, headers=self._headers, timeout=self._timeout)
        except requests.RequestException:
            logger.exception("[BROADCAST] topic=%s event=%s request failed", topic, event)
            return False

        if not res.ok:
            logger.error("[BROADCAST] topic=%s event=%s status=%s body=%s", topic, event, res.status_code, res.text)
            return False

        logger.info("[BROADCAST] topic=%s event=%s sent", topic, event)
        return True


def build_broadcaster() -> Broadcaster:
    if settings.supabase_url and settings.supabase_service_role_key:
        return SupabaseBroadcaster(
            settings.supabase_url,
            settings.supabase_service_role_key,
            timeout=settings.http_timeout_seconds,
        )
    return LogBroadcaster()
