"""OAuth CSRF state: generation and single-use validation"""
import json
import secrets
import time
from dataclasses import dataclass
from typing import Optional

from afauth.config import settings
from afauth.services.ephemeral_store import EphemeralStore
from afauth.utils.logger import logger

STATE_KEY_PREFIX = "oauth:state:"


@dataclass
class OAuthStateData:
    timestamp: int  # milliseconds since epoch
    request_id: Optional[str] = None


def _key(state: str) -> str:
    return f"{STATE_KEY_PREFIX}{state}"


class OAuthStateManager:
    """Issues CSRF state tokens and consumes each one at most once"""

    def __init__(self, store: EphemeralStore, max_age_seconds: Optional[int] = None):
        self.store = store
        self.max_age_seconds = (
            max_age_seconds if max_age_seconds is not None else settings.OAUTH_STATE_TTL_SECONDS
        )

    async def generate_state(self, request_id: Optional[str] = None) -> str:
        """Create a 64-char hex state and store it with TTL = max age."""
        state = secrets.token_hex(32)
        payload = json.dumps({"timestamp": int(time.time() * 1000), "requestId": request_id})
        await self.store.set(_key(state), payload, self.max_age_seconds)

        logger.debug(
            f"Generated OAuth state {state[:8]}...",
            extra={"request_id": request_id},
        )
        return state

    async def validate_state(self, state: str) -> Optional[OAuthStateData]:
        """Consume ``state``.

        Returns None for never-issued, already-consumed, malformed or
        stale entries. Staleness is judged from the stored timestamp, not
        the physical TTL.
        """
        if not state:
            return None

        raw = await self.store.get_and_delete(_key(state))
        if raw is None:
            logger.warning(f"OAuth state {state[:8]}... not found or already used")
            return None

        try:
            data = json.loads(raw)
            timestamp = int(data["timestamp"])
        except (ValueError, TypeError, KeyError):
            logger.warning(f"OAuth state {state[:8]}... has malformed payload")
            return None

        age_ms = int(time.time() * 1000) - timestamp
        if age_ms > self.max_age_seconds * 1000:
            logger.warning(
                f"OAuth state {state[:8]}... expired",
                extra={"duration": age_ms / 1000},
            )
            return None

        return OAuthStateData(timestamp=timestamp, request_id=data.get("requestId"))
