"""Webhook ingress: verify the origin signature, then enqueue the raw body."""

from __future__ import annotations

import hashlib
import hmac
from typing import Optional, Union

from ..exceptions import SignatureError
from ..logging_config import get_logger
from ..persistence import AnalysisStore

logger = get_logger(__name__)

SIGNATURE_PREFIX = "sha256="


def sign(secret: str, body: bytes) -> str:
    """``X-Hub-Signature-256`` value for ``body``."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return SIGNATURE_PREFIX + digest


class WebhookIngress:
    def __init__(self, store: AnalysisStore, secret: str):
        self.store = store
        self.secret = secret

    def verify(self, body: bytes, signature: Optional[str]) -> None:
        """Raises SignatureError unless ``signature`` matches the body."""
        if not self.secret:
            raise SignatureError("no webhook secret configured")
        if not signature or not signature.startswith(SIGNATURE_PREFIX):
            raise SignatureError("missing or malformed signature header")
        if not hmac.compare_digest(sign(self.secret, body), signature):
            raise SignatureError("signature mismatch")

    def accept(self, event_type: str, body: Union[bytes, str], signature: Optional[str]) -> int:
        """Verify and enqueue a delivery. Returns the queue item id."""
        raw = body.encode("utf-8") if isinstance(body, str) else body
        self.verify(raw, signature)
        item_id = self.store.enqueue(event_type, raw.decode("utf-8"))
        logger.info("Queued %s delivery as item %d", event_type, item_id)
        return item_id
