"""
Service / facade layer for webhook ingestion.

This module implements the request pipeline before and around any DB
interaction. It is free of SQL and of HTTP framework types: it calls
`ConversionRepo` for lookups and `EventSink` for writes, and reports every
failure as an `errors.WebhookError` subclass.

Pipeline, in order:
- transport guards (content type, declared length)
- rate limits per caller IP, then per token
- node / workspace / token check
- body size, JSON decoding, raw payload checks
- provider detection and normalization
- validation (bounds, item quantities, staleness)
- product attribution and idempotent persistence
"""

import hmac
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from attribution import attribute_event
from detect import ProviderShape, detect_provider
from errors import (
    DownstreamError,
    MalformedInput,
    NodeNotFound,
    PayloadTooLarge,
    RateLimited,
    Unauthorized,
    UnsupportedMediaType,
)
from models import NodeRecord, StoredConversion
from normalizers import normalize
from rate_limit import RateLimiter
from repo_conversions import ConversionRepo
from settings import settings
from sink import EventSink
from validation import Rejection, check_raw_payload, validate_event

logger = logging.getLogger(__name__)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Invalid JSON constant {name}")


def check_headers(content_type: Optional[str], content_length: Optional[str]) -> None:
    """Transport level guards that run before routing or any lookup."""

    if "application/json" not in (content_type or "").lower():
        raise UnsupportedMediaType("Content-Type must be application/json")
    try:
        declared = int(content_length or "0")
    except ValueError:
        declared = 0
    if declared > settings.max_body_bytes:
        raise PayloadTooLarge("Payload too large")


def decode_body(body: bytes) -> Any:
    """Enforce the real body size and parse JSON. An empty body is `{}`."""

    if len(body) > settings.max_body_bytes:
        raise PayloadTooLarge("Payload too large")
    try:
        return json.loads(body.decode("utf-8") or "{}", parse_constant=_reject_constant)
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedInput("Invalid JSON", reason="invalid_json") from e


class WebhookService:
    """Detection, normalization, validation, attribution and persistence.

    Example usage:
        svc = WebhookService(ConversionRepo(), FixedWindowRateLimiter())
        svc.ingest(workspace_id, node_id, token, body, client_ip="1.2.3.4")
    """

    def __init__(
        self,
        repo: ConversionRepo,
        limiter: RateLimiter,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.repo = repo
        self.limiter = limiter
        self.sink = EventSink(repo)
        self.clock = clock

    def check_rate_limits(self, client_ip: str, token: str) -> None:
        if not self.limiter.hit(f"ip:{client_ip}", settings.rate_limit_per_ip):
            raise RateLimited("Too many requests (IP)", reason="rate_limited_ip")
        if not self.limiter.hit(f"token:{token}", settings.rate_limit_per_token):
            raise RateLimited("Too many requests (token)", reason="rate_limited_token")

    def authorize(self, workspace_id: str, node_id: str, token: str) -> NodeRecord:
        """Resolve the node and check it belongs to `workspace_id` and `token`."""

        try:
            node = self.repo.fetch_node(node_id)
        except Exception as e:
            logger.error("Node lookup failed for %s: %s", node_id, e)
            raise DownstreamError(str(e)) from e

        if node is None:
            raise NodeNotFound("Node not found", reason="node_not_found")
        if node.workspace_id is None or node.workspace_id != workspace_id:
            logger.info("Workspace mismatch for node %s", node_id)
            raise Unauthorized("Workspace mismatch", reason="workspace_mismatch")
        if not node.webhook_token or not hmac.compare_digest(
            node.webhook_token.encode(), token.encode()
        ):
            logger.info("Invalid token for node %s", node_id)
            raise Unauthorized("Invalid token", reason="invalid_token")
        return node

    def ingest(
        self,
        workspace_id: str,
        node_id: str,
        token: str,
        body: bytes,
        client_ip: str,
    ) -> StoredConversion:
        """Run one webhook delivery through the full pipeline.

        Raises a `WebhookError` subclass for every rejection or failure.
        """

        self.check_rate_limits(client_ip, token)
        node = self.authorize(workspace_id, node_id, token)

        payload = decode_body(body)
        rejection = check_raw_payload(payload)
        if rejection is not None:
            raise self._reject(node_id, rejection)

        shape = detect_provider(payload)
        if shape is ProviderShape.UNSUPPORTED:
            logger.info("Unsupported payload for node %s", node_id)
            raise MalformedInput("Unsupported payload", reason="unsupported_payload")

        now = self.clock()
        event = normalize(payload, shape, now)
        result = validate_event(event, now, body_bytes=len(body))
        if isinstance(result, Rejection):
            raise self._reject(node_id, result)

        try:
            mappings = self.repo.fetch_product_mappings(workspace_id, node_id)
        except Exception as e:
            logger.error("Product mapping lookup failed for node %s: %s", node_id, e)
            raise DownstreamError(str(e)) from e

        items = attribute_event(event, mappings)
        stored = self.sink.persist(workspace_id, node, event, items)
        logger.info(
            "Stored %s event %s as conversion %s with %d item(s)",
            event.provider.value,
            event.provider_event_id,
            stored.id,
            len(items),
        )
        return stored

    @staticmethod
    def _reject(node_id: str, rejection: Rejection):
        logger.info("Rejected payload for node %s: %s", node_id, rejection.reason.value)
        return rejection.to_error()

    def health_check(self) -> None:
        """Perform a lightweight DB ping via the repository."""

        self.repo.ping()
