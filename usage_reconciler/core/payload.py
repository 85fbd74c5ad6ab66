"""
Payload classification for usage ingestion.

Accepted request bodies:

- Shape A: ``{"modelName": ..., "imageCount": ..., "userId"?: ...}``
- Shape B: ``{"model": ..., "count": ...}`` (older desktop client builds)
- Shape C: a list whose items are each Shape A or Shape B

Identifier precedence, highest first: body ``userId`` / ``user_id`` /
``email``, then header ``x-user-id``, ``x-email``, ``Authorization``
(``Bearer `` stripped, never decoded), then the unknown-account sentinel
applied by the ingestion service. Body identifiers apply per item;
header identifiers apply to the whole request.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Union

from .errors import MalformedInput, UnrecognizedPayloadShape, UsageError

logger = logging.getLogger(__name__)

BODY_IDENTIFIER_FIELDS = ("userId", "user_id", "email")
HEADER_IDENTIFIER_FIELDS = ("x-user-id", "x-email", "authorization")
BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class UsageItem:
    """One normalized usage event before validation.

    ``model_name`` and ``image_count`` are passed through untyped; the
    ingestion service validates them. ``error`` is set for batch items
    that matched neither naming convention.
    """
    model_name: Any = None
    image_count: Any = None
    identifier: Optional[str] = None
    error: Optional[UsageError] = None


@dataclass
class ClassifiedPayload:
    """Result of classifying one request body."""
    items: List[UsageItem]
    is_batch: bool
    request_identifier: Optional[str] = None
    shape: str = "A"
    keys: List[str] = field(default_factory=list)


def parse_body(raw: Union[str, bytes]) -> Any:
    """Decode a raw JSON request body.

    Raises:
        MalformedInput: If the body is not valid JSON
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedInput() from e
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedInput() from e


def _as_identifier(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value if value.strip() else None
    if isinstance(value, int):
        return str(value)
    return None


def _body_identifier(body: Mapping[str, Any]) -> Optional[str]:
    for name in BODY_IDENTIFIER_FIELDS:
        identifier = _as_identifier(body.get(name))
        if identifier:
            return identifier
    return None


def resolve_request_identifier(headers: Optional[Mapping[str, str]]) -> Optional[str]:
    """Request-wide identifier from headers, or None.

    Header names are matched case-insensitively.
    """
    if not headers:
        return None
    lowered = {str(k).lower(): v for k, v in headers.items()}
    for name in HEADER_IDENTIFIER_FIELDS:
        value = _as_identifier(lowered.get(name))
        if not value:
            continue
        if name == "authorization" and value.startswith(BEARER_PREFIX):
            value = value[len(BEARER_PREFIX):]
            if not value.strip():
                continue
        return value
    return None


def _resolve_item(body: Mapping[str, Any]) -> Optional[UsageItem]:
    """Resolve one object as Shape A, then Shape B. None when neither fits."""
    identifier = _body_identifier(body)
    if "modelName" in body and "imageCount" in body:
        return UsageItem(body["modelName"], body["imageCount"], identifier)
    if "model" in body and "count" in body:
        return UsageItem(body["model"], body["count"], identifier)
    return None


def classify_payload(body: Any, headers: Optional[Mapping[str, str]] = None) -> ClassifiedPayload:
    """Resolve a decoded body into normalized usage items.

    Args:
        body: Decoded JSON body
        headers: Request headers, used for the request-wide identifier

    Returns:
        ClassifiedPayload with one item per event, in input order

    Raises:
        UnrecognizedPayloadShape: If the body is neither an accepted object
            nor a list
    """
    request_identifier = resolve_request_identifier(headers)

    if isinstance(body, list):
        items = []
        for index, entry in enumerate(body):
            item = _resolve_item(entry) if isinstance(entry, dict) else None
            if item is None:
                keys = entry.keys() if isinstance(entry, dict) else ()
                logger.warning("Batch item %d has unrecognized shape, keys=%s", index, sorted(keys))
                item = UsageItem(error=UnrecognizedPayloadShape(keys))
            items.append(item)
        return ClassifiedPayload(
            items=items,
            is_batch=True,
            request_identifier=request_identifier,
            shape="C",
        )

    if isinstance(body, dict):
        item = _resolve_item(body)
        if item is not None:
            shape = "A" if "modelName" in body and "imageCount" in body else "B"
            return ClassifiedPayload(
                items=[item],
                is_batch=False,
                request_identifier=request_identifier,
                shape=shape,
                keys=sorted(body.keys()),
            )
        logger.warning("Unrecognized payload shape, keys=%s", sorted(body.keys()))
        raise UnrecognizedPayloadShape(body.keys())

    logger.warning("Unrecognized payload type %s", type(body).__name__)
    raise UnrecognizedPayloadShape()
