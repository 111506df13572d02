"""
Recover a local order id from an external platform order object.

We embed the local id redundantly when mirroring an order: in the
reference id ("bs-order-52"), the fulfillment uid ("bs-fulfillment-52"),
the order note and fulfillment pickup note ("Bean Stalker order #52") and
every line-item note ("Order #52"). Orders created by hand on the
platform sometimes carry it in the source name instead. Any one of
those may be dropped or rewritten by the platform, so recovery is an
ordered chain of named extractors; the first one that yields an integer
wins.

Payloads are untrusted. Keys may arrive in snake_case or camelCase, any
level may be missing or the wrong type, and no extractor ever raises.

Usage:
    order_id = extract_correlation_id(external_order, prefix="bs")
"""

import re
from dataclasses import dataclass
from typing import Any, Callable

from brewledger.logging import get_logger

logger = get_logger(__name__)

# Longer digit runs cannot be a local id (SQLite integers are 64-bit)
MAX_ID_DIGITS = 18

ORDER_NOTE_PATTERN = re.compile(
    rf"order\s*#\s*(\d{{1,{MAX_ID_DIGITS}}})(?!\d)", re.IGNORECASE
)


@dataclass(frozen=True)
class CorrelationExtractor:
    """A named strategy: (external order, reference prefix) -> local id or None."""

    name: str
    extract: Callable[[dict, str], int | None]


# ---------------------------------------------------------------------------
# Tolerant accessors
# ---------------------------------------------------------------------------

def _camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.title() for part in rest)


def _get(obj: Any, key: str) -> Any:
    """Read `key` (snake_case) or its camelCase twin from a dict."""
    if not isinstance(obj, dict):
        return None
    value = obj.get(key)
    if value is None:
        value = obj.get(_camel(key))
    return value


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _suffix_pattern(prefix: str) -> re.Pattern:
    return re.compile(
        rf"{re.escape(prefix)}-(?:order|fulfillment|item)-(\d{{1,{MAX_ID_DIGITS}}})(?:-\d+)?$"
    )


def _match_suffix(value: Any, prefix: str) -> int | None:
    if not isinstance(value, str):
        return None
    match = _suffix_pattern(prefix).search(value.strip())
    return int(match.group(1)) if match else None


def _match_note(value: Any) -> int | None:
    if not isinstance(value, str):
        return None
    match = ORDER_NOTE_PATTERN.search(value)
    return int(match.group(1)) if match else None


# ---------------------------------------------------------------------------
# Extractors, in priority order
# ---------------------------------------------------------------------------

def _from_order_id(order: dict, prefix: str) -> int | None:
    return _match_suffix(_get(order, "id"), prefix)


def _from_fulfillment_uid(order: dict, prefix: str) -> int | None:
    for fulfillment in _as_list(_get(order, "fulfillments")):
        found = _match_suffix(_get(fulfillment, "uid"), prefix)
        if found is not None:
            return found
    return None


def _from_fulfillment_note(order: dict, prefix: str) -> int | None:
    for fulfillment in _as_list(_get(order, "fulfillments")):
        for details_key in ("pickup_details", "delivery_details", "shipment_details"):
            found = _match_note(_get(_get(fulfillment, details_key), "note"))
            if found is not None:
                return found
        found = _match_note(_get(fulfillment, "note"))
        if found is not None:
            return found
    return None


def _from_reference_id(order: dict, prefix: str) -> int | None:
    reference = _get(order, "reference_id")
    found = _match_suffix(reference, prefix)
    if found is None:
        found = _match_note(reference)
    return found


def _from_order_note(order: dict, prefix: str) -> int | None:
    return _match_note(_get(order, "note"))


def _from_source_name(order: dict, prefix: str) -> int | None:
    return _match_note(_get(_get(order, "source"), "name"))


def _from_line_item_note(order: dict, prefix: str) -> int | None:
    for item in _as_list(_get(order, "line_items")):
        found = _match_note(_get(item, "note"))
        if found is None:
            found = _match_suffix(_get(item, "uid"), prefix)
        if found is not None:
            return found
    return None


DEFAULT_EXTRACTORS: tuple[CorrelationExtractor, ...] = (
    CorrelationExtractor("order_id_suffix", _from_order_id),
    CorrelationExtractor("fulfillment_uid_suffix", _from_fulfillment_uid),
    CorrelationExtractor("fulfillment_note", _from_fulfillment_note),
    CorrelationExtractor("reference_id", _from_reference_id),
    CorrelationExtractor("order_note", _from_order_note),
    CorrelationExtractor("source_name", _from_source_name),
    CorrelationExtractor("line_item_note", _from_line_item_note),
)


def extract_correlation(
    order: Any,
    prefix: str,
    extractors: tuple[CorrelationExtractor, ...] = DEFAULT_EXTRACTORS,
) -> tuple[int, str] | None:
    """
    Run the extractor chain and return (local order id, extractor name).

    Returns None when nothing matched or `order` is not a dict.
    """
    if not isinstance(order, dict):
        return None
    for extractor in extractors:
        try:
            found = extractor.extract(order, prefix)
        except Exception:
            logger.exception("Correlation extractor %s failed", extractor.name)
            continue
        if found is not None:
            return found, extractor.name
    return None


def extract_correlation_id(
    order: Any,
    prefix: str,
    extractors: tuple[CorrelationExtractor, ...] = DEFAULT_EXTRACTORS,
) -> int | None:
    """Return the local order id embedded in `order`, or None."""
    result = extract_correlation(order, prefix, extractors)
    return result[0] if result else None
