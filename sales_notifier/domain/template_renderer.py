"""
Template Renderer - Notification Text From a Submission
=======================================================

Pure token substitution: ``{token}`` placeholders are replaced in a single
pass, so text coming from the submission is never substituted again.
Only ``{date}`` depends on the clock; pass ``now`` to pin it.

Unknown tokens, and known tokens with no data and no fallback, are left
exactly as written.
"""

import re
from datetime import datetime
from typing import Dict, List, Optional

from .models import EnrichedSubmission, GeoStamp

TOKENS = (
    "date",
    "sales_name",
    "outlet_name",
    "outlet_type",
    "address",
    "order_type",
    "tax_type",
    "customer_category",
    "bonus",
    "billing_status",
    "alasan_tidak_tertagih",
    "products_list",
    "total_amount",
    "images_locations",
    "submit_location",
)

DEFAULT_NOTIFICATION_TEMPLATE = """*NOTIF ORDER BARU*
Date: {date}
===============
Sales: {sales_name}
Outlet: {outlet_name}
Address: {address}
===============
Order Type: {order_type}
Outlet Type: {outlet_type}
Tax Type: {tax_type}
Customer Type: {customer_category}
===============
Products:
{products_list}
Total: {total_amount}
===============
Bonus: {bonus}
Billing Status: {billing_status}
Alasan: {alasan_tidak_tertagih}
===============
Lokasi Gambar: {images_locations}

Lokasi Submit: {submit_location}"""

_TOKEN = re.compile(r"\{(\w+)\}")


def format_thousands(amount: int) -> str:
    """Group digits the Indonesian way: 25000 -> ``25.000``."""
    return f"{amount:,}".replace(",", ".")


def format_rupiah(amount: int) -> str:
    return f"Rp {format_thousands(amount)}"


def format_local_date(moment: datetime) -> str:
    """Indonesian short date without zero padding, e.g. ``5/3/2026``."""
    return f"{moment.day}/{moment.month}/{moment.year}"


def humanize_product_id(product_id: str) -> str:
    """``kopi_susu`` -> ``Kopi Susu``; used when no product name is known."""
    return re.sub(r"\b\w", lambda match: match.group().upper(), product_id.replace("_", " "))


def _products_list(enriched: EnrichedSubmission) -> str:
    lines = []
    for product_id, line in enriched.submission.selected_products.items():
        name = enriched.product_names.get(product_id) or humanize_product_id(product_id)
        lines.append(f"- {name}: {line.quantity} x Rp {format_thousands(line.unit_price)}")
    return "\n".join(lines) if lines else "No products"


def _images_locations(locations: List[Optional[GeoStamp]]) -> str:
    if not locations:
        return "No image locations available"

    parts = []
    for index, location in enumerate(locations, start=1):
        if location:
            parts.append(f"Image {index}: {location.url}\nTaken at: {location.timestamp}")
        else:
            parts.append(f"Image {index}: Location not available")
    return "\n".join(parts)


def _submit_location(location: Optional[GeoStamp]) -> str:
    if not location:
        return "Submit location not available"
    return f"{location.url}\nSubmitted at: {location.timestamp}"


def token_values(enriched: EnrichedSubmission, now: Optional[datetime] = None) -> Dict[str, Optional[str]]:
    """Replacement text per token; None means the token is left untouched."""
    submission = enriched.submission
    now = now or datetime.now()

    reason = submission.billing_exception_reason
    return {
        "date": format_local_date(now),
        "sales_name": enriched.sales_name or submission.sales_id or None,
        "outlet_name": enriched.outlet_name or submission.outlet_id or None,
        "outlet_type": submission.outlet_type or "-",
        "address": submission.address or None,
        "order_type": submission.order_type or None,
        "tax_type": submission.tax_type or None,
        "customer_category": submission.customer_category or None,
        "bonus": submission.bonus or "-",
        "billing_status": submission.billing_status or None,
        "alasan_tidak_tertagih": reason if submission.is_not_collected and reason else "-",
        "products_list": _products_list(enriched),
        "total_amount": format_rupiah(submission.total_amount),
        "images_locations": _images_locations(submission.image_locations),
        "submit_location": _submit_location(submission.submit_location),
    }


def render(template: str, enriched: EnrichedSubmission, now: Optional[datetime] = None) -> str:
    """Render ``template`` for one enriched submission."""
    values = token_values(enriched, now)

    def substitute(match: re.Match) -> str:
        value = values.get(match.group(1))
        return match.group(0) if value is None else value

    return _TOKEN.sub(substitute, template)
