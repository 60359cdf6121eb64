# Domain Layer
# ============
# Pure types and text rendering. No I/O, no framework imports beyond pydantic.

from .models import EnrichedSubmission, GeoStamp, ProductLine, Submission
from .template_renderer import DEFAULT_NOTIFICATION_TEMPLATE, TOKENS, render

__all__ = [
    "DEFAULT_NOTIFICATION_TEMPLATE",
    "EnrichedSubmission",
    "GeoStamp",
    "ProductLine",
    "Submission",
    "TOKENS",
    "render",
]
