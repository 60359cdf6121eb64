"""
Submission Service - From Form Post to Admin Notification
==========================================================

Reads the admin destination and the template, swaps stored ids for
readable names, renders the notification and hands it to the dispatcher.

Each name lookup is independent: a failing lookup is logged and the
message falls back to the raw ids instead of failing the submission.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Union

from ..domain import DEFAULT_NOTIFICATION_TEMPLATE, Submission, render
from ..domain.models import EnrichedSubmission
from ..infrastructure.persistence import ReferenceStore
from ..infrastructure.whatsapp import NotificationDispatcher, SendResult

logger = logging.getLogger(__name__)


class AdminNumberNotConfiguredError(Exception):
    """No admin destination number has been saved yet."""

    def __init__(self, message: str = "Admin WhatsApp number not configured"):
        super().__init__(message)


class SubmissionService:
    """
    Usage:
        service = SubmissionService(store, dispatcher)
        result = await service.handle(request_json)
    """

    def __init__(self, store: ReferenceStore, dispatcher: NotificationDispatcher):
        self._store = store
        self._dispatcher = dispatcher

    def enrich(self, submission: Submission) -> EnrichedSubmission:
        enriched = EnrichedSubmission(submission=submission)

        try:
            products = self._store.get_products()
            enriched.product_names = {pid: product.name for pid, product in products.items()}
            logger.info(f"Retrieved {len(products)} products")
        except Exception as e:
            logger.error(f"Error fetching product details: {e}")

        try:
            enriched.outlet_name = self._store.get_outlet_names().get(submission.outlet_id)
            if enriched.outlet_name:
                logger.info(f"Outlet name: {enriched.outlet_name}")
        except Exception as e:
            logger.error(f"Error fetching outlet details: {e}")

        try:
            enriched.sales_name = self._store.get_sales_names().get(submission.sales_id)
            if enriched.sales_name:
                logger.info(f"Sales name: {enriched.sales_name}")
        except Exception as e:
            logger.error(f"Error fetching sales details: {e}")

        return enriched

    def compose(self, submission: Submission, now: Optional[datetime] = None) -> str:
        """Notification text for ``submission`` with the stored template."""
        template = self._store.get_notification_template()
        if not template:
            logger.info("Using default notification template")
            template = DEFAULT_NOTIFICATION_TEMPLATE
        return render(template, self.enrich(submission), now)

    async def handle(self, payload: Union[Submission, Dict[str, Any]]) -> SendResult:
        """
        Validate, render and send one submission.

        Raises pydantic.ValidationError for a malformed payload,
        AdminNumberNotConfiguredError when there is nowhere to send it,
        and NotificationDispatchError when delivery fails.
        """
        submission = payload if isinstance(payload, Submission) else Submission.model_validate(payload)
        logger.info(f"Received sales form submission from {submission.sales_id}")

        admin_number = self._store.get_admin_number()
        if not admin_number:
            logger.error("Admin WhatsApp number not configured")
            raise AdminNumberNotConfiguredError()

        message = self.compose(submission)
        return await self._dispatcher.send(admin_number, message, submission.images)
