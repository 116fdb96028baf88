"""Booking partner integration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import requests

from .logging_config import get_logger

logger = get_logger(__name__)


class BookingPartner(Protocol):
    """External system that confirms bookable options and finalizes bookings."""

    def finalize(self, payload: dict[str, Any]) -> None: ...


@dataclass
class HttpBookingPartner:
    """Post the finalized booking payload to the partner's completion endpoint."""

    complete_url: str
    timeout: float = 10.0
    session: requests.Session = field(default_factory=requests.Session)

    def finalize(self, payload: dict[str, Any]) -> None:
        response = self.session.post(self.complete_url, json=payload, timeout=self.timeout)
        response.raise_for_status()
        logger.info(
            "partner_booking_finalized",
            url=self.complete_url,
            status_code=response.status_code,
        )


class NullBookingPartner:
    """Partner used when no completion endpoint is configured."""

    def finalize(self, payload: dict[str, Any]) -> None:
        logger.info("partner_finalize_skipped", payload_keys=sorted(payload))


@dataclass
class RecordingBookingPartner:
    """Partner that keeps finalized payloads in memory."""

    finalized: list[dict[str, Any]] = field(default_factory=list)

    def finalize(self, payload: dict[str, Any]) -> None:
        self.finalized.append(dict(payload))
