"""
Promotional offer parsing.

Products on promotion carry three loose text fields: a label image URL, a
description ("Any 2 for £3") and a validity sentence such as
"valid from 1/2/2011 until 28/2/2011". This module turns them into an Offer with
a parsed validity window.

All parsing helpers are pure (no I/O, no network calls).
"""

import re
from datetime import datetime, timezone
from typing import NamedTuple, Optional

from pydantic import BaseModel, Field, ConfigDict

# Dates are day/month/year
_VALIDITY_PATTERN = re.compile(
    r"^valid from (\d{1,2})/(\d{1,2})/(\d{4}) until (\d{1,2})/(\d{1,2})/(\d{4})$"
)


class ValidityWindow(NamedTuple):
    """Start and end (UTC midnight) of an offer's validity."""
    valid_from: datetime
    valid_until: datetime


def parse_validity(validity: Optional[str]) -> Optional[ValidityWindow]:
    """
    Parse an offer validity sentence into a time window.

    Args:
        validity: Text of the form "valid from D/M/YYYY until D/M/YYYY"

    Returns:
        ValidityWindow with UTC datetimes, or None when the text is missing,
        does not follow the expected format, or names an impossible date

    Examples:
        >>> parse_validity("valid from 1/2/2011 until 28/2/2011").valid_until.day
        28
        >>> parse_validity("while stocks last") is None
        True
    """
    if not validity:
        return None

    match = _VALIDITY_PATTERN.match(validity.strip())
    if not match:
        return None

    from_day, from_month, from_year, until_day, until_month, until_year = (int(g) for g in match.groups())
    try:
        return ValidityWindow(
            valid_from=datetime(from_year, from_month, from_day, tzinfo=timezone.utc),
            valid_until=datetime(until_year, until_month, until_day, tzinfo=timezone.utc),
        )
    except ValueError:
        # e.g. 31/2/2011
        return None


class Offer(BaseModel):
    """A promotion currently applied to a product."""
    description: str = Field(..., min_length=1, description="Promotion text, e.g. 'Any 2 for £3'")
    image_url: Optional[str] = Field(None, description="URL of the offer label image")
    validity: Optional[str] = Field(None, description="Validity sentence as sent by the server")
    valid_from: Optional[datetime] = Field(None, description="Start of the validity window (UTC)")
    valid_until: Optional[datetime] = Field(None, description="End of the validity window (UTC)")

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_fields(
        cls,
        image_url: Optional[str],
        description: Optional[str],
        validity: Optional[str],
    ) -> Optional["Offer"]:
        """
        Build an Offer from the raw product fields.

        Args:
            image_url: OfferLabelImagePath
            description: OfferPromotion
            validity: OfferValidity

        Returns:
            Offer instance, or None when there is no promotion description
            (a product without a promotion is not an error)
        """
        if description is None or not description.strip():
            return None

        window = parse_validity(validity)
        return cls(
            description=description,
            image_url=image_url or None,
            validity=validity or None,
            valid_from=window.valid_from if window else None,
            valid_until=window.valid_until if window else None,
        )

    def is_active(self, at: Optional[datetime] = None) -> bool:
        """
        Check whether the offer applies at the given moment.

        Offers whose validity could not be parsed are treated as active.
        The end date is inclusive (the whole final day counts).
        """
        if self.valid_from is None or self.valid_until is None:
            return True
        at = at or datetime.now(timezone.utc)
        end_of_last_day = self.valid_until.replace(hour=23, minute=59, second=59, microsecond=999999)
        return self.valid_from <= at <= end_of_last_day
