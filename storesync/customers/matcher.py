"""
Customer Identity Matching.
Resolves a contact (national ID, phone, email) to an existing local customer.
Strategy:
1. ID number (strongest)
2. Phone, compared against every common formatting of the same number
3. Email (case-insensitive)
The first identifier that hits wins. Hits on other identifiers that point to
a different customer are reported as a conflict for manual review.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, List, Any

logger = logging.getLogger(__name__)

DEFAULT_COUNTRY_CODE = "57"


def phone_candidates(phone: Optional[str], country_code: str = DEFAULT_COUNTRY_CODE) -> List[str]:
    """
    All representations a stored phone could have for the same number.

    The raw input is always included. For a 10-digit national number the
    digits-only form, hyphen/space/parenthesis groupings and the
    country-code-prefixed forms are added.
    """
    if phone is None or not phone.strip():
        return []

    candidates = [phone]
    digits = re.sub(r'\D', '', phone)

    if len(digits) == 10:
        area, exchange, line = digits[:3], digits[3:6], digits[6:]
        candidates += [
            digits,
            f"{area}-{exchange}-{line}",
            f"{area} {exchange} {line}",
            f"({area}) {exchange} {line}",
            f"+{country_code}{digits}",
            f"+{country_code} {digits}",
            f"+{country_code} {area} {exchange} {line}",
        ]

    # Keep order, drop duplicates
    return list(dict.fromkeys(candidates))


@dataclass
class MatchResult:
    """Outcome of a customer lookup."""
    customer: Optional[Dict[str, Any]] = None
    matched_on: Optional[str] = None  # 'id_number', 'phone', 'email'
    conflicts: List[int] = field(default_factory=list)

    @property
    def customer_id(self) -> Optional[int]:
        return self.customer['id'] if self.customer else None


class IdentityMatcher:
    """Logic to match contact details to local customers."""

    def __init__(self, db, country_code: str = DEFAULT_COUNTRY_CODE):
        self.db = db
        self.country_code = country_code

    def match(
        self,
        id_number: Optional[str] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        context: Optional[str] = None
    ) -> MatchResult:
        """
        Match a contact to a local customer.

        Args:
            id_number: National ID
            phone: Phone in any format
            email: Email address
            context: Free text stored with a conflict record (e.g. "order 999")

        Returns:
            MatchResult with at most one customer
        """
        id_number = (id_number or '').strip()
        email = (email or '').strip()
        phone = phone or ''

        lookups = []
        if id_number:
            lookups.append(('id_number', lambda: self.db.find_customer_by_id_number(id_number)))
        if phone.strip():
            lookups.append(('phone', lambda: self.db.find_customer_by_phones(
                phone_candidates(phone, self.country_code))))
        if email:
            lookups.append(('email', lambda: self.db.find_customer_by_email(email)))

        if not lookups:
            return MatchResult()

        result = MatchResult()
        for method, lookup in lookups:
            customer = lookup()
            if customer is None:
                continue
            if result.customer is None:
                result.customer = customer
                result.matched_on = method
            elif customer['id'] != result.customer['id'] and customer['id'] not in result.conflicts:
                result.conflicts.append(customer['id'])

        if result.customer:
            logger.debug(f"Customer {result.customer_id} matched on {result.matched_on}")

        if result.conflicts:
            identifiers = {'id_number': id_number or None, 'phone': phone or None, 'email': email or None}
            logger.warning(
                f"Identity conflict: {identifiers} matched customer {result.customer_id} "
                f"by {result.matched_on} but also {result.conflicts}"
            )
            self.db.record_identity_conflict(
                result.customer_id, result.conflicts, identifiers, context
            )

        return result

    def find_customer(
        self,
        id_number: Optional[str] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Shortcut returning only the matched customer."""
        return self.match(id_number=id_number, phone=phone, email=email).customer
