"""
Price extraction from rendered Google Flights page text.

The page layout changes often, so extraction works on the visible text
only (``document.body.innerText``) and is kept behind
``PriceExtractionStrategy`` so the heuristics can be swapped without
touching the scraper.

Known limitation: carriers are attributed by looking for names from
KNOWN_AIRLINES in the page text. A carrier outside that list is never
attributed, and the first listed name present on the page wins even when
it is not the carrier of the cheapest fare.
"""

import re
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from flight_tracker.exceptions import NoPricesFound

logger = logging.getLogger(__name__)


# =============================================================================
# Validation Rules
# =============================================================================

PRICE_PATTERN = re.compile(r"\$(\d{1,3}(?:,\d{3})*)")

KNOWN_AIRLINES = [
    "JetBlue",
    "Delta",
    "United",
    "American",
    "Southwest",
    "Spirit",
    "Frontier",
    "Alaska",
    "Turkish",
    "Iberia",
    "British Airways",
    "Lufthansa",
    "Air France",
]


class PriceRange:
    """Plausible fare bounds in whole dollars."""

    MIN_PRICE = 50
    MAX_PRICE = 50000

    # Tighter floor around an airline mention: small amounts there are bag fees
    MIN_AIRLINE_PRICE = 100

    @classmethod
    def is_plausible(cls, price: int) -> bool:
        return cls.MIN_PRICE <= price <= cls.MAX_PRICE

    @classmethod
    def is_plausible_for_airline(cls, price: int) -> bool:
        return cls.MIN_AIRLINE_PRICE <= price <= cls.MAX_PRICE


def parse_dollar_amounts(text: str) -> List[int]:
    """Every ``$N`` / ``$N,NNN`` amount in ``text``, in order of appearance."""
    return [int(match.replace(",", "")) for match in PRICE_PATTERN.findall(text or "")]


# =============================================================================
# Extraction Strategies
# =============================================================================

@dataclass
class ExtractedPrice:
    price: Decimal
    airline: Optional[str]
    cheapest_price: Optional[int] = None
    preferred_airline_price: Optional[int] = None
    found_prices: List[int] = field(default_factory=list)

    def to_raw_data(self) -> dict:
        return {
            "cheapest_price": self.cheapest_price,
            "preferred_airline_price": self.preferred_airline_price,
            "found_prices": self.found_prices,
        }


class PriceExtractionStrategy(ABC):
    """Turns rendered page text into a single fare."""

    name: str = "base"

    @abstractmethod
    def extract(self, page_text: str, preferred_airline: Optional[str] = None) -> ExtractedPrice:
        """Return the fare, or raise NoPricesFound."""


class TextPatternExtractor(PriceExtractionStrategy):
    """
    Line-based dollar-amount scan.

    1. Every amount within PriceRange anywhere in the text; the cheapest wins.
    2. When a preferred airline is given, amounts from 3 lines before to
       4 lines after a line naming it (or the line after such a line) are
       collected separately; the cheapest of those wins over (1).
    """

    name = "text_pattern"

    LINES_BEFORE = 3
    LINES_AFTER = 5

    def __init__(self, known_airlines: Optional[List[str]] = None):
        self.known_airlines = known_airlines or KNOWN_AIRLINES

    def _preferred_airline_price(self, lines: List[str], airline: str) -> Optional[int]:
        needle = airline.lower()
        best: Optional[int] = None
        for i, line in enumerate(lines):
            mentions = needle in line.lower() or (i > 0 and needle in lines[i - 1].lower())
            if not mentions:
                continue
            start = max(0, i - self.LINES_BEFORE)
            end = min(len(lines), i + self.LINES_AFTER)
            for nearby in lines[start:end]:
                for price in parse_dollar_amounts(nearby):
                    if PriceRange.is_plausible_for_airline(price) and (best is None or price < best):
                        best = price
        return best

    def _attribute_airline(self, page_text: str) -> Optional[str]:
        for name in self.known_airlines:
            if name in page_text:
                return name
        return None

    def extract(self, page_text: str, preferred_airline: Optional[str] = None) -> ExtractedPrice:
        page_text = page_text or ""
        all_prices = sorted(p for p in parse_dollar_amounts(page_text) if PriceRange.is_plausible(p))
        cheapest = all_prices[0] if all_prices else None

        preferred_price = None
        if preferred_airline and preferred_airline.strip().lower() != "any":
            lines = [line.strip() for line in page_text.split("\n")]
            preferred_price = self._preferred_airline_price(lines, preferred_airline.strip())

        if preferred_price is not None:
            price, airline = preferred_price, preferred_airline.strip()
        elif cheapest is not None:
            price, airline = cheapest, self._attribute_airline(page_text)
        else:
            raise NoPricesFound()

        logger.debug(
            f"Extracted ${price} ({airline}) | preferred: {preferred_price} | "
            f"cheapest: {cheapest} | all: {all_prices[:8]}"
        )
        return ExtractedPrice(
            price=Decimal(price),
            airline=airline,
            cheapest_price=cheapest,
            preferred_airline_price=preferred_price,
            found_prices=all_prices[:8],
        )
