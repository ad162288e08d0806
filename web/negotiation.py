"""
``Accept`` header negotiation.

Only what the exporter needs: media ranges with ``q`` weights, wildcards,
and a pick among a fixed list of offers.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence


@dataclass(frozen=True)
class MediaRange:
    type: str
    subtype: str
    quality: float = 1.0
    position: int = 0

    def matches(self, mime: str) -> Optional[int]:
        """Specificity of the match against *mime* (higher is more specific), or None."""
        offer_type, _, offer_subtype = mime.partition("/")
        if self.type == "*":
            return 0
        if self.type != offer_type:
            return None
        if self.subtype == "*":
            return 1
        if self.subtype != offer_subtype:
            return None
        return 2


def parse_accept(header: str) -> List[MediaRange]:
    ranges: List[MediaRange] = []
    for position, part in enumerate(header.split(",")):
        fields = [f.strip() for f in part.split(";")]
        mime = fields[0].lower()
        if "/" not in mime:
            # "*" is sent by some clients as a shorthand for "*/*"
            if mime != "*":
                continue
            mime = "*/*"
        type_, _, subtype = mime.partition("/")
        quality = 1.0
        for param in fields[1:]:
            key, _, value = param.partition("=")
            if key.strip().lower() == "q":
                try:
                    quality = float(value)
                except ValueError:
                    quality = 0.0
        ranges.append(MediaRange(type_, subtype, max(0.0, min(quality, 1.0)), position))
    return ranges


def negotiate(accept: Optional[str], offers: Sequence[str]) -> Optional[str]:
    """
    Pick the offer the client prefers, or ``None`` when nothing is acceptable.

    A missing or empty header accepts the first offer.  Each offer is
    weighed by the most specific range that matches it; ties go to the range
    listed first, then to the order of *offers*.
    """
    if not accept or not accept.strip():
        return offers[0] if offers else None

    ranges = parse_accept(accept)
    if not ranges:
        return offers[0] if offers else None

    best: Optional[str] = None
    best_key = None
    for index, offer in enumerate(offers):
        matched: Optional[MediaRange] = None
        specificity = -1
        for media_range in ranges:
            rank = media_range.matches(offer)
            if rank is not None and rank > specificity:
                matched, specificity = media_range, rank
        if matched is None or matched.quality <= 0:
            continue
        key = (-matched.quality, matched.position, index)
        if best_key is None or key < best_key:
            best, best_key = offer, key
    return best
