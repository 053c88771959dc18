"""
Plan catalog and tier comparison.

The catalog is an ordered, immutable list of tiers. ``classify`` decides
whether moving between two prices is a new subscription, an upgrade, a
downgrade or no change at all; the pricing endpoint uses it for labels and
the checkout orchestrator uses it to detect plan changes.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from vidsum.config import Settings
from vidsum.errors import InvalidPlan

CURRENCY_SYMBOLS = {"gbp": "£", "usd": "$", "eur": "€"}


class PlanAction(str, enum.Enum):
    NEW = "new"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    NOOP = "noop"


@dataclass(frozen=True)
class PlanTier:
    name: str
    price_id: Optional[str]
    tier_rank: int
    amount: Decimal
    currency: str = "gbp"
    interval: str = "month"
    description: str = ""
    features: tuple[str, ...] = field(default_factory=tuple)
    popular: bool = False

    @property
    def display_price(self) -> str:
        symbol = CURRENCY_SYMBOLS.get(self.currency, "")
        return f"{symbol}{self.amount:.2f}" if symbol else f"{self.amount:.2f} {self.currency.upper()}"

    @property
    def is_baseline(self) -> bool:
        return self.tier_rank == 0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "price_id": self.price_id,
            "tier_rank": self.tier_rank,
            "display_price": self.display_price,
            "interval": self.interval,
            "description": self.description,
            "features": list(self.features),
            "popular": self.popular,
        }


class PlanCatalog:
    def __init__(self, tiers: Iterable[PlanTier]):
        ordered = sorted(tiers, key=lambda t: t.tier_rank)
        baselines = [t for t in ordered if t.tier_rank == 0]
        if len(baselines) != 1:
            raise ValueError(f"catalog needs exactly one tier with rank 0, got {len(baselines)}")
        for lower, higher in zip(ordered, ordered[1:]):
            if higher.tier_rank == lower.tier_rank:
                raise ValueError(f"duplicate tier rank {higher.tier_rank}")
            if higher.amount <= lower.amount:
                raise ValueError(f"tier {higher.name!r} must cost more than {lower.name!r}")
        self._tiers: tuple[PlanTier, ...] = tuple(ordered)
        self._by_price = {t.price_id: t for t in ordered if t.price_id}

    @property
    def tiers(self) -> Sequence[PlanTier]:
        return self._tiers

    @property
    def baseline(self) -> PlanTier:
        return self._tiers[0]

    def get(self, price_id: Optional[str]) -> PlanTier:
        tier = self._by_price.get(price_id) if price_id else None
        if tier is None:
            raise InvalidPlan(f"Unknown price id: {price_id}", price_id=price_id)
        return tier

    def classify(self, current_price_id: Optional[str], target_price_id: str) -> PlanAction:
        target = self.get(target_price_id)
        if current_price_id is None:
            return PlanAction.NEW
        current = self.get(current_price_id)
        if target.tier_rank > current.tier_rank:
            return PlanAction.UPGRADE
        if target.tier_rank < current.tier_rank:
            return PlanAction.DOWNGRADE
        return PlanAction.NOOP


def build_catalog(settings: Settings) -> PlanCatalog:
    return PlanCatalog([
        PlanTier(
            name="Free",
            price_id=None,
            tier_rank=0,
            amount=Decimal("0"),
            description="Browse the site and try the summarizer before subscribing.",
            features=("Access to pricing and account pages",),
        ),
        PlanTier(
            name="Basic Plan",
            price_id=settings.price_basic_id,
            tier_rank=1,
            amount=Decimal("1.00"),
            description="Fast, AI-generated summaries for short YouTube videos up to 15 minutes long.",
            features=(
                "Summarize YouTube videos up to 15 minutes",
                "AI-powered quick insights",
                "Bullet-point summaries",
                "Ideal for short educational clips, news, or tutorials",
            ),
        ),
        PlanTier(
            name="Standard Plan",
            price_id=settings.price_standard_id,
            tier_rank=2,
            amount=Decimal("12.00"),
            description="In-depth summaries for videos up to 30 minutes long.",
            features=(
                "Summarize YouTube videos up to 30 minutes",
                "AI-powered summaries with key takeaways",
                "Paragraph-based summaries for better understanding",
                "Ideal for podcasts, interviews, and longer tutorials",
                "Priority processing for faster results",
            ),
            popular=True,
        ),
        PlanTier(
            name="Pro Plan",
            price_id=settings.price_pro_id,
            tier_rank=3,
            amount=Decimal("24.00"),
            description="Full-length video summaries with chapter-wise segmentation.",
            features=(
                "Summarize YouTube videos of ANY length (60+ minutes included)",
                "AI-powered, detailed breakdowns",
                "Chapter-wise segmentation for longer videos",
                "Perfect for documentaries, lectures, and full-length courses",
                "Highest priority processing for the fastest results",
                "Early access to new AI features",
            ),
        ),
    ])
