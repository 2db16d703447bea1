# game/pull_engine.py
"""Weighted random card selection.

Every slot of a pack is an independent draw over the whole pool (with
replacement). ``pull_rate`` values are relative weights and are normalised at
draw time, so ``P(card_i) = pull_rate_i / sum(pull_rate)``.
"""
import random
from bisect import bisect_left, bisect_right
from itertools import accumulate
from typing import List, Optional, Sequence

from database.models.card import Card
from game.exceptions import ConfigurationError


class PullEngine:
    """Draws cards from a box pool with an injectable random source"""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    @staticmethod
    def _cumulative_weights(cards: Sequence[Card]) -> List[float]:
        if not cards:
            raise ConfigurationError("Box has no cards")

        weights = [float(card.pull_rate or 0) for card in cards]
        if any(w < 0 for w in weights):
            raise ConfigurationError("Card pull rates must not be negative")

        cumulative = list(accumulate(weights))
        if cumulative[-1] <= 0:
            raise ConfigurationError("Total pull rate is zero")
        return cumulative

    def _pick(self, cards: Sequence[Card], cumulative: List[float]) -> Card:
        total = cumulative[-1]
        roll = self.rng.random() * total
        # First card whose cumulative weight is strictly above the roll;
        # zero-weight cards never own an interval.
        index = bisect_right(cumulative, roll)
        if index >= len(cards):
            # roll rounded up to total: take the last card with weight
            index = bisect_left(cumulative, total)
        return cards[index]

    def draw(self, cards: Sequence[Card]) -> Card:
        """Draw one card; the pool order must be stable (card id)"""
        return self._pick(cards, self._cumulative_weights(cards))

    def draw_pack(self, cards: Sequence[Card], cards_per_pack: int) -> List[Card]:
        if cards_per_pack < 1:
            raise ConfigurationError(f"cards_per_pack must be at least 1, got {cards_per_pack}")

        cumulative = self._cumulative_weights(cards)
        return [self._pick(cards, cumulative) for _ in range(cards_per_pack)]

    @staticmethod
    def validate_pool(cards: Sequence[Card]) -> None:
        """Raise ConfigurationError when the pool cannot be drawn from"""
        PullEngine._cumulative_weights(cards)
