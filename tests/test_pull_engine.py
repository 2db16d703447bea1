import random
from collections import Counter

import pytest

from database.models.card import Card
from game.exceptions import ConfigurationError
from game.pack_system import default_pull_rate
from game.pull_engine import PullEngine


def make_cards(*rates):
    return [
        Card(id=i + 1, name=f"Card {i + 1}", pull_rate=rate, coin_value=(i + 1) * 10)
        for i, rate in enumerate(rates)
    ]


def test_draw_follows_weights():
    cards = make_cards(1, 3)
    engine = PullEngine(random.Random(42))

    counts = Counter(engine.draw(cards).id for _ in range(1000))

    assert counts[1] + counts[2] == 1000
    assert 200 <= counts[1] <= 300
    assert 700 <= counts[2] <= 800


def test_same_seed_same_sequence():
    cards = make_cards(5, 1, 1, 3)
    first = [c.id for c in PullEngine(random.Random(9)).draw_pack(cards, 50)]
    second = [c.id for c in PullEngine(random.Random(9)).draw_pack(cards, 50)]
    assert first == second


def test_zero_weight_card_is_never_drawn():
    cards = make_cards(0, 1, 0, 1)
    engine = PullEngine(random.Random(3))

    drawn = {engine.draw(cards).id for _ in range(500)}

    assert drawn == {2, 4}


def test_roll_at_the_top_of_the_range_picks_last_weighted_card():
    class TopRandom(random.Random):
        def random(self):
            return 1.0

    cards = make_cards(1, 1, 0)
    assert PullEngine(TopRandom()).draw(cards).id == 2


def test_roll_at_zero_picks_first_weighted_card():
    class ZeroRandom(random.Random):
        def random(self):
            return 0.0

    cards = make_cards(0, 2, 1)
    assert PullEngine(ZeroRandom()).draw(cards).id == 2


def test_draw_pack_returns_independent_draws():
    cards = make_cards(1, 1)
    pack = PullEngine(random.Random(1)).draw_pack(cards, 5)
    assert len(pack) == 5
    assert all(card in cards for card in pack)


@pytest.mark.parametrize(
    "cards",
    [
        [],
        make_cards(0, 0),
        make_cards(1, -1),
    ],
    ids=["empty", "all-zero", "negative"],
)
def test_unusable_pool_raises_configuration_error(cards):
    with pytest.raises(ConfigurationError):
        PullEngine().draw(cards)
    with pytest.raises(ConfigurationError):
        PullEngine.validate_pool(cards)


def test_cards_per_pack_must_be_positive():
    with pytest.raises(ConfigurationError):
        PullEngine().draw_pack(make_cards(1), 0)


def test_default_pull_rate_by_rarity():
    assert default_pull_rate("Rare") == 10.0
    assert default_pull_rate("unknown") == default_pull_rate("common")
    assert default_pull_rate(None) == 60.0
