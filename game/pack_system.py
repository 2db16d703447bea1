# game/pack_system.py
PACK_SETTINGS = {
    "min_quantity": 1,
    "max_quantity": 4,  # packs per open request
}

# Default pull_rate for a card when the admin gives only its rarity
RARITY_PULL_RATES = {
    "common": 60.0,
    "uncommon": 25.0,
    "rare": 10.0,
    "mythic": 4.0,
    "special": 1.0,
}

BATTLE_SETTINGS = {
    "min_participants": 2,
    "max_participants": 8,
    "min_rounds": 1,
    "max_rounds": 50,
}


def default_pull_rate(rarity: str) -> float:
    """pull_rate implied by a rarity tier"""
    return RARITY_PULL_RATES.get((rarity or "").lower(), RARITY_PULL_RATES["common"])
