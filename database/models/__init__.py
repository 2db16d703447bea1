# database/models/__init__.py
from database.models.user import User
from database.models.box import Box
from database.models.card import Card
from database.models.pull import Pull
from database.models.cart_item import CartItem
from database.models.sale_history import SaleHistory
from database.models.battle import Battle, BattleStatus, BattleMode, TERMINAL_STATUSES
from database.models.battle_participant import BattleParticipant
from database.models.battle_pull import BattlePull

__all__ = [
    'User',
    'Box',
    'Card',
    'Pull',
    'CartItem',
    'SaleHistory',
    'Battle',
    'BattleStatus',
    'BattleMode',
    'TERMINAL_STATUSES',
    'BattleParticipant',
    'BattlePull',
]
