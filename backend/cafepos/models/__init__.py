from .catalog import Product, ProductRecipe
from .inventory import Supplier, Ingredient, StockMovement
from .orders import Order, OrderItem, ORDER_STATUSES
from .promotions import Promotion
from .auth import User, SessionToken, ROLES
from .security import SecurityEvent

__all__ = [
    'Product', 'ProductRecipe',
    'Supplier', 'Ingredient', 'StockMovement',
    'Order', 'OrderItem', 'ORDER_STATUSES',
    'Promotion',
    'User', 'SessionToken', 'ROLES',
    'SecurityEvent',
]
