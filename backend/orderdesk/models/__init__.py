from .catalog import Product, PriceList, PriceListItem
from .customers import Customer
from .promotions import Discount, DiscountProduct, DiscountType
from .carts import CartItem, FreeItemClaim, ClaimState
from .orders import Order, OrderItem, OrderStatusEvent, Payment, OrderStatus, PaymentMethod, PaymentType, PaymentStatus
from .rewards import RewardTier, CustomerReward, RewardStatus
from .documents import DocumentSequence

__all__ = [
    'Product', 'PriceList', 'PriceListItem',
    'Customer',
    'Discount', 'DiscountProduct', 'DiscountType',
    'CartItem', 'FreeItemClaim', 'ClaimState',
    'Order', 'OrderItem', 'OrderStatusEvent', 'Payment',
    'OrderStatus', 'PaymentMethod', 'PaymentType', 'PaymentStatus',
    'RewardTier', 'CustomerReward', 'RewardStatus',
    'DocumentSequence',
]
