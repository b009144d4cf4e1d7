from .catalog import Product
from .customers import Customer
from .rewards import LoyaltyConfig, CashbackConfig, LoyaltyTransaction, CashbackTransaction, LoyaltyReward
from .coupons import Coupon, CouponUsage
from .registers import Register, TillSession
from .tickets import Ticket, TicketItem, TicketPayment, TicketSequence, TicketEvent

__all__ = [
    'Product',
    'Customer',
    'LoyaltyConfig', 'CashbackConfig', 'LoyaltyTransaction', 'CashbackTransaction', 'LoyaltyReward',
    'Coupon', 'CouponUsage',
    'Register', 'TillSession',
    'Ticket', 'TicketItem', 'TicketPayment', 'TicketSequence', 'TicketEvent',
]
