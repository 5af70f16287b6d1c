from .users import User
from .catalog import Product, Bundle, BundleItem, InventoryRecord, InventoryMovement
from .payment_accounts import PaymentAccount, PaymentAccountTransaction
from .orders import Order, OrderItem, OrderStatusHistory
from .remittances import RemittanceType, Remittance, RemittanceStatusHistory

__all__ = [
    'User',
    'Product', 'Bundle', 'BundleItem', 'InventoryRecord', 'InventoryMovement',
    'PaymentAccount', 'PaymentAccountTransaction',
    'Order', 'OrderItem', 'OrderStatusHistory',
    'RemittanceType', 'Remittance', 'RemittanceStatusHistory',
]
