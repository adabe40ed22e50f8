from .stores import Store
from .catalog import Product
from .inventory import StockRecord, StockMovement
from .orders import Order, OrderItem
from .fulfillment import (
    KitchenSheet, KitchenSheetItem, Delivery, DeliveryNote, TemperatureLog, BarcodeLabel, GpsLog,
)
from .billing import Invoice, Return, Payment, PaymentReminder
from .communications import Notification
from .documents import DocumentSequence

__all__ = [
    'Store',
    'Product',
    'StockRecord', 'StockMovement',
    'Order', 'OrderItem',
    'KitchenSheet', 'KitchenSheetItem', 'Delivery', 'DeliveryNote', 'TemperatureLog',
    'BarcodeLabel', 'GpsLog',
    'Invoice', 'Return', 'Payment', 'PaymentReminder',
    'Notification',
    'DocumentSequence',
]
