from app.models.user import User
from app.models.product import Product
from app.models.order import Order, OrderStatus, PaymentStatus, PaymentMethod
from app.models.order_item import OrderItem
from app.models.transaction import Transaction, TransactionStatus
from app.models.order_event import OrderEvent
from app.models.notifications import Notification

# add ALL models here
