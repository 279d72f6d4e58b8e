from storefront.models.product import Product
from storefront.models.cart import Cart, CartItem
from storefront.models.order import Order, OrderItem, OrderStatus, PaymentStatus
from storefront.models.order_status_history import OrderStatusHistory
