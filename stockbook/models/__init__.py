from stockbook.models.account import Business, BusinessMembership, RefreshToken, TeamInvitation, User
from stockbook.models.activity import AuditLog, ChangeEvent
from stockbook.models.warehouse import Warehouse
from stockbook.models.product import Product, ProductVariant
from stockbook.models.stock import StockLevel, StockMovement
from stockbook.models.customer import Customer
from stockbook.models.order import Order, OrderItem
