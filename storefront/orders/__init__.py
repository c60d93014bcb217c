from .routes import orders_router
from .service import OrderService, merge_line_items

__all__ = ["orders_router", "OrderService", "merge_line_items"]
