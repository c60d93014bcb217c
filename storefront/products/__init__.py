from .routes import products_router
from .service import ProductService

__all__ = ["products_router", "ProductService"]
