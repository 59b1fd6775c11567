from inventory.api.errors import register_inventory_exception_handlers
from inventory.api.routes import maintenance_router, order_router, product_router

__all__ = ["product_router", "order_router", "maintenance_router", "register_inventory_exception_handlers"]
