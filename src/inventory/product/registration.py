"""Product registration and stock corrections — commands and handler."""

from uuid import uuid4

from protean import handle
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from inventory.domain import inventory
from inventory.product.product import Product
from inventory.stock.decrement import StockDecrementService


@inventory.command(part_of="Product")
class RegisterProduct:
    """Add a product to the catalog with its opening stock."""

    product_id = Identifier()
    title = String(max_length=255)
    stock = Integer(default=0)


@inventory.command(part_of="Product")
class SetStock:
    """Overwrite a product's on-hand stock (manual correction or restock)."""

    product_id = Identifier(required=True)
    stock = Integer(required=True, min_value=0)


@inventory.command_handler(part_of=Product)
class ProductRegistrationHandler:
    @handle(RegisterProduct)
    def register_product(self, command):
        product = Product.register(
            product_id=command.product_id or str(uuid4()),
            title=command.title,
            stock=command.stock or 0,
        )
        current_domain.repository_for(Product).add(product)
        return str(product.product_id)

    @handle(SetStock)
    def set_stock(self, command):
        result = StockDecrementService().set_stock(command.product_id, command.stock)
        return {"previous_stock": result.previous_stock, "new_stock": result.new_stock}
