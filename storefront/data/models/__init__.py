# import all models so SQLAlchemy registers them in Base.metadata

from storefront.data.models.product import ProductModel
from storefront.data.models.cart import CartModel
from storefront.data.models.cart_item import CartItemModel
from storefront.data.models.checkout import CheckoutModel
from storefront.data.models.order import OrderModel

__all__ = ["ProductModel", "CartModel", "CartItemModel", "CheckoutModel", "OrderModel"]
