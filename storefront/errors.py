"""Domain errors. Each carries the HTTP status it is rendered with."""


class StoreError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequest(StoreError):
    status_code = 400
    default_message = "Bad request"


class Unauthorized(StoreError):
    status_code = 401
    default_message = "Unauthorized"


class NotFound(StoreError):
    status_code = 404
    default_message = "Not found"


class Conflict(StoreError):
    status_code = 409
    default_message = "Conflict"


class InternalError(StoreError):
    status_code = 500


# ---- Checkout ----
class EmptyCart(BadRequest):
    default_message = "No items"


class InvalidQuantity(BadRequest):
    default_message = "Invalid quantity"


class ProductNotFound(BadRequest):
    def __init__(self, product_id):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class InsufficientStock(BadRequest):
    def __init__(self, product_name: str):
        self.product_name = product_name
        super().__init__(f"Not enough stock for {product_name}")


class CheckoutFailed(InternalError):
    default_message = "Checkout failed"
