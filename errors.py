"""
Error taxonomy shared by every handler.

Services raise these; main.py renders them as the
``{"success": False, "message": ...}`` envelope the storefront and admin
console expect, using ``status_code`` as the HTTP status.
"""


class ShopError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(ShopError):
    status_code = 400


class Unauthorized(ShopError):
    status_code = 401


class Forbidden(ShopError):
    status_code = 403


class NotFound(ShopError):
    status_code = 404


class Conflict(ShopError):
    status_code = 409
