# app/core/errors.py


class CheckoutSessionValidationError(Exception):
    """
    Raised when a storefront payload is missing a required identifier.

    Rendered as HTTP 200 with ``{"error": message}`` (business error),
    see the handler registered in app/main.py.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidJSONBodyError(Exception):
    """
    Raised when a storefront request body is not a JSON object.

    Rendered as HTTP 400 with ``{"error": "Invalid JSON body"}``.
    """
