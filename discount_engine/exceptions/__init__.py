"""Custom exceptions for the discount engine."""

class DiscountEngineError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv

class BusinessLogicError(DiscountEngineError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)

class NotFoundError(DiscountEngineError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)

class UsageLimitReachedError(BusinessLogicError):
    """Raised when the atomic usage increment is refused because the cap is reached."""
    def __init__(self, discount_id, max_uses):
        message = f"Discount {discount_id} usage limit reached ({max_uses} uses)"
        super().__init__(message, status_code=409, payload={'discount_id': discount_id})

class UsageRecordingError(DiscountEngineError):
    """Raised when usage could not be durably recorded (store unavailable)."""
    def __init__(self, message="Discount usage could not be recorded", payload=None):
        super().__init__(message, 503, payload)

class UnauthorizedError(DiscountEngineError):
    """Raised when a caller lacks permission for an action."""
    def __init__(self, message="Unauthorized access"):
        super().__init__(message, 403)
