"""Custom exceptions for the back office core.

Every BackofficeError is raised before the atomic scope commits: when a caller
receives one, nothing was written and the operation is safe to retry after
fixing the input. Failures of best-effort side effects are never raised; they
are recorded in the ledger outbox instead.
"""
from backoffice.utils.formatters import num_ar


class BackofficeError(Exception):
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
        rv['error'] = type(self).__name__
        return rv


class NotFoundError(BackofficeError):
    """Exception raised when a resource is not found for the tenant."""
    def __init__(self, message="Recurso no encontrado", payload=None):
        super().__init__(message, 404, payload)


class InvalidInputError(BackofficeError):
    """Missing required fields, empty item lists, non-positive amounts."""
    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)


class InsufficientStockError(BackofficeError):
    """Raised when an OUT movement exceeds the quantity on hand."""
    def __init__(self, product_name, required, available, warehouse_name=None):
        message = (
            f"Stock insuficiente para {product_name}: "
            f"se requieren {num_ar(required)}, disponible {num_ar(available)}"
        )
        if warehouse_name:
            message += f" en {warehouse_name}"
        super().__init__(message, 409, {
            'required': str(required),
            'available': str(available),
        })
        self.required = required
        self.available = available


class OverPaymentError(BackofficeError):
    """Raised when payments exceed the document total."""
    def __init__(self, message, payload=None):
        super().__init__(message, 409, payload)


class InvalidStateError(BackofficeError):
    """State-machine violation (approve non-draft, pay cancelled purchase, ...)."""
    def __init__(self, message, payload=None):
        super().__init__(message, 409, payload)
