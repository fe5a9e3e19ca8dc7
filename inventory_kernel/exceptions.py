"""
Typed Exception Hierarchy for the Inventory Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the coordinator (request handlers, sync jobs, tests) must tell a
retryable lock conflict from an oversell and from malformed input without
parsing message strings. Every error therefore has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE attribute (machine-readable, API-safe)
  3. Structured DATA attributes (not just a message string)

Example:
    try:
        coordinator.record_sale(customer_id, items, reference_number="SO-1")
    except InsufficientStockError as e:
        api_response(code=e.code, available=e.available, requested=e.requested)
    except ConcurrencyError as e:
        if e.retryable:
            schedule_retry()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    InventoryKernelError (base)
    |
    +-- ValidationError
    |
    +-- NotFoundError
    |   +-- InventoryNotFoundError
    |   +-- ProductNotFoundError
    |   +-- WarehouseNotFoundError
    |   +-- CustomerNotFoundError
    |   +-- ConnectionNotFoundError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |   +-- ReservationExceededError
    |
    +-- ConcurrencyError            (retryable)
    |   +-- ConflictError
    |   +-- LockTimeoutError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                   | When Raised
-----------------------|------------------------------------------------------
VALIDATION_ERROR       | Malformed input; raised before any mutation
INVENTORY_NOT_FOUND    | No record for the id or (product, warehouse) pair
PRODUCT_NOT_FOUND      | Referenced product does not exist or is inactive
WAREHOUSE_NOT_FOUND    | Referenced warehouse does not exist or is inactive
CUSTOMER_NOT_FOUND     | Sale references an unknown customer
CONNECTION_NOT_FOUND   | Broadcaster operation on an unregistered connection
INSUFFICIENT_STOCK     | Available quantity would go below zero
RESERVATION_EXCEEDED   | Releasing more than is reserved
CONFLICT               | Deadlock, serialization failure or stale row version
LOCK_TIMEOUT           | Row lock not acquired within the configured interval
IMMUTABILITY_VIOLATION | UPDATE/DELETE attempted on a ledger movement
"""


class InventoryKernelError(Exception):
    """
    Base exception for all inventory kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "INVENTORY_KERNEL_ERROR"
    retryable: bool = False


# Validation


class ValidationError(InventoryKernelError):
    """Malformed input rejected before any mutation is attempted."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


# Lookup failures


class NotFoundError(InventoryKernelError):
    """Base exception for missing referenced entities."""

    code: str = "NOT_FOUND"


class InventoryNotFoundError(NotFoundError):
    """No inventory record matches the lookup."""

    code: str = "INVENTORY_NOT_FOUND"

    def __init__(
        self,
        inventory_id: str | None = None,
        product_id: str | None = None,
        warehouse_id: str | None = None,
    ):
        self.inventory_id = inventory_id
        self.product_id = product_id
        self.warehouse_id = warehouse_id
        if inventory_id is not None:
            message = f"Inventory record not found: {inventory_id}"
        else:
            message = (
                f"Inventory record not found for product {product_id} "
                f"in warehouse {warehouse_id}"
            )
        super().__init__(message)


class ProductNotFoundError(NotFoundError):
    """Referenced product does not exist or is inactive."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class WarehouseNotFoundError(NotFoundError):
    """Referenced warehouse does not exist or is inactive."""

    code: str = "WAREHOUSE_NOT_FOUND"

    def __init__(self, warehouse_id: str):
        self.warehouse_id = warehouse_id
        super().__init__(f"Warehouse not found: {warehouse_id}")


class CustomerNotFoundError(NotFoundError):
    """Sale references a customer that does not exist."""

    code: str = "CUSTOMER_NOT_FOUND"

    def __init__(self, customer_id: str):
        self.customer_id = customer_id
        super().__init__(f"Customer not found: {customer_id}")


class ConnectionNotFoundError(NotFoundError):
    """Broadcaster operation on a connection that is not registered."""

    code: str = "CONNECTION_NOT_FOUND"

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        super().__init__(f"Connection not registered: {connection_id}")


# Stock level failures


class StockError(InventoryKernelError):
    """Base exception for stock level violations."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """A change would drive the available quantity below zero."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        inventory_id: str,
        available: int,
        requested: int,
        product_id: str | None = None,
        warehouse_id: str | None = None,
    ):
        self.inventory_id = inventory_id
        self.available = available
        self.requested = requested
        self.product_id = product_id
        self.warehouse_id = warehouse_id
        super().__init__(
            f"Insufficient stock on inventory {inventory_id}: "
            f"available {available}, requested {requested}"
        )


class ReservationExceededError(StockError):
    """Release requested for more units than are reserved."""

    code: str = "RESERVATION_EXCEEDED"

    def __init__(self, inventory_id: str, reserved: int, requested: int):
        self.inventory_id = inventory_id
        self.reserved = reserved
        self.requested = requested
        super().__init__(
            f"Cannot release {requested} units on inventory {inventory_id}: "
            f"only {reserved} reserved"
        )


# Concurrency


class ConcurrencyError(InventoryKernelError):
    """Base exception for contention on a locked record. Safe to retry."""

    code: str = "CONCURRENCY_ERROR"
    retryable: bool = True


class ConflictError(ConcurrencyError):
    """Deadlock, serialization failure or stale row version."""

    code: str = "CONFLICT"

    def __init__(self, entity_type: str, entity_id: str | None, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Conflict on {entity_type} {entity_id or '<unknown>'}: {reason}"
        )


class LockTimeoutError(ConcurrencyError):
    """Row lock could not be acquired within the configured interval."""

    code: str = "LOCK_TIMEOUT"

    def __init__(self, entity_type: str, timeout_ms: int):
        self.entity_type = entity_type
        self.timeout_ms = timeout_ms
        super().__init__(
            f"Timed out after {timeout_ms}ms waiting for {entity_type} lock"
        )


# Immutability


class ImmutabilityError(InventoryKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only ledger row."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
