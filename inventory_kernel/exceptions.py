"""
Typed Exception Hierarchy for the Inventory Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger (order fulfillment, supplier receipts, the admin
surface) must be able to tell a business-rule violation from an
infrastructure fault without parsing message strings:

    try:
        ledger.reserve(item_id, 5, order_id="ORD-1")
    except InsufficientStockError as e:
        api_response(code=e.code, available=e.available, requested=e.requested)

Every exception:
  1. Is a TYPED class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    InventoryKernelError (base)
    |
    +-- ItemError
    |   +-- ItemNotFoundError
    |   +-- DuplicateItemError
    |   +-- InvalidMovementError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |
    +-- PersistenceFailureError
    |
    +-- AlertError
    |   +-- AlertNotFoundError
    |   +-- InvalidAlertTransitionError
    |   +-- RuleNotFoundError
    |   +-- InvalidRuleError
    |
    +-- ActionExecutionError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                      | When Raised
-------------|---------------------------|------------------------------------------
Item         | ITEM_NOT_FOUND            | Item ID doesn't exist or is retired
             | DUPLICATE_ITEM            | (store, product) pair already registered
             | INVALID_MOVEMENT          | Quantity/kind combination is invalid
-------------|---------------------------|------------------------------------------
Stock        | INSUFFICIENT_STOCK        | Reservation or FIFO exceeds availability
-------------|---------------------------|------------------------------------------
Concurrency  | CONCURRENCY_CONFLICT      | Lost update on a serialized item mutation
-------------|---------------------------|------------------------------------------
Persistence  | PERSISTENCE_FAILURE       | The database call itself failed
-------------|---------------------------|------------------------------------------
Alert        | ALERT_NOT_FOUND           | Alert ID doesn't exist
             | INVALID_ALERT_TRANSITION  | e.g. acknowledging a resolved alert
             | RULE_NOT_FOUND            | Rule ID doesn't exist
             | INVALID_RULE              | Rule definition fails validation
-------------|---------------------------|------------------------------------------
Action       | ACTION_EXECUTION_FAILED   | One alert action failed (non-fatal)

===============================================================================
PROPAGATION
===============================================================================

- ItemNotFoundError / InsufficientStockError go straight back to the caller
  and are NEVER retried.
- ConcurrencyConflictError is retried by the ledger a bounded number of times
  before it reaches the caller.
- PersistenceFailureError during a stock mutation reaches the caller; the
  mutation must not be assumed to have applied.  During a rule sweep it is
  logged and only that rule is skipped.
- ActionExecutionError is caught per action and logged.
"""


class InventoryKernelError(Exception):
    """
    Base exception for all inventory kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "INVENTORY_KERNEL_ERROR"


# Item-related exceptions


class ItemError(InventoryKernelError):
    """Base exception for inventory item errors."""

    code: str = "ITEM_ERROR"


class ItemNotFoundError(ItemError):
    """Inventory item with given ID was not found (or is retired)."""

    code: str = "ITEM_NOT_FOUND"

    def __init__(self, item_id: str):
        self.item_id = str(item_id)
        super().__init__(f"Inventory item not found: {item_id}")


class DuplicateItemError(ItemError):
    """An item already exists for this (store, product) pair."""

    code: str = "DUPLICATE_ITEM"

    def __init__(self, store_id: str, product_id: str):
        self.store_id = store_id
        self.product_id = product_id
        super().__init__(
            f"Inventory item already exists for store {store_id}, product {product_id}"
        )


class InvalidMovementError(ItemError):
    """Movement quantity is not valid for its kind."""

    code: str = "INVALID_MOVEMENT"

    def __init__(self, item_id: str, kind: str, quantity: int, reason: str):
        self.item_id = str(item_id)
        self.kind = kind
        self.quantity = quantity
        self.reason = reason
        super().__init__(
            f"Invalid {kind} movement of {quantity} for item {item_id}: {reason}"
        )


# Stock-related exceptions


class StockError(InventoryKernelError):
    """Base exception for stock availability errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """
    Requested quantity exceeds what is available.

    Raised by reservations (against available stock) and by FIFO
    consumption (against the active-lot total).
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, item_id: str, requested: int, available: int):
        self.item_id = str(item_id)
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for item {item_id}: "
            f"requested {requested}, available {available}"
        )


# Concurrency-related exceptions


class ConcurrencyError(InventoryKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """Lost update detected on a per-item serialized mutation."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, attempts: int = 1):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.attempts = attempts
        super().__init__(
            f"Concurrency conflict on {entity_type} {entity_id} "
            f"after {attempts} attempt(s): row was modified by another transaction"
        )


# Persistence exceptions


class PersistenceFailureError(InventoryKernelError):
    """The persistence gateway call itself failed."""

    code: str = "PERSISTENCE_FAILURE"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Persistence failure during {operation}: {detail}")


# Alert-related exceptions


class AlertError(InventoryKernelError):
    """Base exception for alert and rule errors."""

    code: str = "ALERT_ERROR"


class AlertNotFoundError(AlertError):
    """Alert with given ID was not found."""

    code: str = "ALERT_NOT_FOUND"

    def __init__(self, alert_id: str):
        self.alert_id = str(alert_id)
        super().__init__(f"Alert not found: {alert_id}")


class InvalidAlertTransitionError(AlertError):
    """Alert status transition is not allowed."""

    code: str = "INVALID_ALERT_TRANSITION"

    def __init__(self, alert_id: str, from_status: str, to_status: str):
        self.alert_id = str(alert_id)
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Alert {alert_id} cannot move from {from_status} to {to_status}"
        )


class RuleNotFoundError(AlertError):
    """Alert rule with given ID was not found."""

    code: str = "RULE_NOT_FOUND"

    def __init__(self, rule_id: str):
        self.rule_id = str(rule_id)
        super().__init__(f"Alert rule not found: {rule_id}")


class InvalidRuleError(AlertError):
    """Alert rule definition failed validation."""

    code: str = "INVALID_RULE"

    def __init__(self, rule_name: str, errors: list[str]):
        self.rule_name = rule_name
        self.errors = errors
        super().__init__(
            f"Invalid alert rule '{rule_name}': {'; '.join(errors)}"
        )


# Action exceptions


class ActionExecutionError(InventoryKernelError):
    """
    One alert action failed.

    Never fatal to sibling actions or to the alert's own lifecycle.
    """

    code: str = "ACTION_EXECUTION_FAILED"

    def __init__(self, alert_id: str, action_type: str, detail: str):
        self.alert_id = str(alert_id)
        self.action_type = action_type
        self.detail = detail
        super().__init__(
            f"Action {action_type} failed for alert {alert_id}: {detail}"
        )
