"""
blobferry utilities.

Retry policies, structured logging and native-unit amount arithmetic.
The circuit breaker lives in ``blobferry.utils.circuit_breaker``.
"""

from blobferry.utils.amounts import (
    NATIVE_DECIMALS,
    SMALLEST_UNIT,
    from_base_units,
    quantize,
    split_fee,
    to_base_units,
    to_decimal,
)
from blobferry.utils.logging import (
    LogContext,
    configure_logging,
    disable_logging,
    enable_debug,
    get_logger,
    set_level,
)
from blobferry.utils.retry import (
    RetryPolicy,
    calculate_delay,
    retry_async,
)

__all__ = [
    # Amounts
    "NATIVE_DECIMALS",
    "SMALLEST_UNIT",
    "to_decimal",
    "quantize",
    "to_base_units",
    "from_base_units",
    "split_fee",
    # Structured logging
    "get_logger",
    "configure_logging",
    "set_level",
    "disable_logging",
    "enable_debug",
    "LogContext",
    # Retry
    "RetryPolicy",
    "calculate_delay",
    "retry_async",
]
