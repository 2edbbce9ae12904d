"""
Structured logging for the Passport engine.

Usage:
```python
from passport.core.logging import get_logger, LogContext

logger = get_logger(__name__)

async with LogContext(subject_id="u-1", trigger_event="check_in"):
    logger.info("Evaluating rules", extra={"rule_count": 3})
```
"""

from passport.core.logging.logger import (
    LogContext,
    get_log_context,
    get_logger,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "LogContext",
    "get_log_context",
    "get_logger",
    "setup_logging",
    "shutdown_logging",
]
