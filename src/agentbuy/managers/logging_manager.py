"""
# Logging Manager

Central factory for application loggers. Every module asks for its logger through
`get_logger()`, optionally with a bracketed prefix (`[CardService]`, `[DATABASE]`) that is
prepended to each message so related lines are easy to grep in aggregated output.

Handlers are attached once to the package root logger `agentbuy`; child loggers propagate
to it. The level comes from `settings.LOG_LEVEL`.

## Usage Example

```python
from agentbuy.managers.logging_manager import get_logger

logger = get_logger(prefix="[CardService]")
logger.info("Granted %d cards to %s", 5, user_id)
```
"""

import logging
import sys
from typing import Any, MutableMapping, Optional, Tuple

from agentbuy.config import settings

ROOT_LOGGER_NAME = "agentbuy"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_configured = False


class PrefixAdapter(logging.LoggerAdapter):
    """Logger adapter that prepends a static prefix to every message."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        prefix = self.extra.get("prefix") if self.extra else None
        if prefix:
            return f"{prefix} {msg}", kwargs
        return msg, kwargs


def _configure_root() -> None:
    global _configured
    if _configured:
        return

    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    _configured = True


def get_logger(name: str = ROOT_LOGGER_NAME, prefix: Optional[str] = None) -> logging.LoggerAdapter:
    """
    Return a configured logger.

    Args:
        name: Logger name. Names outside the `agentbuy` hierarchy are nested under it.
        prefix: Optional tag prepended to every message, e.g. `"[DATABASE]"`.

    Returns:
        logging.LoggerAdapter: Adapter around the named stdlib logger.
    """
    _configure_root()
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return PrefixAdapter(logging.getLogger(name), {"prefix": prefix})
