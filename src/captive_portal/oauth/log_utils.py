"""Structured logging helpers for the member-login flow.

This module purposefully restricts **which** contextual attributes are attached
to log records in order to avoid accidentally leaking secrets.  All helpers
ONLY inject the following *non-sensitive* fields:

- ``flow_id``        – First 6 characters of the CSRF token of the attempt
- ``user_id``        – Identity-provider user id once known
- ``correlation_id`` – Request id set by :class:`~captive_portal.servers.correlation.CorrelationIdMiddleware`

Usage
-----
>>> from captive_portal.oauth.log_utils import get_flow_logger
>>> log = get_flow_logger(csrf_token="0f8fad5b-d9cb-469f-a165-70867728950e")
>>> log.info("Starting login")
INFO captive-portal.oauth.flow flow_id=0f8fad ...

The adapter is a thin wrapper around :class:`logging.LoggerAdapter`.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping


class _FlowLoggerAdapter(logging.LoggerAdapter):
    """Attach the whitelisted login context to every record."""

    extra_keys = ("flow_id", "user_id", "correlation_id")

    def __init__(self, logger: logging.Logger, context: Mapping[str, Any]):
        allowed = {
            key: value
            for key, value in context.items()
            if key in self.extra_keys and value is not None
        }
        super().__init__(logger, allowed)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        # Values passed at the call site win over the adapter context
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_flow_logger(
    *,
    base_logger_name: str = "captive-portal.oauth.flow",
    csrf_token: str | None = None,
    user_id: str | None = None,
    correlation_id: str | None = None,
) -> logging.LoggerAdapter:
    """Return a LoggerAdapter pre-filled with login-attempt context."""
    logger = logging.getLogger(base_logger_name)
    return _FlowLoggerAdapter(
        logger,
        {
            # never keep the full state value
            "flow_id": csrf_token[:6] if csrf_token else None,
            "user_id": user_id,
            "correlation_id": correlation_id,
        },
    )
