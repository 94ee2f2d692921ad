# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Exceptions raised at startup. Per-message failures are logged, never raised."""


class ClaptrapError(RuntimeError):
    """Base class for claptrap-listen errors."""


class ConfigurationError(ClaptrapError):
    """Raised when required configuration is missing or invalid."""


class BrokerConnectionError(ClaptrapError):
    """Raised when the broker cannot be reached or the connection is lost."""
