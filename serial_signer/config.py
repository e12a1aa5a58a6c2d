"""Serial port configuration for the serial signer."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import voluptuous as schemas

from .const import (
    CONF_BAUD_RATE,
    CONF_BUFFER_SIZE,
    CONF_DATA_BITS,
    CONF_FLOW_CONTROL,
    CONF_NETWORK,
    CONF_PARITY,
    CONF_PORT,
    CONF_STOP_BITS,
    DEFAULT_BAUD_RATE,
    DEFAULT_BUFFER_SIZE,
    DEFAULT_DATA_BITS,
    DEFAULT_FLOW_CONTROL,
    DEFAULT_NETWORK,
    DEFAULT_PARITY,
    DEFAULT_STOP_BITS,
    FLOW_CONTROL_OPTIONS,
    NETWORK_MAINNET,
    NETWORK_TESTNET,
    PARITY_OPTIONS,
)

_LOGGER = logging.getLogger(__name__)

_POSITIVE_INT = schemas.All(schemas.Coerce(int), schemas.Range(min=1))

CONFIG_SCHEMA = schemas.Schema(
    {
        schemas.Required(CONF_PORT): schemas.All(str, schemas.Length(min=1)),
        schemas.Optional(CONF_BAUD_RATE, default=DEFAULT_BAUD_RATE): _POSITIVE_INT,
        schemas.Optional(CONF_DATA_BITS, default=DEFAULT_DATA_BITS): schemas.All(
            schemas.Coerce(int), schemas.In((7, 8))
        ),
        schemas.Optional(CONF_STOP_BITS, default=DEFAULT_STOP_BITS): schemas.All(
            schemas.Coerce(int), schemas.In((1, 2))
        ),
        schemas.Optional(CONF_PARITY, default=DEFAULT_PARITY): schemas.In(
            PARITY_OPTIONS
        ),
        schemas.Optional(CONF_BUFFER_SIZE, default=DEFAULT_BUFFER_SIZE): _POSITIVE_INT,
        schemas.Optional(CONF_FLOW_CONTROL, default=DEFAULT_FLOW_CONTROL): schemas.In(
            FLOW_CONTROL_OPTIONS
        ),
        schemas.Optional(CONF_NETWORK, default=DEFAULT_NETWORK): schemas.In(
            (NETWORK_MAINNET, NETWORK_TESTNET)
        ),
    }
)


def validate_config(config: Mapping[str, Any]) -> dict[str, Any]:
    """Validate serial port settings and fill in defaults.

    Args:
        config: User supplied settings. Only ``port`` is required.

    Returns:
        The validated settings.

    Raises:
        voluptuous.Invalid: If a setting is missing or out of range.
    """
    validated: dict[str, Any] = CONFIG_SCHEMA(dict(config))
    _LOGGER.debug(
        "Serial config for %s: %s baud, %s%s%s",
        validated[CONF_PORT],
        validated[CONF_BAUD_RATE],
        validated[CONF_DATA_BITS],
        validated[CONF_PARITY][0].upper(),
        validated[CONF_STOP_BITS],
    )
    return validated
