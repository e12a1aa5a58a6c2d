"""Constants for the serial signer."""

from typing import Final

CONF_PORT: Final = "port"
CONF_BAUD_RATE: Final = "baud_rate"
CONF_DATA_BITS: Final = "data_bits"
CONF_STOP_BITS: Final = "stop_bits"
CONF_PARITY: Final = "parity"
CONF_BUFFER_SIZE: Final = "buffer_size"
CONF_FLOW_CONTROL: Final = "flow_control"
CONF_NETWORK: Final = "network"

DEFAULT_BAUD_RATE: Final = 9600
DEFAULT_DATA_BITS: Final = 8
DEFAULT_STOP_BITS: Final = 1
DEFAULT_PARITY: Final = "none"
DEFAULT_BUFFER_SIZE: Final = 255
DEFAULT_FLOW_CONTROL: Final = "none"

NETWORK_MAINNET: Final = "Mainnet"
NETWORK_TESTNET: Final = "Testnet"
DEFAULT_NETWORK: Final = NETWORK_MAINNET

PARITY_OPTIONS: Final = ("none", "even", "odd")
FLOW_CONTROL_OPTIONS: Final = ("none", "hardware")

# Seed words are addressed from 1
FIRST_SEED_WORD: Final = 1

# Single-token answers from the device
RESPONSE_OK: Final = "1"
