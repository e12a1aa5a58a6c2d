"""
Core models for the serial signer protocol.
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Final

from pydantic import BaseModel, ConfigDict, Field, SecretStr

ERROR_COMMAND: Final = "/error"


class CommandTag(str, Enum):
    """Command tags, used verbatim on the wire."""

    SIGN_PSBT = "SIGN_PSBT"
    PASSWORD = "PASSWORD"
    PASSWORD_CLEAR = "PASSWORD_CLEAR"
    SEND_PSBT = "SEND_PSBT"
    WIPE = "WIPE"
    XPUB = "XPUB"
    SEED = "SEED"
    DH_EXCHANGE = "DH_EXCHANGE"
    CONFIRM_NEXT = "CONFIRM_NEXT"
    CANCEL = "CANCEL"
    RESTORE = "RESTORE"
    HELP = "HELP"
    LOG = "LOG"


# These travel unencrypted: no shared secret exists yet for the handshake,
# and device logs are public.
PLAINTEXT_COMMANDS: Final = frozenset(
    {CommandTag.DH_EXCHANGE.value, CommandTag.LOG.value}
)


class SessionState(IntEnum):
    """Protocol state of a device session."""

    DISCONNECTED = 0
    KEY_EXCHANGING = 1
    AUTHENTICATING = 2
    AUTHENTICATED = 3
    SIGNING = 4
    FETCHING_XPUB = 5
    SHOWING_SEED = 6
    RESTORING = 7
    WIPING = 8


class PendingKind(str, Enum):
    """Request kinds that suspend the caller until the device answers."""

    KEY_EXCHANGE = "key exchange"
    LOGIN = "login"
    SEND_PSBT = "send psbt"
    XPUB = "xpub"


class SignerCommand(BaseModel):
    """A command tag with its ordered string arguments."""

    model_config = ConfigDict(frozen=True)

    tag: CommandTag
    args: tuple[str, ...] = ()

    def to_message(self) -> str:
        """Join the tag and arguments with single spaces."""
        return " ".join((self.tag.value, *self.args))


class DecodedCommand(BaseModel):
    """A command received from the device, after decryption."""

    model_config = ConfigDict(frozen=True)

    command: str
    data: str = ""

    @property
    def tag(self) -> CommandTag | None:
        """The matching command tag, or None for unknown and error commands."""
        try:
            return CommandTag(self.command)
        except ValueError:
            return None

    @property
    def is_error(self) -> bool:
        """Whether this is the pseudo-command produced by a failed decode."""
        return self.command == ERROR_COMMAND


class TxOutput(BaseModel):
    """A transaction output shown to the user while confirming."""

    address: str
    amount: int  # sats
    is_change: bool = False


class Transaction(BaseModel):
    """Summary of the transaction carried by a PSBT."""

    outputs: list[TxOutput] = Field(default_factory=list)
    fee: int = 0


class SigningFlow(BaseModel):
    """Progress of a PSBT through send, confirmation and signing."""

    transaction: Transaction | None = None
    confirmed_output_index: int = Field(default=0, ge=0)
    fee_confirmation_pending: bool = False
    sending: bool = False
    signing: bool = False


class XpubResult(BaseModel):
    """Extended public key returned by the device. Empty on failure."""

    xpub: str | None = None
    fingerprint: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.xpub is None


class SignResult(BaseModel):
    """Outcome of a SIGN_PSBT response."""

    signed_count: int = 0
    psbt: str | None = None

    @property
    def signed(self) -> bool:
        return self.psbt is not None and self.signed_count > 0


class Credentials(BaseModel):
    """Secret-bearing input held only while an operation runs."""

    password: SecretStr | None = None
    mnemonic: SecretStr | None = None

    def clear(self) -> None:
        self.password = None
        self.mnemonic = None
