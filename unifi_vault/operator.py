"""Operator delegation.

- A controller can let an operator request and claim redemptions on its behalf,
  without giving away custody of the shares

- Delegation can be set directly by the controller, or by anyone carrying an
  EIP-712 signed `AuthorizeOperator` message from the controller

- Each `(controller, nonce)` pair can be used once
"""

import logging

from eth_account import Account, messages
from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from eth_utils import is_address, to_checksum_address
from hexbytes import HexBytes

from unifi_vault import events
from unifi_vault.errors import InvalidSignature, NonceAlreadyUsed, SelfAuthorization, SignatureExpired
from unifi_vault.lower_case_dict import LowercaseDict
from unifi_vault.timestamp import Clock
from unifi_vault.transaction import Stateful


logger = logging.getLogger(__name__)


#: EIP-712 types of the ERC-7540 operator authorisation
AUTHORIZE_OPERATOR_TYPES = {
    "AuthorizeOperator": [
        {"name": "controller", "type": "address"},
        {"name": "operator", "type": "address"},
        {"name": "approved", "type": "bool"},
        {"name": "nonce", "type": "bytes32"},
        {"name": "deadline", "type": "uint256"},
    ]
}

#: EIP-712 domain version
DOMAIN_VERSION = "1"


def build_domain(name: str, chain_id: int, verifying_contract: HexAddress) -> dict:
    return {
        "name": name,
        "version": DOMAIN_VERSION,
        "chainId": chain_id,
        "verifyingContract": to_checksum_address(verifying_contract),
    }


def encode_operator_authorization(
    domain: dict,
    controller: HexAddress,
    operator: HexAddress,
    approved: bool,
    nonce: bytes,
    deadline: int,
) -> messages.SignableMessage:
    """Build the signable EIP-712 message."""
    assert len(nonce) == 32, f"Nonce must be bytes32, got {len(nonce)} bytes"
    return messages.encode_typed_data(
        domain_data=domain,
        message_types=AUTHORIZE_OPERATOR_TYPES,
        message_data={
            "controller": to_checksum_address(controller),
            "operator": to_checksum_address(operator),
            "approved": approved,
            "nonce": bytes(nonce),
            "deadline": deadline,
        },
    )


def sign_operator_authorization(
    account: LocalAccount,
    domain: dict,
    operator: HexAddress,
    approved: bool,
    nonce: bytes,
    deadline: int,
) -> HexBytes:
    """Sign an operator authorisation as the controller.

    Example:

    .. code-block:: python

        account = Account.create()
        signature = sign_operator_authorization(account, vault.operators.domain, keeper, True, secrets.token_bytes(32), now + 3600)
    """
    signable = encode_operator_authorization(domain, account.address, operator, approved, nonce, deadline)
    signed_message = account.sign_message(signable)
    return HexBytes(signed_message.signature)


class OperatorRegistry(Stateful):
    """Controller to operator approvals of one vault."""

    snapshot_fields = ("operators", "used_nonces")

    def __init__(self, vault_address: HexAddress, chain_id: int, name: str, event_log: events.EventLog, clock: Clock):
        self.vault_address = vault_address
        self.domain = build_domain(name, chain_id, vault_address)
        self.event_log = event_log
        self.clock = clock

        #: (controller, operator) -> approved
        self.operators = LowercaseDict()

        #: (controller, nonce hex) -> used
        self.used_nonces = LowercaseDict()

    def is_operator(self, controller: HexAddress, operator: HexAddress) -> bool:
        return self.operators.get((controller, operator), False)

    def is_controller_or_operator(self, controller: HexAddress, sender: HexAddress) -> bool:
        return controller.lower() == sender.lower() or self.is_operator(controller, sender)

    def set_operator(self, sender: HexAddress, operator: HexAddress, approved: bool) -> bool:
        assert is_address(operator), f"Not an address: {operator}"
        if sender.lower() == operator.lower():
            raise SelfAuthorization(sender)
        self._set(sender, operator, approved)
        return True

    def authorize_operator(
        self,
        controller: HexAddress,
        operator: HexAddress,
        approved: bool,
        nonce: bytes,
        deadline: int,
        signature: bytes,
    ) -> bool:
        """Set an operator using a controller signature.

        :raise SignatureExpired:
            `deadline` has passed

        :raise NonceAlreadyUsed:
            Nonce consumed before, by a signature or :py:meth:`invalidate_nonce`

        :raise InvalidSignature:
            Signature does not recover to `controller`
        """
        if controller.lower() == operator.lower():
            raise SelfAuthorization(controller)

        now = self.clock()
        if now > deadline:
            raise SignatureExpired(deadline, now)

        self._use_nonce(controller, nonce)

        signable = encode_operator_authorization(self.domain, controller, operator, approved, nonce, deadline)
        try:
            recovered = Account.recover_message(signable, signature=bytes(signature))
        except Exception as e:
            raise InvalidSignature(controller, None) from e

        if recovered.lower() != controller.lower():
            raise InvalidSignature(controller, recovered)

        self._set(controller, operator, approved)
        return True

    def invalidate_nonce(self, sender: HexAddress, nonce: bytes):
        """Burn a nonce so a signature carrying it can never be used."""
        self._use_nonce(sender, nonce)
        logger.info("Controller %s invalidated nonce 0x%s", sender, bytes(nonce).hex())

    def is_nonce_used(self, controller: HexAddress, nonce: bytes) -> bool:
        return self.used_nonces.get((controller, bytes(nonce).hex()), False)

    def _use_nonce(self, controller: HexAddress, nonce: bytes):
        if self.is_nonce_used(controller, nonce):
            raise NonceAlreadyUsed(controller, nonce)
        self.used_nonces[(controller, bytes(nonce).hex())] = True

    def _set(self, controller: HexAddress, operator: HexAddress, approved: bool):
        self.operators[(controller, operator)] = approved
        self.event_log.emit(events.OperatorSet(self.clock(), controller, operator, approved))
        logger.info("Controller %s %s operator %s", controller, "approved" if approved else "revoked", operator)
