"""Vault error hierarchy.

All errors are raised synchronously to the caller and never retried by the engine.
They fall in four families:

- :py:class:`AuthorizationFailure`: wrong caller for a governance or owner/operator gated action

- :py:class:`BoundViolation`: asked amount is over a limit, or zero

- :py:class:`StateConsistencyFailure`: balances, price feed or strategy state does not allow the operation

- :py:class:`ExternalCallFailure`: a collaborator (token, strategy, oracle) failed

Any error aborts the whole operation and all state changes are rolled back,
see :py:mod:`unifi_vault.transaction`.
"""

from eth_typing import HexAddress


class VaultError(Exception):
    """Base class for all errors raised by the vault engine."""


class AuthorizationFailure(VaultError):
    """Caller is not allowed to perform this action."""


class BoundViolation(VaultError):
    """Attempted value is over or under a limit."""


class StateConsistencyFailure(VaultError):
    """Current state does not allow the operation."""


class ExternalCallFailure(VaultError):
    """Collaborator call failed."""


class Unauthorized(AuthorizationFailure):
    """Governance oracle refused the caller."""

    def __init__(self, caller: HexAddress, action):
        self.caller = caller
        self.action = action
        super().__init__(f"{caller} is not authorised to perform {action}")


class InvalidOwner(AuthorizationFailure):
    """Redemption request sent by someone else than the share owner or its operator."""

    def __init__(self, sender: HexAddress, owner: HexAddress):
        self.sender = sender
        self.owner = owner
        super().__init__(f"{sender} cannot request redemption for shares owned by {owner}")


class InvalidCaller(AuthorizationFailure):
    """Claim sent by someone else than the controller or its operator."""

    def __init__(self, sender: HexAddress, controller: HexAddress):
        self.sender = sender
        self.controller = controller
        super().__init__(f"{sender} cannot claim on behalf of controller {controller}")


class SelfAuthorization(AuthorizationFailure):
    """Controller tried to set itself as its own operator."""

    def __init__(self, controller: HexAddress):
        self.controller = controller
        super().__init__(f"{controller} cannot be its own operator")


class InvalidSignature(AuthorizationFailure):
    """Operator authorisation signature was not signed by the controller."""

    def __init__(self, controller: HexAddress, recovered: HexAddress | None):
        self.controller = controller
        self.recovered = recovered
        super().__init__(f"Signature for {controller} recovered to {recovered}")


class ExceededMaxDeposit(BoundViolation):
    def __init__(self, receiver: HexAddress, assets: int, max_assets: int):
        self.receiver = receiver
        self.assets = assets
        self.max_assets = max_assets
        super().__init__(f"Deposit of {assets} for {receiver} exceeds max deposit {max_assets}")


class ExceededMaxMint(BoundViolation):
    def __init__(self, receiver: HexAddress, shares: int, max_shares: int):
        self.receiver = receiver
        self.shares = shares
        self.max_shares = max_shares
        super().__init__(f"Mint of {shares} for {receiver} exceeds max mint {max_shares}")


class ExceededMaxWithdraw(BoundViolation):
    def __init__(self, controller: HexAddress, assets: int, max_assets: int):
        self.controller = controller
        self.assets = assets
        self.max_assets = max_assets
        super().__init__(f"Withdraw of {assets} for {controller} exceeds max withdraw {max_assets}")


class ExceededMaxRedeem(BoundViolation):
    def __init__(self, controller: HexAddress, shares: int, max_shares: int):
        self.controller = controller
        self.shares = shares
        self.max_shares = max_shares
        super().__init__(f"Redeem of {shares} for {controller} exceeds max redeem {max_shares}")


class RatioExceeds100Percent(BoundViolation):
    def __init__(self, ratio_bps: int, max_bps: int = 10_000):
        self.ratio_bps = ratio_bps
        self.max_bps = max_bps
        super().__init__(f"Ratio {ratio_bps} BPS exceeds {max_bps} BPS")


class ZeroAmountClaim(BoundViolation):
    """Zero share redemption request, or zero amount claim."""

    def __init__(self, controller: HexAddress):
        self.controller = controller
        super().__init__(f"Zero amount redemption for {controller}")


class ZeroAmount(BoundViolation):
    """Deposit or mint that would move zero assets or zero shares."""

    def __init__(self, what: str, amount: int):
        self.what = what
        self.amount = amount
        super().__init__(f"{what} resolves to zero: {amount}")


class InsufficientBalance(StateConsistencyFailure):
    def __init__(self, token: str, holder: HexAddress, balance: int, needed: int):
        self.token = token
        self.holder = holder
        self.balance = balance
        self.needed = needed
        super().__init__(f"{holder} has {balance} {token}, needs {needed}")


class InsufficientAllowance(StateConsistencyFailure):
    def __init__(self, token: str, owner: HexAddress, spender: HexAddress, allowance: int, needed: int):
        self.token = token
        self.owner = owner
        self.spender = spender
        self.allowance = allowance
        self.needed = needed
        super().__init__(f"{spender} may spend {allowance} {token} of {owner}, needs {needed}")


class InsufficientRedeemableBalance(StateConsistencyFailure):
    def __init__(self, owner: HexAddress, balance: int, shares: int):
        self.owner = owner
        self.balance = balance
        self.shares = shares
        super().__init__(f"{owner} has {balance} shares, tried to redeem {shares}")


class RedeemExceedsOutstandingShares(StateConsistencyFailure):
    """Redemption is larger than what this vault or the whole pool has issued."""

    def __init__(self, shares: int, vault_shares: int, global_shares: int):
        self.shares = shares
        self.vault_shares = vault_shares
        self.global_shares = global_shares
        super().__init__(f"Cannot redeem {shares} shares, vault has issued {vault_shares} and pool {global_shares}")


class VaultPaused(StateConsistencyFailure):
    def __init__(self, what: str):
        self.what = what
        super().__init__(f"Vault paused, cannot {what}")


class PriceFeedStale(StateConsistencyFailure):
    def __init__(self, updated_at: int, now: int, max_age: int):
        self.updated_at = updated_at
        self.now = now
        self.max_age = max_age
        super().__init__(f"Price feed updated at {updated_at}, now {now}, max age {max_age} seconds")


class ReceivedFewerShares(StateConsistencyFailure):
    """Yield source minted less shares than previewed."""

    def __init__(self, received: int, expected: int):
        self.received = received
        self.expected = expected
        super().__init__(f"Received {received} strategy shares, expected at least {expected}")


class SignatureExpired(StateConsistencyFailure):
    def __init__(self, deadline: int, now: int):
        self.deadline = deadline
        self.now = now
        super().__init__(f"Signature deadline {deadline} passed, now {now}")


class NonceAlreadyUsed(StateConsistencyFailure):
    def __init__(self, controller: HexAddress, nonce: bytes):
        self.controller = controller
        self.nonce = nonce
        super().__init__(f"Nonce 0x{bytes(nonce).hex()} already used by {controller}")


class ReentrantCall(StateConsistencyFailure):
    """A vault entry point was invoked while another one was still in flight."""

    def __init__(self, operation: str, in_flight: str):
        self.operation = operation
        self.in_flight = in_flight
        super().__init__(f"Cannot start {operation} while {in_flight} is in flight")


class TransferFailed(ExternalCallFailure):
    """Token transfer collaborator reported failure."""


class StrategyCallFailed(ExternalCallFailure):
    """Strategy or yield source call failed."""
