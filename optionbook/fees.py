"""
fees.py - Premium fee policy

Provides the fee calculator the option book consults when an order is filled.

Classes:
- FeeCalculator: per-asset fee rates, supported flags and a single fee recipient

Rates are Decimal fractions of 1 (Decimal("0.01") is 1%). Fees are truncated
to the asset's precision when a ledger view is supplied, so the fee recipient
never receives more than the exact product.
"""

from decimal import Decimal
from typing import Dict, Optional

from .core import LedgerView, UnauthorizedCaller, UnsupportedAsset, ZERO, ONE, to_decimal


class FeeCalculator:
    """
    Fee policy governed by an owner.

    Only the owner may change rates, support flags or the recipient. Reads are
    open to everyone.

    Example:
        fees = FeeCalculator(owner="admin", fee_recipient="treasury", view=ledger)
        fees.set_fee_rate("admin", "TKB", Decimal("0.01"))
        fees.get_fee("TKB", Decimal("10"))   # Decimal("0.10")
    """

    def __init__(
        self,
        owner: str,
        fee_recipient: str,
        view: Optional[LedgerView] = None,
    ):
        """
        Args:
            owner: Wallet allowed to administer the policy
            fee_recipient: Wallet credited with every premium fee
            view: Optional ledger view used to truncate fees to unit precision
        """
        self.owner = owner
        self._fee_recipient = fee_recipient
        self._view = view
        self.rates: Dict[str, Decimal] = {}
        self.supported: Dict[str, bool] = {}

    @property
    def fee_recipient(self) -> str:
        return self._fee_recipient

    def is_supported(self, asset: str) -> bool:
        return self.supported.get(asset, False)

    def get_fee_rate(self, asset: str) -> Decimal:
        return self.rates.get(asset, ZERO)

    def get_fee(self, asset: str, amount: Decimal) -> Decimal:
        """
        Fee owed on amount of asset.

        Raises:
            UnsupportedAsset: If asset is not on the supported list
        """
        if not self.is_supported(asset):
            raise UnsupportedAsset(f"Fee asset {asset} is not supported")
        rate = self.get_fee_rate(asset)
        if rate == ZERO:
            return ZERO
        fee = to_decimal(amount) * rate
        if self._view is not None:
            fee = self._view.get_unit(asset).round_down(fee)
        return fee

    # ========================================================================
    # ADMINISTRATION
    # ========================================================================

    def _require_owner(self, caller: str) -> None:
        if caller != self.owner:
            raise UnauthorizedCaller(f"{caller} is not the fee policy owner")

    def set_fee_rate(self, caller: str, asset: str, rate: Decimal) -> None:
        """
        Set the fee rate for asset and mark it supported.

        Raises:
            UnauthorizedCaller: If caller is not the owner
            ValueError: If rate is outside [0, 1)
        """
        self._require_owner(caller)
        rate = to_decimal(rate)
        if not (ZERO <= rate < ONE):
            raise ValueError(f"fee rate must be in [0, 1), got {rate}")
        self.rates[asset] = rate
        self.supported[asset] = True

    def set_supported(self, caller: str, asset: str, supported: bool) -> None:
        """Toggle whether asset may be charged. Rates are kept when unsupported."""
        self._require_owner(caller)
        self.supported[asset] = supported

    def set_fee_recipient(self, caller: str, recipient: str) -> None:
        self._require_owner(caller)
        if not recipient:
            raise ValueError("fee recipient cannot be empty")
        self._fee_recipient = recipient

    def __repr__(self):
        return f"FeeCalculator({len(self.rates)} rates, recipient={self._fee_recipient})"
