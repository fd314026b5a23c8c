"""
Rate Resolver

Combines the customer override, the talent's current rate and the default
into one effective rate. Pure: no store access.
"""

from decimal import Decimal

from ..models import Agency, CustomerRebate, RebateSource, ResolvedRate, Talent


class RateResolver:
    """Resolves the rate that applies to a collaboration right now."""

    DEFAULT_RATE = Decimal("0")

    def resolve(
        self,
        talent: Talent,
        agency: Agency | None = None,
        customer_rebate: CustomerRebate | None = None,
    ) -> ResolvedRate:
        """
        Priority order:
        1. Customer override (enabled and carrying a rate)
        2. Talent current rate, tagged with its own source (agency or personal)
        3. Default (0)

        The agency tier reaches the talent through the binding coordinator,
        which copies the agency base rate into currentRebate. `agency` is
        therefore not consulted.
        """
        if customer_rebate is not None and customer_rebate.enabled and customer_rebate.rate is not None:
            return ResolvedRate(customer_rebate.rate, RebateSource.CUSTOMER)

        if talent.current_rate is not None:
            return ResolvedRate(talent.current_rate, talent.current_rebate.source)

        return ResolvedRate(self.DEFAULT_RATE, RebateSource.DEFAULT)
