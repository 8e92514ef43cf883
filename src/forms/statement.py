"""
Statement of Financial Condition helpers.

Domain knowledge that sits on top of the generic engine: the form id, the
net worth fields and the accredited-investor test.
"""

from typing import Mapping, Optional

from form_engine import FormSchema

from .registry import get_schema

STATEMENT_FORM_ID = "statement_of_financial_condition"

NET_WORTH_FINAL = "nw_total_net_worth_final"
NET_WORTH_BEFORE_SECURITIES = "nw_total_net_worth_assets_less_pr_minus_liab"
POTENTIAL_LIQUIDITY = "nw_total_potential_liquidity"

SIGNATURE_ROLES = (
    "account_owner",
    "joint_account_owner",
    "financial_professional",
    "registered_principal",
)


def get_statement_schema() -> FormSchema:
    return get_schema(STATEMENT_FORM_ID)


def is_accredited_investor(
    display_values: Mapping[str, float],
    threshold: Optional[float] = None,
) -> bool:
    """
    Accredited investor test on net worth.

    Uses final net worth, falling back to net worth before illiquid
    securities when the final figure is zero. Net worth must be strictly
    greater than the threshold (default from settings, 1,000,000).
    """
    if threshold is None:
        from config.settings import get_settings
        threshold = get_settings().accredited_net_worth_threshold

    net_worth = display_values.get(NET_WORTH_FINAL) or display_values.get(NET_WORTH_BEFORE_SECURITIES) or 0.0
    return net_worth > threshold
