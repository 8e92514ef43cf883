"""Tests for the derivation engine."""

from form_engine import (
    DerivationState,
    FieldDefinition,
    FieldKind,
    FormSchema,
    FormSession,
    StepDefinition,
    compile_condition,
)


def fill_statement(session):
    session.update({
        "lnqa_cash": "1,000",
        "lqa_retirement_plans": "2000",
        "inqa_primary_residence_value_equity": "500,000",
        "inqa_investment_real_estate_value_equity": "100000",
        "inqa_private_business_value_equity": "$50,000",
        "iqa_rows": [
            {"row_id": "r1", "iqa_item_name": "Private LP", "iqa_purchase_amount_value": "25,000"},
        ],
        "liab_credit_cards": "3000",
        "nw_total_illiquid_securities": "10000",
    })


class TestSubtotals:
    """Category subtotals computed from leaf inputs."""

    def test_cash_plus_brokerage(self, session):
        session.set_value("lnqa_cash", "1000.00")
        session.set_value("lnqa_brokerage_nonmanaged", "500.00")
        assert session.computed_values()["lnqa_total_liquid_assets"] == 1500.00

    def test_blank_inputs_count_as_zero(self, session):
        computed = session.computed_values()
        assert computed["lnqa_total_liquid_assets"] == 0.0
        assert computed["nw_total_net_worth_final"] == 0.0

    def test_unreadable_input_counts_as_zero(self, session):
        session.set_value("lnqa_cash", "lots")
        session.set_value("lnqa_managed_accounts", "10")
        assert session.computed_values()["lnqa_total_liquid_assets"] == 10.0

    def test_row_group_contributes_amount_column(self, session):
        session.set_value("iqa_rows", [
            {"row_id": "a", "iqa_item_name": "Fund A", "iqa_purchase_amount_value": "1,250.25"},
            {"row_id": "b", "iqa_item_name": "Fund B", "iqa_purchase_amount_value": "749.75"},
            {"row_id": "c", "iqa_item_name": "Pending"},
        ])
        assert session.computed_values()["iqa_total"] == 2000.0

    def test_sums_are_rounded_to_cents(self, session):
        session.set_value("inc_pension", "0.1")
        session.set_value("inc_other", "0.2")
        assert session.computed_values()["inc_total_annual_income"] == 0.3


class TestNetWorthChain:
    """Net worth totals derived in fixed order."""

    def test_full_chain(self, session):
        fill_statement(session)
        computed = session.computed_values()

        assert computed["inqa_total_illiquid_assets_equity"] == 650000.0
        # Primary residence is excluded from total assets
        assert computed["nw_total_assets_less_primary_residence"] == 178000.0
        assert computed["nw_total_liabilities"] == 3000.0
        assert computed["nw_total_net_worth_assets_less_pr_minus_liab"] == 175000.0
        assert computed["nw_total_net_worth_final"] == 185000.0
        assert computed["nw_total_potential_liquidity"] == 3000.0

    def test_net_worth_can_be_negative(self, session):
        session.set_value("lnqa_cash", "100")
        session.set_value("liab_other", "400")
        assert session.computed_values()["nw_total_net_worth_final"] == -300.0

    def test_recompute_is_idempotent(self, session):
        """Recomputing without input changes yields identical values."""
        fill_statement(session)
        first = session.computed_values()
        second = session.computed_values()
        assert first == second

    def test_downstream_uses_computed_value_not_override(self, session):
        """An overridden subtotal does not leak into totals that depend on it."""
        fill_statement(session)
        session.set_value("lnqa_total_liquid_assets", "9,999")

        result = session.recompute()
        assert result.values["lnqa_total_liquid_assets"].state == DerivationState.OVERRIDDEN
        assert result.values["lnqa_total_liquid_assets"].display == 9999.0
        assert result.values["lnqa_total_liquid_assets"].computed == 1000.0
        assert result.computed["nw_total_potential_liquidity"] == 3000.0

    def test_clearing_override_returns_to_auto(self, session):
        session.set_value("lnqa_cash", "10")
        session.set_value("lnqa_total_liquid_assets", "12")
        assert session.store.is_manual_override("lnqa_total_liquid_assets")

        session.set_value("lnqa_total_liquid_assets", "")
        result = session.recompute()
        assert result.values["lnqa_total_liquid_assets"].state == DerivationState.AUTO
        assert result.display_values()["lnqa_total_liquid_assets"] == 10.0

    def test_computed_values_never_written_to_store(self, session):
        session.set_value("lnqa_cash", "10")
        session.computed_values()
        assert "lnqa_total_liquid_assets" not in session.store


class TestHiddenLeaves:
    """Hidden leaves contribute zero."""

    def test_hidden_leaf_contributes_zero(self):
        schema = FormSchema(
            form_id="hidden_leaf",
            title="Hidden",
            fields=[
                FieldDefinition(id="has_extra", kind=FieldKind.BOOLEAN),
                FieldDefinition(
                    id="extra",
                    kind=FieldKind.CURRENCY,
                    visibility=compile_condition({"field": "has_extra", "equals": True}),
                ),
                FieldDefinition(id="base", kind=FieldKind.CURRENCY),
                FieldDefinition(
                    id="total",
                    kind=FieldKind.CURRENCY,
                    depends_on=frozenset({"extra", "base"}),
                    derive_fn=lambda v: v["extra"] + v["base"],
                ),
            ],
            steps=[StepDefinition(number=1, title="One", field_ids=("has_extra", "extra", "base", "total"))],
        )
        session = FormSession(schema, {"extra": "100", "base": "5"})
        assert session.computed_values()["total"] == 5.0

        session.set_value("has_extra", True)
        assert session.computed_values()["total"] == 105.0
