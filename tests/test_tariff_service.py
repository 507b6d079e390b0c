"""Tariff reconciliation: applied fees and net payable to groups."""
from datetime import date
from decimal import Decimal

from conftest import make_record
from livraisons.models.records import DateRange
from livraisons.services.stats_service import aggregate
from livraisons.services.tariff_service import (
    applied_tariff, is_settled, reconcile, static_tariffs, tariff_breakdown
)

TODAY = DateRange.single_day(date(2025, 10, 15))
TARIFFS = static_tariffs({'Akwa': 1500})


def settled(id, **overrides):
    values = {'amount_due': 10000, 'amount_collected': 10000, 'status': 'delivered'}
    values.update(overrides)
    return make_record(id, **values)


class TestAppliedTariff:

    def test_explicit_fee_wins(self):
        assert applied_tariff(settled(1, quartier='Akwa', delivery_fee=1000), TARIFFS) == Decimal('1000')

    def test_zero_fee_is_explicit(self):
        assert applied_tariff(settled(1, quartier='Akwa', delivery_fee=0), TARIFFS) == Decimal('0')

    def test_standard_tariff_case_insensitive(self):
        assert applied_tariff(settled(1, quartier=' akwa '), TARIFFS) == Decimal('1500')

    def test_unknown_quartier(self):
        assert applied_tariff(settled(1, quartier='Makepe'), TARIFFS) == Decimal('0')
        assert applied_tariff(settled(1), TARIFFS) == Decimal('0')
        assert applied_tariff(settled(1, quartier='Akwa')) == Decimal('0')

    def test_unsettled_records_carry_no_tariff(self):
        partial = settled(1, quartier='Akwa', amount_collected=4000)
        pending = settled(2, quartier='Akwa', status='pending')

        assert not is_settled(partial)
        assert not is_settled(pending)
        assert applied_tariff(partial, TARIFFS) == Decimal('0')
        assert applied_tariff(pending, TARIFFS) == Decimal('0')

    def test_french_status_label_is_settled(self):
        assert is_settled(settled(1, status='Livré'))


class TestReconcile:

    def test_net_payable(self):
        """Standard tariff on one delivery, explicit fee on the other."""
        records = [
            settled(1, quartier='Akwa'),
            settled(2, quartier='Bonapriso', delivery_fee=1000),
            make_record(3, quartier='Akwa', amount_due=15000, status='pending'),
        ]
        snapshot = reconcile(records, aggregate(records, TODAY, 1), TARIFFS)

        assert snapshot.gross_collected == Decimal('20000')
        assert snapshot.total_tariffs_applied == Decimal('2500')
        assert snapshot.net_payable_to_groups == Decimal('17500')
        assert snapshot.is_reconciled

    def test_uses_snapshot_scope(self):
        records = [settled(1, quartier='Akwa'), settled(2, quartier='Akwa', agency_id=2)]
        snapshot = reconcile(records, aggregate(records, TODAY, 1), TARIFFS)
        assert snapshot.total_tariffs_applied == Decimal('1500')

    def test_negative_net_not_clamped(self, caplog):
        records = [settled(1, amount_due=500, amount_collected=500, delivery_fee=2000)]
        snapshot = reconcile(records, aggregate(records, TODAY), TARIFFS)

        assert snapshot.net_payable_to_groups == Decimal('-1500')
        assert 'négatif' in caplog.text

    def test_no_tariffs(self):
        records = [settled(1)]
        snapshot = reconcile(records, aggregate(records, TODAY))
        assert snapshot.net_payable_to_groups == snapshot.gross_collected


class TestTariffBreakdown:

    def test_lines_split_standard_and_modified(self):
        records = [
            settled(1, quartier='Akwa'),
            settled(2, quartier='Akwa'),
            settled(3, quartier='Akwa', delivery_fee=2000),
            settled(4, quartier='Bonapriso', delivery_fee=1000),
            make_record(5, quartier='Akwa', status='pending'),
        ]
        lines = tariff_breakdown(records, TODAY, tariff_for=TARIFFS)

        assert lines == [
            {'quartier': 'Akwa', 'delivery_fee': Decimal('1500'), 'count': 2,
             'total': Decimal('3000'), 'is_standard': True},
            {'quartier': 'Akwa', 'delivery_fee': Decimal('2000'), 'count': 1,
             'total': Decimal('2000'), 'is_standard': False},
            {'quartier': 'Bonapriso', 'delivery_fee': Decimal('1000'), 'count': 1,
             'total': Decimal('1000'), 'is_standard': False},
        ]

    def test_totals_match_reconciliation(self):
        records = [settled(1, quartier='Akwa'), settled(2, quartier='Makepe', delivery_fee=2500)]
        lines = tariff_breakdown(records, TODAY, tariff_for=TARIFFS)
        snapshot = reconcile(records, aggregate(records, TODAY), TARIFFS)
        assert sum(line['total'] for line in lines) == snapshot.total_tariffs_applied

    def test_quartier_casing_merges_into_one_line(self):
        records = [settled(1, quartier='Akwa'), settled(2, quartier=' akwa '), settled(3, quartier='AKWA')]
        lines = tariff_breakdown(records, TODAY, tariff_for=TARIFFS)

        assert lines == [
            {'quartier': 'Akwa', 'delivery_fee': Decimal('1500'), 'count': 3,
             'total': Decimal('4500'), 'is_standard': True},
        ]
