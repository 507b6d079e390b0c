"""
Fixtures partagées: application de test (SQLite en mémoire), jeux de
données et en-têtes JWT.
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from flask_jwt_extended import create_access_token

from livraisons import create_app, db
from livraisons.models import Agency, Group, Tariff, DeliveryRecord
from livraisons.services.delivery_service import DeliveryService


# Mercredi 15 octobre 2025, 10h UTC
REFERENCE = datetime(2025, 10, 15, 10, 0, tzinfo=timezone.utc)
DAY = datetime(2025, 10, 15, 10, 0)
PREVIOUS_DAY = datetime(2025, 10, 14, 10, 0)


def make_record(id, **overrides):
    """DeliveryRecord créé le jour de référence, montants en Decimal"""
    values = {
        'phone': f'69000000{id}',
        'items': 'Colis',
        'amount_due': Decimal('0'),
        'amount_collected': Decimal('0'),
        'status': 'pending',
        'agency_id': 1,
        'created_at': REFERENCE,
    }
    values.update(overrides)
    for key in ('amount_due', 'amount_collected', 'delivery_fee'):
        if isinstance(values.get(key), int):
            values[key] = Decimal(values[key])
    return DeliveryRecord(id=id, **values)


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def seeded(app):
    """
    Agence A (groupe G1, tarif Akwa = 1500) et agence B (groupe G2)

    Le 15/10: d1 livré Akwa sans frais, d2 livré avec frais 1000, d3 en cours,
    d5 livré pour l'agence B, d6 livré Akwa sans groupe (agence A).
    Le 14/10: d4 livré Akwa.
    """
    agency_a = Agency(name='Agence A', slug='agence-a')
    agency_b = Agency(name='Agence B', slug='agence-b')
    db.session.add_all([agency_a, agency_b])
    db.session.commit()

    group_a = Group(agency_id=agency_a.id, name='Boutique A')
    group_b = Group(agency_id=agency_b.id, name='Boutique B')
    db.session.add_all([group_a, group_b])
    tariff_akwa = Tariff(agency_id=agency_a.id, quartier='Akwa', amount=1500)
    db.session.add(tariff_akwa)
    db.session.commit()

    def create(agency, group, created_at, **data):
        data.setdefault('items', 'Colis')
        data['group_id'] = group.id if group is not None else None
        return DeliveryService.create_delivery(data, agency_id=agency.id, actor='test', created_at=created_at)

    deliveries = {
        'd1': create(agency_a, group_a, DAY, phone='690000001', quartier='Akwa',
                     amount_due=10000, amount_paid=10000, status='delivered'),
        'd2': create(agency_a, group_a, DAY, phone='690000002', quartier='Bonapriso',
                     amount_due=10000, amount_paid=10000, status='delivered', delivery_fee=1000),
        'd3': create(agency_a, group_a, DAY, phone='690000003', quartier='Akwa', items='Parfum',
                     amount_due=15000, amount_paid=0, status='pending'),
        'd4': create(agency_a, group_a, PREVIOUS_DAY, phone='690000004', quartier='Akwa',
                     amount_due=5000, amount_paid=5000, status='delivered'),
        'd5': create(agency_b, group_b, DAY, phone='690000005',
                     amount_due=7000, amount_paid=7000, status='delivered'),
        'd6': create(agency_a, None, DAY, phone='690000006', quartier='Akwa',
                     amount_due=3000, amount_paid=3000, status='delivered'),
    }

    return {
        'agency_a': agency_a.id,
        'agency_b': agency_b.id,
        'group_a': group_a.id,
        'group_b': group_b.id,
        'tariff_akwa': tariff_akwa.id,
        **{name: d.id for name, d in deliveries.items()}
    }


@pytest.fixture
def auth_headers(app):
    """Fabrique d'en-têtes Authorization pour un rôle et une agence"""
    def build(agency_id=None, role='agency', name='Agent test'):
        claims = {'role': role, 'name': name}
        if agency_id is not None:
            claims['agency_id'] = agency_id
        token = create_access_token(identity='user-1', additional_claims=claims)
        return {'Authorization': f'Bearer {token}'}
    return build
