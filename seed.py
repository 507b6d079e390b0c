#!/usr/bin/env python3
"""
Seed initial data for the Livraisons backend.

Creates:
  1. Database tables (if missing)
  2. Demo agency + WhatsApp groups
  3. Standard tariffs per quartier
  4. Demo deliveries (with their 'created' history) over the last days
  5. A development JWT for the demo agency

Usage:
    python seed.py
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from dotenv import load_dotenv
load_dotenv()

from datetime import datetime, timedelta
from livraisons import create_app, db


# ── Configuration ────────────────────────────────────────────
AGENCY_NAME  = 'Livraisons Express Douala'
AGENCY_SLUG  = 'livraisons-express'
AGENCY_PHONE = '+237600000000'
AGENCY_TZ    = 'Africa/Douala'

GROUPS = [
    ('Boutique Mode Akwa', '120363000000000001@g.us'),
    ('Cosmétiques Bonamoussadi', '120363000000000002@g.us'),
]

TARIFFS = {
    'Akwa': 1000,
    'Bonapriso': 1500,
    'Bonamoussadi': 2000,
    'Makepe': 2000,
    'Logpom': 2500,
}

DELIVERIES = [
    # (jours en arrière, groupe, téléphone, quartier, produits, dû, encaissé, statut, frais)
    (0, 0, '690000001', 'Akwa', '2 robes\n1 sac', 15000, 15000, 'delivered', None),
    (0, 0, '690000002', 'Bonapriso', '1 paire de chaussures', 12000, 0, 'pending', None),
    (1, 1, '690000003', 'Makepe', 'Crème visage x3', 9000, 9000, 'delivered', 2500),
    (1, 1, '690000004', 'Logpom', 'Parfum', 20000, 10000, 'delivered', None),
    (2, 0, '690000005', 'Bonamoussadi', '3 t-shirts', 7500, 0, 'client_absent', None),
    (3, 1, '690000006', 'Akwa', 'Savon x5', 5000, 0, 'failed', None),
    (5, 0, '690000007', 'Bonapriso', 'Veste', 18000, 18000, 'delivered', None),
    (8, 1, '690000008', 'Makepe', 'Lot cosmétiques', 25000, 25000, 'delivered', None),
]
# ─────────────────────────────────────────────────────────────


def seed():
    env = os.environ.get('FLASK_ENV', 'development')
    app = create_app(env)

    with app.app_context():
        from livraisons.models import Agency, Group, Tariff, Delivery
        from livraisons.services.delivery_service import DeliveryService

        # 1. Create tables
        db.create_all()
        print('✓ Tables créées / vérifiées')

        # 2. Agence
        agency = Agency.query.filter_by(slug=AGENCY_SLUG).first()
        if not agency:
            agency = Agency(name=AGENCY_NAME, slug=AGENCY_SLUG, phone=AGENCY_PHONE, timezone=AGENCY_TZ)
            db.session.add(agency)
            db.session.commit()
            print(f'✓ Agence créée: {AGENCY_NAME} ({agency.id})')
        else:
            print(f'✓ Agence existe déjà: {agency.name}')

        # Groupes WhatsApp
        groups = []
        for name, whatsapp_id in GROUPS:
            group = Group.query.filter_by(agency_id=agency.id, whatsapp_group_id=whatsapp_id).first()
            if not group:
                group = Group(agency_id=agency.id, name=name, whatsapp_group_id=whatsapp_id)
                db.session.add(group)
            groups.append(group)
        db.session.commit()
        print(f'✓ {len(groups)} groupes')

        # 3. Tarifs
        for quartier, amount in TARIFFS.items():
            if not Tariff.query.filter_by(agency_id=agency.id, quartier=quartier).first():
                db.session.add(Tariff(agency_id=agency.id, quartier=quartier, amount=amount))
        db.session.commit()
        print(f'✓ {len(TARIFFS)} tarifs par quartier')

        # 4. Livraisons de démo
        if Delivery.query.filter_by(agency_id=agency.id).count() == 0:
            now = datetime.utcnow()
            for days_ago, group_index, phone, quartier, items, due, paid, status, fee in DELIVERIES:
                DeliveryService.create_delivery(
                    {
                        'phone': phone,
                        'quartier': quartier,
                        'items': items,
                        'amount_due': due,
                        'amount_paid': paid,
                        'status': status,
                        'delivery_fee': fee,
                        'group_id': groups[group_index].id,
                    },
                    agency_id=agency.id,
                    actor='seed',
                    created_at=now - timedelta(days=days_ago)
                )
            print(f'✓ {len(DELIVERIES)} livraisons de démo')
        else:
            print('✓ Livraisons de démo déjà présentes')

        # 5. Token de développement (en production, émis par le service d'authentification)
        if env != 'production':
            from flask_jwt_extended import create_access_token
            token = create_access_token(
                identity='seed-admin',
                additional_claims={'role': 'agency', 'agency_id': agency.id, 'name': 'Admin démo'},
                expires_delta=timedelta(days=7)
            )
            print(f'✓ Token agence (7 jours):\n{token}')


if __name__ == '__main__':
    seed()
