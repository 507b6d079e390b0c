"""Readable timeline from loosely structured history entries."""
import json
from datetime import datetime, timezone

import pytest

from livraisons.models.records import AuditEvent
from livraisons.services.history_service import (
    action_label, flatten_items, format_event, format_history, format_value,
    parse_details, resolve_field
)


def event(action, details, id=1, actor=None, timestamp='2025-10-15T10:00:00'):
    return AuditEvent(id=id, delivery_id=7, action=action, raw_details=details, actor=actor, timestamp=timestamp)


STATUS_CHANGE = {'field': 'status', 'old_value': 'pending', 'new_value': 'delivered', 'updated_by': 'Alice'}


# ---------------------------------------------------------------------------
# Field updates
# ---------------------------------------------------------------------------

class TestFieldUpdate:

    def test_status_change_in_english(self):
        entry = format_event(event('updated_status', STATUS_CHANGE), lang='en')
        assert entry.title == 'status changed'
        assert entry.description == 'Pending → Delivered'
        assert entry.actor == 'Alice'

    def test_status_change_in_french(self):
        entry = format_event(event('updated_status', json.dumps(STATUS_CHANGE)))
        assert entry.title == 'Statut modifié'
        assert entry.description == 'En cours → Livré'

    def test_producer_aliases_give_same_entry(self):
        french_keys = {'champ': 'Statut', 'ancienne_valeur': 'En cours', 'nouvelle_valeur': 'Livré', 'auteur': 'Alice'}
        reference = format_event(event('updated_status', STATUS_CHANGE))
        aliased = format_event(event('updated', french_keys))

        assert (aliased.title, aliased.description, aliased.actor) == (
            reference.title, reference.description, reference.actor
        )

    def test_field_taken_from_action_name(self):
        entry = format_event(event('updated_amount_paid', {'old_value': 0, 'new_value': 15000}))
        assert entry.title == 'Montant encaissé modifié'
        assert entry.description == '0 FCFA → 15 000 FCFA'

    def test_only_new_value(self):
        entry = format_event(event('updated_quartier', {'new_value': 'Akwa'}), lang='en')
        assert entry.title == 'neighborhood changed'
        assert entry.description == 'Akwa'

    def test_items_flattened(self):
        entry = format_event(event('updated_items', {'old_value': '2 robes\n1 sac', 'new_value': ['Parfum', 'Savon']}))
        assert entry.description == '2 robes, 1 sac → Parfum, Savon'

    def test_unknown_money_field_guessed_from_name(self):
        entry = format_event(event('updated', {'field': 'montant_bonus', 'old_value': 1000, 'new_value': 2500}))
        assert entry.title == 'montant_bonus modifié'
        assert entry.description == '1 000 FCFA → 2 500 FCFA'

    def test_unknown_status_kept_raw(self):
        entry = format_event(event('updated_status', {'old_value': 'pending', 'new_value': 'teleported'}), lang='en')
        assert entry.description == 'Pending → teleported'

    def test_event_actor_wins_over_details(self):
        entry = format_event(event('updated_status', STATUS_CHANGE, actor='Bot WhatsApp'))
        assert entry.actor == 'Bot WhatsApp'


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

class TestCreated:

    def test_summary(self):
        details = {'phone': '690000003', 'quartier': 'Akwa', 'items': 'Parfum', 'amount_due': 15000}
        entry = format_event(event('created', json.dumps(details)))
        assert entry.title == 'Livraison créée'
        assert entry.description == '690000003 · Akwa · Parfum · 15 000 FCFA'

    def test_missing_fields_skipped(self):
        entry = format_event(event('created', {'telephone': '690000009', 'montant_total': '5000'}), lang='en')
        assert entry.title == 'record created'
        assert entry.description == '690000009 · 5 000 FCFA'


# ---------------------------------------------------------------------------
# Fallbacks
# ---------------------------------------------------------------------------

class TestFallback:

    def test_no_details(self):
        entry = format_event(event('deleted', None))
        assert entry.title == 'Livraison supprimée'
        assert entry.description == ''
        assert entry.actor == ''

    def test_plain_string(self):
        entry = format_event(event('status_parsed', 'livré ok merci'))
        assert entry.title == 'Statut détecté (WhatsApp)'
        assert entry.description == 'livré ok merci'

    def test_malformed_json(self):
        entry = format_event(event('updated_status', '{"field": "status", '))
        assert entry.title == 'Statut modifié'
        assert entry.description == '{"field": "status", '

    def test_unknown_action_and_unusable_payload(self):
        entry = format_event(event('archived', {'foo': 'bar'}))
        assert entry.title == 'archived'
        assert entry.description == '{"foo": "bar"}'

    @pytest.mark.parametrize('garbage', [
        None, 42, 'texte', b'\xff\xfe', ['a', 1], {'action': object()},
        {'action': 'updated', 'details': {'field': None, 'old_value': object()}},
        {'action': 'updated_amount_due', 'details': {'old_value': 'abc', 'new_value': float('nan')}},
        {'action': 'created', 'details': '[1, 2]', 'created_at': 'hier'},
    ])
    def test_never_raises(self, garbage):
        entry = format_event(garbage)
        assert isinstance(entry.title, str)
        assert isinstance(entry.description, str)


# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------

class TestFormatHistory:

    def test_newest_first_with_id_tiebreak(self):
        events = [
            event('created', {'phone': '690000001'}, id=1, timestamp='2025-10-15T08:00:00'),
            event('updated_status', STATUS_CHANGE, id=2, timestamp='2025-10-15T09:00:00'),
            event('updated_amount_paid', {'old_value': 0, 'new_value': 10000}, id=3, timestamp='2025-10-15T09:00:00'),
        ]
        entries = format_history(events)
        assert [e.id for e in entries] == [3, 2, 1]

    def test_no_event_dropped(self):
        entries = format_history([event('updated', None, id=1), 'brut', {'action': 'created', 'details': '{}'}])
        assert len(entries) == 3

    def test_time_in_agency_timezone(self):
        moment = datetime(2025, 10, 15, 23, 30, tzinfo=timezone.utc)
        entry = format_event(event('updated_status', STATUS_CHANGE, timestamp=moment), tz='Africa/Douala')
        assert entry.time == '16/10/2025 00:30'
        assert entry.timestamp == '2025-10-16T00:30:00+01:00'

    def test_to_dict(self):
        data = format_event(event('updated_status', STATUS_CHANGE)).to_dict()
        assert data['delivery_id'] == 7
        assert data['time'] == '15/10/2025 10:00'


class TestHelpers:

    def test_resolve_field(self):
        assert resolve_field('Montant encaissé') == 'amount_paid'
        assert resolve_field('montant_encaisse') == 'amount_paid'
        assert resolve_field('Nom du client') == 'customer_name'
        assert resolve_field('unknown') is None
        assert resolve_field(None) is None

    def test_format_value(self):
        assert format_value('12000', 'money') == '12 000 FCFA'
        assert format_value('n/a', 'money') == 'n/a'
        assert format_value('NaN', 'money') == 'NaN'
        assert format_value('Infinity', 'money') == 'Infinity'
        assert format_value(float('nan'), 'money') == 'nan'
        assert format_value('delivered', 'status', 'en') == 'Delivered'

    def test_flatten_items(self):
        assert flatten_items('- Robe\n\n- Sac ') == 'Robe, Sac'

    def test_parse_details(self):
        assert parse_details('{"a": 1}') == {'a': 1}
        assert parse_details('[1]') is None
        assert parse_details('') is None

    def test_action_label(self):
        assert action_label('updated_delivery_fee', 'en') == 'delivery fee changed'
        assert action_label('') == ''
