"""HTTP API against an in-memory SQLite database."""
import pytest

OCTOBER_15 = {'start_date': '2025-10-15', 'end_date': '2025-10-15'}


@pytest.fixture
def agency_a(seeded, auth_headers):
    return auth_headers(agency_id=seeded['agency_a'])


@pytest.fixture
def agency_b(seeded, auth_headers):
    return auth_headers(agency_id=seeded['agency_b'], name='Agent B')


def test_health(client):
    response = client.get('/api/health')
    assert response.status_code == 200
    assert response.get_json()['status'] == 'healthy'


# ---------------------------------------------------------------------------
# Authentication and tenant scope
# ---------------------------------------------------------------------------

class TestAuth:

    def test_missing_token(self, client, seeded):
        response = client.get('/api/stats', query_string=OCTOBER_15)
        assert response.status_code == 401
        assert response.get_json()['code'] == 'UNAUTHORIZED'

    def test_agency_token_without_agency_id(self, client, auth_headers):
        response = client.get('/api/stats', headers=auth_headers())
        assert response.status_code == 401

    def test_unknown_role(self, client, auth_headers):
        response = client.get('/api/stats', headers=auth_headers(agency_id=1, role='client'))
        assert response.status_code == 401

    def test_cross_agency_request(self, client, seeded, agency_b):
        response = client.get(
            '/api/stats', headers=agency_b,
            query_string={**OCTOBER_15, 'agency_id': seeded['agency_a']}
        )
        assert response.status_code == 403
        assert response.get_json()['code'] == 'FORBIDDEN_SCOPE'


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

class TestPeriodStats:

    def test_reconciled_stats(self, client, agency_a):
        response = client.get('/api/stats', headers=agency_a, query_string=OCTOBER_15)
        assert response.status_code == 200
        data = response.get_json()['data']
        stats = data['stats']

        assert stats['total'] == 4
        assert stats['counts']['delivered'] == 3
        assert stats['counts']['pending'] == 1
        assert stats['gross_collected'] == 23000
        assert stats['remaining_owed'] == 15000
        assert stats['total_tariffs_applied'] == 4000
        assert stats['net_payable_to_groups'] == 19000
        assert data['formatted']['net_payable_to_groups'] == '19 000 FCFA'
        assert data['period']['preset'] == 'custom'

    def test_super_admin_sees_all_agencies(self, client, seeded, auth_headers):
        headers = auth_headers(role='super_admin', name='Admin')
        stats = client.get('/api/stats', headers=headers, query_string=OCTOBER_15).get_json()['data']['stats']

        assert stats['total'] == 5
        assert stats['gross_collected'] == 30000
        assert stats['scope'] == {'agency_id': None, 'group_id': None}

    def test_super_admin_targets_one_agency(self, client, seeded, auth_headers):
        headers = auth_headers(role='super_admin')
        stats = client.get(
            '/api/stats', headers=headers,
            query_string={**OCTOBER_15, 'agency_id': seeded['agency_b']}
        ).get_json()['data']['stats']
        assert stats['total'] == 1

    @pytest.mark.parametrize('params', [
        {'start_date': '2025-10-15', 'end_date': '2025-10-01'},
        {'preset': 'fortnight'},
        {'preset': 'custom', 'start_date': '2025-10-15'},
    ])
    def test_invalid_period(self, client, agency_a, params):
        response = client.get('/api/stats', headers=agency_a, query_string=params)
        assert response.status_code == 400
        assert response.get_json()['code'] == 'INVALID_PERIOD'

    def test_daily_stats(self, client, agency_a):
        response = client.get('/api/stats/daily', headers=agency_a, query_string={'date': '2025-10-14'})
        stats = response.get_json()['data']

        assert stats['total'] == 1
        assert stats['gross_collected'] == 5000
        assert stats['remaining_owed'] == 0
        assert stats['total_tariffs_applied'] is None

    def test_daily_stats_invalid_date(self, client, agency_a):
        response = client.get('/api/stats/daily', headers=agency_a, query_string={'date': '14/10/2025'})
        assert response.status_code == 400

    def test_presets(self, client, agency_a):
        presets = client.get('/api/stats/presets?lang=en', headers=agency_a).get_json()['data']['presets']
        assert [p['preset'] for p in presets][:3] == ['today', 'yesterday', 'thisWeek']
        assert presets[0]['label'] == 'Today'


# ---------------------------------------------------------------------------
# Deliveries
# ---------------------------------------------------------------------------

class TestDeliveries:

    def test_paginated_listing(self, client, seeded, agency_a):
        response = client.get(
            '/api/deliveries', headers=agency_a,
            query_string={'limit': 2, 'sort_by': 'id', 'sort_order': 'ASC'}
        )
        data = response.get_json()['data']

        assert [d['id'] for d in data['deliveries']] == [seeded['d1'], seeded['d2']]
        assert data['pagination'] == {'page': 1, 'limit': 2, 'total': 5, 'totalPages': 3}

    def test_listing_with_period_and_status(self, client, seeded, agency_a):
        data = client.get(
            '/api/deliveries', headers=agency_a,
            query_string={**OCTOBER_15, 'status': 'Livré'}
        ).get_json()['data']
        assert sorted(d['id'] for d in data['deliveries']) == sorted([seeded['d1'], seeded['d2'], seeded['d6']])

    def test_update_then_history(self, client, seeded, agency_a):
        url = f"/api/deliveries/{seeded['d3']}"
        response = client.put(url, headers=agency_a, json={'status': 'delivered', 'amount_paid': 15000})

        assert response.status_code == 200
        body = response.get_json()
        assert body['data']['changes'] == ['updated_amount_paid', 'updated_status']
        assert body['data']['delivery']['remaining'] == 0
        assert body['message'] == 'Livraison mise à jour'

        history = client.get(f'{url}/history', headers=agency_a).get_json()['data']['history']
        assert [(h['title'], h['description']) for h in history] == [
            ('Statut modifié', 'En cours → Livré'),
            ('Montant encaissé modifié', '0 FCFA → 15 000 FCFA'),
            ('Livraison créée', '690000003 · Akwa · Parfum · 15 000 FCFA'),
        ]
        assert history[0]['actor'] == 'Agent test'

    def test_history_in_english(self, client, seeded, agency_a):
        url = f"/api/deliveries/{seeded['d3']}"
        client.put(url, headers=agency_a, json={'status': 'delivered'})
        history = client.get(f'{url}/history?lang=en', headers=agency_a).get_json()['data']['history']
        assert (history[0]['title'], history[0]['description']) == ('status changed', 'Pending → Delivered')

    def test_update_without_change(self, client, seeded, agency_a):
        response = client.put(f"/api/deliveries/{seeded['d1']}", headers=agency_a, json={'status': 'Livré'})
        assert response.get_json()['data']['changes'] == []
        assert response.get_json()['message'] == 'Aucune modification'

    def test_update_invalidates_cached_stats(self, client, seeded, agency_a):
        before = client.get('/api/stats', headers=agency_a, query_string=OCTOBER_15).get_json()['data']['stats']
        assert before['gross_collected'] == 23000

        client.put(
            f"/api/deliveries/{seeded['d3']}", headers=agency_a,
            json={'status': 'delivered', 'amount_paid': 15000}
        )

        after = client.get('/api/stats', headers=agency_a, query_string=OCTOBER_15).get_json()['data']['stats']
        assert after['gross_collected'] == 38000
        assert after['total_tariffs_applied'] == 5500
        assert after['net_payable_to_groups'] == 32500

    @pytest.mark.parametrize('payload', [
        {'status': 'teleported'},
        {'amount_paid': -100},
        {'amount_due': None},
    ])
    def test_invalid_update(self, client, seeded, agency_a, payload):
        response = client.put(f"/api/deliveries/{seeded['d3']}", headers=agency_a, json=payload)
        assert response.status_code == 422

    def test_empty_body(self, client, seeded, agency_a):
        response = client.put(f"/api/deliveries/{seeded['d3']}", headers=agency_a, json={})
        assert response.status_code == 400

    def test_other_agency_delivery(self, client, seeded, agency_b):
        response = client.put(f"/api/deliveries/{seeded['d1']}", headers=agency_b, json={'status': 'failed'})
        assert response.status_code == 403

        response = client.get(f"/api/deliveries/{seeded['d1']}/history", headers=agency_b)
        assert response.status_code == 403

    def test_missing_delivery(self, client, seeded, agency_a):
        assert client.get('/api/deliveries/9999/history', headers=agency_a).status_code == 404
        assert client.put('/api/deliveries/9999', headers=agency_a, json={'status': 'failed'}).status_code == 404

    def test_delivery_detail(self, client, seeded, agency_a):
        url = f"/api/deliveries/{seeded['d1']}"
        delivery = client.get(url, headers=agency_a).get_json()['data']['delivery']
        assert delivery['id'] == seeded['d1']
        assert delivery['remaining'] == 0
        assert 'history' not in delivery

        delivery = client.get(url, headers=agency_a, query_string={'include_history': 'true'}).get_json()['data']['delivery']
        assert [(h['action'], h['actor']) for h in delivery['history']] == [('created', 'test')]

    def test_delivery_detail_scope(self, client, seeded, agency_a, agency_b):
        assert client.get(f"/api/deliveries/{seeded['d1']}", headers=agency_b).status_code == 403
        assert client.get('/api/deliveries/9999', headers=agency_a).status_code == 404

    def test_search(self, client, seeded, agency_a):
        data = client.get('/api/deliveries', headers=agency_a, query_string={'q': 'parfum'}).get_json()['data']
        assert [d['id'] for d in data['deliveries']] == [seeded['d3']]

        data = client.get('/api/deliveries', headers=agency_a, query_string={'q': '690000006'}).get_json()['data']
        assert [d['id'] for d in data['deliveries']] == [seeded['d6']]

    def test_create_delivery(self, client, seeded, agency_a):
        today = {'preset': 'today'}
        before = client.get('/api/stats', headers=agency_a, query_string=today).get_json()['data']['stats']

        response = client.post('/api/deliveries', headers=agency_a, json={
            'phone': '690000010', 'quartier': 'Akwa', 'items': 'Robe',
            'amount_due': 2000, 'amount_paid': 2000, 'status': 'Livré',
            'group_id': seeded['group_a']
        })
        assert response.status_code == 201
        body = response.get_json()
        delivery = body['data']['delivery']
        assert body['message'] == 'Livraison créée'
        assert delivery['agency_id'] == seeded['agency_a']
        assert delivery['group_id'] == seeded['group_a']
        assert delivery['status'] == 'delivered'

        history = client.get(f"/api/deliveries/{delivery['id']}/history", headers=agency_a).get_json()['data']['history']
        assert [(h['title'], h['actor']) for h in history] == [('Livraison créée', 'Agent test')]

        after = client.get('/api/stats', headers=agency_a, query_string=today).get_json()['data']['stats']
        assert after['total'] == before['total'] + 1
        assert after['gross_collected'] == before['gross_collected'] + 2000

    def test_create_delivery_without_group(self, client, seeded, agency_a):
        response = client.post('/api/deliveries', headers=agency_a, json={'phone': '690000011'})
        assert response.status_code == 201
        assert response.get_json()['data']['delivery']['group_id'] is None

    def test_create_delivery_rejected(self, client, seeded, agency_a, agency_b, auth_headers):
        assert client.post('/api/deliveries', headers=agency_a, json={'items': 'Sac'}).status_code == 422
        assert client.post('/api/deliveries', headers=agency_a, json={}).status_code == 400
        assert client.post(
            '/api/deliveries', headers=agency_a, json={'phone': '690000012', 'group_id': 9999}
        ).status_code == 404
        assert client.post(
            '/api/deliveries', headers=agency_b, json={'phone': '690000012', 'group_id': seeded['group_a']}
        ).status_code == 403

        super_admin = auth_headers(role='super_admin')
        assert client.post('/api/deliveries', headers=super_admin, json={'phone': '690000012'}).status_code == 400
        response = client.post(
            '/api/deliveries', headers=super_admin,
            json={'phone': '690000012', 'agency_id': seeded['agency_b']}
        )
        assert response.status_code == 201


# ---------------------------------------------------------------------------
# Group report
# ---------------------------------------------------------------------------

class TestGroupReport:

    def test_report_with_previous_period(self, client, seeded, agency_a):
        response = client.get(
            f"/api/reports/groups/{seeded['group_a']}", headers=agency_a, query_string=OCTOBER_15
        )
        assert response.status_code == 200
        data = response.get_json()['data']

        assert data['stats']['total'] == 3
        assert data['previous_stats']['total'] == 1
        assert data['previous_period'] == {'startDate': '2025-10-14', 'endDate': '2025-10-14'}
        assert data['comparison']['gross_collected'] == 300.0
        assert [(t['quartier'], t['is_standard']) for t in data['tariffs']] == [
            ('Akwa', True), ('Bonapriso', False)
        ]
        assert data['tariffs'][0]['total_formatted'] == '1 500 FCFA'

    def test_groups_summary(self, client, seeded, agency_a):
        data = client.get('/api/reports/groups', headers=agency_a, query_string=OCTOBER_15).get_json()['data']

        assert [g['group_id'] for g in data['groups']] == [None, seeded['group_a']]

        ungrouped, summary = data['groups']
        assert ungrouped['name'] is None
        assert ungrouped['stats']['total'] == 1
        assert ungrouped['stats']['gross_collected'] == 3000
        assert ungrouped['stats']['total_tariffs_applied'] == 1500
        assert ungrouped['stats']['net_payable_to_groups'] == 1500

        assert summary['name'] == 'Boutique A'
        assert summary['stats']['total'] == 3
        assert summary['stats']['net_payable_to_groups'] == 17500

    def test_groups_summary_adds_up_to_period_stats(self, client, agency_a):
        groups = client.get('/api/reports/groups', headers=agency_a, query_string=OCTOBER_15).get_json()['data']['groups']
        stats = client.get('/api/stats', headers=agency_a, query_string=OCTOBER_15).get_json()['data']['stats']

        for field in ('total', 'gross_collected', 'total_tariffs_applied', 'net_payable_to_groups'):
            assert sum(g['stats'][field] for g in groups) == stats[field]

    def test_other_agency_group(self, client, seeded, agency_b):
        response = client.get(f"/api/reports/groups/{seeded['group_a']}", headers=agency_b)
        assert response.status_code == 403

    def test_missing_group(self, client, seeded, agency_a):
        assert client.get('/api/reports/groups/9999', headers=agency_a).status_code == 404


# ---------------------------------------------------------------------------
# Tariffs
# ---------------------------------------------------------------------------

class TestTariffs:

    def test_list_is_scoped(self, client, seeded, agency_a, agency_b, auth_headers):
        tariffs = client.get('/api/tariffs', headers=agency_a).get_json()['data']['tariffs']
        assert [(t['quartier'], t['amount']) for t in tariffs] == [('Akwa', 1500)]

        assert client.get('/api/tariffs', headers=agency_b).get_json()['data']['tariffs'] == []

        everything = client.get('/api/tariffs', headers=auth_headers(role='super_admin')).get_json()['data']['tariffs']
        assert len(everything) == 1

    def test_create(self, client, seeded, agency_b):
        response = client.post('/api/tariffs', headers=agency_b, json={'quartier': ' Bonanjo ', 'tarif_amount': '1000'})
        assert response.status_code == 201
        tariff = response.get_json()['data']['tariff']
        assert (tariff['quartier'], tariff['amount'], tariff['agency_id']) == ('Bonanjo', 1000, seeded['agency_b'])

    def test_duplicate_quartier(self, client, seeded, agency_a):
        response = client.post('/api/tariffs', headers=agency_a, json={'quartier': 'akwa', 'amount': 2000})
        assert response.status_code == 409

    @pytest.mark.parametrize('payload', [
        {'quartier': 'Deido', 'amount': -5},
        {'quartier': 'Deido', 'amount': 'abc'},
        {'quartier': 'Deido', 'amount': 'NaN'},
        {'quartier': 'Deido'},
        {'amount': 1000},
    ])
    def test_invalid_payload(self, client, seeded, agency_a, payload):
        assert client.post('/api/tariffs', headers=agency_a, json=payload).status_code == 400

    def test_super_admin_must_name_agency(self, client, seeded, auth_headers):
        headers = auth_headers(role='super_admin')
        assert client.post('/api/tariffs', headers=headers, json={'quartier': 'Deido', 'amount': 500}).status_code == 400

        response = client.post(
            '/api/tariffs', headers=headers,
            json={'quartier': 'Deido', 'amount': 500, 'agency_id': seeded['agency_b']}
        )
        assert response.status_code == 201

    def test_other_agency(self, client, seeded, agency_b):
        url = f"/api/tariffs/{seeded['tariff_akwa']}"
        assert client.post(
            '/api/tariffs', headers=agency_b,
            json={'quartier': 'Deido', 'amount': 500, 'agency_id': seeded['agency_a']}
        ).status_code == 403
        assert client.get(url, headers=agency_b).status_code == 403
        assert client.put(url, headers=agency_b, json={'amount': 0}).status_code == 403
        assert client.delete(url, headers=agency_b).status_code == 403

    def test_missing_tariff(self, client, seeded, agency_a):
        assert client.get('/api/tariffs/9999', headers=agency_a).status_code == 404
        assert client.put('/api/tariffs/9999', headers=agency_a, json={'amount': 10}).status_code == 404
        assert client.delete('/api/tariffs/9999', headers=agency_a).status_code == 404

    def test_invalid_update_leaves_tariff_untouched(self, client, seeded, agency_a):
        url = f"/api/tariffs/{seeded['tariff_akwa']}"
        response = client.put(url, headers=agency_a, json={'quartier': 'Deido', 'amount': -1})
        assert response.status_code == 400

        tariff = client.get(url, headers=agency_a).get_json()['data']['tariff']
        assert (tariff['quartier'], tariff['amount']) == ('Akwa', 1500)

    def test_update_and_delete_invalidate_reconciled_stats(self, client, seeded, agency_a):
        url = f"/api/tariffs/{seeded['tariff_akwa']}"

        stats = client.get('/api/stats', headers=agency_a, query_string=OCTOBER_15).get_json()['data']['stats']
        assert stats['total_tariffs_applied'] == 4000

        response = client.put(url, headers=agency_a, json={'amount': 2000})
        assert response.status_code == 200
        assert response.get_json()['data']['tariff']['amount'] == 2000

        stats = client.get('/api/stats', headers=agency_a, query_string=OCTOBER_15).get_json()['data']['stats']
        assert stats['total_tariffs_applied'] == 5000
        assert stats['net_payable_to_groups'] == 18000

        assert client.delete(url, headers=agency_a).status_code == 200

        stats = client.get('/api/stats', headers=agency_a, query_string=OCTOBER_15).get_json()['data']['stats']
        assert stats['total_tariffs_applied'] == 1000
        assert stats['net_payable_to_groups'] == 22000
