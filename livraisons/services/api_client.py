"""
Client HTTP de l'API de statistiques

Utilisé par les outils et services externes (bot, exports) pour consommer
l'API avec la même politique de relance que le frontend:
2 relances max, backoff exponentiel, jamais de relance sur une erreur 4xx.
"""

import logging
from typing import Optional

import requests

from livraisons.models.records import DeliveryRecord
from livraisons.utils.retry import DEFAULT_POLICY, RetryPolicy

logger = logging.getLogger(__name__)

# Timeout pour les appels API (secondes)
API_TIMEOUT = 10


class DeliveryApiClient:
    """
    Client de l'API livraisons/statistiques

    Configuration:
        - base_url: URL de l'API (ex: https://api.example.com)
        - token: JWT émis par le service d'authentification
    """

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = API_TIMEOUT,
                 policy: RetryPolicy = DEFAULT_POLICY, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.policy = policy
        self.session = session or requests.Session()

    def _headers(self):
        headers = {'Accept': 'application/json'}
        if self.token:
            headers['Authorization'] = f'Bearer {self.token}'
        return headers

    def _send(self, method: str, path: str, params=None, payload=None):
        response = self.session.request(
            method,
            f"{self.base_url}{path}",
            params={k: v for k, v in (params or {}).items() if v is not None},
            json=payload,
            headers=self._headers(),
            timeout=self.timeout
        )
        response.raise_for_status()
        return response.json()

    def request(self, method: str, path: str, params=None, payload=None):
        """
        Appel avec relances; retourne le champ `data` de l'enveloppe

        Raises:
            requests.HTTPError: Erreur 4xx, ou 5xx après épuisement des relances
            requests.RequestException: Erreur réseau après épuisement des relances
        """
        body = self.policy.call(self._send, method, path, params=params, payload=payload)
        if isinstance(body, dict) and 'data' in body:
            return body['data']
        return body

    # ==================== OPÉRATIONS ====================

    def list_deliveries(self, page=1, limit=20, start_date=None, end_date=None, status=None,
                        group_id=None, agency_id=None, sort_by='created_at', sort_order='DESC'):
        """Liste paginée: {'records': [DeliveryRecord], 'pagination': {...}}"""
        data = self.request('GET', '/api/deliveries', params={
            'page': page,
            'limit': limit,
            'start_date': start_date,
            'end_date': end_date,
            'status': status,
            'group_id': group_id,
            'agency_id': agency_id,
            'sort_by': sort_by,
            'sort_order': sort_order,
        })
        return {
            'records': [DeliveryRecord.from_mapping(d) for d in data.get('deliveries', [])],
            'pagination': data.get('pagination', {})
        }

    def daily_stats(self, day=None, group_id=None, agency_id=None):
        return self.request('GET', '/api/stats/daily', params={
            'date': day.isoformat() if hasattr(day, 'isoformat') else day,
            'group_id': group_id,
            'agency_id': agency_id,
        })

    def period_stats(self, preset='today', start_date=None, end_date=None, group_id=None, agency_id=None):
        return self.request('GET', '/api/stats', params={
            'preset': preset,
            'start_date': start_date,
            'end_date': end_date,
            'group_id': group_id,
            'agency_id': agency_id,
        })

    def history(self, delivery_id: int, lang: str = 'fr'):
        """Historique formaté (entrées de timeline, plus récentes en premier)"""
        data = self.request('GET', f'/api/deliveries/{delivery_id}/history', params={'lang': lang})
        return data.get('history', [])

    def update_delivery(self, delivery_id: int, changes: dict):
        return self.request('PUT', f'/api/deliveries/{delivery_id}', payload=changes)

    def group_report(self, group_id: int, preset='thisMonth', start_date=None, end_date=None, agency_id=None):
        return self.request('GET', f'/api/reports/groups/{group_id}', params={
            'preset': preset,
            'start_date': start_date,
            'end_date': end_date,
            'agency_id': agency_id,
        })
