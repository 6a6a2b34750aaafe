"""
HubSpot CRM lookups (contacts and deals) through a private app token.
"""
import logging
from typing import Dict, List, Optional

import requests

HUBSPOT_API_BASE = "https://api.hubapi.com"

CONTACT_PROPERTIES = ['firstname', 'lastname', 'email', 'company', 'phone', 'address', 'city', 'state', 'zip']
DEAL_PROPERTIES = ['dealname', 'amount', 'dealstage', 'closedate', 'job_site_address', 'description']

MIN_QUERY_LENGTH = 2

logger = logging.getLogger(__name__)


class HubSpotError(Exception):
    """Raised when HubSpot rejects a request or cannot be reached"""

    def __init__(self, message, status_code=500):
        super().__init__(message)
        self.status_code = status_code


class HubSpotClient:

    def __init__(self, access_token: Optional[str], session: Optional[requests.Session] = None):
        if not access_token:
            raise HubSpotError("HubSpot access token required", 401)
        self.access_token = access_token
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {access_token}',
            'Content-Type': 'application/json',
        })

    def _request(self, method: str, path: str, payload: Optional[Dict] = None) -> Dict:
        url = f"{HUBSPOT_API_BASE}{path}"
        logger.info("%s %s", method, url)
        try:
            response = self.session.request(method, url, json=payload)
        except requests.RequestException as e:
            logger.error("HubSpot request failed: %s", e)
            raise HubSpotError("Failed to fetch from HubSpot", 500) from e

        if not response.ok:
            try:
                message = response.json().get('message')
            except ValueError:
                message = None
            logger.error("HubSpot API error %s: %s", response.status_code, message)
            raise HubSpotError(message or "HubSpot API error", response.status_code)
        return response.json()

    def _search(self, object_type: str, query: str, limit: int, properties: List[str]) -> List[Dict]:
        payload = {'query': query, 'limit': limit, 'properties': properties}
        data = self._request('POST', f"/crm/v3/objects/{object_type}/search", payload)
        return data.get('results') or []

    def search_contacts(self, query: str, limit: int = 10) -> List[Dict]:
        if not query or len(query) < MIN_QUERY_LENGTH:
            return []
        results = []
        for contact in self._search('contacts', query, limit, CONTACT_PROPERTIES):
            props = contact.get('properties') or {}
            name = ' '.join(p for p in (props.get('firstname'), props.get('lastname')) if p)
            address = ', '.join(p for p in (props.get('address'), props.get('city'),
                                            props.get('state'), props.get('zip')) if p)
            results.append({
                'id': contact.get('id'),
                'name': name or props.get('email') or 'Unknown',
                'email': props.get('email'),
                'company': props.get('company'),
                'phone': props.get('phone'),
                'address': address,
            })
        return results

    def search_deals(self, query: str, limit: int = 10) -> List[Dict]:
        if not query or len(query) < MIN_QUERY_LENGTH:
            return []
        results = []
        for deal in self._search('deals', query, limit, DEAL_PROPERTIES):
            props = deal.get('properties') or {}
            results.append({
                'id': deal.get('id'),
                'name': props.get('dealname') or 'Untitled Deal',
                'amount': props.get('amount'),
                'stage': props.get('dealstage'),
                'close_date': props.get('closedate'),
                'job_site_address': props.get('job_site_address'),
                'description': props.get('description'),
            })
        return results

    def test_connection(self) -> Dict:
        data = self._request('GET', "/account-info/v3/details")
        return {
            'success': True,
            'portal_id': data.get('portalId'),
            'account_type': data.get('accountType'),
            'ui_domain': data.get('uiDomain'),
        }
