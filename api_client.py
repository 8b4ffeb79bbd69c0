"""
Client HTTP verso il backend REST (default http://localhost:5000).

Il backend fa tutto il lavoro vero (salvataggio, permessi, controlli sugli
stati): qui ci sono solo le chiamate, con il token Bearer dell'utente
collegato e la conversione degli errori HTTP in eccezioni.
"""
import logging

import requests

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:5000"
DEFAULT_TIMEOUT = 15


class ApiError(Exception):
    def __init__(self, message, status_code=None, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def __str__(self):
        return self.message


class SessionExpired(ApiError):
    pass


class BackendUnavailable(ApiError):
    pass


def _error_message(response):
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        messaggio = data.get('message') or data.get('error')
        if messaggio:
            return messaggio, data
    return f"HTTP error! status: {response.status_code}", data


def _unwrap(data, key='data'):
    """Alcuni endpoint rispondono {success, data}, altri con il dato nudo."""
    if isinstance(data, dict) and key in data:
        return data[key]
    return data


class ApiClient:

    def __init__(self, base_url=DEFAULT_BASE_URL, token=None, timeout=DEFAULT_TIMEOUT, session=None):
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip('/')
        self.token = token
        # 0 = nessun limite
        self.timeout = timeout or None
        self.session = session or requests.Session()

    # ==========================================================================
    # RICHIESTE
    # ==========================================================================

    def _headers(self):
        headers = {'Content-Type': 'application/json'}
        if self.token:
            headers['Authorization'] = f"Bearer {self.token}"
        return headers

    def _url(self, path):
        if path.startswith('http://') or path.startswith('https://'):
            return path
        return f"{self.base_url}{path}"

    def send(self, method, path, **kwargs):
        """Richiesta grezza: restituisce la Response senza guardare lo status."""
        url = self._url(path)
        logger.debug("%s %s", method, url)
        try:
            return self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error("Backend non raggiungibile (%s %s): %s", method, url, e)
            raise BackendUnavailable(
                "Unable to connect to server. Please check if the backend is running.") from e

    def request(self, method, path, **kwargs):
        response = self.send(method, path, **kwargs)

        if response.status_code == 401:
            messaggio, data = _error_message(response)
            logger.warning("401 su %s %s", method, path)
            raise SessionExpired(messaggio, 401, data)

        if not response.ok:
            messaggio, data = _error_message(response)
            logger.warning("%s %s -> %s: %s", method, path, response.status_code, messaggio)
            raise ApiError(messaggio, response.status_code, data)

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            raise ApiError(
                f"Server returned non-JSON response. Status: {response.status_code}",
                response.status_code,
            )

    def get(self, path, **kwargs):
        return self.request('GET', path, **kwargs)

    def post(self, path, payload=None, **kwargs):
        return self.request('POST', path, json=payload, **kwargs)

    def put(self, path, payload=None, **kwargs):
        return self.request('PUT', path, json=payload, **kwargs)

    def patch(self, path, payload=None, **kwargs):
        return self.request('PATCH', path, json=payload, **kwargs)

    def delete(self, path, **kwargs):
        return self.request('DELETE', path, **kwargs)

    def download(self, path, params=None):
        """File dal backend (report CSV): (contenuto, content-type)."""
        response = self.send('GET', path, params=params)
        if response.status_code == 401:
            raise SessionExpired(_error_message(response)[0], 401)
        if not response.ok:
            messaggio, data = _error_message(response)
            raise ApiError(messaggio, response.status_code, data)
        return response.content, response.headers.get('Content-Type', 'application/octet-stream')

    # ==========================================================================
    # AUTENTICAZIONE E PROFILO
    # ==========================================================================

    def login(self, email, password):
        return self.post('/api/users/login', {'email': email, 'password': password})

    def forgot_password(self, email):
        return self.post('/api/users/forgot-password', {'email': email})

    def reset_password(self, reset_token, password):
        return self.put(f'/api/users/reset-password/{reset_token}', {'password': password})

    def change_password(self, current_password, new_password):
        return self.put('/api/users/change-password',
                        {'currentPassword': current_password, 'newPassword': new_password})

    def get_profile(self):
        return _unwrap(self.get('/api/users/profile'))

    def update_profile(self, data):
        return self.put('/api/users/profile', data)

    def health(self):
        return self.get('/health')

    # ==========================================================================
    # ORDINI E RECLAMI
    # ==========================================================================

    def list_orders(self):
        return _unwrap(self.get('/orders')) or []

    def get_order(self, order_id):
        return _unwrap(self.get(f'/orders/{order_id}'))

    def create_order(self, payload):
        return self.post('/orders', payload)

    def update_order_status(self, order_id, status, notes=None):
        payload = {'status': status}
        if notes:
            payload['notes'] = notes
        return self.patch(f'/orders/{order_id}', payload)

    def delete_order(self, order_id):
        return self.delete(f'/orders/{order_id}')

    def report_conflict(self, order_id, payload):
        return self.post(f'/orders/{order_id}/report-conflict', payload)

    def list_conflicts(self):
        return _unwrap(self.get('/orders/conflicts/all')) or []

    def update_conflict_status(self, order_id, status):
        return self.patch(f'/orders/{order_id}/conflict-status', {'status': status})

    def resolve_conflict(self, order_id, payload):
        return self.post(f'/orders/{order_id}/resolve-conflict', payload)

    # ==========================================================================
    # CONSEGNE
    # ==========================================================================

    def list_deliveries(self):
        return _unwrap(self.get('/api/deliveries')) or []

    def available_orders(self):
        return _unwrap(self.get('/api/deliveries/available')) or []

    def deliveries_by_user(self, user_id):
        return _unwrap(self.get(f'/api/deliveries/user/{user_id}')) or []

    def update_delivery_status(self, delivery_id, status, notes=None):
        return self.patch(f'/api/deliveries/{delivery_id}/status', {'status': status, 'notes': notes})

    def assign_delivery(self, delivery_id, user_id, user_name):
        return self.patch(f'/api/deliveries/{delivery_id}/assign',
                          {'deliveryUserId': user_id, 'deliveryUserName': user_name})

    def claim_order(self, order_id, user_id, user_name):
        return self.patch(f'/api/deliveries/{order_id}/claim',
                          {'deliveryUserId': user_id, 'deliveryUserName': user_name})

    def release_order(self, order_id, user_id):
        return self.patch(f'/api/deliveries/{order_id}/release', {'deliveryUserId': user_id})

    def complete_delivery(self, delivery_id, notes=None):
        return self.patch(f'/api/deliveries/{delivery_id}/complete', {'notes': notes})

    # ==========================================================================
    # UTENTI, LABORATORI, PANETTERIE
    # ==========================================================================

    def list_users(self):
        return _unwrap(self.get('/api/users')) or []

    def create_user(self, data):
        return self.post('/api/users', data)

    def update_user(self, user_id, data):
        return self.put(f'/api/users/{user_id}', data)

    def delete_user(self, user_id):
        return self.delete(f'/api/users/{user_id}')

    def list_laboratories(self):
        return _unwrap(self.get('/api/laboratory-info')) or []

    def create_laboratory(self, data):
        return self.post('/api/laboratory-info', data)

    def update_laboratory(self, lab_id, data):
        return self.put(f'/api/laboratory-info/{lab_id}', data)

    def delete_laboratory(self, lab_id):
        return self.delete(f'/api/laboratory-info/{lab_id}')

    def my_laboratory(self):
        return _unwrap(self.get('/api/laboratory-info/my-lab'))

    def update_my_laboratory(self, data):
        return self.put('/api/laboratory-info/my-lab', data)

    def list_bakeries(self):
        return _unwrap(self.get('/bakery')) or []

    def create_bakery(self, data):
        return self.post('/bakery', data)

    def update_bakery(self, bakery_id, data):
        return self.put(f'/bakery/{bakery_id}', data)

    def delete_bakery(self, bakery_id):
        return self.delete(f'/bakery/{bakery_id}')

    # ==========================================================================
    # PRODOTTI
    # ==========================================================================

    def list_products(self, **filters):
        """
        Filtri: category, active, available, search, sortBy, sortOrder, page, limit.
        Restituisce (prodotti, paginazione); la paginazione può mancare.
        """
        params = {}
        for chiave, valore in filters.items():
            if valore is None or valore == '' or (chiave == 'category' and valore == 'all'):
                continue
            if isinstance(valore, bool):
                valore = 'true' if valore else 'false'
            params[chiave] = valore
        data = self.get('/api/products', params=params)
        if isinstance(data, dict):
            return data.get('data') or [], data.get('pagination')
        return data or [], None

    def get_product(self, product_id):
        return _unwrap(self.get(f'/api/products/{product_id}'))

    def product_categories(self):
        return _unwrap(self.get('/api/products/categories')) or []

    def create_product(self, data):
        return self.post('/api/products', data)

    def update_product(self, product_id, data):
        return self.put(f'/api/products/{product_id}', data)

    def delete_product(self, product_id, permanent=False):
        params = {'permanent': 'true'} if permanent else None
        return self.delete(f'/api/products/{product_id}', params=params)

    # ==========================================================================
    # ANNUNCI
    # ==========================================================================

    def list_announcements(self, **filters):
        params = {k: v for k, v in filters.items() if v not in (None, '', 'all')}
        return _unwrap(self.get('/api/announcements', params=params)) or []

    def create_announcement(self, data):
        return self.post('/api/announcements', data)

    def update_announcement(self, announcement_id, data):
        return self.put(f'/api/announcements/{announcement_id}', data)

    def delete_announcement(self, announcement_id):
        return self.delete(f'/api/announcements/{announcement_id}')

    def add_comment(self, announcement_id, content, author_id, author_name, author_role):
        return self.post(f'/api/announcements/{announcement_id}/comments', {
            'content': content,
            'authorId': author_id,
            'authorName': author_name,
            'authorRole': author_role,
        })

    def delete_comment(self, announcement_id, comment_id):
        return self.delete(f'/api/announcements/{announcement_id}/comments/{comment_id}')

    def mark_announcement_read(self, announcement_id, user_id):
        return self.post(f'/api/announcements/{announcement_id}/read', {'userId': user_id})

    # ==========================================================================
    # DASHBOARD
    # ==========================================================================

    def dashboard_overview(self):
        return _unwrap(self.get('/api/dashboard/overview')) or {}

    def recent_orders(self):
        return _unwrap(self.get('/api/dashboard/recent-orders')) or []

    def sales_chart(self):
        return _unwrap(self.get('/api/dashboard/sales-chart')) or []

    def product_performance(self):
        return _unwrap(self.get('/api/dashboard/product-performance')) or []

    def bakery_comparison(self):
        return _unwrap(self.get('/api/dashboard/bakery-comparison')) or []

    def performance_indicators(self):
        return _unwrap(self.get('/api/dashboard/performance-indicators')) or []

    def export_report(self, report, params=None):
        return self.download(f'/api/dashboard/export/{report}', params=params)

    def export_weekly_billing(self, start_date, end_date):
        """Excel con un foglio per panetteria."""
        return self.download('/api/dashboard/export/weekly-billing', params={
            'startDate': start_date,
            'endDate': end_date,
            'includeBakeryInfo': 'true',
        })
