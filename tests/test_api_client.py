from unittest.mock import MagicMock

import pytest
import requests

from api_client import ApiClient, ApiError, SessionExpired, BackendUnavailable


def risposta(status=200, json_data=None, content=b'{}'):
    r = MagicMock()
    r.status_code = status
    r.ok = 200 <= status < 400
    r.content = content
    if isinstance(json_data, Exception):
        r.json.side_effect = json_data
    else:
        r.json.return_value = json_data
    r.headers = {'Content-Type': 'text/csv'}
    return r


@pytest.fixture
def sessione():
    return MagicMock(spec=requests.Session)


def test_bearer_token_and_url(sessione):
    sessione.request.return_value = risposta(json_data={'data': [{'_id': '1'}]})
    client = ApiClient('http://backend:5000/', token='abc', timeout=5, session=sessione)
    assert client.list_orders() == [{'_id': '1'}]
    args, kwargs = sessione.request.call_args
    assert args == ('GET', 'http://backend:5000/orders')
    assert kwargs['headers']['Authorization'] == 'Bearer abc'
    assert kwargs['timeout'] == 5


def test_no_token_no_header(sessione):
    sessione.request.return_value = risposta(json_data=[])
    ApiClient(session=sessione).list_users()
    assert 'Authorization' not in sessione.request.call_args.kwargs['headers']


def test_zero_timeout_disables_limit(sessione):
    assert ApiClient(timeout=0, session=sessione).timeout is None


def test_401_raises_session_expired(sessione):
    sessione.request.return_value = risposta(401, {'message': 'Token expired'})
    with pytest.raises(SessionExpired) as info:
        ApiClient(session=sessione).get_profile()
    assert info.value.status_code == 401


def test_backend_message_is_kept(sessione):
    sessione.request.return_value = risposta(400, {'message': 'Email déjà utilisé'})
    with pytest.raises(ApiError) as info:
        ApiClient(session=sessione).create_user({})
    assert str(info.value) == 'Email déjà utilisé'
    assert info.value.status_code == 400


def test_generic_http_error(sessione):
    sessione.request.return_value = risposta(500, ValueError('no json'))
    with pytest.raises(ApiError, match='HTTP error! status: 500'):
        ApiClient(session=sessione).list_orders()


def test_connection_error(sessione):
    sessione.request.side_effect = requests.ConnectionError('refused')
    with pytest.raises(BackendUnavailable, match='Unable to connect to server'):
        ApiClient(session=sessione).list_orders()


def test_empty_body(sessione):
    sessione.request.return_value = risposta(204, content=b'')
    assert ApiClient(session=sessione).delete_order('o1') is None


def test_non_json_response(sessione):
    sessione.request.return_value = risposta(200, ValueError('html'), content=b'<html>')
    with pytest.raises(ApiError, match='non-JSON'):
        ApiClient(session=sessione).health()


def test_update_order_status_payload(sessione):
    sessione.request.return_value = risposta(json_data={})
    ApiClient(session=sessione).update_order_status('o1', 'IN_PROGRESS')
    args, kwargs = sessione.request.call_args
    assert args == ('PATCH', 'http://localhost:5000/orders/o1')
    assert kwargs['json'] == {'status': 'IN_PROGRESS'}


def test_list_products_filters(sessione):
    sessione.request.return_value = risposta(json_data={'data': [{'name': 'Pain'}], 'pagination': {'pages': 2}})
    prodotti, paginazione = ApiClient(session=sessione).list_products(
        category='all', active=True, search='', page=2)
    assert prodotti == [{'name': 'Pain'}]
    assert paginazione == {'pages': 2}
    assert sessione.request.call_args.kwargs['params'] == {'active': 'true', 'page': 2}


def test_delete_product_permanent(sessione):
    sessione.request.return_value = risposta(json_data={})
    ApiClient(session=sessione).delete_product('p1', permanent=True)
    assert sessione.request.call_args.kwargs['params'] == {'permanent': 'true'}


def test_download(sessione):
    sessione.request.return_value = risposta(content=b'a;b\n1;2\n')
    contenuto, tipo = ApiClient(session=sessione).export_report('sales')
    assert contenuto == b'a;b\n1;2\n'
    assert tipo == 'text/csv'
    assert sessione.request.call_args.args[1].endswith('/api/dashboard/export/sales')


def test_weekly_billing_params(sessione):
    sessione.request.return_value = risposta(content=b'PK')
    ApiClient(session=sessione).export_weekly_billing('2025-04-21', '2025-04-27')
    args, kwargs = sessione.request.call_args
    assert args[1].endswith('/api/dashboard/export/weekly-billing')
    assert kwargs['params'] == {'startDate': '2025-04-21', 'endDate': '2025-04-27', 'includeBakeryInfo': 'true'}


def test_dashboard_series_are_unwrapped(sessione):
    sessione.request.return_value = risposta(json_data={'success': True, 'data': [{'name': 'Lun', 'sales': 10}]})
    assert ApiClient(session=sessione).sales_chart() == [{'name': 'Lun', 'sales': 10}]
    assert sessione.request.call_args.args[1].endswith('/api/dashboard/sales-chart')


def test_product_categories(sessione):
    sessione.request.return_value = risposta(json_data={'success': True, 'data': ['bread', 'traiteur']})
    assert ApiClient(session=sessione).product_categories() == ['bread', 'traiteur']
    assert sessione.request.call_args.args[1].endswith('/api/products/categories')
