import os
import tempfile

# Il log su file va in una cartella temporanea, non in logs/
os.environ.setdefault('LOG_FILE', os.path.join(tempfile.mkdtemp(), 'errori.log'))
os.environ.setdefault('SECRET_KEY', 'test-secret')

from unittest.mock import MagicMock

import pytest

import app as app_module
from api_client import ApiClient


@pytest.fixture
def backend(monkeypatch):
    """Il client del backend finto usato da tutte le view."""
    finto = MagicMock(spec=ApiClient)
    monkeypatch.setattr(app_module, 'create_client', lambda: finto)
    return finto


@pytest.fixture
def client():
    app_module.app.config.update(TESTING=True)
    with app_module.app.test_client() as c:
        yield c


@pytest.fixture
def login_as(client):
    def _login(role, **extra):
        info = {
            'token': 'tok-123',
            'role': role,
            'email': f'{role}@example.fr',
            'firstName': 'Jean',
            'lastName': 'Dupont',
            'bakeryName': None,
            'labName': None,
            '_id': 'u1',
        }
        info.update(extra)
        with client.session_transaction() as s:
            s['userInfo'] = info
        return info
    return _login


def flashes(client):
    with client.session_transaction() as s:
        return [messaggio for _, messaggio in s.get('_flashes', [])]


def order_dict(**campi):
    dati = {
        '_id': 'o1',
        'orderId': 'ORD-1',
        'orderReferenceId': 'CMD-2025-001',
        'bakeryName': 'Boulangerie Martin',
        'laboratory': 'Labo Central',
        'status': 'PENDING',
        'address': '1 rue de Paris',
        'scheduledDate': '2025-04-23T00:00:00.000Z',
        'products': [
            {'productName': 'Baguette', 'productRef': 'B1', 'laboratory': 'Labo Central',
             'unitPriceHT': 1.2, 'taxRate': 0.1, 'quantity': 2},
        ],
    }
    dati.update(campi)
    return dati
