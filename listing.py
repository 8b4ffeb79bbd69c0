import math
from collections import namedtuple
from datetime import datetime, date, timedelta
from dataclasses import asdict, is_dataclass

from order_status import (
    PENDING, IN_PROGRESS, READY_FOR_DELIVERY, DISPATCHED, DELIVERING,
    DELIVERED, CANCELLED, IN_TRANSIT, FAILED, normalize,
)

DEFAULT_PER_PAGE = 10

Page = namedtuple('Page', ['items', 'page', 'pages', 'total', 'per_page'])

# Schede delle tabelle ordini/consegne
TAB_STATUSES = {
    'pending': PENDING,
    'in_progress': IN_PROGRESS,
    'ready': READY_FOR_DELIVERY,
    'dispatched': DISPATCHED,
    'delivering': DELIVERING,
    'delivered': DELIVERED,
    'cancelled': CANCELLED,
}


def _get(record, path):
    """Legge percorsi 'a.b' da dict o oggetti. Se manca -> None."""
    valore = record
    for parte in path.split('.'):
        if valore is None:
            return None
        if isinstance(valore, dict):
            valore = valore.get(parte)
        else:
            valore = getattr(valore, parte, None)
    return valore


def search(records, term, fields):
    """Ricerca per sottostringa (senza maiuscole/minuscole) su `fields`. Termine vuoto -> tutto."""
    records = list(records or [])
    term = (term or '').strip().lower()
    if not term:
        return records

    risultati = []
    for r in records:
        for f in fields:
            valore = _get(r, f)
            if valore is None:
                continue
            if term in str(valore).lower():
                risultati.append(r)
                break
    return risultati


def filter_by_status(records, status):
    if not status or status == 'all':
        return list(records or [])
    status = normalize(status)
    return [r for r in records or [] if normalize(_get(r, 'status')) == status]


def filter_by_tab(records, tab):
    if not tab or tab == 'all':
        return list(records or [])
    status = TAB_STATUSES.get(tab)
    if status is None:
        return list(records or [])
    return filter_by_status(records, status)


def count_by_status(records):
    conteggi = {'all': 0}
    for r in records or []:
        s = normalize(_get(r, 'status')) or 'UNKNOWN'
        conteggi[s] = conteggi.get(s, 0) + 1
        conteggi['all'] += 1
    return conteggi


def page_args(args, default_limit=DEFAULT_PER_PAGE):
    """Legge ?page=&limit= da request.args."""
    try:
        page = int(args.get('page', 1))
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(args.get('limit', default_limit))
    except (TypeError, ValueError):
        limit = default_limit
    if limit < 1:
        limit = default_limit
    return max(page, 1), limit


def paginate(records, page=1, per_page=DEFAULT_PER_PAGE):
    records = list(records or [])
    per_page = per_page if per_page and per_page > 0 else DEFAULT_PER_PAGE
    total = len(records)
    pages = max(1, math.ceil(total / per_page))
    page = min(max(int(page or 1), 1), pages)
    inizio = (page - 1) * per_page
    return Page(records[inizio:inizio + per_page], page, pages, total, per_page)


# ==============================================================================
# AGGREGATI
# ==============================================================================

def _products(order):
    prodotti = _get(order, 'products') or []
    return [asdict(p) if is_dataclass(p) else p for p in prodotti]


def product_totals(orders, laboratory=None):
    """
    Quantità per prodotto su tutti gli `orders` (eventualmente solo le righe
    del `laboratory`), in ordine di nome.
    """
    totali = {}
    for order in orders or []:
        for p in _products(order):
            if laboratory and p.get('laboratory') and p.get('laboratory') != laboratory:
                continue
            nome = p.get('productName') or ''
            if nome not in totali:
                totali[nome] = {
                    'productName': nome,
                    'productRef': p.get('productRef'),
                    'totalQuantity': 0,
                    'orderCount': 0,
                }
            totali[nome]['totalQuantity'] += int(p.get('quantity') or 0)
            totali[nome]['orderCount'] += 1
    return sorted(totali.values(), key=lambda x: x['productName'].lower())


def delivery_stats(deliveries):
    deliveries = list(deliveries or [])
    stati = [str(_get(d, 'status') or '').upper() for d in deliveries]
    return {
        'total': len(deliveries),
        'ready': stati.count(READY_FOR_DELIVERY),
        'inTransit': sum(1 for s in stati if s in (IN_TRANSIT, DELIVERING, DISPATCHED)),
        'delivered': stati.count(DELIVERED),
        'failed': sum(1 for s in stati if s in (FAILED, CANCELLED)),
    }


def parse_date(valore):
    """Stringhe ISO ('2025-04-23', '2025-04-23T07:00:00.000Z') -> date. Non valide -> None."""
    if not valore:
        return None
    if isinstance(valore, datetime):
        return valore.date()
    if isinstance(valore, date):
        return valore
    testo = str(valore).strip()
    try:
        return datetime.fromisoformat(testo.replace('Z', '+00:00')).date()
    except ValueError:
        pass
    try:
        return datetime.strptime(testo[:10], '%Y-%m-%d').date()
    except ValueError:
        return None


def week_bounds(giorno=None, settimane=0):
    """Lunedì e domenica della settimana di `giorno`, spostata di `settimane`."""
    giorno = giorno or date.today()
    lunedi = giorno - timedelta(days=giorno.weekday()) + timedelta(weeks=settimane)
    return lunedi, lunedi + timedelta(days=6)


def orders_for_date(orders, giorno):
    if giorno is None:
        return list(orders or [])
    return [o for o in orders or [] if parse_date(_get(o, 'scheduledDate')) == giorno]


def group_routes(deliveries):
    """Raggruppa le consegne in un giro per giorno, dal più vicino."""
    per_giorno = {}
    for d in deliveries or []:
        giorno = parse_date(_get(d, 'scheduledDate'))
        per_giorno.setdefault(giorno, []).append(d)

    routes = []
    for giorno in sorted(per_giorno, key=lambda g: (g is None, g or date.min)):
        stops = sorted(per_giorno[giorno], key=lambda d: str(_get(d, 'scheduledDate') or ''))
        stati = {str(_get(s, 'status') or '').upper() for s in stops}
        if stati <= {DELIVERED}:
            stato = 'COMPLETED'
        elif stati & {DELIVERING, IN_TRANSIT, DISPATCHED} or DELIVERED in stati:
            stato = 'IN_PROGRESS'
        else:
            stato = 'PLANNED'
        routes.append({'date': giorno, 'stops': stops, 'status': stato})
    return routes
