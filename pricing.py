"""
Calcoli sulle righe ordine (HT / tassa / TTC) e payload di risoluzione reclami.

    totalPriceHT  = unitPriceHT * quantity
    taxAmount     = totalPriceHT * taxRate
    totalPriceTTC = totalPriceHT + taxAmount

I totali ordine sono le somme delle righe. Ogni importo è arrotondato al centesimo.
"""
from dataclasses import asdict, is_dataclass

# Aliquota usata quando il prodotto a catalogo non ne ha una
DEFAULT_TAX_RATE = 0.15

ACCEPT_AS_IS = "ACCEPT_AS_IS"
PARTIAL_REFUND = "PARTIAL_REFUND"
FULL_REFUND = "FULL_REFUND"
REPLACE_ORDER = "REPLACE_ORDER"
UPDATE_ORDER = "UPDATE_ORDER"
REJECT = "REJECT"

RESOLUTIONS = [ACCEPT_AS_IS, PARTIAL_REFUND, FULL_REFUND, REPLACE_ORDER, UPDATE_ORDER, REJECT]

RESOLUTION_LABELS = {
    ACCEPT_AS_IS: "Accepter en l'état",
    PARTIAL_REFUND: "Remboursement partiel",
    FULL_REFUND: "Remboursement total",
    REPLACE_ORDER: "Remplacer la commande",
    UPDATE_ORDER: "Mettre à jour la commande",
    REJECT: "Rejeter la réclamation",
}


def _as_dict(item):
    if is_dataclass(item):
        return asdict(item)
    return dict(item or {})


def _cents(valore):
    return round(float(valore) + 0.0, 2)


def compute_line(item):
    """Copia di `item` con i totali ricalcolati."""
    line = _as_dict(item)
    unit_ht = float(line.get('unitPriceHT') or 0.0)
    tax_rate = float(line.get('taxRate') or 0.0)
    quantity = int(line.get('quantity') or 0)

    total_ht = unit_ht * quantity
    tax_amount = total_ht * tax_rate

    line['quantity'] = quantity
    line['unitPriceHT'] = unit_ht
    line['taxRate'] = tax_rate
    line['unitPriceTTC'] = _cents(unit_ht * (1 + tax_rate))
    line['totalPriceHT'] = _cents(total_ht)
    line['taxAmount'] = _cents(tax_amount)
    line['totalPriceTTC'] = _cents(total_ht + tax_amount)
    return line


def compute_lines(items):
    return [compute_line(i) for i in items or []]


def compute_totals(items):
    lines = compute_lines(items)
    return {
        'orderTotalHT': _cents(sum(l['totalPriceHT'] for l in lines)),
        'orderTaxAmount': _cents(sum(l['taxAmount'] for l in lines)),
        'orderTotalTTC': _cents(sum(l['totalPriceTTC'] for l in lines)),
    }


def set_quantity(items, index, quantity):
    """
    Cambia la quantità di una riga. Con quantità zero (o meno) la riga viene
    tolta, senza errori. Restituisce una nuova lista.
    """
    lines = [_as_dict(i) for i in items or []]
    if index < 0 or index >= len(lines):
        return compute_lines(lines)
    if quantity is None or int(quantity) <= 0:
        del lines[index]
        return compute_lines(lines)
    lines[index]['quantity'] = int(quantity)
    return compute_lines(lines)


def line_from_product(product, quantity=1):
    p = _as_dict(product)
    tax_rate = p.get('taxRate')
    if tax_rate is None:
        tax_rate = DEFAULT_TAX_RATE
    return compute_line({
        'productName': p.get('name', ''),
        'productRef': p.get('productRef') or p.get('_id') or p.get('id'),
        'laboratory': p.get('laboratory'),
        'unitPriceHT': p.get('unitPrice') or 0.0,
        'taxRate': tax_rate,
        'quantity': quantity,
    })


def add_product(items, product, quantity=1):
    """Aggiunge `quantity` pezzi di un prodotto, unendo le righe con lo stesso nome."""
    lines = [_as_dict(i) for i in items or []]
    nome = _as_dict(product).get('name')
    for line in lines:
        if line.get('productName') == nome:
            line['quantity'] = int(line.get('quantity') or 0) + quantity
            return compute_lines(lines)
    lines.append(line_from_product(product, quantity))
    return compute_lines(lines)


# ==============================================================================
# RISOLUZIONE RECLAMI
# ==============================================================================

def build_discrepancy(line, received_quantity, issue_type, notes="", condition=""):
    """Discrepanza tra la riga ordinata e quanto ricevuto dalla panetteria."""
    line = _as_dict(line)
    unit_price = float(line.get('unitPriceHT') or 0.0)
    ordered_qty = int(line.get('quantity') or 0)
    received_qty = max(int(received_quantity or 0), 0)
    return {
        'productName': line.get('productName', ''),
        'ordered': {
            'quantity': ordered_qty,
            'unitPrice': unit_price,
            'totalPrice': _cents(unit_price * ordered_qty),
        },
        'received': {
            'quantity': received_qty,
            'unitPrice': unit_price,
            'totalPrice': _cents(unit_price * received_qty),
            'condition': condition or '',
        },
        'issueType': issue_type,
        'notes': notes or '',
    }


def corrected_products(order_products, discrepancies):
    """
    Righe ordine con la quantità dei prodotti contestati sostituita da quella
    ricevuta davvero. Le righe ricevute a zero vengono tolte.
    """
    received = {}
    for d in discrepancies or []:
        d = _as_dict(d)
        nome = d.get('productName')
        if not nome:
            continue
        received[nome] = int((d.get('received') or {}).get('quantity') or 0)

    lines = []
    for line in order_products or []:
        line = _as_dict(line)
        nome = line.get('productName')
        if nome in received:
            line['quantity'] = received[nome]
        if int(line.get('quantity') or 0) <= 0:
            continue
        lines.append(line)
    return compute_lines(lines)


def build_resolution(resolution, reviewed_by, admin_notes="", order_products=None, discrepancies=None):
    """
    Payload per la POST /orders/<id>/resolve-conflict.

    Solo UPDATE_ORDER ricalcola l'ordine: con le altre risoluzioni i campi
    corretti non vengono mandati, qualunque cosa dicano le discrepanze.
    """
    if resolution not in RESOLUTIONS:
        raise ValueError(f"Résolution inconnue: {resolution}")

    payload = {
        'reviewedBy': reviewed_by,
        'adminNotes': admin_notes or '',
        'resolution': resolution,
    }
    if resolution == UPDATE_ORDER:
        lines = corrected_products(order_products, discrepancies)
        totals = compute_totals(lines)
        payload['correctedProducts'] = lines
        payload['correctedTotalHT'] = totals['orderTotalHT']
        payload['correctedTaxAmount'] = totals['orderTaxAmount']
        payload['correctedTotalTTC'] = totals['orderTotalTTC']
    return payload


def format_price(valore):
    """12.5 -> '12,50 €' (formato valuta fr-FR)."""
    try:
        valore = float(valore or 0)
    except (TypeError, ValueError):
        valore = 0.0
    intero = f"{valore:,.2f}".replace(',', ' ').replace('.', ',')
    return f"{intero} €"
