import pytest

import pricing
from models import OrderProduct


def righe():
    return [
        {'productName': 'Baguette', 'unitPriceHT': 1.20, 'taxRate': 0.10, 'quantity': 2},
        {'productName': 'Croissant', 'unitPriceHT': 1.00, 'taxRate': 0.05, 'quantity': 3},
    ]


def test_compute_line():
    riga = pricing.compute_line(righe()[0])
    assert riga['totalPriceHT'] == 2.40
    assert riga['taxAmount'] == 0.24
    assert riga['totalPriceTTC'] == 2.64
    assert riga['unitPriceTTC'] == 1.32


def test_compute_line_leaves_input_untouched():
    originale = righe()[0]
    pricing.compute_line(originale)
    assert 'totalPriceHT' not in originale


def test_compute_line_accepts_dataclasses():
    riga = pricing.compute_line(OrderProduct(productName='Pain', unitPriceHT=2.0, taxRate=0.055, quantity=1))
    assert riga['totalPriceTTC'] == 2.11


def test_order_totals():
    assert pricing.compute_totals(righe()) == {
        'orderTotalHT': 5.40,
        'orderTaxAmount': 0.39,
        'orderTotalTTC': 5.79,
    }


def test_empty_totals():
    assert pricing.compute_totals([]) == {'orderTotalHT': 0.0, 'orderTaxAmount': 0.0, 'orderTotalTTC': 0.0}


def test_set_quantity_recomputes():
    nuove = pricing.set_quantity(righe(), 1, 5)
    assert nuove[1]['quantity'] == 5
    assert nuove[1]['totalPriceHT'] == 5.00


def test_set_quantity_zero_removes_line():
    nuove = pricing.set_quantity(righe(), 0, 0)
    assert [r['productName'] for r in nuove] == ['Croissant']


def test_set_quantity_out_of_range_is_ignored():
    assert len(pricing.set_quantity(righe(), 7, 3)) == 2


def test_line_from_product_default_tax():
    riga = pricing.line_from_product({'name': 'Brioche', 'unitPrice': 2.0, '_id': 'p9'}, 2)
    assert riga['taxRate'] == pricing.DEFAULT_TAX_RATE
    assert riga['productRef'] == 'p9'
    assert riga['totalPriceTTC'] == 4.60


def test_add_product_merges_same_name():
    prodotto = {'name': 'Baguette', 'unitPrice': 1.20, 'taxRate': 0.10}
    nuove = pricing.add_product(righe(), prodotto, 3)
    assert len(nuove) == 2
    assert nuove[0]['quantity'] == 5


def test_add_product_appends_new_line():
    nuove = pricing.add_product([], {'name': 'Tarte', 'unitPrice': 10, 'taxRate': 0.2})
    assert nuove[0]['quantity'] == 1
    assert nuove[0]['totalPriceTTC'] == 12.0


def test_build_discrepancy():
    d = pricing.build_discrepancy(righe()[0], 1, 'MISSING', notes='un manquant')
    assert d['ordered'] == {'quantity': 2, 'unitPrice': 1.2, 'totalPrice': 2.4}
    assert d['received']['quantity'] == 1
    assert d['received']['totalPrice'] == 1.2
    assert d['issueType'] == 'MISSING'


def test_corrected_products_drops_zero_lines():
    discrepanze = [
        {'productName': 'Baguette', 'received': {'quantity': 1}},
        {'productName': 'Croissant', 'received': {'quantity': 0}},
    ]
    corrette = pricing.corrected_products(righe(), discrepanze)
    assert len(corrette) == 1
    assert corrette[0]['quantity'] == 1
    assert corrette[0]['totalPriceTTC'] == 1.32


def test_update_order_resolution_carries_corrections():
    discrepanze = [{'productName': 'Croissant', 'received': {'quantity': 1}}]
    payload = pricing.build_resolution(pricing.UPDATE_ORDER, 'Admin', 'ok', righe(), discrepanze)
    assert payload['resolution'] == pricing.UPDATE_ORDER
    assert payload['correctedTotalHT'] == 3.40
    assert payload['correctedTaxAmount'] == 0.29
    assert payload['correctedTotalTTC'] == 3.69
    assert len(payload['correctedProducts']) == 2


@pytest.mark.parametrize("risoluzione", [
    pricing.ACCEPT_AS_IS, pricing.PARTIAL_REFUND, pricing.FULL_REFUND, pricing.REPLACE_ORDER, pricing.REJECT,
])
def test_other_resolutions_carry_no_corrections(risoluzione):
    discrepanze = [{'productName': 'Croissant', 'received': {'quantity': 1}}]
    payload = pricing.build_resolution(risoluzione, 'Admin', '', righe(), discrepanze)
    assert set(payload) == {'reviewedBy', 'adminNotes', 'resolution'}


def test_unknown_resolution():
    with pytest.raises(ValueError):
        pricing.build_resolution('BOH', 'Admin')


def test_format_price():
    assert pricing.format_price(12.5) == "12,50 €"
    assert pricing.format_price(1234.5) == "1 234,50 €"
    assert pricing.format_price(None) == "0,00 €"


# ==============================================================================
# PROPRIETÀ DEI CALCOLI
# ==============================================================================

def molte_righe():
    aliquote = [0.0, 0.055, 0.07, 0.10, 0.15, 0.196, 0.20, 0.21]
    return [
        {'productName': f'Prodotto {i}', 'unitPriceHT': round(0.37 + i * 1.13, 2),
         'taxRate': aliquote[i % len(aliquote)], 'quantity': (i * 7) % 13 + 1}
        for i in range(25)
    ]


CASI = [
    righe(),
    molte_righe(),
    [{'productName': 'Éclair', 'unitPriceHT': 0.333, 'taxRate': 0.196, 'quantity': 3}],
    [{'productName': 'Pain', 'unitPriceHT': 2.15, 'taxRate': 0.055, 'quantity': 1},
     {'productName': 'Flan', 'unitPriceHT': 3.05, 'taxRate': 0.196, 'quantity': 7}],
]


@pytest.mark.parametrize("voci", CASI)
def test_compute_lines_is_idempotent(voci):
    una_volta = pricing.compute_lines(voci)
    assert pricing.compute_lines(una_volta) == una_volta


@pytest.mark.parametrize("voci", CASI)
def test_totals_stable_on_computed_lines(voci):
    assert pricing.compute_totals(pricing.compute_lines(voci)) == pricing.compute_totals(voci)


@pytest.mark.parametrize("voci", CASI)
def test_order_totals_are_sums_of_lines(voci):
    linee = pricing.compute_lines(voci)
    totali = pricing.compute_totals(voci)
    assert totali['orderTotalHT'] == round(sum(l['totalPriceHT'] for l in linee), 2)
    assert totali['orderTaxAmount'] == round(sum(l['taxAmount'] for l in linee), 2)
    assert totali['orderTotalTTC'] == round(sum(l['totalPriceTTC'] for l in linee), 2)


@pytest.mark.parametrize("voci", CASI)
def test_every_amount_has_at_most_two_decimals(voci):
    for linea in pricing.compute_lines(voci):
        for campo in ('unitPriceTTC', 'totalPriceHT', 'taxAmount', 'totalPriceTTC'):
            assert linea[campo] == round(linea[campo], 2)
        # HT + tassa arrotondati separatamente: al massimo un centesimo di scarto
        assert abs(linea['totalPriceHT'] + linea['taxAmount'] - linea['totalPriceTTC']) <= 0.01 + 1e-9


@pytest.mark.parametrize("risoluzione", [pricing.REJECT, pricing.ACCEPT_AS_IS])
def test_resolution_payload_ignores_edited_quantities(risoluzione):
    invariate = [{'productName': r['productName'], 'received': {'quantity': r['quantity']}} for r in righe()]
    modificate = [{'productName': 'Baguette', 'received': {'quantity': 0}},
                  {'productName': 'Croissant', 'received': {'quantity': 9}}]
    con_invariate = pricing.build_resolution(risoluzione, 'Admin', 'note', righe(), invariate)
    con_modificate = pricing.build_resolution(risoluzione, 'Admin', 'note', righe(), modificate)
    assert con_invariate == con_modificate


def test_update_order_with_unchanged_quantities_keeps_totals():
    invariate = [{'productName': r['productName'], 'received': {'quantity': r['quantity']}} for r in righe()]
    payload = pricing.build_resolution(pricing.UPDATE_ORDER, 'Admin', '', righe(), invariate)
    totali = pricing.compute_totals(righe())
    assert payload['correctedTotalTTC'] == totali['orderTotalTTC']
    assert payload['correctedProducts'] == pricing.compute_lines(righe())
