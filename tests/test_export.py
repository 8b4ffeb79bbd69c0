import io
from datetime import date

import pandas as pd
import pytest
from openpyxl import load_workbook

import export
from models import Order, Product


def ordini():
    return [
        Order.from_dict({
            '_id': '1', 'orderReferenceId': 'CMD-1', 'bakeryName': 'Martin', 'status': 'PENDING',
            'products': [
                {'productName': 'Baguette', 'productRef': 'B1', 'laboratory': 'Labo', 'quantity': 10},
                {'productName': 'Tarte', 'productRef': 'T1', 'laboratory': 'Autre', 'quantity': 2},
            ],
        }),
        Order.from_dict({
            '_id': '2', 'orderReferenceId': 'CMD-2', 'bakeryName': 'Dubois', 'status': 'PENDING',
            'products': [{'productName': 'Baguette', 'productRef': 'B1', 'laboratory': 'Labo', 'quantity': 4}],
        }),
        Order.from_dict({
            '_id': '3', 'orderReferenceId': 'CMD-3', 'bakeryName': 'Zola', 'status': 'DELIVERED',
            'products': [{'productName': 'Baguette', 'productRef': 'B1', 'laboratory': 'Labo', 'quantity': 99}],
        }),
    ]


def test_production_matrix_only_pending_and_own_lines():
    matrice = export.production_matrix(ordini(), 'Labo')
    assert matrice['bakeries'] == ['Dubois', 'Martin']
    assert matrice['rows'] == [{
        'productName': 'Baguette',
        'productRef': 'B1',
        'quantities': {'Dubois': 4, 'Martin': 10},
        'total': 14,
    }]
    assert matrice['grand_total'] == 14


def test_production_matrix_recap_per_bakery():
    voci = ordini() + [Order.from_dict({
        '_id': '4', 'orderReferenceId': 'CMD-4', 'bakeryName': 'Martin', 'status': 'PENDING',
        'orderTotalTTC': 7.25,
        'products': [{'productName': 'Pain', 'laboratory': 'Labo', 'quantity': 1}],
    })]
    voci[0].orderTotalTTC = 20.5
    matrice = export.production_matrix(voci, 'Labo')
    assert matrice['recap'] == [
        {'bakeryName': 'Dubois', 'orderCount': 1, 'articleCount': 1, 'totalAmount': 0.0},
        {'bakeryName': 'Martin', 'orderCount': 2, 'articleCount': 3, 'totalAmount': 27.75},
    ]


def test_production_excel_sheets():
    wb = load_workbook(export.production_excel(ordini(), lab_name='Labo', laboratory='Labo'))
    assert wb.sheetnames == ["Tableau Production", "Détail par Boulangerie", "Résumé"]
    ws = wb["Tableau Production"]
    assert [c.value for c in ws[1]] == ["PRODUIT", "REF", "Dubois", "Martin", "TOTAL"]
    totali = [c.value for c in ws[3]]
    assert totali[0] == "TOTAL"
    assert totali[2:] == [4, 10, 14]
    riepilogo = {r[0].value: r[1].value for r in wb["Résumé"].iter_rows(min_row=2)}
    assert riepilogo["Nombre de commandes"] == 2
    assert riepilogo["Quantité totale"] == 14


def test_production_pdf():
    contenuto = export.production_pdf(ordini(), lab_name='Labo Élite', laboratory='Labo')
    assert contenuto.startswith(b'%PDF')


def test_pulisci_testo():
    assert export.pulisci_testo('Pain €') == 'Pain ?'
    assert export.pulisci_testo(None) == ''


def prodotti():
    return [Product(name='Baguette', category='bread', unitPrice=1.2, taxRate=0.055, ingredients=['farine', 'eau'])]


def test_products_csv():
    output, mimetype, nome = export.products_export(prodotti(), 'csv')
    assert mimetype == export.CSV_MIMETYPE
    assert nome.endswith('.csv')
    df = pd.read_csv(io.BytesIO(output.getvalue()), encoding='utf-8-sig')
    assert list(df.columns) == list(export.PRODUCT_COLUMNS.values())
    assert df.loc[0, 'Ingrédients'] == 'farine, eau'


def test_products_xlsx():
    output, mimetype, _ = export.products_export(prodotti(), 'xlsx')
    assert mimetype == export.XLSX_MIMETYPE
    df = pd.read_excel(output, sheet_name='Produits')
    assert df.loc[0, 'Nom'] == 'Baguette'
    assert df.loc[0, 'Actif'] == 'Oui'


def test_unknown_format():
    with pytest.raises(ValueError):
        export.products_export(prodotti(), 'ods')


def test_weekly_billing_filename():
    assert export.weekly_billing_filename(date(2025, 4, 21), date(2025, 4, 27)) == '2025-2104-2704.xlsx'
