import io
from datetime import datetime

import pandas as pd
from fpdf import FPDF
from openpyxl import Workbook
from openpyxl.styles import Font, Alignment, Border, Side, PatternFill
from openpyxl.utils import get_column_letter

from order_status import PENDING, normalize

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
CSV_MIMETYPE = "text/csv"


def pulisci_testo(testo):
    """Il font base del PDF è latin-1: i caratteri fuori set diventano '?'"""
    if not testo:
        return ""
    return str(testo).encode('latin-1', 'replace').decode('latin-1')


# ==============================================================================
# MATRICE DI PRODUZIONE (prodotti x panetterie)
# ==============================================================================

def _righe_del_laboratorio(order, laboratory):
    for p in order.products:
        if laboratory and p.laboratory and p.laboratory != laboratory:
            continue
        yield p


def _riepilogo_panetteria(nome, ordini):
    # articoli = righe dell'ordine, importo = totale TTC dell'ordine
    return {
        'bakeryName': nome,
        'orderCount': len(ordini),
        'articleCount': sum(len(o.products) for o in ordini),
        'totalAmount': round(sum(o.orderTotalTTC or 0.0 for o in ordini), 2),
    }


def production_matrix(orders, laboratory=None):
    """
    Solo gli ordini PENDING (quelli ancora da produrre).

    Restituisce un dict con:
      orders     -> ordini considerati
      bakeries   -> nomi panetterie in ordine alfabetico
      rows       -> [{'productName', 'productRef', 'quantities': {panetteria: qta}, 'total'}]
      totals     -> {panetteria: qta}
      grand_total
      recap      -> [{'bakeryName', 'orderCount', 'articleCount', 'totalAmount'}]
    """
    da_produrre = [o for o in orders or [] if normalize(o.status) == PENDING]
    bakeries = sorted({o.bakeryName for o in da_produrre})

    prodotti_matrix = {}
    for order in da_produrre:
        for p in _righe_del_laboratorio(order, laboratory):
            chiave = (p.productName, p.productRef or '')
            if chiave not in prodotti_matrix:
                prodotti_matrix[chiave] = {b: 0 for b in bakeries}
            prodotti_matrix[chiave][order.bakeryName] += p.quantity

    rows = []
    for (nome, ref), qta in sorted(prodotti_matrix.items()):
        rows.append({
            'productName': nome,
            'productRef': ref,
            'quantities': qta,
            'total': sum(qta.values()),
        })

    totals = {b: sum(r['quantities'][b] for r in rows) for b in bakeries}
    recap = [_riepilogo_panetteria(b, [o for o in da_produrre if o.bakeryName == b]) for b in bakeries]
    return {
        'orders': da_produrre,
        'bakeries': bakeries,
        'rows': rows,
        'totals': totals,
        'grand_total': sum(totals.values()),
        'recap': recap,
    }


def production_excel(orders, lab_name=None, laboratory=None):
    """Workbook con tre fogli: matrice, dettaglio per panetteria, riepilogo."""
    matrice = production_matrix(orders, laboratory)
    bakeries = matrice['bakeries']

    wb = Workbook()

    # --- STILI ---
    bold_font = Font(bold=True)
    center_align = Alignment(horizontal='center', vertical='center')
    thin_border = Border(left=Side(style='thin'), right=Side(style='thin'), top=Side(style='thin'), bottom=Side(style='thin'))
    arancio = PatternFill(start_color='F8A542', end_color='F8A542', fill_type='solid')
    beige_pari = PatternFill(start_color='FEF3E8', end_color='FEF3E8', fill_type='solid')
    beige_dispari = PatternFill(start_color='FEFBF7', end_color='FEFBF7', fill_type='solid')

    # --- FOGLIO 1: TABLEAU PRODUCTION ---
    ws = wb.active
    ws.title = "Tableau Production"

    intestazione = ["PRODUIT", "REF"] + bakeries + ["TOTAL"]
    for col_idx, valore in enumerate(intestazione, start=1):
        c = ws.cell(row=1, column=col_idx, value=valore)
        c.font = bold_font
        c.fill = arancio
        c.alignment = center_align
        c.border = thin_border

    row_idx = 2
    for i, riga in enumerate(matrice['rows']):
        fill = beige_pari if i % 2 == 0 else beige_dispari
        valori = [riga['productName'], riga['productRef']]
        valori += [riga['quantities'][b] for b in bakeries]
        valori.append(riga['total'])
        for col_idx, valore in enumerate(valori, start=1):
            c = ws.cell(row=row_idx, column=col_idx, value=valore)
            c.font = Font(size=10)
            c.fill = fill
            c.border = thin_border
            if col_idx > 2:
                c.alignment = center_align
        row_idx += 1

    # Riga totali
    valori = ["TOTAL", ""] + [matrice['totals'][b] for b in bakeries] + [matrice['grand_total']]
    for col_idx, valore in enumerate(valori, start=1):
        c = ws.cell(row=row_idx, column=col_idx, value=valore)
        c.font = Font(bold=True, size=11)
        c.fill = arancio
        c.border = thin_border
        if col_idx > 2:
            c.alignment = center_align

    ws.column_dimensions['A'].width = 30
    ws.column_dimensions['B'].width = 12
    for i in range(3, len(intestazione) + 1):
        ws.column_dimensions[get_column_letter(i)].width = 10
    ws.column_dimensions[get_column_letter(len(intestazione))].width = 12

    # --- FOGLIO 2: DETTAGLIO PER PANETTERIA ---
    ws_det = wb.create_sheet("Détail par Boulangerie")
    ws_det.append(["Boulangerie", "Commande #", "Produit", "Ref", "Quantité"])
    for c in ws_det[1]:
        c.font = Font(bold=True, color='FFFFFF')
        c.fill = PatternFill(start_color='4472C4', end_color='4472C4', fill_type='solid')
    for order in matrice['orders']:
        for p in _righe_del_laboratorio(order, laboratory):
            ws_det.append([order.bakeryName, order.orderReferenceId, p.productName, p.productRef or "-", p.quantity])
    for lettera, larghezza in zip("ABCDE", (20, 12, 25, 15, 12)):
        ws_det.column_dimensions[lettera].width = larghezza

    # --- FOGLIO 3: RIEPILOGO ---
    ws_sum = wb.create_sheet("Résumé")
    ws_sum.append(["Métrique", "Valeur"])
    for c in ws_sum[1]:
        c.font = Font(bold=True, color='FFFFFF')
        c.fill = PatternFill(start_color='C55A11', end_color='C55A11', fill_type='solid')
    ws_sum.append(["Date de rapport", datetime.now().strftime('%d/%m/%Y')])
    ws_sum.append(["Laboratoire", lab_name or "Non spécifié"])
    ws_sum.append(["Nombre de commandes", len(matrice['orders'])])
    ws_sum.append(["Nombre de boulangeries", len(bakeries)])
    ws_sum.append(["Nombre de produits", len({r['productName'] for r in matrice['rows']})])
    ws_sum.append(["Quantité totale", matrice['grand_total']])
    ws_sum.column_dimensions['A'].width = 25
    ws_sum.column_dimensions['B'].width = 15

    output = io.BytesIO()
    wb.save(output)
    output.seek(0)
    return output


def production_filename(lab_name=None, estensione='xlsx'):
    laboratorio = (lab_name or 'laboratoire').replace(' ', '_')
    return f"production_{laboratorio}_{datetime.now().strftime('%d-%m-%Y')}.{estensione}"


def weekly_billing_filename(inizio, fine):
    # es. 2025-2104-2704.xlsx (anno, giorno+mese di inizio e di fine)
    return f"{inizio.year}-{inizio:%d%m}-{fine:%d%m}.xlsx"


# ==============================================================================
# PDF DI PRODUZIONE
# ==============================================================================

class ProductionPDF(FPDF):
    def __init__(self, titolo, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.titolo = titolo

    def header(self):
        self.set_font('Helvetica', 'B', 14)
        self.cell(0, 10, pulisci_testo(self.titolo), align='C', new_x="LMARGIN", new_y="NEXT")
        self.ln(1)


def production_pdf(orders, lab_name=None, laboratory=None, giorno=None):
    """
    Stessa matrice dell'Excel su una pagina sola, larga quanto serve
    per far stare tutte le panetterie.
    """
    matrice = production_matrix(orders, laboratory)
    bakeries = matrice['bakeries']

    # --- MISURE ---
    w_ref = 20
    w_nome = 70
    w_bak = 22
    w_tot = 15
    h_row = 7
    margine = 10

    larghezza = margine + w_ref + w_nome + len(bakeries) * w_bak + w_tot + margine
    altezza = 30 + 2 * h_row + len(matrice['rows']) * h_row + h_row + 5
    # Minimi: sotto A5 orizzontale sembra uno scontrino
    larghezza = max(larghezza, 200)
    altezza = max(altezza, 80)

    pdf = ProductionPDF(lab_name or "Production", orientation='P', unit='mm', format=(larghezza, altezza))
    pdf.set_margins(10, 2, 10)
    pdf.set_auto_page_break(auto=False)
    pdf.add_page()
    pdf.set_font("Helvetica", 'B', size=10)

    data_str = (giorno or datetime.now()).strftime('%d/%m/%Y')
    pdf.cell(0, 6, f"Production du {data_str}", new_x="LMARGIN", new_y="NEXT")
    pdf.cell(0, 6, f"Nombre de commandes: {len(matrice['orders'])}", new_x="LMARGIN", new_y="NEXT")
    pdf.ln(2)

    y_inizio = pdf.get_y()
    x_inizio = pdf.get_x()
    pdf.set_line_width(0.1)
    pdf.set_font("Helvetica", 'B', 8)

    # Intestazione
    pdf.cell(w_ref, h_row, "Ref", border=1, align='C')
    pdf.cell(w_nome, h_row, "Produit", border=1, align='C')
    for b in bakeries:
        nome = pulisci_testo(b)
        pdf.cell(w_bak, h_row, (nome[:10] + '.') if len(nome) > 10 else nome, border=1, align='C')
    pdf.cell(w_tot, h_row, "TOTAL", border=1, align='C', new_x="LMARGIN", new_y="NEXT")

    # Corpo
    for riga in matrice['rows']:
        pdf.set_font("Helvetica", 'B', 8)
        pdf.cell(w_ref, h_row, pulisci_testo(riga['productRef']), border=1, align='C')
        pdf.set_font("Helvetica", size=8)
        nome_p = pulisci_testo(riga['productName'])
        pdf.cell(w_nome, h_row, (nome_p[:38] + '..') if len(nome_p) > 38 else nome_p, border=1, align='L')
        pdf.set_font("Helvetica", 'B', 8)
        for b in bakeries:
            qta = riga['quantities'][b]
            pdf.cell(w_bak, h_row, str(qta) if qta else '-', border=1, align='C')
        pdf.cell(w_tot, h_row, str(riga['total']), border=1, align='C', new_x="LMARGIN", new_y="NEXT")

    # Totali
    pdf.cell(w_ref, h_row, "", border=1)
    pdf.cell(w_nome, h_row, "TOTAL", border=1, align='C')
    for b in bakeries:
        pdf.cell(w_bak, h_row, str(matrice['totals'][b]), border=1, align='C')
    pdf.cell(w_tot, h_row, str(matrice['grand_total']), border=1, align='C', new_x="LMARGIN", new_y="NEXT")

    # Cornice esterna spessa
    larghezza_tabella = w_ref + w_nome + len(bakeries) * w_bak + w_tot
    pdf.set_line_width(0.4)
    pdf.rect(x_inizio, y_inizio, larghezza_tabella, pdf.get_y() - y_inizio)

    return bytes(pdf.output())


# ==============================================================================
# ESPORTAZIONE CATALOGO PRODOTTI
# ==============================================================================

PRODUCT_COLUMNS = {
    'name': 'Nom',
    'category': 'Catégorie',
    'laboratory': 'Laboratoire',
    'unitPrice': 'Prix unitaire HT',
    'taxRate': 'TVA',
    'active': 'Actif',
    'isAvailable': 'Disponible',
    'ingredients': 'Ingrédients',
    'description': 'Description',
}


def products_dataframe(products):
    righe = []
    for p in products or []:
        righe.append({
            'name': p.name,
            'category': p.category,
            'laboratory': p.laboratory or '',
            'unitPrice': p.unitPrice,
            'taxRate': p.taxRate if p.taxRate is not None else '',
            'active': 'Oui' if p.active else 'Non',
            'isAvailable': 'Oui' if p.isAvailable else 'Non',
            'ingredients': ', '.join(p.ingredients),
            'description': p.description,
        })
    df = pd.DataFrame(righe, columns=list(PRODUCT_COLUMNS))
    return df.rename(columns=PRODUCT_COLUMNS)


def products_export(products, formato='xlsx'):
    """(contenuto in memoria, mimetype, nome file). Formati: xlsx, csv."""
    df = products_dataframe(products)
    data_str = datetime.now().strftime('%Y-%m-%d')
    output = io.BytesIO()
    if formato == 'csv':
        output.write(df.to_csv(index=False).encode('utf-8-sig'))
        output.seek(0)
        return output, CSV_MIMETYPE, f"produits_{data_str}.csv"
    if formato != 'xlsx':
        raise ValueError(f"Format d'export inconnu: {formato}")
    df.to_excel(output, index=False, sheet_name="Produits", engine='openpyxl')
    output.seek(0)
    return output, XLSX_MIMETYPE, f"produits_{data_str}.xlsx"
