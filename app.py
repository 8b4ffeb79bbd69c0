import os
import io
import time
import random
import logging
from datetime import datetime
from functools import wraps
from dataclasses import asdict

from dotenv import load_dotenv
load_dotenv() # Carica le variabili dal file .env

from logging.handlers import RotatingFileHandler

from flask import Flask, render_template, request, redirect, url_for, flash, send_file, session, jsonify

from api_client import ApiClient, ApiError, SessionExpired, BackendUnavailable
from models import Order, Site, User, Product, Announcement, ROLES, DISPATCH_PENDING, A_ASSIGNER, NON_DEFINI
import order_status
from order_status import (
    PENDING, READY_FOR_DELIVERY, DISPATCHED, DELIVERING, DELIVERED,
    CONFLICT_UNDER_REVIEW, CONFLICT_REPORTED,
    can_transition, conflict_next,
)
import pricing
from pricing import RESOLUTIONS, RESOLUTION_LABELS, UPDATE_ORDER
import forms
from forms import parse_float, parse_int, parse_bool, parse_ingredients
import listing
import delivery_checks
import export

app = Flask(__name__)

# ==============================================================================
# 1. CONFIGURAZIONI APP
# ==============================================================================
# Tutto arriva dal file .env, con un default sensato per lo sviluppo
app.secret_key = os.getenv('SECRET_KEY', 'chiave_di_riserva_se_manca_env')
app.config['API_BASE_URL'] = os.getenv('API_BASE_URL', 'http://localhost:5000').rstrip('/')
app.config['EXTERNAL_DELIVERIES_API_URL'] = os.getenv(
    'EXTERNAL_DELIVERIES_API_URL', f"{app.config['API_BASE_URL']}/api/deliveries")
app.config['API_TIMEOUT'] = parse_float(os.getenv('API_TIMEOUT'), default=15)
app.config['ITEMS_PER_PAGE'] = parse_int(os.getenv('ITEMS_PER_PAGE'), default=10)
app.config['LOG_FILE'] = os.getenv('LOG_FILE', os.path.join('logs', 'errori.log'))

# ==============================================================================
# 2. CONFIGURAZIONE LOGGING (LA "SCATOLA NERA")
# ==============================================================================
# Gli errori gravi finiscono su file invece di perdersi nella console.
cartella_log = os.path.dirname(app.config['LOG_FILE'])
if cartella_log:
    os.makedirs(cartella_log, exist_ok=True)

# Configurazione del file di log (max 100KB, ne tiene 1 di backup)
handler = RotatingFileHandler(app.config['LOG_FILE'], maxBytes=100000, backupCount=1)
handler.setLevel(logging.ERROR)
formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')
handler.setFormatter(formatter)
app.logger.addHandler(handler)

# ==============================================================================
# 3. SESSIONE, PERMESSI E CLIENT DEL BACKEND
# ==============================================================================

DASHBOARDS = {
    'admin': 'admin_dashboard',
    'bakery': 'bakery_dashboard',
    'laboratory': 'laboratory_dashboard',
    'delivery': 'delivery_dashboard',
}


def utente():
    """Le info dell'utente collegato (quelle restituite dal login), o None."""
    return session.get('userInfo')


def create_client():
    info = utente() or {}
    return ApiClient(
        app.config['API_BASE_URL'],
        token=info.get('token'),
        timeout=app.config['API_TIMEOUT'],
    )


def dashboard_url(ruolo):
    return url_for(DASHBOARDS.get(ruolo, 'login'))


def role_required(*ruoli):
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            info = utente()
            if not info or not info.get('token'):
                flash("Session expirée. Veuillez vous reconnecter.", 'error')
                return redirect(url_for('login'))
            if info.get('role') not in ROLES:
                session.pop('userInfo', None)
                flash("Session expirée. Veuillez vous reconnecter.", 'error')
                return redirect(url_for('login'))
            if info.get('role') not in ruoli:
                flash("Accès non autorisé", 'error')
                return redirect(dashboard_url(info.get('role')))
            return f(*args, **kwargs)
        return wrapper
    return decorator


@app.errorhandler(SessionExpired)
def sessione_scaduta(e):
    app.logger.error(f"Sessione scaduta: {e}")
    session.pop('userInfo', None)
    flash("Session expirée. Veuillez vous reconnecter.", 'error')
    return redirect(url_for('login'))


def errore_backend(e, contesto, messaggio):
    """Log + messaggio per l'utente. La sessione scaduta la gestisce l'errorhandler."""
    if isinstance(e, SessionExpired):
        raise e
    app.logger.error(f"Errore {contesto}: {e}")
    # Gli errori di validazione del backend sono utili all'utente
    if isinstance(e, ApiError) and e.status_code and 400 <= e.status_code < 500:
        messaggio = f"{messaggio} : {e.message}"
    flash(messaggio, 'error')


def nome_utente(info=None):
    info = info or utente() or {}
    nome = f"{info.get('firstName', '')} {info.get('lastName', '')}".strip()
    return nome or info.get('email', '')


def ordina_recenti(records):
    return sorted(records, key=lambda o: o.createdAt or o.scheduledDate or '', reverse=True)


# ==============================================================================
# 4. FILTRI E VARIABILI PER I TEMPLATE
# ==============================================================================

@app.template_filter('data')
def formatta_data(valore, con_ora=False):
    if not valore:
        return NON_DEFINI
    try:
        dt = datetime.fromisoformat(str(valore).replace('Z', '+00:00'))
    except ValueError:
        return valore
    return dt.strftime('%d/%m/%Y %H:%M' if con_ora else '%d/%m/%Y')


@app.template_filter('prezzo')
def formatta_prezzo(valore):
    return pricing.format_price(valore)


@app.template_filter('percentuale')
def formatta_percentuale(valore):
    if valore is None or valore == '':
        return NON_DEFINI
    return f"{round(float(valore) * 100, 2):g} %"


@app.template_filter('variazione')
def formatta_variazione(valore):
    # Variazione in punti percentuali, col segno: +12.5%
    return f"{float(valore or 0):+.1f}%"


def url_con(**modifiche):
    """URL della pagina corrente con alcuni parametri della query cambiati."""
    args = request.args.to_dict()
    args.update(modifiche)
    return url_for(request.endpoint, **dict(request.view_args or {}, **args))


@app.context_processor
def variabili_template():
    return {
        'utente': utente(),
        'url_con': url_con,
        'status_label': order_status.status_label,
        'status_badge': order_status.status_badge,
        'next_actions': order_status.next_actions,
        'conflict_label': order_status.conflict_label,
        'conflict_badge': order_status.conflict_badge,
        'conflict_next': order_status.conflict_next,
        'hygiene_badge': order_status.hygiene_badge,
        'PRIORITY_LABELS': order_status.PRIORITY_LABELS,
        'CATEGORY_LABELS': order_status.CATEGORY_LABELS,
        'ISSUE_TYPE_LABELS': order_status.ISSUE_TYPE_LABELS,
        'NON_DEFINI': NON_DEFINI,
    }


# ==============================================================================
# 5. AUTENTICAZIONE E PROFILO
# ==============================================================================

@app.route('/')
def home():
    info = utente()
    if info and info.get('role') in DASHBOARDS:
        return redirect(dashboard_url(info['role']))
    return redirect(url_for('login'))


@app.route('/login', methods=['GET', 'POST'])
def login():
    info = utente()
    if info and info.get('token') and info.get('role') in DASHBOARDS:
        return redirect(dashboard_url(info['role']))

    if request.method == 'POST':
        email = request.form.get('email', '').strip()
        password = request.form.get('password', '')
        if not email or not password:
            flash("Veuillez saisir votre email et votre mot de passe.", 'error')
            return render_template('login.html', email=email)
        try:
            dati = create_client().login(email, password)
        except SessionExpired:
            flash("Email ou mot de passe incorrect.", 'error')
            return render_template('login.html', email=email)
        except ApiError as e:
            errore_backend(e, "LOGIN", "Échec de la connexion")
            return render_template('login.html', email=email)

        dati = dati or {}
        if not dati.get('token') or dati.get('role') not in DASHBOARDS:
            app.logger.error(f"Errore LOGIN: risposta senza token o ruolo valido per {email}")
            flash("Réponse du serveur invalide.", 'error')
            return render_template('login.html', email=email)

        session['userInfo'] = {
            chiave: dati.get(chiave)
            for chiave in ('token', 'role', 'email', 'firstName', 'lastName', 'bakeryName', 'labName', '_id')
        }
        flash(f"Bienvenue {nome_utente(session['userInfo'])}", 'success')
        return redirect(dashboard_url(dati['role']))

    return render_template('login.html')


@app.route('/logout')
def logout():
    session.clear()
    flash("Déconnexion réussie", 'success')
    return redirect(url_for('login'))


@app.route('/forgot-password', methods=['GET', 'POST'])
def forgot_password():
    if request.method == 'POST':
        email = request.form.get('email', '').strip()
        if not forms.EMAIL_RE.match(email):
            flash("L'adresse email n'est pas valide.", 'error')
            return render_template('forgot_password.html', email=email)
        try:
            create_client().forgot_password(email)
            flash("Si un compte existe pour cet email, un lien de réinitialisation a été envoyé.", 'success')
            return redirect(url_for('login'))
        except ApiError as e:
            errore_backend(e, "PASSWORD DIMENTICATA", "Impossible d'envoyer l'email de réinitialisation")
            return render_template('forgot_password.html', email=email)
    return render_template('forgot_password.html')


@app.route('/reset-password', methods=['GET', 'POST'])
@app.route('/reset-password/<reset_token>', methods=['GET', 'POST'])
def reset_password(reset_token=None):
    if request.method == 'POST':
        reset_token = request.form.get('resetToken', reset_token or '').strip()
        password = request.form.get('password', '')
        conferma = request.form.get('confirmPassword', '')
        if not reset_token:
            flash("Le code de réinitialisation est obligatoire.", 'error')
            return render_template('reset_password.html', reset_token=reset_token)
        errore = forms.validate_password_change('-', password, conferma)
        if errore:
            flash(errore, 'error')
            return render_template('reset_password.html', reset_token=reset_token)
        try:
            create_client().reset_password(reset_token, password)
            flash("Mot de passe réinitialisé. Vous pouvez vous connecter.", 'success')
            return redirect(url_for('login'))
        except ApiError as e:
            errore_backend(e, "RESET PASSWORD", "Impossible de réinitialiser le mot de passe")
    return render_template('reset_password.html', reset_token=reset_token)


@app.route('/profile', methods=['GET', 'POST'])
@role_required(*ROLES)
def profile():
    client = create_client()
    if request.method == 'POST':
        dati = forms.clean(request.form, 'firstName', 'lastName', 'email', 'phone')
        if not dati['email'] or not forms.EMAIL_RE.match(dati['email']):
            flash("L'adresse email n'est pas valide.", 'error')
        elif dati['phone'] and not forms.PHONE_RE.match(dati['phone']):
            flash("Numéro de téléphone invalide.", 'error')
        else:
            try:
                client.update_profile(dati)
                info = dict(session['userInfo'])
                info.update({k: dati[k] for k in ('firstName', 'lastName', 'email')})
                session['userInfo'] = info
                flash("Profil mis à jour avec succès", 'success')
                return redirect(url_for('profile'))
            except ApiError as e:
                errore_backend(e, "AGGIORNAMENTO PROFILO", "Impossible de mettre à jour le profil")

    profilo = None
    try:
        profilo = User.from_dict(client.get_profile())
    except ApiError as e:
        errore_backend(e, "CARICAMENTO PROFILO", "Impossible de charger le profil")
    return render_template('profile.html', profilo=profilo)


@app.route('/profile/change-password', methods=['GET', 'POST'])
@role_required(*ROLES)
def change_password():
    if request.method == 'POST':
        attuale = request.form.get('currentPassword', '')
        nuova = request.form.get('newPassword', '')
        conferma = request.form.get('confirmPassword', '')
        errore = forms.validate_password_change(attuale, nuova, conferma)
        if errore:
            flash(errore, 'error')
            return render_template('change_password.html')
        try:
            create_client().change_password(attuale, nuova)
            flash("Mot de passe modifié avec succès", 'success')
            return redirect(url_for('profile'))
        except ApiError as e:
            errore_backend(e, "CAMBIO PASSWORD", "Impossible de modifier le mot de passe")
    return render_template('change_password.html')


# ==============================================================================
# 6. AZIONI SUGLI STATI (comuni a tutti i ruoli)
# ==============================================================================

def cambia_stato(client, order_id, attuale, nuovo, consegna=False, note=None):
    """
    Mostriamo solo le transizioni della tabella: se il form ne chiede un'altra
    non la mandiamo nemmeno al backend.
    """
    if not can_transition(attuale, nuovo):
        flash(f"Transition non autorisée : {order_status.status_label(attuale)} → "
              f"{order_status.status_label(nuovo)}", 'error')
        return False
    try:
        if consegna:
            client.update_delivery_status(order_id, nuovo, note)
        else:
            client.update_order_status(order_id, nuovo, note)
        flash(f"Statut mis à jour : {order_status.status_label(nuovo)}", 'success')
        return True
    except ApiError as e:
        errore_backend(e, "AGGIORNAMENTO STATO", "Erreur lors de la mise à jour du statut")
        return False


@app.route('/orders/<order_id>/status', methods=['POST'])
@role_required('admin', 'bakery', 'laboratory', 'delivery')
def update_order_status(order_id):
    cambia_stato(
        create_client(), order_id,
        request.form.get('current'), request.form.get('status'),
        consegna=request.form.get('target') == 'delivery',
        note=request.form.get('notes') or None,
    )
    destinazione = request.form.get('next', '')
    # Solo percorsi interni
    if not destinazione.startswith('/') or destinazione.startswith('//'):
        destinazione = dashboard_url(utente()['role'])
    return redirect(destinazione)


# ==============================================================================
# 7. ADMIN: DASHBOARD, DEBUG, REPORT
# ==============================================================================

REPORTS = {
    'sales': "rapport-ventes.csv",
    'products': "rapport-produits.csv",
    'financial': "rapport-financier.csv",
}

REPORT_LABELS = {
    'sales': ("Rapport mensuel des ventes", "Ventes du mois par produit et boulangerie"),
    'products': ("Rapport de performance des produits", "Ventes et performances par produit"),
    'financial': ("Rapport financier trimestriel", "Chiffre d'affaires par boulangerie"),
}


@app.route('/admin/dashboard')
@role_required('admin')
def admin_dashboard():
    client = create_client()
    overview, recenti, stats = {}, [], listing.delivery_stats([])
    analisi = {'vendite': [], 'prodotti': [], 'panetterie': [], 'indicatori': []}
    try:
        overview = client.dashboard_overview()
        recenti = [Order.from_dict(o) for o in client.recent_orders()]
        stats = listing.delivery_stats(client.list_deliveries())
        analisi['vendite'] = client.sales_chart()
        analisi['prodotti'] = client.product_performance()
        analisi['panetterie'] = client.bakery_comparison()
        analisi['indicatori'] = client.performance_indicators()
    except ApiError as e:
        errore_backend(e, "DASHBOARD ADMIN", "Impossible de charger le tableau de bord")
    # Settimana corrente e precedente per i pulsanti rapidi della fatturazione
    settimane = {
        'courante': listing.week_bounds(),
        'precedente': listing.week_bounds(settimane=-1),
    }
    return render_template('admin/dashboard.html', overview=overview, recenti=recenti, stats=stats,
                           analisi=analisi, settimane=settimane, reports=REPORT_LABELS)


@app.route('/admin/reports/weekly-billing')
@role_required('admin')
def admin_weekly_billing():
    inizio = listing.parse_date(request.args.get('startDate'))
    fine = listing.parse_date(request.args.get('endDate'))
    if not inizio or not fine:
        flash("Veuillez sélectionner une date de début et une date de fin.", 'error')
        return redirect(url_for('admin_dashboard'))
    if fine < inizio:
        flash("La date de fin doit être postérieure à la date de début.", 'error')
        return redirect(url_for('admin_dashboard'))
    try:
        contenuto, mimetype = create_client().export_weekly_billing(inizio.isoformat(), fine.isoformat())
    except ApiError as e:
        errore_backend(e, "FATTURAZIONE SETTIMANALE", "Erreur lors de l'export de la facturation hebdomadaire")
        return redirect(url_for('admin_dashboard'))
    return send_file(io.BytesIO(contenuto), mimetype=mimetype, as_attachment=True,
                     download_name=export.weekly_billing_filename(inizio, fine))


@app.route('/admin/reports/<report>')
@role_required('admin')
def admin_report(report):
    if report not in REPORTS:
        flash("Rapport inconnu", 'error')
        return redirect(url_for('admin_dashboard'))
    params = {k: request.args[k] for k in ('startDate', 'endDate') if request.args.get(k)}
    try:
        contenuto, mimetype = create_client().export_report(report, params or None)
    except ApiError as e:
        errore_backend(e, "EXPORT REPORT", "Erreur lors de l'export du rapport")
        return redirect(url_for('admin_dashboard'))
    return send_file(io.BytesIO(contenuto), mimetype=mimetype, as_attachment=True, download_name=REPORTS[report])


@app.route('/admin/debug')
@role_required('admin')
def admin_debug():
    inizio = time.monotonic()
    esito = {'ok': False, 'risposta': None, 'errore': None}
    try:
        esito['risposta'] = create_client().health()
        esito['ok'] = True
    except BackendUnavailable as e:
        esito['errore'] = str(e)
    except ApiError as e:
        if isinstance(e, SessionExpired):
            raise
        esito['errore'] = str(e)
    esito['durata_ms'] = int((time.monotonic() - inizio) * 1000)
    return render_template('admin/debug.html', esito=esito)


# ==============================================================================
# 8. ADMIN: UTENTI
# ==============================================================================

USER_FIELDS = ('firstName', 'lastName', 'email', 'role', 'phone', 'bakeryName', 'labName')


@app.route('/admin/users')
@role_required('admin')
def admin_users():
    utenti = []
    try:
        utenti = [User.from_dict(u) for u in create_client().list_users()]
    except ApiError as e:
        errore_backend(e, "CARICAMENTO UTENTI", "Impossible de charger les utilisateurs")

    q = request.args.get('q', '')
    ruolo = request.args.get('role', 'all')
    risultati = listing.search(utenti, q, ['firstName', 'lastName', 'email', 'role'])
    if ruolo != 'all':
        risultati = [u for u in risultati if u.role == ruolo]
    page, per_page = listing.page_args(request.args, app.config['ITEMS_PER_PAGE'])
    pagina = listing.paginate(risultati, page, per_page)
    return render_template('admin/users.html', pagina=pagina, q=q, ruolo=ruolo, roles=ROLES)


@app.route('/admin/users/save', methods=['POST'])
@app.route('/admin/users/<user_id>/save', methods=['POST'])
@role_required('admin')
def admin_save_user(user_id=None):
    dati = forms.clean(request.form, *USER_FIELDS)
    dati['isActive'] = parse_bool(request.form.get('isActive'))
    password = request.form.get('password', '')
    if password:
        dati['password'] = password
    errore = forms.validate_user(dati, creating=user_id is None)
    if errore:
        flash(errore, 'error')
        return redirect(url_for('admin_users'))
    try:
        client = create_client()
        if user_id:
            client.update_user(user_id, dati)
            flash("Utilisateur mis à jour avec succès", 'success')
        else:
            client.create_user(dati)
            flash("Utilisateur créé avec succès", 'success')
    except ApiError as e:
        errore_backend(e, "SALVATAGGIO UTENTE", "Erreur lors de l'enregistrement de l'utilisateur")
    return redirect(url_for('admin_users'))


@app.route('/admin/users/<user_id>/delete', methods=['POST'])
@role_required('admin')
def admin_delete_user(user_id):
    try:
        create_client().delete_user(user_id)
        flash("Utilisateur supprimé", 'success')
    except ApiError as e:
        errore_backend(e, "ELIMINAZIONE UTENTE", "Erreur lors de la suppression de l'utilisateur")
    return redirect(url_for('admin_users'))


# ==============================================================================
# 9. ADMIN: LABORATORI E PANETTERIE
# Stessi campi, cambiano solo endpoint e nome del campo "nome".
# ==============================================================================

SITES = {
    'laboratory': {
        'name_field': 'labName',
        'label': "du laboratoire",
        'titolo': "Laboratoires",
        'list': 'list_laboratories', 'create': 'create_laboratory',
        'update': 'update_laboratory', 'delete': 'delete_laboratory',
    },
    'bakery': {
        'name_field': 'bakeryName',
        'label': "de la boulangerie",
        'titolo': "Boulangeries",
        'list': 'list_bakeries', 'create': 'create_bakery',
        'update': 'update_bakery', 'delete': 'delete_bakery',
    },
}

SITE_FIELDS = ('headChef', 'address', 'postalCode', 'phone', 'email', 'hygieneRating', 'lastInspectionDate')


def site_payload(form, name_field):
    dati = forms.clean(form, name_field, *SITE_FIELDS)
    dati['hygieneRating'] = dati['hygieneRating'].upper()
    dati['capacity'] = form.get('capacity', '').strip()
    dati['isActive'] = parse_bool(form.get('isActive'))
    return dati


def salva_sito(client, tipo, site_id, form):
    """Valida e salva. Restituisce True se il backend ha accettato."""
    conf = SITES[tipo]
    dati = site_payload(form, conf['name_field'])
    errore = forms.validate_site(dati, conf['name_field'], conf['label'])
    if errore:
        flash(errore, 'error')
        return False
    dati['capacity'] = parse_int(dati['capacity'])
    # I campi vuoti non si mandano: il backend terrebbe la stringa vuota
    dati = {k: v for k, v in dati.items() if v not in ('', None)}
    try:
        if site_id:
            getattr(client, conf['update'])(site_id, dati)
        else:
            getattr(client, conf['create'])(dati)
        flash("Informations enregistrées avec succès", 'success')
        return True
    except ApiError as e:
        errore_backend(e, f"SALVATAGGIO {tipo.upper()}", "Erreur lors de l'enregistrement")
        return False


@app.route('/admin/<any(laboratory, bakery):tipo>')
@role_required('admin')
def admin_sites(tipo):
    conf = SITES[tipo]
    siti = []
    try:
        grezzi = getattr(create_client(), conf['list'])()
        siti = [Site.from_dict(s, conf['name_field']) for s in grezzi]
    except ApiError as e:
        errore_backend(e, f"CARICAMENTO {tipo.upper()}", "Impossible de charger la liste")

    q = request.args.get('q', '')
    risultati = listing.search(siti, q, ['name', 'headChef', 'address', 'email'])
    page, per_page = listing.page_args(request.args, app.config['ITEMS_PER_PAGE'])
    pagina = listing.paginate(risultati, page, per_page)
    dettaglio = next((s for s in siti if s.id == request.args.get('view')), None)
    return render_template('admin/sites.html', tipo=tipo, conf=conf, pagina=pagina, q=q, dettaglio=dettaglio)


@app.route('/admin/<any(laboratory, bakery):tipo>/save', methods=['POST'])
@app.route('/admin/<any(laboratory, bakery):tipo>/<site_id>/save', methods=['POST'])
@role_required('admin')
def admin_save_site(tipo, site_id=None):
    salva_sito(create_client(), tipo, site_id, request.form)
    return redirect(url_for('admin_sites', tipo=tipo))


@app.route('/admin/<any(laboratory, bakery):tipo>/<site_id>/delete', methods=['POST'])
@role_required('admin')
def admin_delete_site(tipo, site_id):
    try:
        getattr(create_client(), SITES[tipo]['delete'])(site_id)
        flash("Supprimé avec succès", 'success')
    except ApiError as e:
        errore_backend(e, f"ELIMINAZIONE {tipo.upper()}", "Erreur lors de la suppression")
    return redirect(url_for('admin_sites', tipo=tipo))


# ==============================================================================
# 10. PRODOTTI
# ==============================================================================

def filtri_prodotti(args):
    filtri = {
        'category': args.get('category', 'all'),
        'search': args.get('search', '').strip(),
        'sortBy': args.get('sortBy') or None,
        'sortOrder': args.get('sortOrder') or None,
    }
    for chiave in ('active', 'available'):
        if args.get(chiave) in ('true', 'false'):
            filtri[chiave] = args.get(chiave) == 'true'
    return filtri


def categorie_prodotti(client):
    """Categorie note più quelle che il backend ha già in uso, senza doppioni."""
    try:
        dal_backend = client.product_categories()
    except SessionExpired:
        raise
    except ApiError as e:
        app.logger.error(f"Errore lettura categorie prodotti: {e}")
        dal_backend = []
    categorie = list(forms.PRODUCT_CATEGORIES)
    for c in dal_backend:
        if c and c not in categorie:
            categorie.append(c)
    return categorie


def carica_prodotti(client, filtri, page, per_page):
    """Pagina di prodotti: usa la paginazione del backend se c'è, altrimenti la fa qui."""
    grezzi, paginazione = client.list_products(page=page, limit=per_page, **filtri)
    prodotti = [Product.from_dict(p) for p in grezzi]
    if paginazione:
        return listing.Page(
            prodotti,
            int(paginazione.get('page', page)),
            max(int(paginazione.get('pages', 1)), 1),
            int(paginazione.get('total', len(prodotti))),
            int(paginazione.get('limit', per_page)),
        )
    return listing.paginate(prodotti, page, per_page)


def product_payload(form, files):
    dati = forms.clean(form, 'name', 'description', 'category', 'laboratory', 'notes', 'unitPrice', 'taxRate')
    errore = forms.validate_product(dati)
    if errore:
        raise ValueError(errore)
    dati['unitPrice'] = parse_float(dati['unitPrice'])
    if dati['taxRate'] == '':
        dati.pop('taxRate')
    else:
        dati['taxRate'] = parse_float(dati['taxRate'])
    dati['ingredients'] = parse_ingredients(form.get('ingredients'))
    dati['active'] = parse_bool(form.get('active'))
    dati['isAvailable'] = parse_bool(form.get('isAvailable'))
    immagine = forms.image_to_data_url(files.get('image'))
    if immagine:
        dati['image'] = immagine
    return dati


@app.route('/admin/products')
@role_required('admin')
def admin_products():
    filtri = filtri_prodotti(request.args)
    page, per_page = listing.page_args(request.args, app.config['ITEMS_PER_PAGE'])
    pagina, laboratori = listing.paginate([], 1, per_page), []
    categorie = list(forms.PRODUCT_CATEGORIES)
    client = create_client()
    try:
        pagina = carica_prodotti(client, filtri, page, per_page)
        laboratori = [Site.from_dict(l) for l in client.list_laboratories()]
        categorie = categorie_prodotti(client)
    except ApiError as e:
        errore_backend(e, "CARICAMENTO PRODOTTI", "Impossible de charger les produits")
    modifica = next((p for p in pagina.items if p.id == request.args.get('edit')), None)
    return render_template('admin/products.html', pagina=pagina, filtri=filtri, laboratori=laboratori,
                           categorie=categorie, modifica=modifica)


@app.route('/admin/products/save', methods=['POST'])
@app.route('/admin/products/<product_id>/save', methods=['POST'])
@role_required('admin')
def admin_save_product(product_id=None):
    try:
        dati = product_payload(request.form, request.files)
    except ValueError as e:
        flash(str(e), 'error')
        return redirect(url_for('admin_products'))
    try:
        client = create_client()
        if product_id:
            client.update_product(product_id, dati)
            flash("Produit mis à jour avec succès", 'success')
        else:
            client.create_product(dati)
            flash("Produit créé avec succès", 'success')
    except ApiError as e:
        errore_backend(e, "SALVATAGGIO PRODOTTO", "Erreur lors de l'enregistrement du produit")
    return redirect(url_for('admin_products'))


@app.route('/admin/products/<product_id>/delete', methods=['POST'])
@role_required('admin')
def admin_delete_product(product_id):
    definitivo = parse_bool(request.form.get('permanent'))
    try:
        create_client().delete_product(product_id, permanent=definitivo)
        flash("Produit supprimé définitivement" if definitivo else "Produit désactivé", 'success')
    except ApiError as e:
        errore_backend(e, "ELIMINAZIONE PRODOTTO", "Erreur lors de la suppression du produit")
    return redirect(url_for('admin_products'))


@app.route('/admin/products/export')
@role_required('admin')
def admin_export_products():
    formato = request.args.get('format', 'xlsx')
    try:
        grezzi, _ = create_client().list_products(**filtri_prodotti(request.args))
        output, mimetype, nome_file = export.products_export([Product.from_dict(p) for p in grezzi], formato)
        return send_file(output, mimetype=mimetype, as_attachment=True, download_name=nome_file)
    except ApiError as e:
        errore_backend(e, "EXPORT PRODOTTI", "Erreur lors de l'export des produits")
    except ValueError as e:
        app.logger.error(f"Errore EXPORT PRODOTTI: {e}")
        flash(str(e), 'error')
    return redirect(url_for('admin_products'))


# ==============================================================================
# 11. ADMIN: ORDINI, CONSEGNE, VERIFICA ASSEGNAZIONI
# ==============================================================================

ORDER_SEARCH_FIELDS = ['orderReferenceId', 'bakeryName', 'deliveryUserName', 'address']


@app.route('/admin/orders')
@role_required('admin')
def admin_orders():
    ordini = []
    try:
        ordini = ordina_recenti([Order.from_dict(o) for o in create_client().list_orders()])
    except ApiError as e:
        errore_backend(e, "CARICAMENTO ORDINI", "Impossible de charger les commandes")

    q = request.args.get('q', '')
    stato = request.args.get('status', 'all')
    conteggi = listing.count_by_status(ordini)
    risultati = listing.filter_by_status(listing.search(ordini, q, ORDER_SEARCH_FIELDS), stato)
    page, per_page = listing.page_args(request.args, app.config['ITEMS_PER_PAGE'])
    return render_template('admin/orders.html', pagina=listing.paginate(risultati, page, per_page),
                           q=q, stato=stato, conteggi=conteggi, statuses=order_status.STATUSES)


@app.route('/admin/orders/<order_id>/delete', methods=['POST'])
@role_required('admin')
def admin_delete_order(order_id):
    try:
        create_client().delete_order(order_id)
        flash("Commande supprimée", 'success')
    except ApiError as e:
        errore_backend(e, "ELIMINAZIONE ORDINE", "Erreur lors de la suppression de la commande")
    return redirect(url_for('admin_orders'))


def livreurs(client):
    return [u for u in (User.from_dict(x) for x in client.list_users()) if u.role == 'delivery']


@app.route('/admin/delivery')
@role_required('admin')
def admin_deliveries():
    client = create_client()
    consegne, utenti = [], []
    try:
        consegne = ordina_recenti([Order.from_dict(d) for d in client.list_deliveries()])
        utenti = livreurs(client)
    except ApiError as e:
        errore_backend(e, "CARICAMENTO CONSEGNE", "Impossible de charger les livraisons")

    q = request.args.get('q', '')
    tab = request.args.get('tab', 'all')
    risultati = listing.filter_by_tab(listing.search(consegne, q, ORDER_SEARCH_FIELDS), tab)
    page, per_page = listing.page_args(request.args, app.config['ITEMS_PER_PAGE'])
    return render_template('admin/deliveries.html', pagina=listing.paginate(risultati, page, per_page),
                           q=q, tab=tab, tabs=listing.TAB_STATUSES, livreurs=utenti,
                           stats=listing.delivery_stats(consegne))


@app.route('/admin/delivery/<delivery_id>/assign', methods=['POST'])
@role_required('admin')
def admin_assign_delivery(delivery_id):
    user_id = request.form.get('deliveryUserId', '')
    client = create_client()
    try:
        if user_id == DISPATCH_PENDING or not user_id:
            client.assign_delivery(delivery_id, DISPATCH_PENDING, A_ASSIGNER)
            flash("Livraison remise en dispatch", 'success')
        else:
            scelto = next((u for u in livreurs(client) if u.id == user_id), None)
            if scelto is None:
                flash("Livreur introuvable", 'error')
                return redirect(url_for('admin_deliveries'))
            client.assign_delivery(delivery_id, scelto.id, scelto.full_name)
            flash(f"Livraison assignée à {scelto.full_name}", 'success')
    except ApiError as e:
        errore_backend(e, "ASSEGNAZIONE CONSEGNA", "Erreur lors de l'assignation du livreur")
    return redirect(url_for('admin_deliveries'))


@app.route('/admin/delivery/validation')
@role_required('admin')
def admin_delivery_validation():
    client = create_client()
    problemi, utenti, ordini = [], [], []
    try:
        ordini = [Order.from_dict(o) for o in client.list_orders()]
        utenti = livreurs(client)
        problemi = delivery_checks.validate_assignments(ordini, utenti)
    except ApiError as e:
        errore_backend(e, "VERIFICA ASSEGNAZIONI", "Impossible de valider les assignations")
    return render_template('admin/delivery_validation.html', problemi=problemi,
                           riepilogo=delivery_checks.summarize(problemi),
                           n_ordini=len(ordini), livreurs=utenti)


# ==============================================================================
# 12. ADMIN: RECLAMI
# ==============================================================================

@app.route('/admin/conflicts')
@role_required('admin')
def admin_conflicts():
    ordini = []
    try:
        ordini = ordina_recenti([Order.from_dict(o) for o in create_client().list_conflicts()])
    except ApiError as e:
        errore_backend(e, "CARICAMENTO RECLAMI", "Impossible de charger les réclamations")
    stato = request.args.get('status', 'all')
    if stato != 'all':
        ordini = [o for o in ordini if o.conflictStatus == stato]
    q = request.args.get('q', '')
    ordini = listing.search(ordini, q, ['orderReferenceId', 'bakeryName', 'reclamation.description'])
    return render_template('admin/conflicts.html', ordini=ordini, stato=stato, q=q)


@app.route('/admin/conflicts/<order_id>/review', methods=['POST'])
@role_required('admin')
def admin_review_conflict(order_id):
    attuale = request.form.get('current', CONFLICT_REPORTED)
    if CONFLICT_UNDER_REVIEW not in conflict_next(attuale):
        flash("Cette réclamation ne peut pas être mise en cours d'examen", 'error')
        return redirect(url_for('admin_conflicts'))
    try:
        create_client().update_conflict_status(order_id, CONFLICT_UNDER_REVIEW)
        flash("Réclamation en cours d'examen", 'success')
    except ApiError as e:
        errore_backend(e, "STATO RECLAMO", "Erreur lors de la mise à jour de la réclamation")
    return redirect(url_for('admin_conflicts'))


def discrepanze_modificate(ordine, form):
    """Le discrepanze del reclamo con le quantità ricevute corrette dall'admin."""
    modificate = []
    for i, d in enumerate(ordine.reclamation.discrepancies if ordine.reclamation else []):
        d = asdict(d)
        nuova = parse_int(form.get(f'received_{i}'))
        if nuova is not None and nuova >= 0:
            d['received'] = dict(d['received'], quantity=nuova)
        modificate.append(d)
    return modificate


@app.route('/admin/conflicts/<order_id>', methods=['GET', 'POST'])
@role_required('admin')
def admin_resolve_conflict(order_id):
    client = create_client()
    try:
        ordine = Order.from_dict(client.get_order(order_id))
    except ApiError as e:
        errore_backend(e, "CARICAMENTO RECLAMO", "Impossible de charger la réclamation")
        return redirect(url_for('admin_conflicts'))

    anteprima = None
    if request.method == 'POST':
        risoluzione = request.form.get('resolution', '')
        note = request.form.get('adminNotes', '').strip()
        discrepanze = discrepanze_modificate(ordine, request.form)
        try:
            payload = pricing.build_resolution(
                risoluzione, nome_utente(), note,
                order_products=ordine.products, discrepancies=discrepanze,
            )
        except ValueError as e:
            flash(str(e), 'error')
            return redirect(url_for('admin_resolve_conflict', order_id=order_id))

        if request.form.get('action') == 'preview':
            anteprima = payload
        else:
            try:
                client.resolve_conflict(order_id, payload)
                flash(f"Réclamation résolue : {RESOLUTION_LABELS[risoluzione]}", 'success')
                return redirect(url_for('admin_conflicts'))
            except ApiError as e:
                errore_backend(e, "RISOLUZIONE RECLAMO", "Erreur lors de la résolution de la réclamation")

    return render_template('admin/conflict_resolve.html', ordine=ordine, anteprima=anteprima,
                           resolutions=RESOLUTIONS, resolution_labels=RESOLUTION_LABELS,
                           update_order=UPDATE_ORDER)


# ==============================================================================
# 13. ANNUNCI (admin li gestisce, laboratori e livreurs li leggono)
# ==============================================================================

ANNOUNCEMENT_ROLES = ('admin', 'laboratory', 'delivery')


def announcement_payload(form):
    dati = forms.clean(form, 'title', 'content', 'priority', 'category')
    dati['isPinned'] = parse_bool(form.get('isPinned'))
    return dati


@app.route('/announcements')
@role_required(*ANNOUNCEMENT_ROLES)
def announcements():
    filtri = {k: request.args.get(k, 'all') for k in ('priority', 'category')}
    annunci = []
    try:
        annunci = [Announcement.from_dict(a) for a in create_client().list_announcements(**filtri)]
    except ApiError as e:
        errore_backend(e, "CARICAMENTO ANNUNCI", "Impossible de charger les annonces")
    q = request.args.get('q', '')
    annunci = listing.search(annunci, q, ['title', 'content', 'authorName'])
    # In alto quelli fissati, poi i più recenti
    annunci.sort(key=lambda a: a.createdAt or '', reverse=True)
    annunci.sort(key=lambda a: not a.isPinned)
    modifica = next((a for a in annunci if a.id == request.args.get('edit')), None)
    return render_template('announcements.html', annunci=annunci, filtri=filtri, q=q, modifica=modifica,
                           priorities=forms.PRIORITIES, categories=forms.CATEGORIES)


@app.route('/announcements/save', methods=['POST'])
@app.route('/announcements/<announcement_id>/save', methods=['POST'])
@role_required('admin')
def save_announcement(announcement_id=None):
    dati = announcement_payload(request.form)
    errore = forms.validate_announcement(dati)
    if errore:
        flash(errore, 'error')
        return redirect(url_for('announcements'))
    info = utente()
    try:
        client = create_client()
        if announcement_id:
            client.update_announcement(announcement_id, dati)
            flash("Annonce mise à jour", 'success')
        else:
            dati.update({'authorId': info.get('_id'), 'authorName': nome_utente(info)})
            client.create_announcement(dati)
            flash("Annonce publiée", 'success')
    except ApiError as e:
        errore_backend(e, "SALVATAGGIO ANNUNCIO", "Erreur lors de l'enregistrement de l'annonce")
    return redirect(url_for('announcements'))


@app.route('/announcements/<announcement_id>/pin', methods=['POST'])
@role_required('admin')
def pin_announcement(announcement_id):
    fissato = parse_bool(request.form.get('isPinned'))
    try:
        create_client().update_announcement(announcement_id, {'isPinned': fissato})
        flash("Annonce épinglée" if fissato else "Annonce désépinglée", 'success')
    except ApiError as e:
        errore_backend(e, "PIN ANNUNCIO", "Erreur lors de la mise à jour de l'annonce")
    return redirect(url_for('announcements'))


@app.route('/announcements/<announcement_id>/delete', methods=['POST'])
@role_required('admin')
def delete_announcement(announcement_id):
    try:
        create_client().delete_announcement(announcement_id)
        flash("Annonce supprimée", 'success')
    except ApiError as e:
        errore_backend(e, "ELIMINAZIONE ANNUNCIO", "Erreur lors de la suppression de l'annonce")
    return redirect(url_for('announcements'))


@app.route('/announcements/<announcement_id>/comments', methods=['POST'])
@role_required(*ANNOUNCEMENT_ROLES)
def comment_announcement(announcement_id):
    testo = request.form.get('content', '').strip()
    if not testo:
        flash("Le commentaire ne peut pas être vide", 'error')
        return redirect(url_for('announcements'))
    info = utente()
    try:
        create_client().add_comment(announcement_id, testo, info.get('_id'), nome_utente(info), info.get('role'))
        flash("Commentaire ajouté", 'success')
    except ApiError as e:
        errore_backend(e, "COMMENTO ANNUNCIO", "Erreur lors de l'ajout du commentaire")
    return redirect(url_for('announcements'))


@app.route('/announcements/<announcement_id>/comments/<comment_id>/delete', methods=['POST'])
@role_required('admin')
def delete_comment(announcement_id, comment_id):
    try:
        create_client().delete_comment(announcement_id, comment_id)
        flash("Commentaire supprimé", 'success')
    except ApiError as e:
        errore_backend(e, "ELIMINAZIONE COMMENTO", "Erreur lors de la suppression du commentaire")
    return redirect(url_for('announcements'))


@app.route('/announcements/<announcement_id>/read', methods=['POST'])
@role_required(*ANNOUNCEMENT_ROLES)
def read_announcement(announcement_id):
    try:
        create_client().mark_announcement_read(announcement_id, utente().get('_id'))
    except ApiError as e:
        errore_backend(e, "LETTURA ANNUNCIO", "Erreur lors de la mise à jour de l'annonce")
    return redirect(url_for('announcements'))


# ==============================================================================
# 14. PANETTERIA
# ==============================================================================

def ordini_panetteria(client):
    nome = (utente() or {}).get('bakeryName')
    ordini = [Order.from_dict(o) for o in client.list_orders()]
    if nome:
        ordini = [o for o in ordini if o.bakeryName == nome]
    return ordina_recenti(ordini)


@app.route('/bakery/dashboard')
@role_required('bakery')
def bakery_dashboard():
    ordini = []
    try:
        ordini = ordini_panetteria(create_client())
    except ApiError as e:
        errore_backend(e, "DASHBOARD PANETTERIA", "Impossible de charger vos commandes")
    return render_template('bakery/dashboard.html', conteggi=listing.count_by_status(ordini),
                           recenti=ordini[:5], statuses=order_status.STATUSES,
                           in_conflitto=sum(1 for o in ordini if o.hasConflict))


@app.route('/bakery/orders')
@role_required('bakery')
def bakery_orders():
    ordini = []
    try:
        ordini = ordini_panetteria(create_client())
    except ApiError as e:
        errore_backend(e, "CARICAMENTO ORDINI PANETTERIA", "Impossible de charger vos commandes")
    q = request.args.get('q', '')
    tab = request.args.get('tab', 'all')
    risultati = listing.filter_by_tab(listing.search(ordini, q, ['orderReferenceId', 'laboratory', 'address']), tab)
    page, per_page = listing.page_args(request.args, app.config['ITEMS_PER_PAGE'])
    return render_template('bakery/orders.html', pagina=listing.paginate(risultati, page, per_page),
                           q=q, tab=tab, tabs=listing.TAB_STATUSES, conteggi=listing.count_by_status(ordini))


# --- Nuovo ordine: laboratorio -> prodotti -> dettagli, il carrello sta in sessione ---

def carrello():
    return session.get('carrello') or {'laboratory': None, 'products': []}


def salva_carrello(dati):
    session['carrello'] = dati


def order_reference(numero_ordini):
    return f"CMD-{datetime.now().year}-{numero_ordini + 1:03d}"


def order_identifier():
    return f"ORD-{int(time.time() * 1000)}-{random.randint(0, 999)}"


@app.route('/bakery/orders/new')
@role_required('bakery')
def bakery_new_order():
    client = create_client()
    corrente = carrello()
    if request.args.get('laboratory'):
        corrente = {'laboratory': request.args['laboratory'], 'products': []}
        salva_carrello(corrente)

    laboratori, prodotti = [], []
    try:
        laboratori = [Site.from_dict(l) for l in client.list_laboratories()]
        if corrente['laboratory']:
            grezzi, _ = client.list_products(active=True, available=True)
            prodotti = [p for p in (Product.from_dict(x) for x in grezzi)
                        if not p.laboratory or p.laboratory == corrente['laboratory']]
    except ApiError as e:
        errore_backend(e, "NUOVO ORDINE", "Impossible de charger les laboratoires ou les produits")

    prodotti = listing.search(prodotti, request.args.get('q', ''), ['name', 'category', 'description'])
    info = utente()
    return render_template('bakery/order_new.html', carrello=corrente, laboratori=laboratori, prodotti=prodotti,
                           totali=pricing.compute_totals(corrente['products']), q=request.args.get('q', ''),
                           bakery_name=info.get('bakeryName') or '',
                           oggi=datetime.now().strftime('%Y-%m-%d'))


@app.route('/bakery/orders/new/add', methods=['POST'])
@role_required('bakery')
def bakery_add_to_order():
    corrente = carrello()
    quantita = parse_int(request.form.get('quantity'), default=1)
    if not corrente['laboratory'] or quantita is None or quantita < 1:
        flash("Veuillez sélectionner un laboratoire et une quantité valide.", 'error')
        return redirect(url_for('bakery_new_order'))
    try:
        prodotto = Product.from_dict(create_client().get_product(request.form.get('product_id')))
    except ApiError as e:
        errore_backend(e, "AGGIUNTA PRODOTTO", "Impossible d'ajouter le produit")
        return redirect(url_for('bakery_new_order'))
    prodotto.laboratory = prodotto.laboratory or corrente['laboratory']
    corrente['products'] = pricing.add_product(corrente['products'], prodotto, quantita)
    salva_carrello(corrente)
    return redirect(url_for('bakery_new_order'))


@app.route('/bakery/orders/new/quantity', methods=['POST'])
@role_required('bakery')
def bakery_set_quantity():
    corrente = carrello()
    indice = parse_int(request.form.get('index'), default=-1)
    corrente['products'] = pricing.set_quantity(corrente['products'], indice,
                                                parse_int(request.form.get('quantity'), default=0))
    salva_carrello(corrente)
    return redirect(url_for('bakery_new_order'))


@app.route('/bakery/orders/new/reset', methods=['POST'])
@role_required('bakery')
def bakery_reset_order():
    session.pop('carrello', None)
    return redirect(url_for('bakery_new_order'))


@app.route('/bakery/orders/new/submit', methods=['POST'])
@role_required('bakery')
def bakery_submit_order():
    corrente = carrello()
    dati = forms.clean(request.form, 'bakeryName', 'scheduledDate', 'address', 'notes')
    errore = forms.validate_order_form(corrente['laboratory'], corrente['products'],
                                       dati['bakeryName'], dati['scheduledDate'], dati['address'])
    data_consegna = listing.parse_date(dati['scheduledDate'])
    if not errore and data_consegna is None:
        errore = "Veuillez sélectionner une date de livraison."
    if errore:
        flash(errore, 'error')
        return redirect(url_for('bakery_new_order'))

    client = create_client()
    try:
        numero_ordini = len(client.list_orders())
        data_iso = datetime.combine(data_consegna, datetime.min.time()).isoformat() + 'Z'
        righe = pricing.compute_lines(corrente['products'])
        payload = {
            'orderId': order_identifier(),
            'orderReferenceId': order_reference(numero_ordini),
            'bakeryName': dati['bakeryName'],
            'laboratory': corrente['laboratory'],
            'deliveryUserId': DISPATCH_PENDING,
            'deliveryUserName': A_ASSIGNER,
            'scheduledDate': data_iso,
            'actualDeliveryDate': data_iso,
            'status': PENDING,
            'notes': dati['notes'],
            'address': dati['address'],
            'products': righe,
            'isDispatched': True,
        }
        payload.update(pricing.compute_totals(righe))
        creato = client.create_order(payload) or payload
    except ApiError as e:
        errore_backend(e, "CREAZIONE ORDINE", "Impossible de créer la commande. Veuillez réessayer.")
        return redirect(url_for('bakery_new_order'))

    session.pop('carrello', None)
    flash(f"La commande {creato.get('orderReferenceId', payload['orderReferenceId'])} a été créée avec "
          f"succès pour le laboratoire {corrente['laboratory']}", 'success')
    return redirect(url_for('bakery_orders'))


# --- Reclami ---

@app.route('/bakery/reclamations')
@role_required('bakery')
def bakery_reclamations():
    client = create_client()
    consegnati, reclami = [], []
    try:
        ordini = ordini_panetteria(client)
        consegnati = [o for o in ordini if o.status == DELIVERED and not o.hasConflict]
        nome = utente().get('bakeryName')
        reclami = [Order.from_dict(o) for o in client.list_conflicts()]
        if nome:
            reclami = [o for o in reclami if o.bakeryName == nome]
    except ApiError as e:
        errore_backend(e, "CARICAMENTO RECLAMI PANETTERIA", "Impossible de charger vos réclamations")
    stato = request.args.get('status', 'all')
    if stato != 'all':
        reclami = [o for o in reclami if o.conflictStatus == stato]
    return render_template('bakery/reclamations.html', consegnati=consegnati, reclami=ordina_recenti(reclami),
                           stato=stato)


@app.route('/bakery/reclamations/<order_id>/new', methods=['GET', 'POST'])
@role_required('bakery')
def bakery_report_conflict(order_id):
    client = create_client()
    try:
        ordine = Order.from_dict(client.get_order(order_id))
    except ApiError as e:
        errore_backend(e, "CARICAMENTO ORDINE", "Impossible de charger la commande")
        return redirect(url_for('bakery_reclamations'))

    if request.method == 'POST':
        descrizione = request.form.get('description', '').strip()
        discrepanze = []
        for i, riga in enumerate(ordine.products):
            tipo = request.form.get(f'issue_{i}', '')
            if not tipo:
                continue
            ricevuti = parse_int(request.form.get(f'received_{i}'), default=riga.quantity)
            discrepanze.append(pricing.build_discrepancy(
                riga, ricevuti, tipo,
                notes=request.form.get(f'notes_{i}', '').strip(),
                condition=request.form.get(f'condition_{i}', '').strip(),
            ))
        errore = forms.validate_reclamation(descrizione, discrepanze)
        if errore:
            flash(errore, 'error')
        else:
            try:
                client.report_conflict(order_id, {
                    'reportedBy': ordine.bakeryName or nome_utente(),
                    'description': descrizione,
                    'discrepancies': discrepanze,
                })
                flash(f"Réclamation envoyée pour la commande {ordine.orderReferenceId}", 'success')
                return redirect(url_for('bakery_reclamations'))
            except ApiError as e:
                errore_backend(e, "SEGNALAZIONE RECLAMO", "Erreur lors de l'envoi de la réclamation")

    return render_template('bakery/reclamation_new.html', ordine=ordine, issue_types=forms.ISSUE_TYPES)


@app.route('/bakery/products')
@role_required('bakery')
def bakery_products():
    filtri = filtri_prodotti(request.args)
    filtri.update({'active': True, 'available': True})
    page, per_page = listing.page_args(request.args, app.config['ITEMS_PER_PAGE'])
    pagina, categorie = listing.paginate([], 1, per_page), list(forms.PRODUCT_CATEGORIES)
    client = create_client()
    try:
        pagina = carica_prodotti(client, filtri, page, per_page)
        categorie = categorie_prodotti(client)
    except ApiError as e:
        errore_backend(e, "CATALOGO PANETTERIA", "Impossible de charger les produits")
    return render_template('bakery/products.html', pagina=pagina, filtri=filtri, categorie=categorie)


@app.route('/bakery/information', methods=['GET', 'POST'])
@role_required('bakery')
def bakery_information():
    client = create_client()
    sito = None
    try:
        panetterie = [Site.from_dict(b, 'bakeryName') for b in client.list_bakeries()]
        nome = utente().get('bakeryName')
        sito = next((b for b in panetterie if b.name == nome), panetterie[0] if panetterie else None)
    except ApiError as e:
        errore_backend(e, "INFO PANETTERIA", "Impossible de charger les informations de la boulangerie")

    if request.method == 'POST':
        if salva_sito(client, 'bakery', sito.id if sito else None, request.form):
            return redirect(url_for('bakery_information'))

    return render_template('site_information.html', sito=sito, name_field='bakeryName',
                           titolo="Informations de la boulangerie", azione=url_for('bakery_information'))


# ==============================================================================
# 15. LABORATORIO
# ==============================================================================

def ordini_laboratorio(client):
    nome = utente().get('labName')
    ordini = [Order.from_dict(o) for o in client.list_orders()]
    if nome:
        ordini = [o for o in ordini if nome in o.laboratories]
    return ordina_recenti(ordini)


def ordini_filtrati_laboratorio(client, args):
    ordini = ordini_laboratorio(client)
    ordini = listing.search(ordini, args.get('q', ''), ['orderReferenceId', 'bakeryName', 'address'])
    giorno = listing.parse_date(args.get('date'))
    return listing.orders_for_date(ordini, giorno), giorno


@app.route('/laboratory/dashboard')
@role_required('laboratory')
def laboratory_dashboard():
    ordini, giorno = [], None
    try:
        ordini, giorno = ordini_filtrati_laboratorio(create_client(), request.args)
    except ApiError as e:
        errore_backend(e, "DASHBOARD LABORATORIO", "Impossible de charger les commandes")
    lab = utente().get('labName')
    da_produrre = [o for o in ordini if o.status == PENDING]
    page, per_page = listing.page_args(request.args, app.config['ITEMS_PER_PAGE'])
    return render_template('laboratory/dashboard.html', pagina=listing.paginate(ordini, page, per_page),
                           conteggi=listing.count_by_status(ordini), q=request.args.get('q', ''),
                           giorno=giorno, totali=listing.product_totals(da_produrre, lab),
                           matrice=export.production_matrix(ordini, lab), READY=READY_FOR_DELIVERY)


@app.route('/laboratory/orders/ready', methods=['POST'])
@role_required('laboratory')
def laboratory_bulk_ready():
    selezionati = request.form.getlist('order_ids')
    if not selezionati:
        flash("Aucune commande sélectionnée", 'error')
        return redirect(url_for('laboratory_dashboard'))
    client = create_client()
    aggiornati, saltati = 0, 0
    try:
        stati = {o.id: o.status for o in ordini_laboratorio(client)}
        for order_id in selezionati:
            if not can_transition(stati.get(order_id), READY_FOR_DELIVERY):
                saltati += 1
                continue
            client.update_order_status(order_id, READY_FOR_DELIVERY)
            aggiornati += 1
    except ApiError as e:
        errore_backend(e, "AGGIORNAMENTO MULTIPLO", "Erreur lors de la mise à jour des commandes")
    if aggiornati:
        flash(f"{aggiornati} commande(s) marquée(s) prête(s) à livrer", 'success')
    if saltati:
        flash(f"{saltati} commande(s) ignorée(s) : statut incompatible", 'error')
    return redirect(url_for('laboratory_dashboard'))


@app.route('/laboratory/export/<formato>')
@role_required('laboratory')
def laboratory_export(formato):
    lab = utente().get('labName')
    try:
        ordini, giorno = ordini_filtrati_laboratorio(create_client(), request.args)
        if formato == 'pdf':
            contenuto = export.production_pdf(ordini, lab_name=lab, laboratory=lab, giorno=giorno)
            return send_file(io.BytesIO(contenuto), mimetype='application/pdf', as_attachment=False,
                             download_name=export.production_filename(lab, 'pdf'))
        if formato == 'excel':
            output = export.production_excel(ordini, lab_name=lab, laboratory=lab)
            return send_file(output, mimetype=export.XLSX_MIMETYPE, as_attachment=True,
                             download_name=export.production_filename(lab, 'xlsx'))
        flash("Format d'export inconnu", 'error')
    except ApiError as e:
        errore_backend(e, "EXPORT PRODUZIONE", "Erreur lors de l'export de la production")
    except Exception as e:
        app.logger.error(f"Errore creazione {formato.upper()} produzione: {e}")
        flash("Erreur lors de la génération du fichier", 'error')
    return redirect(url_for('laboratory_dashboard'))


@app.route('/laboratory/production')
@role_required('laboratory')
def laboratory_production():
    ordini = []
    try:
        ordini = ordini_laboratorio(create_client())
    except ApiError as e:
        errore_backend(e, "PRODUZIONE LABORATORIO", "Impossible de charger la production")
    tab = request.args.get('tab', 'all')
    q = request.args.get('q', '')
    risultati = listing.filter_by_tab(listing.search(ordini, q, ['orderReferenceId', 'bakeryName']), tab)
    page, per_page = listing.page_args(request.args, app.config['ITEMS_PER_PAGE'])
    return render_template('laboratory/production.html', pagina=listing.paginate(risultati, page, per_page),
                           tab=tab, tabs=listing.TAB_STATUSES, q=q, conteggi=listing.count_by_status(ordini))


@app.route('/laboratory/information', methods=['GET', 'POST'])
@role_required('laboratory')
def laboratory_information():
    client = create_client()
    if request.method == 'POST':
        dati = site_payload(request.form, 'labName')
        errore = forms.validate_site(dati, 'labName')
        if errore:
            flash(errore, 'error')
        else:
            dati['capacity'] = parse_int(dati['capacity'])
            try:
                client.update_my_laboratory({k: v for k, v in dati.items() if v not in ('', None)})
                flash("Informations du laboratoire mises à jour", 'success')
                return redirect(url_for('laboratory_information'))
            except ApiError as e:
                errore_backend(e, "AGGIORNAMENTO LABORATORIO", "Erreur lors de la mise à jour du laboratoire")

    sito = None
    try:
        sito = Site.from_dict(client.my_laboratory())
    except ApiError as e:
        errore_backend(e, "INFO LABORATORIO", "Impossible de charger les informations du laboratoire")
    return render_template('site_information.html', sito=sito, name_field='labName',
                           titolo="Informations du laboratoire", azione=url_for('laboratory_information'))


# ==============================================================================
# 16. LIVREUR
# ==============================================================================

@app.route('/delivery/dashboard')
@role_required('delivery')
def delivery_dashboard():
    client = create_client()
    mie, disponibili = [], []
    try:
        mie = [Order.from_dict(d) for d in client.deliveries_by_user(utente().get('_id'))]
        disponibili = [o for o in (Order.from_dict(d) for d in client.available_orders()) if o.is_dispatch_pending]
    except ApiError as e:
        errore_backend(e, "DASHBOARD LIVREUR", "Impossible de charger vos livraisons")
    tab = request.args.get('tab', 'all')
    q = request.args.get('q', '')
    filtrate = listing.filter_by_tab(listing.search(mie, q, ORDER_SEARCH_FIELDS), tab)
    return render_template('delivery/dashboard.html', mie=ordina_recenti(filtrate), disponibili=disponibili,
                           stats=listing.delivery_stats(mie), tab=tab, tabs=listing.TAB_STATUSES, q=q,
                           DELIVERING=DELIVERING, DELIVERED=DELIVERED)


@app.route('/delivery/<order_id>/claim', methods=['POST'])
@role_required('delivery')
def delivery_claim(order_id):
    info = utente()
    try:
        create_client().claim_order(order_id, info.get('_id'), nome_utente(info))
        flash("Commande prise en charge", 'success')
    except ApiError as e:
        errore_backend(e, "PRESA IN CARICO", "Impossible de prendre en charge la commande")
    return redirect(url_for('delivery_dashboard'))


@app.route('/delivery/<order_id>/release', methods=['POST'])
@role_required('delivery')
def delivery_release(order_id):
    try:
        create_client().release_order(order_id, utente().get('_id'))
        flash("Commande remise en dispatch", 'success')
    except ApiError as e:
        errore_backend(e, "RILASCIO ORDINE", "Impossible de libérer la commande")
    return redirect(url_for('delivery_dashboard'))


@app.route('/delivery/<order_id>/pickup', methods=['POST'])
@role_required('delivery')
def delivery_pickup(order_id):
    client = create_client()
    attuale = order_status.normalize(request.form.get('current'))
    # Una consegna pronta passa prima da DISPATCHED: la tabella non ha READY -> DELIVERING
    if attuale == READY_FOR_DELIVERY:
        if not cambia_stato(client, order_id, attuale, DISPATCHED, consegna=True):
            return redirect(url_for('delivery_dashboard'))
        attuale = DISPATCHED
    cambia_stato(client, order_id, attuale, DELIVERING, consegna=True)
    return redirect(url_for('delivery_dashboard'))


@app.route('/delivery/<order_id>/deliver', methods=['POST'])
@role_required('delivery')
def delivery_complete(order_id):
    if not can_transition(request.form.get('current'), DELIVERED):
        flash("Transition non autorisée", 'error')
        return redirect(url_for('delivery_dashboard'))
    try:
        create_client().complete_delivery(order_id, request.form.get('notes') or None)
        flash("Livraison effectuée", 'success')
    except ApiError as e:
        errore_backend(e, "CONSEGNA", "Erreur lors de la validation de la livraison")
    return redirect(url_for('delivery_dashboard'))


@app.route('/delivery/routes')
@role_required('delivery')
def delivery_routes():
    giri = []
    try:
        consegne = [Order.from_dict(d) for d in create_client().deliveries_by_user(utente().get('_id'))]
        giri = listing.group_routes([c for c in consegne if order_status.normalize(c.status) != order_status.CANCELLED])
    except ApiError as e:
        errore_backend(e, "GIRI CONSEGNA", "Impossible de charger vos tournées")
    return render_template('delivery/routes.html', giri=giri)


# ==============================================================================
# 17. PROXY API CONSEGNE (JSON)
# ==============================================================================

def client_proxy():
    """Il proxy non usa la sessione: inoltra il token della richiesta, se c'è."""
    token = request.headers.get('Authorization', '').replace('Bearer ', '', 1).strip() or None
    return ApiClient(app.config['API_BASE_URL'], token=token, timeout=app.config['API_TIMEOUT'])


@app.route('/api/deliveries/<delivery_id>/status', methods=['PUT'])
def proxy_delivery_status(delivery_id):
    dati = request.get_json(silent=True) or {}
    url = f"{app.config['EXTERNAL_DELIVERIES_API_URL'].rstrip('/')}/{delivery_id}/status"
    app.logger.info(f"Proxy PUT {url} status={dati.get('status')}")
    try:
        risposta = client_proxy().send('PUT', url, json={'status': dati.get('status'), 'notes': dati.get('notes')})
        if not risposta.ok:
            app.logger.error(f"Errore aggiornamento stato su API esterna: {risposta.status_code}")
            return jsonify({"error": "Failed to update delivery status on external API"}), risposta.status_code
        return jsonify(risposta.json())
    except (BackendUnavailable, ValueError) as e:
        app.logger.error(f"Errore proxy /api/deliveries/{delivery_id}/status: {e}")
        return jsonify({"error": "Internal Server Error"}), 500


@app.route('/api/deliveries/stats')
def proxy_delivery_stats():
    url = app.config['EXTERNAL_DELIVERIES_API_URL']
    try:
        risposta = client_proxy().send('GET', url)
        if not risposta.ok:
            app.logger.error(f"Errore lettura consegne per statistiche: {risposta.status_code}")
            return jsonify({"error": "Failed to fetch deliveries for stats from external API"}), risposta.status_code
        consegne = risposta.json()
    except (BackendUnavailable, ValueError) as e:
        app.logger.error(f"Errore proxy /api/deliveries/stats: {e}")
        return jsonify({"error": "Internal Server Error"}), 500
    if isinstance(consegne, dict):
        consegne = consegne.get('data') or []
    stats = listing.delivery_stats(consegne)
    return jsonify({k: stats[k] for k in ('total', 'ready', 'inTransit', 'delivered')})


# ==============================================================================
# 18. AVVIO
# ==============================================================================
if __name__ == '__main__':
    app.run(debug=parse_bool(os.getenv('FLASK_DEBUG')), port=parse_int(os.getenv('PORT'), default=3000))
