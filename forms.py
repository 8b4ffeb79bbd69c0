import re
import math
import base64

from models import ROLES

EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
PHONE_RE = re.compile(r'^(\+?\d{1,3}[- ]?)?\d{9,15}$')
POSTAL_CODE_RE = re.compile(r'^\d{5}$')

HYGIENE_RATINGS = ("A", "B", "C", "D", "E")
PRIORITIES = ("low", "medium", "high", "urgent")
CATEGORIES = ("general", "delivery", "system", "maintenance")
PRODUCT_CATEGORIES = ("bread", "pastry", "cake", "viennoiserie", "sandwich", "dessert", "general")
ISSUE_TYPES = ("QUANTITY_MISMATCH", "QUALITY_ISSUE", "WRONG_PRODUCT", "DAMAGED", "EXPIRED", "MISSING", "OTHER")

MAX_IMAGE_BYTES = 2 * 1024 * 1024


# ==============================================================================
# PARSING DEI CAMPI
# ==============================================================================

def parse_float(valore, default=0.0):
    """Accetta anche la virgola come separatore decimale ('1,20' -> 1.2)."""
    if valore is None:
        return default
    try:
        return float(str(valore).strip().replace(',', '.'))
    except ValueError:
        return default


def parse_int(valore, default=None):
    if valore is None or str(valore).strip() == '':
        return default
    try:
        return int(str(valore).strip())
    except ValueError:
        return default


def parse_bool(valore):
    return str(valore).strip().lower() in ('1', 'true', 'on', 'yes', 'oui')


def parse_ingredients(testo):
    """'farine, eau , sel' -> ['farine', 'eau', 'sel']"""
    if not testo:
        return []
    return [i.strip() for i in str(testo).split(',') if i.strip()]


def clean(form, *campi):
    """Dict dei soli campi richiesti, con gli spazi tolti."""
    return {c: (form.get(c) or '').strip() for c in campi}


def image_to_data_url(file_storage):
    """
    Converte il file caricato in un data URL base64 (come fa il browser con
    FileReader.readAsDataURL). Nessun file -> None.
    """
    if file_storage is None or not getattr(file_storage, 'filename', ''):
        return None
    contenuto = file_storage.read()
    if not contenuto:
        return None
    if len(contenuto) > MAX_IMAGE_BYTES:
        raise ValueError("L'image ne doit pas dépasser 2 Mo.")
    mimetype = file_storage.mimetype or 'application/octet-stream'
    if not mimetype.startswith('image/'):
        raise ValueError("Le fichier doit être une image.")
    codificato = base64.b64encode(contenuto).decode('ascii')
    return f"data:{mimetype};base64,{codificato}"


# ==============================================================================
# VALIDAZIONE
# Ogni funzione restituisce il primo messaggio d'errore, oppure None.
# ==============================================================================

def validate_site(data, name_field='labName', label="du laboratoire"):
    if not (data.get(name_field) or '').strip():
        return f"Le nom {label} est obligatoire."
    email = (data.get('email') or '').strip()
    if email and not EMAIL_RE.match(email):
        return "L'adresse email n'est pas valide."
    phone = (data.get('phone') or '').strip()
    if phone and not PHONE_RE.match(phone):
        return "Numéro de téléphone invalide."
    postal = (data.get('postalCode') or '').strip()
    if postal and not POSTAL_CODE_RE.match(postal):
        return "Le code postal doit contenir 5 chiffres."
    capacity = data.get('capacity')
    if capacity not in (None, ''):
        capacity = parse_int(capacity)
        if capacity is None or capacity < 1:
            return "La capacité doit être supérieure à 0."
    rating = (data.get('hygieneRating') or '').strip()
    if rating and rating.upper() not in HYGIENE_RATINGS:
        return "La note d'hygiène doit être comprise entre A et E."
    return None


def validate_user(data, creating=True):
    if not (data.get('firstName') or data.get('name') or '').strip():
        return "Le nom est obligatoire."
    email = (data.get('email') or '').strip()
    if not email:
        return "L'email est obligatoire."
    if not EMAIL_RE.match(email):
        return "L'adresse email n'est pas valide."
    role = (data.get('role') or '').strip().lower()
    if role not in ROLES:
        return "Le rôle sélectionné n'est pas valide."
    if creating and len(data.get('password') or '') < 6:
        return "Le mot de passe doit contenir au moins 6 caractères."
    return None


def validate_product(data):
    if not (data.get('name') or '').strip():
        return "Le nom du produit est obligatoire."
    prezzo = parse_float(data.get('unitPrice'), default=None)
    if prezzo is None or not math.isfinite(prezzo) or prezzo < 0:
        return "Le prix unitaire doit être un nombre positif."
    tax = data.get('taxRate')
    if tax not in (None, ''):
        tax = parse_float(tax, default=None)
        if tax is None or not math.isfinite(tax) or tax < 0 or tax > 1:
            return "Le taux de TVA doit être compris entre 0 et 1."
    return None


def validate_announcement(data):
    if not (data.get('title') or '').strip():
        return "Le titre est obligatoire."
    if not (data.get('content') or '').strip():
        return "Le contenu est obligatoire."
    if data.get('priority') and data['priority'] not in PRIORITIES:
        return "Priorité invalide."
    if data.get('category') and data['category'] not in CATEGORIES:
        return "Catégorie invalide."
    return None


def validate_order_form(laboratory, products, bakery_name, scheduled_date, address):
    if not laboratory:
        return "Veuillez sélectionner un laboratoire."
    if not products:
        return "Veuillez ajouter au moins un produit à la commande."
    if not (bakery_name or '').strip():
        return "Veuillez saisir le nom de la boulangerie."
    if not scheduled_date:
        return "Veuillez sélectionner une date de livraison."
    if not (address or '').strip():
        return "Veuillez saisir une adresse de livraison."
    return None


def validate_reclamation(description, discrepancies):
    if not (description or '').strip() or not discrepancies:
        return "Veuillez remplir tous les champs obligatoires."
    for d in discrepancies:
        if not d.get('productName'):
            return "Chaque écart doit indiquer un produit."
        if d.get('issueType') not in ISSUE_TYPES:
            return "Type de problème invalide."
    return None


def validate_password_change(current, new, confirm):
    if not current or not new:
        return "Veuillez remplir tous les champs."
    if len(new) < 6:
        return "Le mot de passe doit contenir au moins 6 caractères."
    if new != confirm:
        return "Les mots de passe ne correspondent pas."
    return None
