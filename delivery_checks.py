"""
Controllo delle assegnazioni dei livreurs sugli ordini.

Per ogni ordine assegnato verifica che il livreur esista tra gli utenti con
ruolo 'delivery', che sia attivo e che il nome salvato sull'ordine
corrisponda. Gli ordini ancora da assegnare (dispatch) vengono saltati.
"""
from dataclasses import dataclass

from models import DISPATCH_PENDING

INVALID_USER = "INVALID_USER"
INACTIVE_USER = "INACTIVE_USER"
MISSING_USER = "MISSING_USER"
MISMATCH = "MISMATCH"

HIGH = "HIGH"
MEDIUM = "MEDIUM"
LOW = "LOW"

# ID di prova finiti negli ordini prima che esistessero gli utenti veri
HARDCODED_IDS = {"1", "2", "3", "6", "7", "8"}


@dataclass
class ValidationIssue:
    orderId: str
    orderReference: str
    issueType: str
    description: str
    severity: str
    deliveryUserId: str
    deliveryUserName: str


def _full_name(user):
    return f"{user.firstName} {user.lastName}".strip() or (user.name or '')


def validate_assignments(orders, delivery_users):
    issues = []

    for order in orders:
        user_id = (order.deliveryUserId or '').strip()
        if not user_id or user_id == DISPATCH_PENDING:
            continue

        def issue(tipo, descrizione, gravita):
            issues.append(ValidationIssue(
                orderId=order.id,
                orderReference=order.orderReferenceId,
                issueType=tipo,
                description=descrizione,
                severity=gravita,
                deliveryUserId=user_id,
                deliveryUserName=order.deliveryUserName or '',
            ))

        assegnato = next(
            (u for u in delivery_users if u.id == user_id or u.email == user_id),
            None,
        )

        if assegnato is None:
            if user_id in HARDCODED_IDS:
                issue(INVALID_USER,
                      f'ID de livreur "{user_id}" est codé en dur et n\'existe pas dans la base de données',
                      HIGH)
            elif '@' in user_id:
                issue(MISSING_USER, f'Aucun livreur trouvé avec l\'email "{user_id}"', HIGH)
            else:
                issue(MISSING_USER, f'Livreur avec ID "{user_id}" introuvable dans la base de données', HIGH)
            continue

        nome_atteso = _full_name(assegnato)
        if not assegnato.isActive:
            issue(INACTIVE_USER, f'Livreur "{nome_atteso}" est inactif', MEDIUM)
        if order.deliveryUserName != nome_atteso:
            issue(MISMATCH,
                  f'Nom du livreur ne correspond pas: "{order.deliveryUserName}" vs "{nome_atteso}"',
                  LOW)

    return issues


def summarize(issues):
    riepilogo = {HIGH: 0, MEDIUM: 0, LOW: 0, 'total': len(issues)}
    for i in issues:
        riepilogo[i.severity] = riepilogo.get(i.severity, 0) + 1
    return riepilogo
