"""
Tabella degli stati ordine/consegna, unica per tutte le pagine.

La transizione vera la fa (e la valida) il backend con una PATCH:
qui si decide solo quali azioni mostrare per ogni stato.
"""

PENDING = "PENDING"
IN_PROGRESS = "IN_PROGRESS"
READY_FOR_DELIVERY = "READY_FOR_DELIVERY"
DISPATCHED = "DISPATCHED"
DELIVERING = "DELIVERING"
DELIVERED = "DELIVERED"
CANCELLED = "CANCELLED"

# Valori vecchi ancora restituiti dagli endpoint delle consegne
IN_TRANSIT = "IN_TRANSIT"
FAILED = "FAILED"

STATUSES = [PENDING, IN_PROGRESS, READY_FOR_DELIVERY, DISPATCHED, DELIVERING, DELIVERED, CANCELLED]

NEXT_STATUSES = {
    PENDING: [IN_PROGRESS, CANCELLED],
    IN_PROGRESS: [READY_FOR_DELIVERY, CANCELLED],
    READY_FOR_DELIVERY: [DISPATCHED, CANCELLED],
    DISPATCHED: [DELIVERING, CANCELLED],
    DELIVERING: [DELIVERED, CANCELLED],
    DELIVERED: [],
    CANCELLED: [PENDING],
}

_ALIASES = {
    IN_TRANSIT: DELIVERING,
}

STATUS_LABELS = {
    PENDING: "En attente",
    IN_PROGRESS: "En préparation",
    READY_FOR_DELIVERY: "Prêt à livrer",
    DISPATCHED: "Dispatché",
    DELIVERING: "En livraison",
    DELIVERED: "Livré",
    CANCELLED: "Annulé",
    IN_TRANSIT: "En transit",
    FAILED: "Échoué",
}

STATUS_BADGES = {
    PENDING: "badge-amber",
    IN_PROGRESS: "badge-secondary",
    READY_FOR_DELIVERY: "badge-blue",
    DISPATCHED: "badge-indigo",
    DELIVERING: "badge-purple",
    DELIVERED: "badge-green",
    CANCELLED: "badge-red",
    IN_TRANSIT: "badge-purple",
    FAILED: "badge-red",
}

# Etichetta del pulsante che porta l'ordine NELLO stato indicato
ACTION_LABELS = {
    IN_PROGRESS: "Marquer en préparation",
    READY_FOR_DELIVERY: "Marquer prêt à livrer",
    DISPATCHED: "Dispatcher",
    DELIVERING: "Marquer en livraison",
    DELIVERED: "Marquer comme livré",
    CANCELLED: "Annuler",
    PENDING: "Remettre en attente",
}


def normalize(status):
    if not status:
        return status
    status = str(status).upper()
    return _ALIASES.get(status, status)


def next_statuses(status):
    """Stati raggiungibili da `status`. Uno stato sconosciuto non ne ha."""
    return list(NEXT_STATUSES.get(normalize(status), []))


def next_actions(status):
    return [(s, ACTION_LABELS[s]) for s in next_statuses(status)]


def can_transition(current, target):
    return normalize(target) in next_statuses(current)


def is_terminal(status):
    return normalize(status) in NEXT_STATUSES and not next_statuses(status)


def status_label(status):
    if not status:
        return "Non défini"
    return STATUS_LABELS.get(str(status).upper(), status)


def status_badge(status):
    return STATUS_BADGES.get(str(status or '').upper(), "badge-outline")


# ==============================================================================
# STATI DEL RECLAMO
# ==============================================================================

CONFLICT_NONE = "NONE"
CONFLICT_REPORTED = "REPORTED"
CONFLICT_UNDER_REVIEW = "UNDER_REVIEW"
CONFLICT_RESOLVED = "RESOLVED"

CONFLICT_STATUSES = [CONFLICT_NONE, CONFLICT_REPORTED, CONFLICT_UNDER_REVIEW, CONFLICT_RESOLVED]

CONFLICT_NEXT = {
    CONFLICT_NONE: [CONFLICT_REPORTED],
    CONFLICT_REPORTED: [CONFLICT_UNDER_REVIEW, CONFLICT_RESOLVED],
    CONFLICT_UNDER_REVIEW: [CONFLICT_RESOLVED],
    CONFLICT_RESOLVED: [],
}

CONFLICT_LABELS = {
    CONFLICT_NONE: "Aucun",
    CONFLICT_REPORTED: "Signalé",
    CONFLICT_UNDER_REVIEW: "En cours",
    CONFLICT_RESOLVED: "Résolu",
}

CONFLICT_BADGES = {
    CONFLICT_NONE: "badge-outline",
    CONFLICT_REPORTED: "badge-red",
    CONFLICT_UNDER_REVIEW: "badge-orange",
    CONFLICT_RESOLVED: "badge-green",
}


def conflict_next(status):
    return list(CONFLICT_NEXT.get(status or CONFLICT_NONE, []))


def conflict_label(status):
    return CONFLICT_LABELS.get(status or CONFLICT_NONE, status)


def conflict_badge(status):
    return CONFLICT_BADGES.get(status or CONFLICT_NONE, "badge-outline")


# ==============================================================================
# ALTRI BADGE
# ==============================================================================

HYGIENE_BADGES = {
    "A": "badge-green",
    "B": "badge-blue",
    "C": "badge-yellow",
    "D": "badge-orange",
    "E": "badge-red",
}

PRIORITY_LABELS = {
    "low": "Basse",
    "medium": "Moyenne",
    "high": "Haute",
    "urgent": "Urgente",
}

CATEGORY_LABELS = {
    "general": "Général",
    "delivery": "Livraison",
    "system": "Système",
    "maintenance": "Maintenance",
}

ISSUE_TYPE_LABELS = {
    "QUANTITY_MISMATCH": "Quantité incorrecte",
    "QUALITY_ISSUE": "Problème de qualité",
    "WRONG_PRODUCT": "Mauvais produit",
    "DAMAGED": "Endommagé",
    "EXPIRED": "Périmé",
    "MISSING": "Manquant",
    "OTHER": "Autre",
}


def hygiene_badge(rating):
    return HYGIENE_BADGES.get((rating or '').upper(), "badge-gray")
