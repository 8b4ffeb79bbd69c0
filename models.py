from dataclasses import dataclass, field
from typing import List, Optional

# Il backend restituisce JSON camelCase con chiavi "_id" in stile Mongo.
# Questi record rispecchiano solo quello che arriva: qui non si salva nulla.

NON_DEFINI = "Non défini"
NON_ASSIGNE = "Non assigné"
A_ASSIGNER = "À assigner"
DISPATCH_PENDING = "DISPATCH_PENDING"

ROLES = ("admin", "bakery", "laboratory", "delivery")


def _num(valore, default=0.0):
    try:
        return float(valore) if valore is not None else default
    except (TypeError, ValueError):
        return default


def _int(valore, default=0):
    try:
        return int(valore) if valore is not None else default
    except (TypeError, ValueError):
        return default


# Righe ordine
@dataclass
class OrderProduct:
    productName: str = ""
    productRef: Optional[str] = None
    laboratory: Optional[str] = None
    unitPriceHT: float = 0.0
    unitPriceTTC: float = 0.0
    taxRate: float = 0.0
    quantity: int = 0
    totalPriceHT: float = 0.0
    taxAmount: float = 0.0
    totalPriceTTC: float = 0.0

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        # I vecchi payload delle consegne usano pricePerUnit / totalPrice
        unit_ht = data.get('unitPriceHT', data.get('pricePerUnit'))
        return cls(
            productName=data.get('productName', ''),
            productRef=data.get('productRef'),
            laboratory=data.get('laboratory'),
            unitPriceHT=_num(unit_ht),
            unitPriceTTC=_num(data.get('unitPriceTTC')),
            taxRate=_num(data.get('taxRate')),
            quantity=_int(data.get('quantity')),
            totalPriceHT=_num(data.get('totalPriceHT', data.get('totalPrice'))),
            taxAmount=_num(data.get('taxAmount')),
            totalPriceTTC=_num(data.get('totalPriceTTC')),
        )


# Reclami
@dataclass
class Discrepancy:
    productName: str = ""
    ordered: dict = field(default_factory=dict)
    received: dict = field(default_factory=dict)
    issueType: str = "QUANTITY_MISMATCH"
    notes: str = ""

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(
            productName=data.get('productName', ''),
            ordered=dict(data.get('ordered') or {}),
            received=dict(data.get('received') or {}),
            issueType=data.get('issueType', 'QUANTITY_MISMATCH'),
            notes=data.get('notes') or '',
        )

    @property
    def ordered_quantity(self):
        return _int(self.ordered.get('quantity'))

    @property
    def received_quantity(self):
        return _int(self.received.get('quantity'))


@dataclass
class Reclamation:
    reportedBy: str = ""
    reportedAt: Optional[str] = None
    description: str = ""
    discrepancies: List[Discrepancy] = field(default_factory=list)
    reviewedBy: Optional[str] = None
    reviewedAt: Optional[str] = None
    adminNotes: Optional[str] = None
    resolution: Optional[str] = None
    correctedProducts: List[OrderProduct] = field(default_factory=list)
    correctedTotalHT: Optional[float] = None
    correctedTaxAmount: Optional[float] = None
    correctedTotalTTC: Optional[float] = None

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(
            reportedBy=data.get('reportedBy', ''),
            reportedAt=data.get('reportedAt'),
            description=data.get('description', ''),
            discrepancies=[Discrepancy.from_dict(d) for d in data.get('discrepancies') or []],
            reviewedBy=data.get('reviewedBy'),
            reviewedAt=data.get('reviewedAt'),
            adminNotes=data.get('adminNotes'),
            resolution=data.get('resolution'),
            correctedProducts=[OrderProduct.from_dict(p) for p in data.get('correctedProducts') or []],
            correctedTotalHT=data.get('correctedTotalHT'),
            correctedTaxAmount=data.get('correctedTaxAmount'),
            correctedTotalTTC=data.get('correctedTotalTTC'),
        )


# Ordini (gli endpoint delle consegne restituiscono la stessa forma)
@dataclass
class Order:
    id: str = ""
    orderId: str = ""
    orderReferenceId: str = ""
    bakeryName: str = ""
    laboratory: Optional[str] = None
    deliveryUserId: Optional[str] = None
    deliveryUserName: Optional[str] = None
    scheduledDate: Optional[str] = None
    actualDeliveryDate: Optional[str] = None
    status: str = "PENDING"
    address: str = ""
    products: List[OrderProduct] = field(default_factory=list)
    notes: Optional[str] = None
    orderTotalHT: float = 0.0
    orderTaxAmount: float = 0.0
    orderTotalTTC: float = 0.0
    hasConflict: bool = False
    conflictStatus: str = "NONE"
    reclamation: Optional[Reclamation] = None
    createdAt: Optional[str] = None

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(
            id=data.get('_id') or data.get('id') or '',
            orderId=data.get('orderId', ''),
            orderReferenceId=data.get('orderReferenceId', ''),
            bakeryName=data.get('bakeryName', ''),
            laboratory=data.get('laboratory'),
            deliveryUserId=data.get('deliveryUserId'),
            deliveryUserName=data.get('deliveryUserName'),
            scheduledDate=data.get('scheduledDate'),
            actualDeliveryDate=data.get('actualDeliveryDate'),
            status=data.get('status', 'PENDING'),
            address=data.get('address', ''),
            products=[OrderProduct.from_dict(p) for p in data.get('products') or []],
            notes=data.get('notes'),
            orderTotalHT=_num(data.get('orderTotalHT')),
            orderTaxAmount=_num(data.get('orderTaxAmount')),
            orderTotalTTC=_num(data.get('orderTotalTTC')),
            hasConflict=bool(data.get('hasConflict', False)),
            conflictStatus=data.get('conflictStatus') or 'NONE',
            reclamation=Reclamation.from_dict(data.get('reclamation')),
            createdAt=data.get('createdAt'),
        )

    @property
    def is_dispatch_pending(self):
        return not self.deliveryUserId or self.deliveryUserId.strip() in ('', DISPATCH_PENDING)

    @property
    def delivery_user_display(self):
        if (self.deliveryUserId or '').strip() == DISPATCH_PENDING:
            return A_ASSIGNER
        return self.deliveryUserName or NON_ASSIGNE

    @property
    def laboratories(self):
        labs = {p.laboratory for p in self.products if p.laboratory}
        if self.laboratory:
            labs.add(self.laboratory)
        return labs


# Laboratori e panetterie hanno la stessa struttura
@dataclass
class Site:
    id: str = ""
    name: str = ""
    headChef: Optional[str] = None
    address: Optional[str] = None
    postalCode: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    capacity: Optional[int] = None
    hygieneRating: Optional[str] = None
    lastInspectionDate: Optional[str] = None
    isActive: bool = True

    @classmethod
    def from_dict(cls, data, name_field='labName'):
        data = data or {}
        capacity = data.get('capacity')
        return cls(
            id=data.get('_id') or data.get('id') or '',
            name=data.get(name_field) or data.get('name') or '',
            headChef=data.get('headChef'),
            address=data.get('address'),
            postalCode=data.get('postalCode'),
            phone=data.get('phone'),
            email=data.get('email'),
            capacity=_int(capacity) if capacity not in (None, '') else None,
            hygieneRating=data.get('hygieneRating'),
            lastInspectionDate=data.get('lastInspectionDate'),
            isActive=bool(data.get('isActive', True)),
        )


# Utenti
@dataclass
class User:
    id: str = ""
    firstName: str = ""
    lastName: str = ""
    email: str = ""
    role: str = "bakery"
    isActive: bool = True
    phone: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(
            id=data.get('_id') or data.get('id') or '',
            firstName=data.get('firstName') or '',
            lastName=data.get('lastName') or '',
            email=data.get('email') or '',
            role=(data.get('role') or 'bakery').lower(),
            isActive=bool(data.get('isActive', True)),
            phone=data.get('phone'),
            name=data.get('name'),
        )

    @property
    def full_name(self):
        if self.firstName or self.lastName:
            return f"{self.firstName} {self.lastName}".strip()
        return self.name or self.email


# Annunci
@dataclass
class Comment:
    id: str = ""
    content: str = ""
    authorId: str = ""
    authorName: str = ""
    authorRole: str = ""
    createdAt: Optional[str] = None

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(
            id=data.get('_id') or data.get('id') or '',
            content=data.get('content', ''),
            authorId=data.get('authorId', ''),
            authorName=data.get('authorName', ''),
            authorRole=data.get('authorRole', ''),
            createdAt=data.get('createdAt'),
        )


@dataclass
class Announcement:
    id: str = ""
    title: str = ""
    content: str = ""
    priority: str = "medium"
    category: str = "general"
    isPinned: bool = False
    authorId: str = ""
    authorName: str = ""
    createdAt: Optional[str] = None
    comments: List[Comment] = field(default_factory=list)
    isRead: bool = False

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(
            id=data.get('_id') or data.get('id') or '',
            title=data.get('title', ''),
            content=data.get('content', ''),
            priority=data.get('priority', 'medium'),
            category=data.get('category', 'general'),
            isPinned=bool(data.get('isPinned', False)),
            authorId=data.get('authorId', ''),
            authorName=data.get('authorName', ''),
            createdAt=data.get('createdAt'),
            comments=[Comment.from_dict(c) for c in data.get('comments') or []],
            isRead=bool(data.get('isRead', False)),
        )


# Catalogo prodotti
@dataclass
class Product:
    id: str = ""
    name: str = ""
    description: str = ""
    ingredients: List[str] = field(default_factory=list)
    unitPrice: float = 0.0
    taxRate: Optional[float] = None
    category: str = "general"
    laboratory: Optional[str] = None
    active: bool = True
    isAvailable: bool = True
    image: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        tax = data.get('taxRate')
        return cls(
            id=data.get('_id') or data.get('id') or '',
            name=data.get('name', ''),
            description=data.get('description') or '',
            ingredients=list(data.get('ingredients') or []),
            unitPrice=_num(data.get('unitPrice')),
            taxRate=_num(tax) if tax is not None else None,
            category=data.get('category') or 'general',
            laboratory=data.get('laboratory'),
            active=bool(data.get('active', True)),
            isAvailable=bool(data.get('isAvailable', True)),
            image=data.get('image'),
            notes=data.get('notes'),
        )
