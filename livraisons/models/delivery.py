"""
Modèle Delivery - Livraisons et leur historique
Les montants sont stockés en Numeric et relus en Decimal
"""

from livraisons import db
from datetime import datetime, timezone
from livraisons.models.records import AuditEvent, DeliveryRecord
from livraisons.utils.helpers import to_amount


def _as_utc(value):
    """Les timestamps sont écrits en UTC naïf (datetime.utcnow)"""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class Delivery(db.Model):
    """
    Livraison d'une commande, issue d'un groupe WhatsApp

    Le restant dû n'est pas stocké: il est recalculé depuis amount_due et
    amount_paid (voir DeliveryRecord.remaining).
    """
    __tablename__ = 'deliveries'

    __table_args__ = (
        db.Index('idx_delivery_agency_created', 'agency_id', 'created_at'),
        db.Index('idx_delivery_agency_status', 'agency_id', 'status'),
        db.Index('idx_delivery_group_created', 'group_id', 'created_at'),
    )

    id = db.Column(db.Integer, primary_key=True)
    agency_id = db.Column(db.Integer, db.ForeignKey('agencies.id'), index=True)
    group_id = db.Column(db.Integer, db.ForeignKey('groups.id'), index=True)

    phone = db.Column(db.String(30), nullable=False)
    customer_name = db.Column(db.String(150))
    items = db.Column(db.Text, nullable=False, default='')
    quartier = db.Column(db.String(100))
    notes = db.Column(db.Text)
    carrier = db.Column(db.String(100))  # Renseigné pour les expéditions

    amount_due = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    amount_paid = db.Column(db.Numeric(18, 2), nullable=False, default=0)
    # Frais explicites; NULL = tarif standard du quartier
    delivery_fee = db.Column(db.Numeric(18, 2))

    status = db.Column(db.String(40), nullable=False, default='pending')

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relations
    history = db.relationship('DeliveryHistory', backref='delivery', lazy='dynamic',
                              order_by='DeliveryHistory.created_at.desc()')
    group = db.relationship('Group', backref=db.backref('deliveries', lazy='dynamic'))

    def to_record(self) -> DeliveryRecord:
        """Conversion vers l'enregistrement immuable du moteur de statistiques"""
        return DeliveryRecord(
            id=self.id,
            phone=self.phone or '',
            items=self.items or '',
            amount_due=to_amount(self.amount_due),
            amount_collected=to_amount(self.amount_paid),
            status=(self.status or 'pending').strip().lower(),
            quartier=self.quartier or None,
            delivery_fee=None if self.delivery_fee is None else to_amount(self.delivery_fee),
            carrier=self.carrier or None,
            group_id=self.group_id,
            agency_id=self.agency_id,
            customer_name=self.customer_name,
            notes=self.notes,
            created_at=_as_utc(self.created_at),
            updated_at=_as_utc(self.updated_at)
        )

    def to_dict(self, include_history=False):
        data = self.to_record().to_dict()
        if include_history:
            data['history'] = [h.to_dict() for h in self.history.all()]
        return data


class DeliveryHistory(db.Model):
    """
    Historique des modifications d'une livraison

    action: 'created', 'updated_<champ>' ou toute autre étiquette du producteur
    details: texte libre ou JSON (format variable selon le producteur)
    """
    __tablename__ = 'delivery_history'

    id = db.Column(db.Integer, primary_key=True)
    delivery_id = db.Column(db.Integer, db.ForeignKey('deliveries.id'), nullable=False, index=True)
    action = db.Column(db.String(60), nullable=False)
    details = db.Column(db.Text)
    actor = db.Column(db.String(100))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_event(self) -> AuditEvent:
        return AuditEvent(
            id=self.id,
            delivery_id=self.delivery_id,
            action=self.action or '',
            raw_details=self.details,
            actor=self.actor,
            timestamp=_as_utc(self.created_at)
        )

    def to_dict(self):
        return {
            'id': self.id,
            'delivery_id': self.delivery_id,
            'action': self.action,
            'details': self.details,
            'actor': self.actor,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }
