"""
Modèles Agence - Agences de livraison, groupes WhatsApp et tarifs par quartier
"""

from livraisons import db
from datetime import datetime


class Agency(db.Model):
    """Agence de livraison (tenant de la plateforme)"""
    __tablename__ = 'agencies'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    slug = db.Column(db.String(50), unique=True, nullable=False)
    phone = db.Column(db.String(20))
    # Fuseau d'affichage propre à l'agence (sinon TIME_ZONE de la config)
    timezone = db.Column(db.String(50))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relations
    groups = db.relationship('Group', backref='agency', lazy='dynamic')
    tariffs = db.relationship('Tariff', backref='agency', lazy='dynamic')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'slug': self.slug,
            'phone': self.phone,
            'timezone': self.timezone,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else None
        }


class Group(db.Model):
    """
    Groupe WhatsApp d'origine des livraisons

    C'est à ce groupe (le vendeur partenaire) que l'agence reverse le net
    encaissé, déduction faite des tarifs de livraison.
    """
    __tablename__ = 'groups'

    id = db.Column(db.Integer, primary_key=True)
    agency_id = db.Column(db.Integer, db.ForeignKey('agencies.id'), nullable=False, index=True)
    name = db.Column(db.String(150), nullable=False)
    whatsapp_group_id = db.Column(db.String(100), index=True)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'agency_id': self.agency_id,
            'name': self.name,
            'whatsapp_group_id': self.whatsapp_group_id,
            'is_active': self.is_active
        }


class Tariff(db.Model):
    """Tarif standard de livraison d'un quartier, par agence"""
    __tablename__ = 'tariffs'
    __table_args__ = (
        db.UniqueConstraint('agency_id', 'quartier', name='uq_tariff_agency_quartier'),
    )

    id = db.Column(db.Integer, primary_key=True)
    agency_id = db.Column(db.Integer, db.ForeignKey('agencies.id'), nullable=False, index=True)
    quartier = db.Column(db.String(100), nullable=False)
    amount = db.Column(db.Numeric(18, 2), nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'agency_id': self.agency_id,
            'quartier': self.quartier,
            'amount': float(self.amount) if self.amount is not None else None
        }
