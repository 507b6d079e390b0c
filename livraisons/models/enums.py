"""
Enums - Types énumérés du domaine livraison
===========================================

Centralise le vocabulaire des statuts (une seule table bidirectionnelle,
canonique <-> libellés fr/en <-> alias) pour éviter les "magic strings"
dispersées entre l'API, les rapports et l'historique.
"""

import enum
from typing import Optional


class StatusCategory(enum.Enum):
    """Catégories utilisées pour les compteurs de statistiques"""
    DELIVERED = 'delivered'
    FAILED = 'failed'
    PENDING = 'pending'
    PICKUP = 'pickup'
    EXPEDITION = 'expedition'
    CLIENT_ABSENT = 'client_absent'
    UNREACHABLE = 'unreachable'
    OTHER = 'other'              # Statuts inconnus (jamais ignorés)

    @classmethod
    def ordered(cls) -> list:
        """Ordre fixe des compteurs dans un snapshot"""
        return [c.value for c in cls]


class DeliveryStatus(enum.Enum):
    """Statuts possibles d'une livraison"""
    PENDING = 'pending'                                        # En cours
    DELIVERED = 'delivered'                                    # Livré
    FAILED = 'failed'                                          # Échec
    CANCELLED = 'cancelled'                                    # Annulé
    POSTPONED = 'postponed'                                    # Renvoyé
    PICKUP = 'pickup'                                          # Retrait au bureau
    EXPEDITION = 'expedition'                                  # Expédié via transporteur
    CLIENT_ABSENT = 'client_absent'                            # Client absent
    PRESENT_NE_DECROCHE_ZONE1 = 'present_ne_decroche_zone1'    # Présent, ne décroche pas (zone 1)
    PRESENT_NE_DECROCHE_ZONE2 = 'present_ne_decroche_zone2'    # Présent, ne décroche pas (zone 2)
    UNREACHABLE = 'unreachable'                                # Injoignable
    NO_ANSWER = 'no_answer'                                    # Ne décroche pas

    @classmethod
    def normalize(cls, token) -> Optional['DeliveryStatus']:
        """
        Résout un statut depuis sa valeur canonique, un libellé (fr/en)
        ou un alias historique. Retourne None si le statut est inconnu.
        """
        if isinstance(token, cls):
            return token
        if not isinstance(token, str):
            return None
        return _STATUS_LOOKUP.get(_lookup_key(token))

    @classmethod
    def get_label(cls, status, lang: str = 'fr') -> str:
        """Retourne le label traduit d'un statut (le token brut si inconnu)"""
        resolved = cls.normalize(status)
        if resolved is None:
            return '' if status is None else str(status)
        labels = STATUS_TABLE[resolved.value]['labels']
        return labels.get(lang, labels['fr'])

    @classmethod
    def category_of(cls, status) -> StatusCategory:
        resolved = cls.normalize(status)
        if resolved is None:
            return StatusCategory.OTHER
        return STATUS_TABLE[resolved.value]['category']

    @classmethod
    def is_valid(cls, status: str) -> bool:
        """Vérifie si un statut est valide"""
        return status in [s.value for s in cls]

    @classmethod
    def client_absent_variants(cls) -> list:
        return [s.value for s in cls if STATUS_TABLE[s.value]['category'] == StatusCategory.CLIENT_ABSENT]

    @classmethod
    def unreachable_variants(cls) -> list:
        return [s.value for s in cls if STATUS_TABLE[s.value]['category'] == StatusCategory.UNREACHABLE]


# Table unique des statuts: catégorie, libellés et alias.
# Tout nouveau statut doit être ajouté ici d'abord.
STATUS_TABLE = {
    'pending': {
        'category': StatusCategory.PENDING,
        'labels': {'fr': 'En cours', 'en': 'Pending'},
        'aliases': ('en_cours', 'encours'),
    },
    'delivered': {
        'category': StatusCategory.DELIVERED,
        'labels': {'fr': 'Livré', 'en': 'Delivered'},
        'aliases': ('livré', 'livre', 'livrée', 'livree'),
    },
    'failed': {
        'category': StatusCategory.FAILED,
        'labels': {'fr': 'Échec', 'en': 'Failed'},
        'aliases': ('échec', 'echec'),
    },
    'cancelled': {
        'category': StatusCategory.FAILED,
        'labels': {'fr': 'Annulé', 'en': 'Cancelled'},
        'aliases': ('annulé', 'annule', 'canceled'),
    },
    'postponed': {
        'category': StatusCategory.PENDING,
        'labels': {'fr': 'Renvoyé', 'en': 'Postponed'},
        'aliases': ('renvoyé', 'renvoye', 'reporté', 'reporte'),
    },
    'pickup': {
        'category': StatusCategory.PICKUP,
        'labels': {'fr': 'Au bureau', 'en': 'Pickup'},
        'aliases': ('au_bureau', 'retrait'),
    },
    'expedition': {
        'category': StatusCategory.EXPEDITION,
        'labels': {'fr': 'Expédition', 'en': 'Expedition'},
        'aliases': ('expédition', 'expédié', 'expedie'),
    },
    'client_absent': {
        'category': StatusCategory.CLIENT_ABSENT,
        'labels': {'fr': 'Client absent', 'en': 'Client absent'},
        'aliases': ('absent',),
    },
    'present_ne_decroche_zone1': {
        'category': StatusCategory.CLIENT_ABSENT,
        'labels': {'fr': 'CPCNDP Z1', 'en': 'Present, no answer (zone 1)'},
        'aliases': ('cpcndp_z1', 'zone1'),
    },
    'present_ne_decroche_zone2': {
        'category': StatusCategory.CLIENT_ABSENT,
        'labels': {'fr': 'CPCNDP Z2', 'en': 'Present, no answer (zone 2)'},
        'aliases': ('cpcndp_z2', 'zone2'),
    },
    'unreachable': {
        'category': StatusCategory.UNREACHABLE,
        'labels': {'fr': 'Injoignable', 'en': 'Unreachable'},
        'aliases': ('injoignable',),
    },
    'no_answer': {
        'category': StatusCategory.UNREACHABLE,
        'labels': {'fr': 'Ne décroche pas', 'en': 'No answer'},
        'aliases': ('ne_decroche_pas', 'ne_décroche_pas'),
    },
}


def _lookup_key(token: str) -> str:
    return token.strip().lower().replace('-', '_').replace(' ', '_')


def _build_status_lookup() -> dict:
    lookup = {}
    for value, entry in STATUS_TABLE.items():
        status = DeliveryStatus(value)
        keys = [value, *entry['aliases'], *entry['labels'].values()]
        for key in keys:
            normalized = _lookup_key(key)
            existing = lookup.get(normalized)
            if existing is not None and existing is not status:
                raise ValueError(f"Alias de statut ambigu: {key} ({existing.value} / {value})")
            lookup[normalized] = status
    return lookup


_STATUS_LOOKUP = _build_status_lookup()


class PeriodPreset(enum.Enum):
    """Périodes prédéfinies pour les statistiques"""
    TODAY = 'today'
    YESTERDAY = 'yesterday'
    THIS_WEEK = 'thisWeek'
    LAST_WEEK = 'lastWeek'
    THIS_MONTH = 'thisMonth'
    LAST_MONTH = 'lastMonth'
    THIS_YEAR = 'thisYear'
    LAST_YEAR = 'lastYear'
    CUSTOM = 'custom'

    @classmethod
    def get_label(cls, preset: str, lang: str = 'fr') -> str:
        """Retourne le label traduit d'une période"""
        labels = {
            'fr': {
                'today': "Aujourd'hui",
                'yesterday': 'Hier',
                'thisWeek': 'Cette semaine',
                'lastWeek': 'Semaine dernière',
                'thisMonth': 'Ce mois',
                'lastMonth': 'Mois dernier',
                'thisYear': 'Cette année',
                'lastYear': 'Année dernière',
                'custom': 'Personnalisé'
            },
            'en': {
                'today': 'Today',
                'yesterday': 'Yesterday',
                'thisWeek': 'This week',
                'lastWeek': 'Last week',
                'thisMonth': 'This month',
                'lastMonth': 'Last month',
                'thisYear': 'This year',
                'lastYear': 'Last year',
                'custom': 'Custom'
            }
        }
        return labels.get(lang, labels['fr']).get(preset, preset)

    @classmethod
    def get_order(cls) -> list:
        """Ordre de priorité pour la détection d'une période"""
        return [
            'today', 'yesterday', 'thisWeek', 'lastWeek',
            'thisMonth', 'lastMonth', 'thisYear', 'lastYear'
        ]

    @classmethod
    def is_valid(cls, preset: str) -> bool:
        return preset in [p.value for p in cls]


class UserRole(enum.Enum):
    """Rôles portés par le JWT"""
    AGENCY = 'agency'            # Agence (tenant)
    SUPER_ADMIN = 'super_admin'  # Super administrateur (toutes les agences)

    @classmethod
    def is_valid(cls, role: str) -> bool:
        return role in [r.value for r in cls]

    @classmethod
    def is_privileged(cls, role: str) -> bool:
        return role == cls.SUPER_ADMIN.value
