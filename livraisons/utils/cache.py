"""
Cache en mémoire des statistiques (TTL, invalidation par dépendance)

Chaque entrée est indexée par une clé explicite (métrique, périmètre,
période, pagination). Les métriques déclarent les sources de données dont
elles dépendent: une mise à jour de livraison n'invalide que les entrées
dont le périmètre et la période peuvent contenir cette livraison.

Le nombre d'entrées est borné (max_entries): au-delà, les entrées expirées
puis les plus anciennes sont évincées.

Les requêtes concurrentes d'un même emplacement (slot) suivent la règle
"dernière demandée gagne": une réponse plus ancienne que la dernière
demande, ou émise avant une invalidation, est ignorée.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, Hashable, Iterable, Optional

from livraisons.models.records import DeliveryRecord
from livraisons.utils.helpers import to_local_date

logger = logging.getLogger(__name__)

MISS = object()

# Métriques exposées par l'API et leurs sources
DEFAULT_DEPENDENCIES = {
    'daily_stats': ('deliveries',),
    'period_stats': ('deliveries', 'tariffs'),
    'deliveries': ('deliveries',),
    'group_report': ('deliveries', 'tariffs'),
}


@dataclass(frozen=True)
class CacheKey:
    metric: str
    agency_id: Optional[int] = None
    group_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    page: Optional[int] = None
    limit: Optional[int] = None
    extra: Hashable = None


@dataclass(frozen=True)
class Ticket:
    """Demande en cours pour un emplacement"""
    slot: Hashable
    key: CacheKey
    seq: int


class StatsCache:
    """Cache TTL thread-safe avec graphe d'invalidation explicite"""

    def __init__(
        self,
        ttl_seconds: float = 30,
        tz=None,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = 500
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max(int(max_entries), 1)
        self.tz = tz
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[CacheKey, tuple] = {}
        self._dependencies: Dict[str, set] = {}
        self._pending: Dict[Hashable, Ticket] = {}
        self._cancelled: set = set()
        self._seq = 0

        for metric, sources in DEFAULT_DEPENDENCIES.items():
            self.declare(metric, sources)

    # ==================== DÉPENDANCES ====================

    def declare(self, metric: str, depends_on: Iterable[str]):
        """Déclare les sources dont dépend une métrique"""
        with self._lock:
            self._dependencies.setdefault(metric, set()).update(depends_on)

    def depends_on(self, metric: str, source: str) -> bool:
        sources = self._dependencies.get(metric)
        # Métrique non déclarée: dépend de tout
        return sources is None or source in sources

    def _could_contain(self, key: CacheKey, record: Optional[DeliveryRecord]) -> bool:
        if record is None:
            return True
        if key.agency_id is not None and record.agency_id != key.agency_id:
            return False
        if key.group_id is not None and record.group_id != key.group_id:
            return False
        if key.start_date is None or key.end_date is None:
            return True
        day = to_local_date(record.created_at, self.tz)
        if day is None:
            return True
        return key.start_date <= day <= key.end_date

    def _affected(self, key: CacheKey, source: str, record: Optional[DeliveryRecord]) -> bool:
        return self.depends_on(key.metric, source) and self._could_contain(key, record)

    # ==================== LECTURE / ÉCRITURE ====================

    def get(self, key: CacheKey):
        """Valeur en cache si encore valide, sinon le sentinel MISS"""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return MISS
            expires, value = entry
            if self._clock() >= expires:
                del self._entries[key]
                return MISS
            return value

    def _evict_locked(self, key: CacheKey):
        """Libère une place: entrées expirées d'abord, puis la plus ancienne"""
        if key in self._entries or len(self._entries) < self.max_entries:
            return
        now = self._clock()
        expired = [k for k, (expires, _) in self._entries.items() if now >= expires]
        for stale in expired:
            del self._entries[stale]
        if len(self._entries) >= self.max_entries:
            oldest = min(self._entries, key=lambda k: self._entries[k][0])
            del self._entries[oldest]

    def _store_locked(self, key: CacheKey, value: Any):
        self._evict_locked(key)
        self._entries[key] = (self._clock() + self.ttl_seconds, value)

    def set(self, key: CacheKey, value: Any):
        with self._lock:
            self._store_locked(key, value)

    def clear(self):
        with self._lock:
            self._entries.clear()
            self._cancelled.update(t.seq for t in self._pending.values())
            self._pending.clear()

    def __len__(self):
        with self._lock:
            return len(self._entries)

    def invalidate(self, source: str, record=None) -> int:
        """
        Supprime les entrées impactées par une modification de `source`

        Args:
            source: Source modifiée ('deliveries', 'tariffs'...)
            record: Enregistrement modifié (None = toute la source)

        Returns:
            int: Nombre d'entrées supprimées
        """
        if record is not None:
            record = DeliveryRecord.coerce(record)

        with self._lock:
            stale_keys = [k for k in self._entries if self._affected(k, source, record)]
            for key in stale_keys:
                del self._entries[key]

            for ticket in self._pending.values():
                if self._affected(ticket.key, source, record):
                    self._cancelled.add(ticket.seq)

        if stale_keys:
            logger.debug(f"Cache: {len(stale_keys)} entrée(s) invalidée(s) par '{source}'")
        return len(stale_keys)

    # ==================== DERNIÈRE DEMANDE GAGNE ====================

    def begin(self, slot: Hashable, key: CacheKey) -> Ticket:
        """Enregistre une nouvelle demande; elle remplace la précédente du même slot"""
        with self._lock:
            self._seq += 1
            ticket = Ticket(slot=slot, key=key, seq=self._seq)
            previous = self._pending.get(slot)
            if previous is not None:
                self._cancelled.add(previous.seq)
            self._pending[slot] = ticket
            return ticket

    def complete(self, ticket: Ticket, value: Any) -> bool:
        """
        Applique la réponse d'une demande

        Returns:
            bool: False si la réponse est périmée (ignorée)
        """
        with self._lock:
            current = self._pending.get(ticket.slot)
            stale = (
                ticket.seq in self._cancelled
                or current is None
                or current.seq != ticket.seq
            )
            self._cancelled.discard(ticket.seq)
            if current is not None and current.seq == ticket.seq:
                del self._pending[ticket.slot]
            if stale:
                logger.info(f"Cache: réponse périmée ignorée pour {ticket.key.metric} (slot {ticket.slot!r})")
                return False

            self._store_locked(ticket.key, value)
            return True

    def abandon(self, ticket: Ticket):
        """Retire une demande sans réponse (erreur du chargement)"""
        with self._lock:
            current = self._pending.get(ticket.slot)
            if current is not None and current.seq == ticket.seq:
                del self._pending[ticket.slot]
            self._cancelled.discard(ticket.seq)

    def fetch(self, slot: Hashable, key: CacheKey, loader: Callable[[], Any]):
        """
        Valeur en cache, sinon chargée via loader puis mise en cache

        La valeur chargée est toujours retournée à l'appelant; elle n'est
        mise en cache que si la demande n'a pas été supplantée entre-temps.
        """
        cached = self.get(key)
        if cached is not MISS:
            return cached

        ticket = self.begin(slot, key)
        try:
            value = loader()
        except Exception:
            self.abandon(ticket)
            raise
        self.complete(ticket, value)
        return value
