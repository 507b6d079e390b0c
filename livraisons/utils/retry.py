"""
Politique de relance avec backoff exponentiel pour les appels HTTP

- 2 relances maximum (3 tentatives au total)
- délai min(1s * 2^tentative, 30s), avec jitter optionnel
- erreurs transitoires relancées: connexion, timeout, HTTP 5xx
- erreurs HTTP 4xx jamais relancées (la requête elle-même est fautive)
"""

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import requests

logger = logging.getLogger(__name__)


@dataclass
class RetryStats:
    """Statistiques de relance d'une opération"""
    attempts: int = 0
    total_delay_seconds: float = 0.0
    errors: List[str] = field(default_factory=list)
    success: bool = False

    def record_attempt(self, error: Optional[Exception] = None, delay: float = 0.0):
        self.attempts += 1
        self.total_delay_seconds += delay
        if error is not None:
            self.errors.append(f"{type(error).__name__}: {error}")

    def to_dict(self):
        return {
            'attempts': self.attempts,
            'total_delay_seconds': round(self.total_delay_seconds, 2),
            'success': self.success,
            'errors': self.errors[:5]
        }


def status_code_of(error: Exception) -> Optional[int]:
    """Code HTTP porté par une exception requests (None sinon)"""
    response = getattr(error, 'response', None)
    if response is None:
        return None
    return getattr(response, 'status_code', None)


def is_retryable_error(error: Exception) -> bool:
    """
    Indique si une erreur est transitoire

    Args:
        error: Exception levée par l'appel

    Returns:
        bool: True pour connexion/timeout/5xx, False pour 4xx et le reste
    """
    status = status_code_of(error)
    if status is not None:
        return status >= 500

    if isinstance(error, (requests.ConnectionError, requests.Timeout)):
        return True

    return isinstance(error, (ConnectionError, TimeoutError))


@dataclass(frozen=True)
class RetryPolicy:
    """Relances bornées avec backoff exponentiel"""
    max_retries: int = 2
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: bool = True

    def delay_for(self, attempt: int) -> float:
        """
        Délai avant la relance numéro `attempt` (0 pour la première)

        Returns:
            float: Secondes, jamais plus que max_delay
        """
        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        if self.jitter:
            # Jitter de 0 à 25% sans dépasser le plafond
            delay = min(delay + delay * random.uniform(0, 0.25), self.max_delay)
        return delay

    def should_retry(self, error: Exception, retries_done: int) -> bool:
        return retries_done < self.max_retries and is_retryable_error(error)

    def call(self, func: Callable, *args, sleep: Callable[[float], None] = time.sleep, **kwargs):
        """
        Exécute func en relançant les erreurs transitoires

        Args:
            func: Fonction à appeler
            sleep: Fonction d'attente (remplaçable dans les tests)

        Returns:
            Le résultat de func

        Raises:
            La dernière exception si les relances sont épuisées ou non applicables
        """
        stats = RetryStats()
        retries_done = 0

        while True:
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                if not self.should_retry(e, retries_done):
                    stats.record_attempt(error=e)
                    logger.error(
                        f"{getattr(func, '__name__', 'appel')} en échec après "
                        f"{stats.attempts} tentative(s): {e}"
                    )
                    raise

                delay = self.delay_for(retries_done)
                stats.record_attempt(error=e, delay=delay)
                logger.warning(
                    f"{getattr(func, '__name__', 'appel')} tentative {stats.attempts} échouée: {e}. "
                    f"Nouvelle tentative dans {delay:.1f}s"
                )
                retries_done += 1
                sleep(delay)
                continue

            stats.record_attempt()
            stats.success = True
            if retries_done:
                logger.info(
                    f"{getattr(func, '__name__', 'appel')} réussi après {retries_done} relance(s)"
                )
            return result


DEFAULT_POLICY = RetryPolicy()
