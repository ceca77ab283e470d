"""Core service owning the per-provider credential pools.

Hides validation, ranking and status bookkeeping of API keys. Pool order
encodes preference: the most recently added or validated credential comes
first. Only ``valid`` and ``testing`` credentials are ever offered for new
attempts.

Status transitions::

    testing --validate--> valid | invalid | exhausted | rate_limited
    valid --live 429/402--> rate_limited | exhausted
    rate_limited | exhausted --validate--> valid
    invalid: terminal until the user re-validates or removes it
"""

import asyncio
import logging
import threading
import time
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from stockmeta.domain.errors import ConfigurationError, status_code_of
from stockmeta.domain.events import CredentialStatusChanged, EventSink, dispatch_event
from stockmeta.domain.interfaces.credential_probe import CredentialProbe
from stockmeta.domain.models.common import CredentialId, ProviderName, SecretValue
from stockmeta.domain.models.credentials import (
    Credential,
    CredentialStatus,
    Provider,
    provider_key,
)

logger = logging.getLogger(__name__)

ProviderRef = Union[Provider, str]
Outcome = Union[BaseException, int, None, CredentialStatus]

# Statuses that record_outcome never lifts; only a fresh validation can.
_STICKY_STATUSES = frozenset({
    CredentialStatus.INVALID,
    CredentialStatus.RATE_LIMITED,
    CredentialStatus.EXHAUSTED,
})


def status_from_probe(status_code: Optional[int]) -> CredentialStatus:
    """Maps a validation probe's HTTP status to a credential status.

    400 and 404 usually mean the probe's model id is not available to this
    key tier, not that the key is bad, so they count as valid to avoid false
    negatives. No response at all leaves the credential in ``testing``.
    """
    if status_code is None:
        return CredentialStatus.TESTING
    if status_code == 200:
        return CredentialStatus.VALID
    if status_code == 401:
        return CredentialStatus.INVALID
    if status_code == 402:
        return CredentialStatus.EXHAUSTED
    if status_code == 429:
        return CredentialStatus.RATE_LIMITED
    if status_code in (400, 404):
        logger.warning(f"Validation probe returned {status_code}; key likely valid, but test model rejected.")
        return CredentialStatus.VALID
    return CredentialStatus.INVALID


def status_from_outcome(outcome: Outcome) -> Optional[CredentialStatus]:
    """Maps a live call's outcome to the status it implies, if any.

    Returns None for outcomes that say nothing about the credential
    (network failures, server errors, parse errors).
    """
    if isinstance(outcome, CredentialStatus):
        return outcome
    if isinstance(outcome, BaseException):
        code = status_code_of(outcome)
        if code is None:
            return None
    else:
        code = outcome
    if code is None:
        return None
    if 200 <= code < 300:
        return CredentialStatus.VALID
    if code == 401:
        return CredentialStatus.INVALID
    if code == 402:
        return CredentialStatus.EXHAUSTED
    if code == 429:
        return CredentialStatus.RATE_LIMITED
    return None


class CredentialPoolManager:
    """Owns, validates and ranks credentials per provider.

    Pools are shared by every concurrently running dispatch; all mutations go
    through a single lock which is never held across an ``await``.
    """

    def __init__(
        self,
        probe: Optional[CredentialProbe] = None,
        event_sink: Optional[EventSink] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initializes the CredentialPoolManager.

        Args:
            probe: Validation probe used by ``validate``; validation is
                unavailable without one.
            event_sink: Optional receiver for CredentialStatusChanged events.
            clock: Source of epoch timestamps for last_checked/last_used.
        """
        self.probe = probe
        self.event_sink = event_sink
        self._clock = clock
        self._pools: Dict[ProviderName, List[Credential]] = {}
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, settings: Any, probe: Optional[CredentialProbe] = None, **kwargs: Any) -> "CredentialPoolManager":
        """Builds a pool from ``DispatchSettings.provider_keys``. Keys start as ``testing``."""
        manager = cls(probe=probe, **kwargs)
        for provider, secrets in settings.provider_keys.items():
            manager.add_many(provider, secrets)
        return manager

    # --- Membership ---

    def add(
        self,
        provider: ProviderRef,
        secret: str,
        status: CredentialStatus = CredentialStatus.TESTING,
        credential_id: Optional[str] = None,
    ) -> Credential:
        """Adds a credential at the front of the provider's pool.

        Adding a secret already present in the pool returns the existing
        credential unchanged.
        """
        name = provider_key(provider)
        secret = secret.strip()
        if not secret:
            raise ValueError("Credential secret must not be empty")
        with self._lock:
            pool = self._pools.setdefault(name, [])
            for existing in pool:
                if existing.secret == secret:
                    logger.debug(f"Credential {existing.masked} already in {name} pool")
                    return existing
            credential = Credential(
                id=CredentialId(credential_id or f"{name}-{uuid.uuid4().hex[:12]}"),
                provider=name,
                secret=SecretValue(secret),
                status=status,
            )
            pool.insert(0, credential)
        logger.info(f"Added credential {credential.masked} to {name} pool ({status.value})")
        return credential

    def add_many(self, provider: ProviderRef, secrets: Iterable[str]) -> List[Credential]:
        """Adds several secrets, keeping their given order at the front of the pool."""
        added = [self.add(provider, secret) for secret in reversed(list(secrets)) if secret.strip()]
        added.reverse()
        return added

    def remove(self, provider: ProviderRef, credential_id: str) -> Credential:
        name = provider_key(provider)
        with self._lock:
            pool = self._pools.get(name, [])
            for i, credential in enumerate(pool):
                if credential.id == credential_id:
                    del pool[i]
                    logger.info(f"Removed credential {credential.masked} from {name} pool")
                    return credential
        raise KeyError(f"No credential '{credential_id}' in {name} pool")

    def get(self, provider: ProviderRef, credential_id: str) -> Credential:
        name = provider_key(provider)
        credential = self._find(name, credential_id)
        if credential is None:
            raise KeyError(f"No credential '{credential_id}' in {name} pool")
        return credential

    def _find(self, name: ProviderName, credential_id: str) -> Optional[Credential]:
        with self._lock:
            for credential in self._pools.get(name, []):
                if credential.id == credential_id:
                    return credential
        return None

    def credentials(self, provider: ProviderRef) -> List[Credential]:
        """Snapshot of the provider's pool in preference order."""
        with self._lock:
            return list(self._pools.get(provider_key(provider), []))

    def providers(self) -> List[ProviderName]:
        with self._lock:
            return list(self._pools)

    # --- Selection ---

    def eligible(self, provider: ProviderRef) -> List[Credential]:
        """Credentials with status valid or testing, in pool order."""
        with self._lock:
            return [c for c in self._pools.get(provider_key(provider), []) if c.is_eligible]

    def promote(self, provider: ProviderRef, credential_id: str) -> None:
        """Moves a credential to the front of its pool."""
        name = provider_key(provider)
        with self._lock:
            pool = self._pools.get(name, [])
            for i, credential in enumerate(pool):
                if credential.id == credential_id:
                    pool.insert(0, pool.pop(i))
                    return
        raise KeyError(f"No credential '{credential_id}' in {name} pool")

    def status_counts(self, provider: ProviderRef) -> Dict[CredentialStatus, int]:
        counts = {status: 0 for status in CredentialStatus}
        with self._lock:
            for credential in self._pools.get(provider_key(provider), []):
                counts[credential.status] += 1
        return counts

    # --- Status updates ---

    async def validate(self, provider: ProviderRef, credential_id: str, promote: bool = True) -> CredentialStatus:
        """Probes the provider with the credential and stores the mapped status.

        Args:
            provider: Pool the credential belongs to.
            credential_id: Credential to validate.
            promote: Move the credential to the front when it comes back valid.

        Returns:
            The new status.

        Raises:
            ConfigurationError: If no probe was configured.
            KeyError: If the credential is not in the pool.
        """
        if self.probe is None:
            raise ConfigurationError("CredentialPoolManager has no validation probe configured")
        name = provider_key(provider)
        credential = self.get(name, credential_id)

        logger.debug(f"Validating {name} credential {credential.masked}")
        status_code = await self.probe.probe(name, credential.secret)
        status = status_from_probe(status_code)

        with self._lock:
            credential = self.get(name, credential_id)
            credential.last_checked = self._clock()
            old = self._apply_status(credential, status)
            if promote and status is CredentialStatus.VALID:
                self.promote(name, credential_id)
        self._announce(credential, old, status, "validate")
        logger.info(f"{name} credential {credential.masked} validated: {status.value} (probe status {status_code})")
        return status

    async def validate_all(self, provider: ProviderRef) -> Dict[CredentialId, CredentialStatus]:
        """Validates every credential of the provider concurrently. Pool order is kept."""
        name = provider_key(provider)
        ids = [c.id for c in self.credentials(name)]
        statuses = await asyncio.gather(*(self.validate(name, cid, promote=False) for cid in ids))
        return dict(zip(ids, statuses))

    def record_outcome(
        self,
        provider: ProviderRef,
        credential_id: str,
        outcome: Outcome,
    ) -> Optional[CredentialStatus]:
        """Feeds a live call's result back into the credential's status.

        Only degrades ``valid``/``testing`` credentials (and confirms a
        ``testing`` one on success); statuses set by an earlier failure are
        never lifted here, so a late success from a concurrent in-flight call
        cannot resurrect a rate-limited key.

        Returns:
            The credential's status after the update, or None if the
            credential was removed while its call was in flight.
        """
        name = provider_key(provider)
        implied = status_from_outcome(outcome)
        with self._lock:
            credential = self._find(name, credential_id)
            if credential is None:
                logger.info(f"Outcome for removed {name} credential {credential_id} ignored")
                return None
            credential.last_used = self._clock()
            current = credential.status
            if implied is None or implied is CredentialStatus.TESTING or current in _STICKY_STATUSES:
                return current
            if implied is CredentialStatus.VALID and current is not CredentialStatus.TESTING:
                return current
            old = self._apply_status(credential, implied)
        if old is not implied:
            logger.warning(f"{name} credential {credential.masked}: {old.value} -> {implied.value}")
        self._announce(credential, old, implied, "outcome")
        return implied

    @staticmethod
    def _apply_status(credential: Credential, status: CredentialStatus) -> CredentialStatus:
        # Caller holds the lock.
        old = credential.status
        credential.status = status
        return old

    def _announce(self, credential: Credential, old: CredentialStatus, new: CredentialStatus, source: str) -> None:
        if old is new:
            return
        dispatch_event(self.event_sink, CredentialStatusChanged(
            provider=credential.provider,
            credential_id=credential.id,
            old_status=old.value,
            new_status=new.value,
            source=source,
        ))
