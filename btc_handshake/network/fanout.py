"""
btc-handshake - Handshake Fan-Out
===================================
Un task asyncio indipendente per endpoint, aggregazione a fine run.

Last Updated: 2026-10-19
Version: 1.0.0

Features:
- Un orchestrator (connessione + nonce) per task
- Deadline per peer
- Concorrenza massima opzionale
- Retry con backoff esponenziale solo su TRANSPORT_FAILED
- Aggregazione in un unico passaggio sui risultati
"""

from __future__ import annotations
from typing import Optional, Callable, Dict, Any, Iterable, List, Awaitable
from collections import Counter
from dataclasses import dataclass, field
import asyncio
import time

# Internal imports
from btc_handshake.constants import (
    DEFAULT_SERVICES,
    DEFAULT_RETRY_BACKOFF,
    DEFAULT_RETRY_BACKOFF_MAX,
)
from btc_handshake.config import HandshakeSettings
from btc_handshake.errors import TransportError
from btc_handshake.logging_setup import get_logger, PerformanceLogger
from btc_handshake.network.address import Endpoint, canonicalize
from btc_handshake.network.handshake import (
    HandshakeOrchestrator,
    HandshakeOutcome,
    HandshakeState,
    NonceSource,
    default_nonce_source,
)
from btc_handshake.network.transport import Connector, make_connector


# ============================================================================
# MODULE LOGGER
# ============================================================================

logger = get_logger("network.fanout")


# ============================================================================
# SUMMARY
# ============================================================================

@dataclass
class HandshakeSummary:
    """
    Esito aggregato di un fan-out.

    Attributes:
        outcomes: Esiti per endpoint
        succeeded: Handshake COMPLETE
        failed: Handshake falliti
        failures_by_state: Conteggio per stato di fallimento
        duration: Secondi dell'intero run
    """

    outcomes: List[HandshakeOutcome] = field(default_factory=list)
    succeeded: int = 0
    failed: int = 0
    failures_by_state: Counter = field(default_factory=Counter)
    duration: float = 0.0

    @property
    def total(self) -> int:
        return self.succeeded + self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "succeeded": self.succeeded,
            "failed": self.failed,
            "total": self.total,
            "failures_by_state": {
                state.value: count for state, count in self.failures_by_state.items()
            },
            "duration": round(self.duration, 3),
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


def summarize(outcomes: Iterable[HandshakeOutcome], duration: float = 0.0) -> HandshakeSummary:
    """
    Aggrega gli esiti in un solo passaggio.

    Il risultato non dipende dall'ordine degli esiti.
    """
    summary = HandshakeSummary(duration=duration)

    for outcome in outcomes:
        summary.outcomes.append(outcome)
        if outcome.succeeded:
            summary.succeeded += 1
        else:
            summary.failed += 1
            summary.failures_by_state[outcome.state] += 1

    return summary


# ============================================================================
# FAN-OUT
# ============================================================================

class HandshakeFanOut:
    """
    Handshake concorrente verso una lista di endpoint.

    I task non condividono stato mutabile: ognuno crea il proprio
    HandshakeOrchestrator. Il fallimento di un peer non interrompe gli altri.

    Examples:
        >>> fanout = HandshakeFanOut.from_settings(settings)
        >>> summary = await fanout.run(endpoints)
        >>> summary.succeeded, summary.failed
    """

    def __init__(
        self,
        magic: bytes,
        connector: Connector,
        local_endpoint: Optional[Endpoint] = None,
        nonce_source: NonceSource = default_nonce_source,
        clock: Callable[[], float] = time.time,
        timeout: Optional[float] = None,
        max_concurrency: Optional[int] = None,
        retry_attempts: int = 0,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF,
        retry_backoff_max: float = DEFAULT_RETRY_BACKOFF_MAX,
        services: int = DEFAULT_SERVICES,
        user_agent: bytes = b"",
        start_height: int = 0,
        relay: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.magic = magic
        self.connector = connector
        self.local_endpoint = local_endpoint
        self.nonce_source = nonce_source
        self.clock = clock
        self.timeout = timeout
        self.max_concurrency = max_concurrency
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self.retry_backoff_max = retry_backoff_max
        self.services = services
        self.user_agent = user_agent
        self.start_height = start_height
        self.relay = relay
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: HandshakeSettings,
        connector: Optional[Connector] = None,
        **kwargs
    ) -> HandshakeFanOut:
        """Costruisce il fan-out dalla configurazione"""
        local_endpoint = None
        if settings.local_address:
            local_endpoint = Endpoint.parse(settings.local_address, default_port=settings.local_port)

        options = dict(
            magic=settings.magic,
            connector=connector or make_connector(timeout=settings.connect_timeout),
            local_endpoint=local_endpoint,
            timeout=settings.handshake_timeout,
            max_concurrency=settings.max_concurrency,
            retry_attempts=settings.retry_attempts,
            retry_backoff=settings.retry_backoff,
            retry_backoff_max=settings.retry_backoff_max,
            services=settings.services,
            user_agent=settings.user_agent.encode("utf-8"),
            start_height=settings.start_height,
            relay=settings.relay,
        )
        options.update(kwargs)
        return cls(**options)

    # ========================================================================
    # SINGLE PEER
    # ========================================================================

    def create_orchestrator(self, endpoint: Endpoint) -> HandshakeOrchestrator:
        return HandshakeOrchestrator(
            endpoint=endpoint,
            magic=self.magic,
            connector=self.connector,
            local_endpoint=self.local_endpoint,
            nonce_source=self.nonce_source,
            clock=self.clock,
            timeout=self.timeout,
            services=self.services,
            user_agent=self.user_agent,
            start_height=self.start_height,
            relay=self.relay,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Attesa prima del tentativo attempt+1 (attempt parte da 1)"""
        return min(self.retry_backoff * (2 ** (attempt - 1)), self.retry_backoff_max)

    async def handshake(
        self,
        endpoint: Endpoint,
        semaphore: Optional[asyncio.Semaphore] = None
    ) -> HandshakeOutcome:
        """
        Handshake con un peer, con retry sui soli errori di trasporto.

        Ogni tentativo usa un nuovo orchestrator e quindi un nuovo nonce.
        """
        attempt = 0
        started = time.perf_counter()

        while True:
            attempt += 1

            if semaphore is not None:
                async with semaphore:
                    outcome = await self.create_orchestrator(endpoint).run()
            else:
                outcome = await self.create_orchestrator(endpoint).run()

            outcome.attempts = attempt

            if outcome.state is not HandshakeState.TRANSPORT_FAILED or attempt > self.retry_attempts:
                outcome.duration = time.perf_counter() - started
                return outcome

            delay = self.backoff_delay(attempt)
            logger.info(
                f"Retrying {endpoint} in {delay:.1f}s (attempt {attempt + 1}/{self.retry_attempts + 1})",
                extra_data={"peer": str(endpoint), "error": outcome.error.code if outcome.error else None}
            )
            await self._sleep(delay)

    # ========================================================================
    # FAN-OUT
    # ========================================================================

    async def run(self, endpoints: Iterable[Endpoint]) -> HandshakeSummary:
        """
        Un task per endpoint (duplicati rimossi), attende tutti e aggrega.

        Returns:
            HandshakeSummary: Conteggi successi/fallimenti
        """
        # IPv4 e ::ffff:IPv4 sono lo stesso peer; resta la prima forma vista
        seen: Dict[Endpoint, Endpoint] = {}
        for endpoint in endpoints:
            seen.setdefault(canonicalize(endpoint), endpoint)
        unique = list(seen.values())

        if not unique:
            logger.warning("No endpoints to handshake with")
            return summarize([])

        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None

        logger.info(
            f"Starting handshake fan-out to {len(unique)} peers",
            extra_data={"peers": len(unique), "max_concurrency": self.max_concurrency}
        )

        with PerformanceLogger(logger, "handshake fan-out") as perf:
            tasks = [
                asyncio.create_task(self.handshake(endpoint, semaphore), name=f"handshake-{endpoint}")
                for endpoint in unique
            ]
            results = await asyncio.gather(*tasks, return_exceptions=True)

        outcomes = [
            self._as_outcome(endpoint, result)
            for endpoint, result in zip(unique, results)
        ]
        summary = summarize(outcomes, duration=perf.elapsed_ms / 1000)

        logger.info(
            f"Handshake fan-out finished: {summary.succeeded} succeeded, "
            f"{summary.failed} failed, {summary.total} total",
            extra_data={
                "succeeded": summary.succeeded,
                "failed": summary.failed,
                "total": summary.total,
            }
        )
        return summary

    def _as_outcome(self, endpoint: Endpoint, result) -> HandshakeOutcome:
        if isinstance(result, HandshakeOutcome):
            return result

        # Task terminato da un'eccezione inattesa: fallisce solo questo peer
        logger.error(
            f"Handshake task for {endpoint} crashed: {result!r}",
            extra_data={"peer": str(endpoint)},
            exc_info=(type(result), result, result.__traceback__)
        )
        return HandshakeOutcome(
            endpoint=endpoint,
            state=HandshakeState.TRANSPORT_FAILED,
            error=TransportError(
                f"Handshake task failed: {result!r}",
                code="TASK_FAILED",
                details={"endpoint": str(endpoint)}
            ),
        )


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "HandshakeFanOut",
    "HandshakeSummary",
    "summarize",
]
