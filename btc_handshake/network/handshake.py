"""
btc-handshake - Handshake Orchestrator
========================================
State machine VERSION/VERACK verso un singolo peer.

Last Updated: 2026-10-19
Version: 1.0.0

Steps:
    1. Genera nonce, costruisce VERSION
    2. Invia VERSION                       -> VERSION_SENT
    3. Riceve VERSION del peer             -> VERSION_RECEIVED
    4. Nonce uguale al nostro              -> SELF_CONNECTION (terminale)
    5. Invia VERACK                        -> VERACK_SENT
    6. Riceve VERACK del peer              -> COMPLETE

Ogni errore è terminale e non viene ritentato qui.
"""

from __future__ import annotations
from typing import Optional, Callable, Dict, Any, List, Type, Union
from dataclasses import dataclass
from enum import Enum
import asyncio
import secrets
import time

# Internal imports
from btc_handshake.constants import DEFAULT_SERVICES
from btc_handshake.errors import (
    HandshakeException,
    CodecError,
    ChecksumMismatchError,
    SelfConnectionError,
    TransportError,
    PeerConnectionError,
    PeerTimeoutError,
    format_decode_error,
)
from btc_handshake.logging_setup import get_logger
from btc_handshake.network.address import Endpoint
from btc_handshake.network.message import (
    Message,
    MessageFactory,
    UnknownMessage,
    VerackMessage,
    VersionMessage,
    VersionPayload,
    encode_message,
    read_message,
)
from btc_handshake.network.transport import Connector, Transport


# ============================================================================
# MODULE LOGGER
# ============================================================================

logger = get_logger("network.handshake")


# ============================================================================
# HANDSHAKE STATE
# ============================================================================

class HandshakeState(Enum):
    """Stati handshake"""
    PENDING = "pending"
    CONNECTED = "connected"
    VERSION_SENT = "version_sent"
    VERSION_RECEIVED = "version_received"
    VERACK_SENT = "verack_sent"
    COMPLETE = "complete"

    # Terminal failures
    CHECKSUM_FAILED = "checksum_failed"
    SELF_CONNECTION = "self_connection"
    TRANSPORT_FAILED = "transport_failed"
    DECODE_FAILED = "decode_failed"

    @property
    def is_failure(self) -> bool:
        return self in FAILURE_STATES

    @property
    def is_terminal(self) -> bool:
        return self is HandshakeState.COMPLETE or self.is_failure


FAILURE_STATES = frozenset({
    HandshakeState.CHECKSUM_FAILED,
    HandshakeState.SELF_CONNECTION,
    HandshakeState.TRANSPORT_FAILED,
    HandshakeState.DECODE_FAILED,
})


def failure_state_for(error: HandshakeException) -> HandshakeState:
    """Mappa eccezione -> stato terminale"""
    if isinstance(error, ChecksumMismatchError):
        return HandshakeState.CHECKSUM_FAILED
    if isinstance(error, SelfConnectionError):
        return HandshakeState.SELF_CONNECTION
    if isinstance(error, CodecError):
        return HandshakeState.DECODE_FAILED
    return HandshakeState.TRANSPORT_FAILED


# ============================================================================
# OUTCOME
# ============================================================================

@dataclass
class HandshakeOutcome:
    """
    Risultato di un tentativo di handshake.

    Attributes:
        endpoint: Peer contattato
        state: Stato finale (COMPLETE o fallimento)
        error: Eccezione che ha chiuso l'handshake
        peer_version: VERSION ricevuto dal peer
        local_nonce: Nonce inviato
        attempts: Tentativi effettuati
        duration: Secondi impiegati
    """

    endpoint: Endpoint
    state: HandshakeState
    error: Optional[HandshakeException] = None
    peer_version: Optional[VersionPayload] = None
    local_nonce: Optional[int] = None
    attempts: int = 1
    duration: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.state is HandshakeState.COMPLETE

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "endpoint": str(self.endpoint),
            "state": self.state.value,
            "attempts": self.attempts,
            "duration": round(self.duration, 3),
            "error": self.error.to_dict() if self.error else None,
        }
        if self.peer_version is not None:
            data["peer_version"] = self.peer_version.version
            data["peer_user_agent"] = self.peer_version.user_agent.decode("utf-8", errors="replace")
            data["peer_start_height"] = self.peer_version.start_height
        return data


# ============================================================================
# NONCE / SELF-CONNECTION
# ============================================================================

NonceSource = Callable[[], int]


def default_nonce_source() -> int:
    return secrets.randbits(64)


def check_self_connection(
    sent: Union[VersionMessage, VersionPayload],
    received: Union[VersionMessage, VersionPayload],
) -> None:
    """
    Confronta il nonce inviato con quello ricevuto.

    Raises:
        SelfConnectionError: Se il peer ha restituito il nostro nonce
    """
    if sent.nonce == received.nonce:
        raise SelfConnectionError(
            "Peer echoed local nonce (connected to self)",
            code="SELF_CONNECTION",
            details={"nonce": sent.nonce}
        )


# ============================================================================
# ORCHESTRATOR
# ============================================================================

class HandshakeOrchestrator:
    """
    Handshake VERSION/VERACK con un singolo peer.

    Ogni istanza gestisce un solo tentativo: connessione, nonce e buffer
    sono locali all'istanza.

    Examples:
        >>> orchestrator = HandshakeOrchestrator(endpoint, magic, connector)
        >>> outcome = await orchestrator.run()
        >>> outcome.state
        <HandshakeState.COMPLETE: 'complete'>
    """

    def __init__(
        self,
        endpoint: Endpoint,
        magic: bytes,
        connector: Connector,
        local_endpoint: Optional[Endpoint] = None,
        nonce_source: NonceSource = default_nonce_source,
        clock: Callable[[], float] = time.time,
        timeout: Optional[float] = None,
        services: int = DEFAULT_SERVICES,
        user_agent: bytes = b"",
        start_height: int = 0,
        relay: Optional[int] = None,
    ):
        """
        Args:
            endpoint: Peer da contattare
            magic: Magic bytes di rete (forma wire)
            connector: Coroutine che apre il Transport verso endpoint
            local_endpoint: Endpoint locale annunciato (None = socket locale)
            nonce_source: Generatore nonce a 64 bit
            clock: Sorgente tempo per il timestamp
            timeout: Deadline dell'intero handshake (secondi)
        """
        self.endpoint = endpoint
        self.magic = magic
        self.timeout = timeout

        self._connector = connector
        self._local_endpoint = local_endpoint
        self._nonce_source = nonce_source
        self._clock = clock

        self.services = services
        self.user_agent = user_agent
        self.start_height = start_height
        self.relay = relay

        self.state = HandshakeState.PENDING
        self.history: List[HandshakeState] = [HandshakeState.PENDING]
        self.nonce: Optional[int] = None
        self.peer_version: Optional[VersionPayload] = None
        self.transport: Optional[Transport] = None

        self.messages_sent = 0
        self.messages_received = 0

        self.log = logger.bind(peer=str(endpoint))

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def run(self) -> HandshakeOutcome:
        """
        Esegue l'handshake e restituisce l'esito, senza sollevare
        eccezioni di handshake.
        """
        started = time.perf_counter()
        error: Optional[HandshakeException] = None

        try:
            await self.perform()
        except HandshakeException as e:
            error = e

        return HandshakeOutcome(
            endpoint=self.endpoint,
            state=self.state,
            error=error,
            peer_version=self.peer_version,
            local_nonce=self.nonce,
            duration=time.perf_counter() - started,
        )

    async def perform(self) -> VersionPayload:
        """
        Esegue l'handshake sotto deadline.

        Returns:
            VersionPayload: VERSION del peer

        Raises:
            HandshakeException: Al primo errore (stato terminale impostato)
        """
        self.log.info(f"Starting handshake with {self.endpoint}")

        try:
            if self.timeout is not None:
                try:
                    await asyncio.wait_for(self._handshake(), timeout=self.timeout)
                except asyncio.TimeoutError:
                    raise PeerTimeoutError(
                        f"Handshake timeout after {self.timeout}s in state {self.state.value}",
                        code="HANDSHAKE_TIMEOUT",
                        details={"endpoint": str(self.endpoint), "state": self.state.value}
                    )
            else:
                await self._handshake()

        except HandshakeException as e:
            self._transition(failure_state_for(e))
            self.log.error(
                f"Handshake failed with {self.endpoint}: {e}",
                extra_data={"state": self.state.value, "code": e.code}
            )
            raise

        self.log.info(
            f"Handshake complete with {self.endpoint}",
            extra_data={
                "peer_version": self.peer_version.version,
                "peer_height": self.peer_version.start_height,
            }
        )
        return self.peer_version

    # ========================================================================
    # STATE MACHINE
    # ========================================================================

    async def _handshake(self) -> None:
        try:
            self.transport = await self._connect()
            self._transition(HandshakeState.CONNECTED)

            # 1. Build VERSION with a fresh nonce
            self.nonce = self._nonce_source()
            version_msg = MessageFactory.create_version(
                nonce=self.nonce,
                local=self._resolve_local_endpoint(),
                remote=self.endpoint,
                clock=self._clock,
                services=self.services,
                user_agent=self.user_agent,
                start_height=self.start_height,
                relay=self.relay,
            )

            # 2. Send VERSION
            await self._send(version_msg)
            self._transition(HandshakeState.VERSION_SENT)

            # 3. Receive VERSION
            peer_version_msg = await self._expect(VersionMessage)
            self.peer_version = peer_version_msg.payload
            self._transition(HandshakeState.VERSION_RECEIVED)

            self.log.debug(
                "Peer version received",
                extra_data={
                    "version": self.peer_version.version,
                    "services": self.peer_version.services,
                    "user_agent": self.peer_version.user_agent.decode("utf-8", errors="replace"),
                    "start_height": self.peer_version.start_height,
                }
            )

            # 4. Self-connection check
            check_self_connection(version_msg, peer_version_msg)

            # 5. Send VERACK
            await self._send(MessageFactory.create_verack())
            self._transition(HandshakeState.VERACK_SENT)

            # 6. Receive VERACK
            await self._expect(VerackMessage)
            self._transition(HandshakeState.COMPLETE)

        finally:
            await self._close()

    def _transition(self, state: HandshakeState) -> None:
        self.log.debug(f"{self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    def _resolve_local_endpoint(self) -> Endpoint:
        if self._local_endpoint is not None:
            return self._local_endpoint
        if self.transport is not None and self.transport.local_endpoint is not None:
            return self.transport.local_endpoint
        return Endpoint.unspecified()

    # ========================================================================
    # TRANSPORT I/O
    # ========================================================================

    async def _connect(self) -> Transport:
        try:
            return await self._connector(self.endpoint)
        except TransportError:
            raise
        except OSError as e:
            raise PeerConnectionError(
                f"Failed to connect to peer: {e}",
                code="PEER_CONNECT_FAILED",
                details={"endpoint": str(self.endpoint)}
            ) from e

    async def _send(self, message: Message) -> None:
        data = encode_message(message, self.magic)
        try:
            await self.transport.write(data)
        except OSError as e:
            raise PeerConnectionError(
                f"Failed to send {message.command.decode()}: {e}",
                code="PEER_SEND_FAILED",
                details={"endpoint": str(self.endpoint)}
            ) from e

        self.messages_sent += 1
        self.log.debug(f"Sent {message.command.decode()} ({len(data)} bytes)")

    async def _receive(self) -> Message:
        try:
            message = await read_message(self.transport, magic=self.magic)
        except OSError as e:
            raise PeerConnectionError(
                f"Failed to receive message: {e}",
                code="PEER_RECV_FAILED",
                details={"endpoint": str(self.endpoint)}
            ) from e

        self.messages_received += 1
        return message

    async def _expect(self, expected: Type[Message]) -> Message:
        """Prossimo messaggio del tipo atteso, saltando comandi sconosciuti"""
        while True:
            message = await self._receive()

            if isinstance(message, expected):
                return message

            if isinstance(message, UnknownMessage):
                self.log.debug(f"Skipping {message.command!r} while waiting for {expected.message_type.value}")
                continue

            raise format_decode_error(
                "handshake",
                f"expected {expected.message_type.value}, got {message.command.decode()}",
                code="UNEXPECTED_MESSAGE",
                state=self.state.value,
            )

    async def _close(self) -> None:
        if self.transport is None:
            return
        try:
            await self.transport.close()
        except OSError as e:
            self.log.debug(f"Error closing connection: {e}")

    def __repr__(self) -> str:
        return f"HandshakeOrchestrator({self.endpoint}, state={self.state.value})"


# ============================================================================
# EXPORT
# ============================================================================

__all__ = [
    "HandshakeState",
    "FAILURE_STATES",
    "HandshakeOutcome",
    "HandshakeOrchestrator",
    "NonceSource",
    "default_nonce_source",
    "check_self_connection",
    "failure_state_for",
]
