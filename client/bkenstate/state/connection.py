"""
Connection controller — server, voice and reconnect state.

The three axes are independent; each is a small enum plus the fields that
only make sense in some of its phases.  Failure policy is per command:

  connect / switch server   rollback-on-failure: prior address and flags are
                            kept, only connect_error changes
  leave voice, disconnect   always-commit-locally: local state is committed
                            before the result arrives; an error is surfaced
                            but never re-raises the flag
  kick (event)              terminal: disconnected with a fixed reason

Reconnect deadlines are stored as absolute Unix-ms values and compared
against the caller's ``now``; no timers live in here.
"""

import enum
import logging

from bkenstate.config import settings

logger = logging.getLogger(__name__)


class ServerPhase(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class VoicePhase(str, enum.Enum):
    IDLE = "idle"
    JOINING = "joining"
    JOINED = "joined"


class ReconnectPhase(str, enum.Enum):
    INACTIVE = "inactive"
    RETRYING = "retrying"
    CONNECTING = "connecting"


class ConnectionController:
    def __init__(self) -> None:
        self.server_phase = ServerPhase.DISCONNECTED
        self.connected_addr: str = ""
        self.connect_error: str = ""
        # address of a connect attempt in flight while another server is active
        self.pending_addr: str = ""
        # bumped by a user disconnect; results issued before it are stale
        self.generation: int = 0

        self.voice_phase = VoicePhase.IDLE
        self.voice_channel_id: int | None = None

        self.reconnect_phase = ReconnectPhase.INACTIVE
        self.reconnect_attempt: int = 0
        self.reconnect_reason: str = ""
        self.retry_at: int | None = None  # Unix ms

    # ------------------------------------------------------------------
    # Derived flags
    # ------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self.server_phase == ServerPhase.CONNECTED

    @property
    def voice_connected(self) -> bool:
        return self.voice_phase == VoicePhase.JOINED

    @property
    def reconnecting(self) -> bool:
        return self.reconnect_phase != ReconnectPhase.INACTIVE

    def set_error(self, error: str) -> None:
        self.connect_error = error

    # ------------------------------------------------------------------
    # Server connection
    # ------------------------------------------------------------------

    def begin_connect(self, addr: str) -> None:
        """Mark a connect attempt to *addr* as in flight.

        While another server is connected the visible state is left as it
        is; only the pending address is recorded.
        """
        self.pending_addr = addr
        if self.server_phase != ServerPhase.CONNECTED:
            self.server_phase = ServerPhase.CONNECTING

    def connect_succeeded(self, addr: str) -> bool:
        """Commit a successful connect.  Returns True if the active server changed."""
        changed = addr != self.connected_addr
        self.server_phase = ServerPhase.CONNECTED
        self.connected_addr = addr
        self.connect_error = ""
        self.pending_addr = ""
        self._stop_reconnect()
        logger.info("Connected to %s", addr)
        return changed

    def connect_failed(self, addr: str, error: str) -> None:
        """Roll back a failed connect: keep whatever was active before."""
        self.pending_addr = ""
        self.connect_error = error
        if self.server_phase == ServerPhase.CONNECTING:
            self.server_phase = ServerPhase.DISCONNECTED
        logger.warning("Connect to %s failed: %s", addr, error)

    def disconnected(self) -> None:
        """User-initiated disconnect; committed locally before the transport call."""
        self.generation += 1
        self.server_phase = ServerPhase.DISCONNECTED
        self.connected_addr = ""
        self.pending_addr = ""
        self.voice_left()
        self._stop_reconnect()

    def kicked(self) -> None:
        self.server_phase = ServerPhase.DISCONNECTED
        self.voice_left()
        self._stop_reconnect()
        self.connect_error = settings.KICKED_REASON
        logger.warning("Kicked from %s", self.connected_addr or "server")

    def connection_lost(self, reason: str, now: int) -> None:
        """Transport-level loss: drop to disconnected and start the countdown.

        Ignored unless a server is connected; a loss reported after a
        disconnect or kick must not resurrect the session.
        """
        if self.server_phase != ServerPhase.CONNECTED:
            logger.debug("connection_lost while %s, ignored", self.server_phase.value)
            return
        self.server_phase = ServerPhase.DISCONNECTED
        self.voice_left()
        logger.warning("Connection to %s lost: %s", self.connected_addr or "server", reason)
        self.start_reconnect(reason, now)

    # ------------------------------------------------------------------
    # Voice connection
    # ------------------------------------------------------------------

    def begin_join_voice(self, channel_id: int) -> None:
        self.voice_phase = VoicePhase.JOINING
        self.voice_channel_id = channel_id

    def voice_joined(self, channel_id: int) -> None:
        self.voice_phase = VoicePhase.JOINED
        self.voice_channel_id = channel_id

    def voice_join_failed(self, error: str) -> None:
        self.voice_phase = VoicePhase.IDLE
        self.voice_channel_id = None
        self.connect_error = error

    def voice_left(self) -> None:
        self.voice_phase = VoicePhase.IDLE
        self.voice_channel_id = None

    # ------------------------------------------------------------------
    # Reconnect backoff
    # ------------------------------------------------------------------

    def _delay_for(self, attempt: int) -> int:
        backoff = settings.RECONNECT_BACKOFF_SECONDS
        return backoff[min(attempt, len(backoff) - 1)]

    def _schedule(self, now: int) -> None:
        self.reconnect_phase = ReconnectPhase.RETRYING
        self.retry_at = now + self._delay_for(self.reconnect_attempt) * 1000

    def start_reconnect(self, reason: str, now: int) -> None:
        if self.reconnecting:
            return
        self.reconnect_reason = reason or settings.CONNECTION_LOST_REASON
        self.reconnect_attempt = 0
        self._schedule(now)
        logger.info("Reconnect scheduled in %ss", self._delay_for(0))

    def poll(self, now: int) -> int | None:
        """Fire the pending attempt if its deadline has passed.

        Returns the new attempt number when an attempt fires, else None.
        """
        if self.reconnect_phase != ReconnectPhase.RETRYING or self.retry_at is None:
            return None
        if now < self.retry_at:
            return None
        self.reconnect_attempt += 1
        self.reconnect_phase = ReconnectPhase.CONNECTING
        self.retry_at = None
        self.server_phase = ServerPhase.CONNECTING
        logger.info("Reconnect attempt %s", self.reconnect_attempt)
        return self.reconnect_attempt

    def reconnect_failed(self, error: str, now: int) -> None:
        """Attempt failed; schedule the next one unless cancelled meanwhile."""
        if self.reconnect_phase != ReconnectPhase.CONNECTING:
            return
        self.server_phase = ServerPhase.DISCONNECTED
        self.connect_error = error
        self._schedule(now)

    def cancel_reconnect(self) -> None:
        if self.reconnect_phase == ReconnectPhase.CONNECTING:
            self.server_phase = ServerPhase.DISCONNECTED
        self._stop_reconnect()

    def _stop_reconnect(self) -> None:
        self.reconnect_phase = ReconnectPhase.INACTIVE
        self.reconnect_attempt = 0
        self.retry_at = None
