"""Device sessions: handshake, request/reply and device operations.

A session is one connect -> operate -> disconnect sequence against one
terminal. ``connect()`` negotiates the transport (TCP first, UDP as the
fallback) and returns a ready ``TcpSession`` or ``UdpSession``; both expose
the same operations and differ only in transport and chunk size.

State machine:
    DISCONNECTED -> CONNECTING_TCP -> CONNECTED_TCP -> AUTHENTICATING -> READY
    DISCONNECTED -> CONNECTING_TCP (fail) -> CONNECTING_UDP -> CONNECTED_UDP
                 -> AUTHENTICATING -> READY
    any connecting/authenticating state -> FAILED once both transports fail

Operations do not tear the session down on failure; only ``disconnect()``
does, and it is idempotent.

Author: ZK Fleet Team
"""
import asyncio
import logging
import struct
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional, Union

from ..config import DeviceClientConfig
from ..exceptions import (
    AuthError,
    CommandRejectedError,
    DeviceTimeoutError,
    ProtocolError,
    TransportError,
    ValidationError,
    ZKError,
)
from .commkey import derive_auth_token
from .constants import (
    CMD_ACK_OK,
    CMD_ACK_UNAUTH,
    CMD_ATTLOG_RRQ,
    CMD_AUTH,
    CMD_CLEAR_ATTLOG,
    CMD_CONNECT,
    CMD_DATA,
    CMD_DELETE_USER,
    CMD_EXIT,
    CMD_FREE_DATA,
    CMD_GET_FREE_SIZES,
    CMD_GET_TIME,
    CMD_PREPARE_BUFFER,
    CMD_PREPARE_DATA,
    CMD_READ_BUFFER,
    CMD_REFRESHDATA,
    CMD_REG_EVENT,
    CMD_SET_TIME,
    CMD_UNLOCK,
    CMD_USER_WRQ,
    CMD_USERTEMP_RRQ,
    DEFAULT_DEVICE_PORT,
    FCT_ATTLOG,
    FCT_USER,
    MAX_UID,
    MIN_UID,
    TCP_MAX_CHUNK,
    UDP_MAX_CHUNK,
    USHRT_MAX,
)
from .packets import Packet, build_packet, decode_time_bytes, encode_time
from .records import (
    DecodeResult,
    RawAttendanceRecord,
    RawUserRecord,
    RecordKind,
    RecordLayout,
    decode_attendances,
    decode_users,
    encode_user,
    strip_size_prefix,
    validate_user,
)
from .transport import PortPool, TcpTransport, Transport, TransportKind, UdpTransport

if TYPE_CHECKING:
    from .client import PacketSizeCache

logger = logging.getLogger(__name__)

MAX_RELAY_SECONDS = 60


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING_TCP = "connecting_tcp"
    CONNECTED_TCP = "connected_tcp"
    CONNECTING_UDP = "connecting_udp"
    CONNECTED_UDP = "connected_udp"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    FAILED = "failed"


@dataclass
class DeviceInfo:
    """Storage counters reported by CMD_GET_FREE_SIZES."""

    users: int = 0
    fingers: int = 0
    records: int = 0
    cards: int = 0
    fingers_capacity: int = 0
    users_capacity: int = 0
    records_capacity: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "users": self.users,
            "fingers": self.fingers,
            "records": self.records,
            "cards": self.cards,
            "fingers_capacity": self.fingers_capacity,
            "users_capacity": self.users_capacity,
            "records_capacity": self.records_capacity,
        }


@dataclass
class ChunkTransfer:
    """Accumulator for one buffered bulk read."""

    expected: int
    chunks: list[bytes] = field(default_factory=list)
    received: int = 0

    @property
    def complete(self) -> bool:
        return self.received >= self.expected

    def add(self, data: bytes) -> None:
        self.chunks.append(data)
        self.received += len(data)

    def result(self) -> bytes:
        return b"".join(self.chunks)[:self.expected]


class DeviceSession:
    """Shared protocol logic for TCP and UDP sessions."""

    kind: TransportKind
    max_chunk: int
    connecting_state: SessionState
    connected_state: SessionState

    def __init__(
        self,
        transport: Transport,
        comm_key: Optional[Union[str, int]] = None,
        config: Optional[DeviceClientConfig] = None,
        packet_sizes: Optional["PacketSizeCache"] = None,
    ):
        self.transport = transport
        self.comm_key = comm_key
        self.config = config or DeviceClientConfig()
        self.packet_sizes = packet_sizes
        self.session_id = 0
        self.reply_id = USHRT_MAX - 1
        self.state = SessionState.DISCONNECTED
        self.last_decode: Optional[DecodeResult] = None

    @property
    def ip(self) -> str:
        return self.transport.host

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.READY and self.transport.is_open

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.ip}, state={self.state.value})"

    # ============================================
    # Request / reply
    # ============================================

    async def _send(self, command: int, payload: bytes = b"") -> None:
        self.reply_id = (self.reply_id + 1) % USHRT_MAX
        await self.transport.send(
            build_packet(command, self.session_id, self.reply_id, payload)
        )

    async def _recv_reply(self, timeout: float) -> Packet:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise DeviceTimeoutError(
                    f"No reply from {self.ip} within {timeout:.1f}s",
                    timeout_seconds=timeout,
                    host=self.ip,
                )
            packet = await self.transport.recv(remaining)
            if packet.command == CMD_REG_EVENT:
                logger.debug(f"Skipping realtime event from {self.ip}")
                continue
            if packet.reply_id != self.reply_id:
                # Late reply to an earlier command (e.g. a trailing ACK)
                logger.debug(
                    f"Dropping stale reply {packet.command} from {self.ip} "
                    f"(reply id {packet.reply_id}, expected {self.reply_id})"
                )
                continue
            return packet

    async def request(self, command: int, payload: bytes = b"") -> Packet:
        """Send one command and wait for exactly one reply.

        Raises:
            DeviceTimeoutError: If no reply arrives within the request timeout
            TransportError: If the socket fails
        """
        await self._send(command, payload)
        return await self._recv_reply(self.config.request_timeout)

    def _require_ack(self, reply: Packet, operation: str) -> Packet:
        if reply.command != CMD_ACK_OK:
            raise CommandRejectedError(operation, reply.command)
        return reply

    # ============================================
    # Lifecycle
    # ============================================

    @property
    def _has_secret(self) -> bool:
        return self.comm_key is not None and str(self.comm_key).strip() != ""

    async def open(self) -> None:
        """Open the transport and run the handshake.

        Raises:
            TransportError: If the socket cannot be opened
            AuthError: If the device rejects the comm key
            ProtocolError: If the device refuses CMD_CONNECT
        """
        self.state = self.connecting_state
        await self.transport.open()
        self.state = self.connected_state
        await self._handshake()

    async def _handshake(self) -> None:
        reply = await self.request(CMD_CONNECT)
        self.session_id = reply.session_id

        if reply.command == CMD_ACK_UNAUTH or self._has_secret:
            self.state = SessionState.AUTHENTICATING
            token = derive_auth_token(self.comm_key, self.session_id)
            reply = await self.request(CMD_AUTH, token)
            if reply.command != CMD_ACK_OK:
                raise AuthError(
                    f"Device {self.ip} rejected the comm key",
                    reply_code=reply.command,
                )
        elif reply.command != CMD_ACK_OK:
            raise ProtocolError(
                f"Device {self.ip} refused CMD_CONNECT",
                command=reply.command,
            )

        self.state = SessionState.READY
        logger.info(
            f"Connected to {self.ip} over {self.kind.value} (session {self.session_id})"
        )

    async def abort(self) -> None:
        """Close the transport without saying goodbye (failed connects)."""
        await self.transport.close()
        self.state = SessionState.FAILED

    async def disconnect(self) -> None:
        """Send CMD_EXIT and close the transport. Idempotent.

        The transport is closed and any UDP port released even when the
        exit command fails.
        """
        if self.state is SessionState.DISCONNECTED:
            return
        try:
            if self.state is SessionState.READY:
                await self.request(CMD_EXIT)
        except ZKError as e:
            logger.warning(f"CMD_EXIT to {self.ip} failed: {e}")
        finally:
            await self.transport.close()
            self.state = SessionState.DISCONNECTED
            logger.debug(f"Disconnected from {self.ip}")

    # ============================================
    # Buffered bulk transfer
    # ============================================

    async def read_with_buffer(self, command: int, fct: int = 0, ext: int = 0) -> bytes:
        """Read a bulk dump through the device's prepare/read/free buffer.

        All chunk requests are sent up front; replies are accumulated until
        the declared total has arrived.

        Args:
            command: Data command to buffer (e.g. CMD_ATTLOG_RRQ)
            fct: Function code for the command
            ext: Extension argument

        Returns:
            The raw dump, including its 4-byte size prefix

        Raises:
            DeviceTimeoutError: If the device stalls for longer than the
                chunk timeout; reports bytes received vs expected
            ProtocolError: On an unexpected command id mid-transfer
            CommandRejectedError: If the device refuses to prepare the buffer
        """
        reply = await self.request(
            CMD_PREPARE_BUFFER, struct.pack("<bhii", 1, command, fct, ext)
        )
        if reply.command == CMD_DATA:
            return reply.payload
        self._require_ack(reply, "prepare buffer")
        if len(reply.payload) < 5:
            raise ProtocolError(
                f"Prepare-buffer reply from {self.ip} carries no size",
                command=reply.command,
            )

        transfer = ChunkTransfer(expected=struct.unpack_from("<I", reply.payload, 1)[0])
        if transfer.expected == 0:
            await self._free_buffer()
            return b""

        for start in range(0, transfer.expected, self.max_chunk):
            size = min(self.max_chunk, transfer.expected - start)
            await self._send(CMD_READ_BUFFER, struct.pack("<ii", start, size))

        timeout = self.config.chunk_timeout
        while not transfer.complete:
            try:
                packet = await self.transport.recv(timeout)
            except DeviceTimeoutError as e:
                raise DeviceTimeoutError(
                    f"Chunked read from {self.ip} stalled after "
                    f"{transfer.received}/{transfer.expected} bytes",
                    timeout_seconds=timeout,
                    bytes_received=transfer.received,
                    bytes_expected=transfer.expected,
                    host=self.ip,
                ) from e

            if packet.command == CMD_DATA:
                transfer.add(packet.payload)
            elif packet.command in (CMD_PREPARE_DATA, CMD_ACK_OK, CMD_REG_EVENT):
                continue
            else:
                raise ProtocolError(
                    f"Unexpected command {packet.command} during chunked read from {self.ip}",
                    command=packet.command,
                )

        await self._absorb_trailing_ack()
        await self._free_buffer()
        return transfer.result()

    async def _absorb_trailing_ack(self) -> None:
        try:
            packet = await self.transport.recv(self.config.grace_period)
        except DeviceTimeoutError:
            return
        if packet.command != CMD_ACK_OK:
            logger.debug(f"Discarding trailing command {packet.command} from {self.ip}")

    async def _free_buffer(self) -> None:
        try:
            reply = await self.request(CMD_FREE_DATA)
        except DeviceTimeoutError as e:
            logger.warning(f"CMD_FREE_DATA to {self.ip} timed out: {e}")
            return
        if reply.command != CMD_ACK_OK:
            logger.warning(f"Device {self.ip} did not acknowledge CMD_FREE_DATA ({reply.command})")

    # ============================================
    # Operations
    # ============================================

    async def get_info(self) -> DeviceInfo:
        """Read storage counters; short replies leave missing fields at 0."""
        reply = self._require_ack(await self.request(CMD_GET_FREE_SIZES), "get free sizes")
        count = len(reply.payload) // 4
        fields = struct.unpack_from(f"<{count}i", reply.payload) if count else ()

        def at(index: int) -> int:
            return fields[index] if index < len(fields) else 0

        return DeviceInfo(
            users=at(4),
            fingers=at(6),
            records=at(8),
            cards=at(12),
            fingers_capacity=at(14),
            users_capacity=at(15),
            records_capacity=at(16),
        )

    async def get_time(self) -> datetime:
        """Read the device clock (naive device-local time)."""
        reply = self._require_ack(await self.request(CMD_GET_TIME), "get time")
        if len(reply.payload) < 4:
            raise ProtocolError(f"Short time reply from {self.ip}", command=reply.command)
        try:
            return decode_time_bytes(reply.payload)
        except ValueError as e:
            raise ProtocolError(
                f"Device {self.ip} reported an invalid clock value",
                command=reply.command,
                cause=e,
            ) from e

    async def set_time(self, value: datetime) -> None:
        """Set the device clock from a naive device-local datetime."""
        payload = struct.pack("<I", encode_time(value))
        self._require_ack(await self.request(CMD_SET_TIME, payload), "set time")

    async def get_attendances(self) -> list[RawAttendanceRecord]:
        dump = await self.read_with_buffer(CMD_ATTLOG_RRQ, FCT_ATTLOG)
        result = decode_attendances(strip_size_prefix(dump), device_ip=self.ip)
        self.last_decode = result
        logger.debug(
            f"Read {len(result.records)} attendance records from {self.ip} "
            f"({result.layout.size}-byte layout)"
        )
        return result.records

    async def get_users(self) -> list[RawUserRecord]:
        dump = await self.read_with_buffer(CMD_USERTEMP_RRQ, FCT_USER)
        result = decode_users(strip_size_prefix(dump), hint=self._cached_user_layout())
        self.last_decode = result
        if result.records:
            self._remember_user_layout(result.layout)
        return result.records

    def _cached_user_layout(self) -> Optional[RecordLayout]:
        if self.packet_sizes is None:
            return None
        size = self.packet_sizes.get(self.ip)
        if size is None:
            return None
        return RecordLayout.from_size(RecordKind.USER, size)

    def _remember_user_layout(self, layout: RecordLayout) -> None:
        if self.packet_sizes is not None:
            self.packet_sizes.set(self.ip, layout.size)

    def _preferred_user_layout(self) -> RecordLayout:
        cached = self._cached_user_layout()
        if cached is not None:
            return cached
        return RecordLayout.USER_72 if self.kind is TransportKind.TCP else RecordLayout.USER_28

    async def set_user(self, user: RawUserRecord) -> None:
        """Create or overwrite a user slot.

        The cached layout for this device is tried first; a non-ACK reply
        retries once with the other layout. The successful layout is cached.

        Raises:
            ValidationError: Before any network call, on invalid input
            CommandRejectedError: If both layouts are refused
        """
        validate_user(user)
        preferred = self._preferred_user_layout()

        candidates: list[tuple[RecordLayout, bytes]] = []
        encode_errors: list[ValidationError] = []
        for layout in (preferred, preferred.alternate()):
            try:
                candidates.append((layout, encode_user(user, layout)))
            except ValidationError as e:
                encode_errors.append(e)
        if not candidates:
            raise encode_errors[0]

        reply: Optional[Packet] = None
        for layout, payload in candidates:
            reply = await self.request(CMD_USER_WRQ, payload)
            if reply.command == CMD_ACK_OK:
                self._remember_user_layout(layout)
                break
            logger.info(
                f"Device {self.ip} refused {layout.size}-byte user record "
                f"(reply {reply.command})"
            )
        else:
            raise CommandRejectedError("set user", reply.command)

        await self.refresh_data()

    async def delete_user(self, uid: int) -> None:
        if not isinstance(uid, int) or not MIN_UID <= uid <= MAX_UID:
            raise ValidationError(
                f"uid must be between {MIN_UID} and {MAX_UID}, got {uid!r}",
                field="uid",
            )
        reply = await self.request(CMD_DELETE_USER, struct.pack("<H", uid))
        self._require_ack(reply, "delete user")
        await self.refresh_data()

    async def pulse_relay(self, seconds: float = 3) -> None:
        """Unlock the door relay for ``seconds`` (sent in tenths)."""
        if not 0 < seconds <= MAX_RELAY_SECONDS:
            raise ValidationError(
                f"Relay time must be between 0 and {MAX_RELAY_SECONDS}s",
                field="seconds",
            )
        payload = struct.pack("<I", int(seconds * 10))
        self._require_ack(await self.request(CMD_UNLOCK, payload), "unlock")

    async def clear_attendance_log(self) -> None:
        self._require_ack(await self.request(CMD_CLEAR_ATTLOG), "clear attendance log")

    async def refresh_data(self) -> None:
        self._require_ack(await self.request(CMD_REFRESHDATA), "refresh data")


class TcpSession(DeviceSession):
    kind = TransportKind.TCP
    max_chunk = TCP_MAX_CHUNK
    connecting_state = SessionState.CONNECTING_TCP
    connected_state = SessionState.CONNECTED_TCP


class UdpSession(DeviceSession):
    kind = TransportKind.UDP
    max_chunk = UDP_MAX_CHUNK
    connecting_state = SessionState.CONNECTING_UDP
    connected_state = SessionState.CONNECTED_UDP


Session = Union[TcpSession, UdpSession]


async def connect(
    ip: str,
    port: int = DEFAULT_DEVICE_PORT,
    comm_key: Optional[Union[str, int]] = None,
    *,
    config: Optional[DeviceClientConfig] = None,
    port_pool: Optional[PortPool] = None,
    packet_sizes: Optional["PacketSizeCache"] = None,
    tcp_factory: Callable[..., Transport] = TcpTransport,
    udp_factory: Callable[..., Transport] = UdpTransport,
) -> Session:
    """Open a ready session, trying TCP first and falling back to UDP.

    Any TCP failure (socket, partial handshake or rejected auth) tears the
    TCP socket down before UDP is attempted.

    Raises:
        TransportError: If neither transport yields a session
        AuthError: If the device rejects the comm key over UDP as well
    """
    config = config or DeviceClientConfig()
    port_pool = port_pool or PortPool(config.udp_port_start, config.udp_port_end)

    tcp = TcpSession(
        tcp_factory(ip, port, config.request_timeout),
        comm_key=comm_key,
        config=config,
        packet_sizes=packet_sizes,
    )
    try:
        await tcp.open()
        return tcp
    except ZKError as e:
        tcp_error: ZKError = e
        logger.info(f"TCP connect to {ip}:{port} failed ({e}); falling back to UDP")
        await tcp.abort()

    udp = UdpSession(
        udp_factory(
            ip,
            port,
            port_pool,
            config.request_timeout,
            config.bind_attempts,
        ),
        comm_key=comm_key,
        config=config,
        packet_sizes=packet_sizes,
    )
    try:
        await udp.open()
        return udp
    except ZKError as e:
        await udp.abort()
        logger.warning(f"UDP connect to {ip}:{port} failed: {e}")
        if isinstance(e, (AuthError, TransportError)):
            e.details["tcp_error"] = str(tcp_error)
            raise
        raise TransportError(
            f"Could not connect to {ip}:{port} over TCP or UDP",
            host=ip,
            port=port,
            cause=e,
            details={"tcp_error": str(tcp_error), "udp_error": str(e)},
        ) from e


__all__ = [
    "SessionState",
    "DeviceInfo",
    "ChunkTransfer",
    "DeviceSession",
    "TcpSession",
    "UdpSession",
    "Session",
    "connect",
]
