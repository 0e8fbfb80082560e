"""A remote peer: its tunnel, endpoint and the addresses it may use."""

from __future__ import annotations

import dataclasses
import logging
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Iterable, Iterator, Optional, Tuple

from wgtun.allowed_ips import Address, AllowedIP, AllowedIps
from wgtun.udp import SocketAddr, UDPError, UDPSocket

logger = logging.getLogger(__name__)


@dataclass
class Endpoint:
    """The remote address of a peer and, if connected, the socket used for it."""

    addr: Optional[SocketAddr] = None
    conn: Optional[UDPSocket] = None


class Peer:
    """A peer of the device, wrapping the tunnel state used to talk to it."""

    def __init__(
        self,
        tunnel: Any,
        index: int,
        endpoint: Optional[SocketAddr],
        allowed_ips: Iterable[AllowedIP],
        preshared_key: Optional[bytes],
    ) -> None:
        self.tunnel = tunnel
        self._index = index
        self._endpoint = Endpoint(addr=endpoint)
        self._endpoint_lock = threading.Lock()
        self._allowed_ips: AllowedIps[bool] = AllowedIps.from_entries(
            (ip, True) for ip in allowed_ips
        )
        self._preshared_key = preshared_key

    def update_timers(self, dst: Any) -> Any:
        """Let the tunnel run its timers."""
        return self.tunnel.update_timers(dst)

    def endpoint(self) -> Endpoint:
        """A snapshot of the current endpoint."""
        with self._endpoint_lock:
            return dataclasses.replace(self._endpoint)

    def shutdown_endpoint(self) -> None:
        """Shut down and forget the connected socket, if there is one."""
        with self._endpoint_lock:
            conn, self._endpoint.conn = self._endpoint.conn, None
        if conn is not None:
            logger.info("Disconnecting from endpoint")
            conn.shutdown()

    def set_endpoint(self, addr: SocketAddr) -> None:
        """Change the endpoint address, dropping the old connection if it differs."""
        with self._endpoint_lock:
            if self._endpoint.addr == addr:
                return
            conn = self._endpoint.conn
            self._endpoint = Endpoint(addr=addr)
        if conn is not None:
            conn.shutdown()

    def connect_endpoint(self, port: int, fwmark: Optional[int]) -> UDPSocket:
        """Open a socket bound to ``port`` and connected to the endpoint."""
        with self._endpoint_lock:
            if self._endpoint.conn is not None:
                raise UDPError("Connected")
            addr = self._endpoint.addr
            if addr is None:
                raise ValueError("Attempt to connect to undefined endpoint")

            conn = UDPSocket.ipv6() if ":" in addr[0] else UDPSocket.ipv4()
            try:
                conn.set_non_blocking().set_reuse().bind(port).connect(addr)
                if fwmark is not None:
                    conn.set_fwmark(fwmark)
            except BaseException:
                conn.close()
                raise

            logger.info("Connected endpoint port=%s endpoint=%s", port, addr)
            self._endpoint.conn = conn
            return conn

    def is_allowed_ip(self, addr: Any) -> bool:
        """Whether ``addr`` falls inside one of the peer's allowed networks."""
        return self._allowed_ips.find(addr) is not None

    def allowed_ips(self) -> Iterator[Tuple[Address, int]]:
        """Yield ``(network_address, prefixlen)`` for each allowed network."""
        for _, ip, cidr in self._allowed_ips:
            yield ip, cidr

    def time_since_last_handshake(self) -> Optional[timedelta]:
        """Time since the last handshake, if one has happened."""
        return self.tunnel.time_since_last_handshake()

    def persistent_keepalive(self) -> Optional[int]:
        """The keepalive interval in seconds, if set."""
        return self.tunnel.persistent_keepalive()

    def preshared_key(self) -> Optional[bytes]:
        """The preshared key, if set."""
        return self._preshared_key

    def index(self) -> int:
        """The index the tunnel uses."""
        return self._index