"""Building blocks for a userspace WireGuard-style tunnel device: allowed-IP tables, a read-mostly lock, privilege dropping, UDP and TUN sockets, peers and the configuration protocol."""

__version__ = "0.4.0"