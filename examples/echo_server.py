"""Callback-based echo server.

A single-threaded echo server on one greenlet hub. The listening socket
hands each accepted connection to ``_on_accept``; every connection echoes
whatever it reads through ``write()`` and closes itself on EOF. The
close only completes once the queued echo writes have drained.
"""

from __future__ import annotations

from typing import Any

from greensockets import ActiveSocket, EventQueue, Hub, InetAddress, PassiveSocket


class EchoServer:
    """An echo server built from PassiveSocket/ActiveSocket callbacks."""

    def __init__(self, host: str = "127.0.0.1", port: int = 0) -> None:
        self.hub = Hub()
        self.queue = EventQueue(self.hub, "echo")
        self.connections: list[ActiveSocket[Any]] = []
        server = PassiveSocket.bound_to(InetAddress(host, port))
        if server is None:
            raise OSError(f"could not bind {host}:{port}")
        self.server = server

    @property
    def address(self) -> InetAddress:
        address = self.server.local_address
        assert address is not None
        return address

    def _on_data(self, conn: ActiveSocket[Any], estimate: int) -> None:
        result = conn.read()
        if result.count < 1:
            conn.close()
            return
        conn.write(bytes(result.block))

    def _on_accept(self, conn: ActiveSocket[Any]) -> None:
        self.connections.append(conn)
        conn.on_read(self._on_data)

    def start(self, backlog: int = 128) -> bool:
        return self.server.listen_on(self.queue, backlog, on_accept=self._on_accept)

    def run(self) -> None:
        """Run the hub until stop() is called, then close everything."""
        try:
            self.hub.run()
        finally:
            self.server.close()
            for conn in self.connections:
                conn.close()
            self.hub.close()

    def stop(self) -> None:
        self.hub.stop()


def main() -> None:
    server = EchoServer(port=9999)
    if not server.start():
        raise SystemExit("listen failed")
    print(f"Echo server listening on {server.address}")
    print("Press Ctrl+C to stop.")
    try:
        server.run()
    except KeyboardInterrupt:
        server.stop()


if __name__ == "__main__":
    main()
