from greensockets.active import READ_ON_CLOSED_SOCKET as READ_ON_CLOSED_SOCKET
from greensockets.active import ActiveSocket as ActiveSocket
from greensockets.active import ReadResult as ReadResult
from greensockets.address import Inet6Address as Inet6Address
from greensockets.address import InetAddress as InetAddress
from greensockets.address import SocketAddress as SocketAddress
from greensockets.address import UnixAddress as UnixAddress
from greensockets.base import Socket as Socket
from greensockets.descriptor import FileDescriptor as FileDescriptor
from greensockets.hub import EventQueue as EventQueue
from greensockets.hub import Hub as Hub
from greensockets.hub import ReadSource as ReadSource
from greensockets.hub import default_queue as default_queue
from greensockets.hub import reset_default_queue as reset_default_queue
from greensockets.hub import set_default_queue as set_default_queue
from greensockets.passive import PassiveSocket as PassiveSocket

__all__ = [
    "READ_ON_CLOSED_SOCKET",
    "ActiveSocket",
    "EventQueue",
    "FileDescriptor",
    "Hub",
    "Inet6Address",
    "InetAddress",
    "PassiveSocket",
    "ReadResult",
    "ReadSource",
    "Socket",
    "SocketAddress",
    "UnixAddress",
    "default_queue",
    "reset_default_queue",
    "set_default_queue",
]
