"""VM service port negotiation.

The Dart VM exposes its service protocol (observatory) on a TCP port.
The port is either taken from the user's VM options or allocated from the
OS before the VM is started, then passed to the VM on its command line.

Recognized VM options (first match wins):
    --enable-vm-service            default port 8181
    --observe                      default port 8181
    --enable-vm-service:<port>[/<host>]
    --observe:<port>[/<host>]
"""

from __future__ import annotations

import logging
import socket
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from .errors import ResourceError
from .options import parse_int_before_slash

__all__ = [
    "DEFAULT_SERVICE_PORT",
    "ENABLE_VM_SERVICE",
    "LOCAL_HOST",
    "OBSERVE",
    "UNASSIGNED_PORT",
    "NegotiatedPort",
    "PortNegotiation",
    "find_available_port",
    "find_service_port",
    "negotiate_port",
    "service_port_option",
    "service_url",
]

logger = logging.getLogger(__name__)

ENABLE_VM_SERVICE = "--enable-vm-service"
OBSERVE = "--observe"

# Dart VM default, see https://dart.dev/tools/dart-vm
DEFAULT_SERVICE_PORT = 8181

# Port value before a run has started
UNASSIGNED_PORT = -1

MAX_PORT = 65535

# Host used in service URLs
LOCAL_HOST = "127.0.0.1"

PortAllocator = Callable[[], int]


@dataclass(frozen=True)
class NegotiatedPort:
    """The service port of one run.

    Attributes:
        value: TCP port, 1..65535
        explicit: True if taken from the user's VM options
    """

    value: int
    explicit: bool = False

    def __post_init__(self) -> None:
        if not 0 < self.value <= MAX_PORT:
            raise ValueError(f"port out of range: {self.value}")


@dataclass(frozen=True)
class PortNegotiation:
    """Result of port negotiation.

    Attributes:
        port: The negotiated port
        extra_option: Option to append to the VM command line, None when the
            user's options already carry the port
    """

    port: NegotiatedPort
    extra_option: str | None = None


def service_port_option(port: int) -> str:
    """Canonical VM option that enables the service on ``port``."""
    return f"{ENABLE_VM_SERVICE}:{port}"


def service_url(port: int, host: str = LOCAL_HOST) -> str:
    """URL of the VM service listening on ``port``."""
    return f"http://{host}:{port}"


def _port_from_option(option: str) -> int | None:
    """Port requested by a single VM option, None if it is not a service flag.

    Raises:
        ValueError: Service flag with a malformed port
    """
    if option == ENABLE_VM_SERVICE or option == OBSERVE:
        return DEFAULT_SERVICE_PORT
    for flag in (ENABLE_VM_SERVICE, OBSERVE):
        prefix = flag + ":"
        if option.startswith(prefix):
            return parse_int_before_slash(option[len(prefix):])
    return None


def find_service_port(options: Iterable[str]) -> int | None:
    """Scan VM options for an explicit service port.

    Service flags with a malformed or out-of-range port are skipped.

    Returns:
        The first valid requested port, or None
    """
    for option in options:
        try:
            port = _port_from_option(option)
        except ValueError:
            logger.debug(f"Ignoring malformed service port option: {option}")
            continue
        if port is None:
            continue
        if 0 < port <= MAX_PORT:
            return port
        logger.debug(f"Ignoring out-of-range service port option: {option}")
    return None


def find_available_port() -> int:
    """Ask the OS for a free TCP port.

    Raises:
        ResourceError: No port could be allocated
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("", 0))
            port = sock.getsockname()[1]
    except OSError as e:
        raise ResourceError(f"Cannot allocate a free port: {e}", "allocate_port") from e

    logger.debug(f"Allocated free port {port}")
    return port


def negotiate_port(
    options: Iterable[str],
    allocate: PortAllocator = find_available_port,
) -> PortNegotiation:
    """Decide the service port for a run.

    An explicit port in ``options`` wins and nothing is allocated.
    Otherwise a free port is allocated and the option that tells the VM
    to use it is returned alongside.

    Args:
        options: Tokenized VM options
        allocate: Free port allocator

    Raises:
        ResourceError: Allocation needed and failed
    """
    explicit = find_service_port(options)
    if explicit is not None:
        logger.debug(f"Using service port {explicit} from VM options")
        return PortNegotiation(NegotiatedPort(explicit, explicit=True))

    value = allocate()
    try:
        port = NegotiatedPort(value)
    except ValueError as e:
        raise ResourceError(str(e), "allocate_port") from e
    return PortNegotiation(port, service_port_option(value))
