import socket
import time
import logging
import ipaddress
from typing import Tuple

from ftpd.errors import SyntaxErrorArg, DataConnectionFailed

logger = logging.getLogger(__name__)

BUFFER_SIZE = 65536         # Tamaño máximo del buffer
ACCEPT_POLL = 0.25          # Intervalo de sondeo mientras se espera la conexión PASV


# --- FORMATO h1,h2,h3,h4,p1,p2 ---

def parse_host_port(arg: str) -> Tuple[str, int]:
    """Convierte 'h1,h2,h3,h4,p1,p2' en (ip, puerto). Lanza SyntaxErrorArg si está mal formado."""
    if not arg:
        raise SyntaxErrorArg("PORT requires an argument")
    parts = arg.strip().strip('()').split(',')
    if len(parts) != 6:
        raise SyntaxErrorArg(f"Bad host-port: {arg}")
    try:
        nums = [int(p.strip()) for p in parts]
    except ValueError:
        raise SyntaxErrorArg(f"Bad host-port: {arg}")
    if any(n < 0 or n > 255 for n in nums):
        raise SyntaxErrorArg(f"Bad host-port: {arg}")
    ip = '.'.join(str(n) for n in nums[:4])
    port = nums[4] * 256 + nums[5]
    if port == 0:
        raise SyntaxErrorArg("Port 0 is not a valid data port")
    return ip, port


def format_host_port(ip: str, port: int) -> str:
    ip_parts = ip.split('.')
    p1, p2 = port // 256, port % 256
    return f"{ip_parts[0]},{ip_parts[1]},{ip_parts[2]},{ip_parts[3]},{p1},{p2}"


def get_advertised_ip(control_socket, configured=None) -> str:
    """
    IP que se anuncia en la respuesta 227.
    1) la configurada (PassiveAddress / FTP_PASV_ADDRESS)
    2) la IP local del socket de control (la misma a la que el cliente ya llegó)
    """
    if configured:
        return configured
    local_ip = control_socket.getsockname()[0]
    try:
        addr = ipaddress.ip_address(local_ip)
    except ValueError:
        return local_ip
    if addr.version == 6 and addr.ipv4_mapped is not None:
        return str(addr.ipv4_mapped)
    return local_ip


# --- CANAL DE DATOS ---

class DataChannel:
    """Un socket de datos ya establecido. Se usa para una sola transferencia y se cierra."""

    def __init__(self, sock, mode: str, peer):
        self.sock = sock
        self.mode = mode
        self.peer = peer
        self.closed = False

    def recv(self, size=BUFFER_SIZE) -> bytes:
        return self.sock.recv(size)

    def sendall(self, data: bytes):
        self.sock.sendall(data)

    def close(self):
        if self.closed:
            return
        self.closed = True
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class PassiveMode:
    """
    Listener PASV pendiente. Se crea al recibir PASV y se consume (open + close)
    en el siguiente comando de transferencia.
    """
    name = 'passive'

    def __init__(self, bind_ip: str, timeout: float, expected_peer_ip: str = None, data_timeout: float = None):
        self.timeout = timeout
        self.data_timeout = data_timeout
        self.expected_peer_ip = expected_peer_ip
        self.listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            self.listener.bind((bind_ip, 0))    # puerto efímero
            self.listener.listen(1)
        except OSError:
            self.listener.close()
            raise

    @property
    def address(self) -> Tuple[str, int]:
        return self.listener.getsockname()[:2]

    def open(self) -> DataChannel:
        """accept() con espera acotada. Lanza DataConnectionFailed al expirar."""
        deadline = time.monotonic() + self.timeout
        try:
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise DataConnectionFailed("Timed out waiting for passive data connection")
                self.listener.settimeout(min(remaining, ACCEPT_POLL))
                try:
                    conn, addr = self.listener.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    raise DataConnectionFailed(f"Passive accept failed: {e}")
                if self.expected_peer_ip and not same_ip(addr[0], self.expected_peer_ip):
                    logger.warning(f"[PASV] Conexión de datos descartada desde {addr[0]}: IP inesperada")
                    conn.close()
                    continue
                conn.settimeout(self.data_timeout)
                return DataChannel(conn, self.name, addr)
        finally:
            self.close()

    def close(self):
        try:
            self.listener.close()
        except OSError:
            pass


class ActiveMode:
    """Destino PORT pendiente: la conexión saliente se abre en el comando de transferencia."""
    name = 'active'

    def __init__(self, ip: str, port: int, timeout: float, data_timeout: float = None):
        self.ip = ip
        self.port = port
        self.timeout = timeout
        self.data_timeout = data_timeout

    @property
    def address(self) -> Tuple[str, int]:
        return self.ip, self.port

    def open(self) -> DataChannel:
        dsock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        dsock.settimeout(self.timeout)
        try:
            dsock.connect((self.ip, self.port))
        except OSError as e:
            dsock.close()
            raise DataConnectionFailed(f"Could not connect to {self.ip}:{self.port}: {e}")
        dsock.settimeout(self.data_timeout)
        return DataChannel(dsock, self.name, (self.ip, self.port))

    def close(self):
        pass


def same_ip(a: str, b: str) -> bool:
    try:
        ia, ib = ipaddress.ip_address(a), ipaddress.ip_address(b)
    except ValueError:
        return a == b
    if ia.version == 6 and ia.ipv4_mapped is not None:
        ia = ia.ipv4_mapped
    if ib.version == 6 and ib.ipv4_mapped is not None:
        ib = ib.ipv4_mapped
    return ia == ib
