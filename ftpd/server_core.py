import socket
import logging
import threading
import time
from enum import Enum

from ftpd import replies
from ftpd.commands import dispatch
from ftpd.errors import ControlChannelError
from ftpd.log import EventLog
from ftpd.parser import parse_line
from ftpd.paths import ROOT
from ftpd.transfer import TYPE_BINARY
from ftpd.users import AuthStore

logger = logging.getLogger(__name__)

MAX_LINE = 8192     # Longitud máxima de una línea de control


class SessionState(Enum):
    UNAUTHENTICATED = 'unauthenticated'
    AWAITING_PASSWORD = 'awaiting_password'
    AUTHENTICATED = 'authenticated'
    CLOSED = 'closed'


class Session:
    """Estado de una conexión de control. Solo la modifica el hilo que la atiende."""

    def __init__(self, client_socket, client_addr, config, auth_store, events):
        self.client_socket = client_socket
        self.client_addr = client_addr
        self.config = config
        self.auth_store = auth_store
        self.events = events
        self.state = SessionState.UNAUTHENTICATED
        self.pending_username = None
        self.account = None
        self.cwd = ROOT
        self.transfer_type = TYPE_BINARY
        self.data_mode = None       # None | PassiveMode | ActiveMode
        self.last_activity = time.time()
        self._reader = client_socket.makefile('rb')

    # --- AUTENTICACIÓN ---

    @property
    def authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    @property
    def username(self):
        if self.account is not None:
            return self.account.username
        return self.pending_username

    @property
    def root(self):
        return self.account.root if self.account else None

    def begin_login(self, username):
        self.account = None
        self.set_data_mode(None)
        self.pending_username = username
        self.cwd = ROOT
        self.state = SessionState.AWAITING_PASSWORD

    def complete_login(self, account):
        self.account = account
        self.pending_username = None
        self.cwd = ROOT
        self.state = SessionState.AUTHENTICATED

    def reset_login(self):
        self.account = None
        self.pending_username = None
        self.state = SessionState.UNAUTHENTICATED

    def request_close(self):
        self.state = SessionState.CLOSED

    # --- CANAL DE DATOS PENDIENTE ---

    def set_data_mode(self, mode):
        """PASV/PORT reemplazan cualquier modo pendiente sin usarlo."""
        if self.data_mode is not None:
            self.data_mode.close()
        self.data_mode = mode

    def take_data_mode(self):
        mode, self.data_mode = self.data_mode, None
        return mode

    # --- E/S DE CONTROL ---

    def send_reply(self, reply):
        logger.debug(f"[CORE] ----> {self.client_addr[0]}: {reply.code} {reply.text}")
        try:
            self.client_socket.sendall(reply.encode())
        except OSError as e:
            raise ControlChannelError(f"Error sending reply: {e}")

    def read_line(self):
        """
        Devuelve la siguiente línea (bytes) o None si el cliente cerró.
        Lanza socket.timeout por inactividad y ControlChannelError ante otros errores.
        """
        try:
            line = self._reader.readline(MAX_LINE)
            if len(line) == MAX_LINE and not line.endswith(b'\n'):
                # Se descarta el resto de la línea demasiado larga
                while True:
                    rest = self._reader.readline(MAX_LINE)
                    if not rest or rest.endswith(b'\n'):
                        break
                return b''
        except socket.timeout:
            raise
        except OSError as e:
            raise ControlChannelError(f"Error reading command: {e}")
        if not line:
            return None
        self.last_activity = time.time()
        return line

    def close(self):
        if self.data_mode is not None:
            self.data_mode.close()
            self.data_mode = None
        self.state = SessionState.CLOSED
        try:
            self._reader.close()
        except OSError:
            pass
        try:
            self.client_socket.close()
        except OSError:
            pass


# --- BUCLE DE LA SESIÓN ---

def handle_client(client_socket, address, config, auth_store, events):
    session = Session(client_socket, address, config, auth_store, events)
    reason = "quit"
    try:
        events.connection_opened(address)
        client_socket.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        client_socket.settimeout(config.idle_timeout)
        session.send_reply(replies.SERVICE_READY)

        while session.state is not SessionState.CLOSED:
            try:
                line = session.read_line()
            except socket.timeout:
                reason = "idle_timeout"
                session.send_reply(replies.SERVICE_TIMEOUT)
                break
            if line is None:
                reason = "client_disconnected"
                break
            if line == b'':
                session.send_reply(replies.Reply(500, "Command line too long."))
                continue
            command = parse_line(line)
            if command is None:
                continue
            events.command_received(address, session.username, command.log_text())
            reply = dispatch(command, session)
            session.send_reply(reply)
    except ControlChannelError as e:
        # Fatal: se cierra sin responder
        reason = "control_error"
        logger.info(f"[CORE] Canal de control perdido con {address}: {e}")
    except OSError as e:
        reason = "control_error"
        logger.info(f"[CORE] Error de socket con {address}: {e}")
    finally:
        username = session.username
        session.close()
        events.connection_closed(address, username, reason)


# --- LISTENER ---

class FtpServer:
    """Acepta conexiones de control y lanza un hilo (Session) por cliente."""

    def __init__(self, config, events=None):
        self.config = config
        self.auth_store = AuthStore(config.users)
        self.events = events or EventLog(config.log.event_file)
        self._stop = threading.Event()
        self._thread = None
        self.server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            self.server_socket.bind((config.host, config.port))
            self.server_socket.listen(5)
        except OSError:
            self.server_socket.close()
            raise

    @property
    def address(self):
        return self.server_socket.getsockname()[:2]

    def serve_forever(self, poll_interval=0.5):
        host, port = self.address
        logger.info(f"[CORE] Servidor FTP escuchando en {host}:{port} ({len(self.auth_store)} usuarios)")
        self.server_socket.settimeout(poll_interval)
        try:
            while not self._stop.is_set():
                try:
                    client_socket, address = self.server_socket.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    if self._stop.is_set():
                        break
                    logger.error(f"[CORE] Error aceptando conexión: {e}")
                    continue
                logger.info(f"[CORE] Conexión establecida desde {address}")
                t = threading.Thread(
                    target=handle_client,
                    args=(client_socket, address, self.config, self.auth_store, self.events),
                    daemon=True,
                )
                t.start()
        finally:
            self.server_socket.close()

    def start(self):
        """Arranca serve_forever en un hilo de fondo."""
        self._thread = threading.Thread(target=self.serve_forever, daemon=True)
        self._thread.start()
        return self

    def shutdown(self, timeout=5):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        else:
            self.server_socket.close()

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()
