import os
import logging

from ftpd import replies
from ftpd import paths
from ftpd.replies import Reply
from ftpd.parser import Command, Verb
from ftpd.errors import (
    FtpError, AuthError, UnknownCommand, SyntaxErrorArg, NotLoggedIn, PathEscape,
    FileUnavailable, DirectoryUnavailable, DataConnectionFailed, TransferAborted,
    ControlChannelError,
)
from ftpd.data_channel import (
    PassiveMode, ActiveMode, parse_host_port, format_host_port, get_advertised_ip, same_ip,
)
from ftpd.transfer import (
    TYPE_ASCII, TYPE_BINARY, list_directory, send_listing, send_file, receive_file,
)

logger = logging.getLogger(__name__)

# Comandos que se atienden sin estar autenticado
PRE_AUTH_VERBS = {Verb.USER, Verb.PASS, Verb.QUIT}


# --- AUXILIARES ---

def require_arg(arg, verb):
    if not arg:
        raise SyntaxErrorArg(f"{verb} requires an argument")
    return arg


def resolve_for(session, verb, requested=None):
    """
    Resuelve `requested` contra el cwd virtual de la sesión.
    Devuelve (path_virtual, path_absoluto). Registra los intentos de escape.
    """
    try:
        virtual = paths.normalize(session.cwd, requested)
        absolute = paths.to_absolute(session.root, virtual)
        if session.config.canonical_check and not paths.within_real_root(session.root, absolute):
            raise PathEscape(f"'{requested}' resolves outside the user root through a link")
    except PathEscape:
        session.events.path_escape(session.client_addr, session.username, verb, requested)
        raise
    return virtual, absolute


def strip_list_options(arg):
    """LIST -la /dir -> /dir. Los clientes suelen mandar flags de ls."""
    if not arg:
        return None
    words = arg.split(' ')
    while words and words[0].startswith('-'):
        words.pop(0)
    rest = ' '.join(words).strip()
    return rest or None


def open_data_channel(pending):
    if pending is None:
        raise DataConnectionFailed("Use PASV or PORT first.", Reply(425, "Use PASV or PORT first."))
    return pending.open()


def opening_reply(session):
    if session.transfer_type == TYPE_ASCII:
        return replies.OPENING_ASCII
    return replies.OPENING_BINARY


# --- AUTENTICACIÓN ---

def USER(arg, session):
    require_arg(arg, 'USER')
    # USER siempre reinicia la secuencia de login, incluso a mitad de sesión.
    # Responde 331 exista o no el usuario, para no permitir enumerarlos.
    session.begin_login(arg)
    return replies.NEED_PASSWORD


def PASS(arg, session):
    if session.pending_username is None:
        return Reply(530, "Login with USER first.")
    username = session.pending_username
    try:
        account = session.auth_store.authenticate(username, arg or '')
    except AuthError as e:
        session.reset_login()
        session.events.auth_attempt(session.client_addr, username, False, e.reason)
        return replies.LOGIN_INCORRECT
    session.complete_login(account)
    session.events.auth_attempt(session.client_addr, username, True)
    return replies.LOGIN_OK


def QUIT(arg, session):
    session.request_close()
    return replies.GOODBYE


def NOOP(arg, session):
    return Reply(200, "NOOP command successful.")


# --- NAVEGACIÓN ---

def PWD(arg, session):
    return replies.pwd_reply(session.cwd)


def CWD(arg, session):
    require_arg(arg, 'CWD')
    virtual, absolute = resolve_for(session, 'CWD', arg)
    if not os.path.isdir(absolute):
        raise FileUnavailable(reply=Reply(550, "Failed to change directory."))
    session.cwd = virtual
    return replies.DIRECTORY_CHANGED


def CDUP(arg, session):
    return CWD('..', session)


# --- PARÁMETROS DE TRANSFERENCIA ---

def TYPE(arg, session):
    require_arg(arg, 'TYPE')
    words = arg.upper().split()
    if words[0] == 'A' and (len(words) == 1 or words[1:] == ['N']):
        session.transfer_type = TYPE_ASCII
        return Reply(200, "Type set to ASCII.")
    if words == ['I'] or words == ['L', '8']:
        session.transfer_type = TYPE_BINARY
        return Reply(200, "Type set to Binary.")
    raise SyntaxErrorArg(f"Unsupported type {arg}")


def MODE(arg, session):
    require_arg(arg, 'MODE')
    if arg.strip().upper() != 'S':
        raise SyntaxErrorArg(reply=Reply(501, "Only stream mode is supported."))
    return Reply(200, "Mode set to S.")


def STRU(arg, session):
    require_arg(arg, 'STRU')
    if arg.strip().upper() != 'F':
        raise SyntaxErrorArg(reply=Reply(501, "Only file structure is supported."))
    return Reply(200, "Structure set to F.")


def PASV(arg, session):
    """
    Abre un listener en puerto efímero sobre la IP local del socket de control,
    lo deja pendiente en la sesión y responde 227. El accept() se hace en el
    siguiente LIST/NLST/RETR/STOR.
    """
    bind_ip = get_advertised_ip(session.client_socket)
    try:
        mode = PassiveMode(bind_ip, session.config.passive_timeout,
                           expected_peer_ip=session.client_addr[0],
                           data_timeout=session.config.data_timeout)
    except OSError as e:
        logger.error(f"[PASV] No se pudo abrir el listener en {bind_ip}: {e}")
        raise DataConnectionFailed(str(e))
    session.set_data_mode(mode)
    advertised = get_advertised_ip(session.client_socket, session.config.passive_address)
    port = mode.address[1]
    logger.debug(f"[PASV] anunciando {advertised}:{port} (listener en {bind_ip}:{port})")
    return replies.passive_reply(format_host_port(advertised, port))


def PORT(arg, session):
    ip, port = parse_host_port(arg)
    if not session.config.allow_foreign_addresses and not same_ip(ip, session.client_addr[0]):
        logger.warning(f"[PORT] Rechazado {ip}:{port}, no coincide con el cliente {session.client_addr[0]}")
        raise SyntaxErrorArg(reply=Reply(501, "PORT address does not match the control connection."))
    session.set_data_mode(ActiveMode(ip, port, session.config.passive_timeout,
                                     data_timeout=session.config.data_timeout))
    logger.debug(f"[PORT] Cliente solicita conexión activa a {ip}:{port}")
    return Reply(200, "PORT command successful.")


# --- TRANSFERENCIAS ---

def LIST(arg, session, names_only=False):
    verb = 'NLST' if names_only else 'LIST'
    pending = session.take_data_mode()
    try:
        virtual, target = resolve_for(session, verb, strip_list_options(arg))
        try:
            lines = list_directory(target, names_only=names_only)
        except OSError:
            raise DirectoryUnavailable()
        channel = open_data_channel(pending)
    finally:
        if pending is not None:
            pending.close()

    with channel:
        session.send_reply(replies.OPENING_LISTING)
        try:
            nbytes = send_listing(channel, lines)
        except TransferAborted:
            session.events.transfer(session.client_addr, session.username, verb, virtual, "aborted")
            raise
    session.events.transfer(session.client_addr, session.username, verb, virtual, "complete", nbytes)
    return replies.TRANSFER_COMPLETE


def NLST(arg, session):
    return LIST(arg, session, names_only=True)


def RETR(arg, session):
    pending = session.take_data_mode()
    try:
        require_arg(arg, 'RETR')
        virtual, target = resolve_for(session, 'RETR', arg)
        if not os.path.isfile(target):
            raise FileUnavailable(reply=Reply(550, "File not found."))
        try:
            f = open(target, 'rb')
        except OSError:
            raise FileUnavailable()
        try:
            channel = open_data_channel(pending)
        except FtpError:
            f.close()
            raise
    finally:
        if pending is not None:
            pending.close()

    with f, channel:
        session.send_reply(opening_reply(session))
        try:
            nbytes = send_file(channel, f, session.transfer_type)
        except TransferAborted:
            session.events.transfer(session.client_addr, session.username, 'RETR', virtual, "aborted")
            raise
    session.events.transfer(session.client_addr, session.username, 'RETR', virtual, "complete", nbytes)
    return replies.TRANSFER_COMPLETE


def STOR(arg, session):
    pending = session.take_data_mode()
    try:
        require_arg(arg, 'STOR')
        virtual, target = resolve_for(session, 'STOR', arg)
        if virtual == paths.ROOT or os.path.isdir(target):
            raise FileUnavailable(reply=Reply(550, "Cannot overwrite a directory."))
        # Nunca se crean directorios intermedios
        if not os.path.isdir(os.path.dirname(target)):
            raise FileUnavailable(reply=Reply(550, "Parent directory does not exist."))
        channel = open_data_channel(pending)
    finally:
        if pending is not None:
            pending.close()

    with channel:
        try:
            f = open(target, 'wb')
        except OSError as e:
            logger.warning(f"[STOR] No se pudo abrir {target}: {e}")
            raise FileUnavailable()
        with f:
            session.send_reply(opening_reply(session))
            try:
                nbytes = receive_file(channel, f, session.transfer_type)
            except TransferAborted:
                # El archivo parcial queda en disco
                session.events.transfer(session.client_addr, session.username, 'STOR', virtual, "aborted")
                raise
    session.events.transfer(session.client_addr, session.username, 'STOR', virtual, "complete", nbytes)
    return replies.TRANSFER_COMPLETE


# --- DESPACHO ---

HANDLERS = {
    Verb.USER: USER,
    Verb.PASS: PASS,
    Verb.QUIT: QUIT,
    Verb.NOOP: NOOP,
    Verb.PWD: PWD,
    Verb.CWD: CWD,
    Verb.CDUP: CDUP,
    Verb.TYPE: TYPE,
    Verb.MODE: MODE,
    Verb.STRU: STRU,
    Verb.PASV: PASV,
    Verb.PORT: PORT,
    Verb.LIST: LIST,
    Verb.NLST: NLST,
    Verb.RETR: RETR,
    Verb.STOR: STOR,
}


def dispatch(command: Command, session) -> Reply:
    """Ejecuta un comando y devuelve exactamente una respuesta final."""
    if command.verb is Verb.UNKNOWN:
        return UnknownCommand.reply
    if command.verb not in PRE_AUTH_VERBS and not session.authenticated:
        return NotLoggedIn.reply
    handler = HANDLERS[command.verb]
    try:
        return handler(command.arg, session)
    except FtpError as e:
        logger.debug(f"[{command.name}] {e}")
        return e.reply
    except ControlChannelError:
        raise
    except Exception:
        logger.exception(f"[{command.name}] Error local procesando el comando")
        return replies.LOCAL_ERROR
