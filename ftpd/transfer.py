import os
import stat
import time
import logging
from typing import Iterable, List

from ftpd.data_channel import BUFFER_SIZE
from ftpd.errors import TransferAborted

logger = logging.getLogger(__name__)

TYPE_ASCII = 'A'
TYPE_BINARY = 'I'


# --- TRADUCCIÓN DE FINES DE LÍNEA (TYPE A) ---

class AsciiEncoder:
    """Disco -> red: cualquier LF (o CRLF) sale como CRLF. Mantiene un CR pendiente entre bloques."""

    def __init__(self):
        self._pending_cr = False

    def feed(self, chunk: bytes) -> bytes:
        if self._pending_cr:
            chunk = b'\r' + chunk
            self._pending_cr = False
        if chunk.endswith(b'\r'):
            chunk = chunk[:-1]
            self._pending_cr = True
        return chunk.replace(b'\r\n', b'\n').replace(b'\n', b'\r\n')

    def flush(self) -> bytes:
        if self._pending_cr:
            self._pending_cr = False
            return b'\r'
        return b''


class AsciiDecoder:
    """Red -> disco: CRLF se guarda como LF."""

    def __init__(self):
        self._pending_cr = False

    def feed(self, chunk: bytes) -> bytes:
        if self._pending_cr:
            chunk = b'\r' + chunk
            self._pending_cr = False
        if chunk.endswith(b'\r'):
            chunk = chunk[:-1]
            self._pending_cr = True
        return chunk.replace(b'\r\n', b'\n')

    def flush(self) -> bytes:
        if self._pending_cr:
            self._pending_cr = False
            return b'\r'
        return b''


# --- LISTADOS ---

def format_list_line(name: str, st: os.stat_result) -> str:
    """Línea estilo `ls -l`: permisos, enlaces, dueño, tamaño, fecha, nombre."""
    if stat.S_ISDIR(st.st_mode):
        perms = "drwxr-xr-x"
    else:
        perms = "-rw-r--r--"
    mtime = st.st_mtime
    # Como ls: año en lugar de hora si el archivo tiene más de ~6 meses
    if abs(time.time() - mtime) > 180 * 24 * 3600:
        when = time.strftime("%b %d  %Y", time.localtime(mtime))
    else:
        when = time.strftime("%b %d %H:%M", time.localtime(mtime))
    return f"{perms}   1 user group {st.st_size:>12} {when} {name}"


def list_directory(path: str, names_only: bool = False) -> List[str]:
    """
    Lista el contenido de un directorio (o un único archivo) como líneas de texto.
    Lanza FileNotFoundError / NotADirectoryError / PermissionError del SO.
    """
    if os.path.isfile(path):
        name = os.path.basename(path)
        if names_only:
            return [name]
        return [format_list_line(name, os.stat(path))]

    lines = []
    for filename in sorted(os.listdir(path)):
        if names_only:
            lines.append(filename)
            continue
        try:
            file_stat = os.stat(os.path.join(path, filename))
        except OSError:
            # Symlink roto o archivo borrado durante el listado
            continue
        lines.append(format_list_line(filename, file_stat))
    return lines


def send_listing(channel, lines: Iterable[str]) -> int:
    sent = 0
    try:
        for line in lines:
            data = f"{line}\r\n".encode('utf-8', errors='replace')
            channel.sendall(data)
            sent += len(data)
    except OSError as e:
        raise TransferAborted(f"Listing aborted: {e}")
    return sent


# --- ARCHIVOS ---

def send_file(channel, fileobj, transfer_type: str = TYPE_BINARY) -> int:
    """RETR: copia el archivo al canal de datos por bloques. Devuelve bytes enviados."""
    encoder = AsciiEncoder() if transfer_type == TYPE_ASCII else None
    sent = 0
    try:
        while True:
            chunk = fileobj.read(BUFFER_SIZE)
            if not chunk:
                break
            if encoder:
                chunk = encoder.feed(chunk)
            if chunk:
                channel.sendall(chunk)
                sent += len(chunk)
        if encoder:
            tail = encoder.flush()
            if tail:
                channel.sendall(tail)
                sent += len(tail)
    except OSError as e:
        raise TransferAborted(f"RETR aborted after {sent} bytes: {e}")
    return sent


def receive_file(channel, fileobj, transfer_type: str = TYPE_BINARY) -> int:
    """STOR: copia del canal de datos al archivo hasta EOF. Devuelve bytes escritos."""
    decoder = AsciiDecoder() if transfer_type == TYPE_ASCII else None
    written = 0
    try:
        while True:
            chunk = channel.recv(BUFFER_SIZE)
            if not chunk:
                break
            if decoder:
                chunk = decoder.feed(chunk)
            fileobj.write(chunk)
            written += len(chunk)
        if decoder:
            tail = decoder.flush()
            fileobj.write(tail)
            written += len(tail)
        fileobj.flush()
    except OSError as e:
        # El archivo parcial queda en disco: no hay rollback
        raise TransferAborted(f"STOR aborted after {written} bytes: {e}")
    return written
