import os
import posixpath

from ftpd.errors import PathEscape, SyntaxErrorArg

ROOT = '/'


def normalize(current: str, requested: str = None) -> str:
    """
    Aplica `requested` sobre el path virtual `current` y devuelve el nuevo path
    virtual normalizado (siempre absoluto desde el root del usuario, ej. "/docs/a.txt").

    Es puramente léxico: no toca el sistema de archivos. Lanza PathEscape si algún
    ".." intenta subir por encima del root.
    """
    if requested is None or requested == '':
        target = current
    else:
        if '\x00' in requested:
            raise SyntaxErrorArg("NUL byte in path")
        # Las barras invertidas se tratan como separador para no depender del SO
        requested = requested.replace('\\', '/')
        if requested.startswith('/'):
            target = requested
        else:
            target = posixpath.join(current, requested)

    parts = []
    for part in target.split('/'):
        if part in ('', '.'):
            continue
        if part == '..':
            if not parts:
                raise PathEscape(f"Path '{requested}' escapes the user root")
            parts.pop()
        else:
            parts.append(part)
    return ROOT + '/'.join(parts)


def to_absolute(root: str, virtual_path: str) -> str:
    """Une el root real del usuario con un path virtual ya normalizado."""
    parts = [p for p in virtual_path.split('/') if p]
    candidate = os.path.normpath(os.path.join(root, *parts))
    root_abs = os.path.normpath(root)
    # Comprobación de prefijo final, por componentes (no por string)
    if candidate != root_abs and not candidate.startswith(root_abs.rstrip(os.sep) + os.sep):
        raise PathEscape(f"Path '{virtual_path}' escapes the user root")
    return candidate


def resolve(root: str, current: str, requested: str = None) -> str:
    """Devuelve la ruta absoluta real para `requested`, o lanza PathEscape."""
    return to_absolute(root, normalize(current, requested))


def within_real_root(root: str, absolute_path: str) -> bool:
    """
    Comprobación adicional tras la resolución léxica: canonicaliza ambos lados
    (siguiendo symlinks) y verifica que el destino siga dentro del root.
    """
    real_root = os.path.realpath(root)
    real_path = os.path.realpath(absolute_path)
    try:
        return os.path.commonpath([real_root, real_path]) == real_root
    except ValueError:
        # Unidades distintas en Windows
        return False
