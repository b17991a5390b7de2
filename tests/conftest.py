import re
import socket

import pytest

from ftpd.config import ServerConfig, validate_config
from ftpd.log import EventLog
from ftpd.server_core import FtpServer
from ftpd.users import UserAccount

PASV_RE = re.compile(r'\((\d+),(\d+),(\d+),(\d+),(\d+),(\d+)\)')


class ControlClient:
    """Cliente mínimo sobre socket crudo: una orden, una respuesta."""

    def __init__(self, address, timeout=5):
        self.sock = socket.create_connection(address, timeout=timeout)
        self.file = self.sock.makefile('rb')
        self.greeting = self.read_reply()

    def read_reply(self):
        line = self.file.readline().decode('utf-8')
        if len(line) > 3 and line[3] == '-':
            code = line[:3]
            while True:
                more = self.file.readline().decode('utf-8')
                if not more or more.startswith(code + ' '):
                    line = more
                    break
        return line.rstrip('\r\n')

    def send(self, text):
        self.sock.sendall(text.encode('utf-8') + b'\r\n')

    def cmd(self, text):
        self.send(text)
        return self.read_reply()

    def code(self, text):
        return int(self.cmd(text)[:3])

    def login(self, username='alice', password='donttellbob'):
        assert self.code(f'USER {username}') == 331
        assert self.code(f'PASS {password}') == 230

    def pasv(self):
        reply = self.cmd('PASV')
        assert reply.startswith('227'), reply
        nums = [int(n) for n in PASV_RE.search(reply).groups()]
        return '.'.join(str(n) for n in nums[:4]), nums[4] * 256 + nums[5]

    def open_passive(self):
        host, port = self.pasv()
        return socket.create_connection((host, port), timeout=5)

    def close(self):
        self.file.close()
        self.sock.close()


def read_all(sock):
    chunks = []
    while True:
        chunk = sock.recv(65536)
        if not chunk:
            break
        chunks.append(chunk)
    sock.close()
    return b''.join(chunks)


@pytest.fixture
def roots(tmp_path):
    alice = tmp_path / 'alice'
    public = tmp_path / 'public'
    outside = tmp_path / 'outside'
    for d in (alice, public, outside):
        d.mkdir()
    (outside / 'secret.txt').write_bytes(b'top secret')
    return {'alice': alice, 'public': public, 'outside': outside}


def make_config(roots, **overrides):
    settings = dict(
        host='127.0.0.1',
        port=0,
        users=(
            UserAccount('alice', 'donttellbob', str(roots['alice'])),
            UserAccount('anonymous', None, str(roots['public'])),
        ),
        passive_timeout=2,
        data_timeout=5,
        idle_timeout=None,
    )
    settings.update(overrides)
    return validate_config(ServerConfig(**settings))


@pytest.fixture
def event_file(tmp_path):
    return str(tmp_path / 'events.jsonl')


@pytest.fixture
def server(roots, event_file):
    srv = FtpServer(make_config(roots), EventLog(event_file)).start()
    yield srv
    srv.shutdown()


@pytest.fixture
def client(server):
    c = ControlClient(server.address)
    yield c
    c.close()


@pytest.fixture
def logged_in(client):
    client.login()
    return client
