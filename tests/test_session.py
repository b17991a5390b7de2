import ftplib
import io
import json
import os
import socket
import time

import pytest

from conftest import ControlClient, make_config, read_all
from ftpd.log import EventLog
from ftpd.server_core import FtpServer


# --- LOGIN ---

def test_greeting(client):
    assert client.greeting.startswith('220')


def test_login_sequence(client):
    assert client.code('USER alice') == 331
    assert client.code('PASS donttellbob') == 230


def test_pass_without_user_is_530(client):
    assert client.code('PASS donttellbob') == 530
    assert client.code('PWD') == 530


def test_bad_password_returns_to_unauthenticated(client):
    assert client.code('USER alice') == 331
    assert client.cmd('PASS nope').startswith('530')
    # Sin USER previo, un segundo PASS ya no es aceptado
    assert client.code('PASS donttellbob') == 530


def test_unknown_user_looks_like_bad_password(client):
    assert client.code('USER mallory') == 331
    unknown = client.cmd('PASS donttellbob')
    client.code('USER alice')
    bad = client.cmd('PASS wrong')
    assert unknown == bad
    assert unknown.startswith('530')


def test_auth_events_distinguish_failures(client, event_file):
    client.code('USER mallory')
    client.code('PASS x')
    client.code('USER alice')
    client.code('PASS x')
    with open(event_file, encoding='utf-8') as f:
        events = [json.loads(line) for line in f]
    reasons = [e['details']['reason'] for e in events if e['event_type'] == 'AUTH_ATTEMPT']
    assert reasons == ['unknown_user', 'bad_password']
    logged = [e['details'].get('command') for e in events if e['event_type'] == 'COMMAND']
    assert 'PASS ****' in logged
    assert 'PASS x' not in logged


def test_anonymous_accepts_any_password(client):
    assert client.code('USER anonymous') == 331
    assert client.code('PASS whatever@example.com') == 230
    assert client.cmd('PWD') == '257 "/" is the current directory.'


@pytest.mark.parametrize('command', ['NOOP', 'PWD', 'CWD /', 'CDUP', 'TYPE I', 'PASV', 'PORT 127,0,0,1,4,1',
                                     'LIST', 'NLST', 'RETR a', 'STOR a'])
def test_commands_require_login(client, command):
    assert client.code(command) == 530


def test_commands_require_password_after_user(client):
    assert client.code('USER alice') == 331
    assert client.code('PWD') == 530
    assert client.code('NOOP') == 530
    # Sigue esperando la contraseña
    assert client.code('PASS donttellbob') == 230


def test_user_mid_session_restarts_authentication(logged_in):
    assert logged_in.code('USER alice') == 331
    assert logged_in.code('PWD') == 530
    assert logged_in.code('PASS donttellbob') == 230
    assert logged_in.code('PWD') == 257


def test_user_mid_session_drops_pending_pasv(logged_in):
    host, port = logged_in.pasv()
    assert logged_in.code('USER alice') == 331
    assert logged_in.code('PASS donttellbob') == 230
    with pytest.raises(OSError):
        socket.create_connection((host, port), timeout=2).close()
    assert logged_in.code('LIST') == 425


def test_unwritable_event_file_keeps_sessions_alive(roots, tmp_path):
    events = EventLog(str(tmp_path / 'no_such_dir' / 'events.jsonl'))
    srv = FtpServer(make_config(roots), events).start()
    try:
        c = ControlClient(srv.address)
        try:
            assert c.greeting.startswith('220')
            assert c.code('USER alice') == 331
            assert c.code('PASS donttellbob') == 230
            assert c.code('PWD') == 257
        finally:
            c.close()
    finally:
        srv.shutdown()


def test_unknown_command_is_500_in_every_state(client):
    assert client.code('FEAT') == 500
    client.code('USER alice')
    assert client.code('SITE HELP') == 500
    client.code('PASS donttellbob')
    assert client.code('MKD newdir') == 500


def test_blank_lines_get_no_reply(client):
    client.send('')
    client.send('   ')
    assert client.code('USER alice') == 331
    client.send('')
    assert client.code('PASS donttellbob') == 230
    assert client.cmd('NOOP').startswith('200')


def test_quit_closes_connection(client):
    assert client.cmd('QUIT').startswith('221')
    assert client.sock.recv(1) == b''


def test_quit_before_login(server):
    c = ControlClient(server.address)
    try:
        assert c.code('QUIT') == 221
    finally:
        c.close()


# --- NAVEGACIÓN ---

def test_pwd_cwd_cdup(logged_in, roots):
    (roots['alice'] / 'docs' / 'deep').mkdir(parents=True)
    assert logged_in.cmd('PWD') == '257 "/" is the current directory.'
    assert logged_in.code('CWD docs') == 250
    assert logged_in.code('XCWD deep') == 250
    assert logged_in.cmd('PWD') == '257 "/docs/deep" is the current directory.'
    assert logged_in.code('CDUP') == 250
    assert logged_in.cmd('XPWD') == '257 "/docs" is the current directory.'
    assert logged_in.code('CWD /') == 250
    assert logged_in.cmd('PWD') == '257 "/" is the current directory.'


def test_cannot_leave_the_root(logged_in, roots):
    assert logged_in.code('CWD ..') == 550
    assert logged_in.code('CDUP') == 550
    assert logged_in.code('CWD ../outside') == 550
    assert logged_in.code('CWD /../..') == 550
    assert logged_in.cmd('PWD') == '257 "/" is the current directory.'


def test_cwd_to_missing_or_file_is_550(logged_in, roots):
    (roots['alice'] / 'file.txt').write_bytes(b'x')
    assert logged_in.code('CWD nowhere') == 550
    assert logged_in.code('CWD file.txt') == 550
    assert logged_in.code('CWD') == 501


@pytest.mark.skipif(not hasattr(os, 'symlink'), reason='symlinks not available')
def test_symlink_out_of_the_root_is_rejected(logged_in, roots):
    os.symlink(str(roots['outside']), str(roots['alice'] / 'escape'))
    assert logged_in.code('CWD escape') == 550
    assert logged_in.code('RETR escape/secret.txt') == 550


# --- PARÁMETROS ---

def test_type_mode_stru(logged_in):
    assert logged_in.code('TYPE A') == 200
    assert logged_in.code('TYPE A N') == 200
    assert logged_in.code('TYPE I') == 200
    assert logged_in.code('TYPE L 8') == 200
    assert logged_in.code('TYPE E') == 501
    assert logged_in.code('TYPE') == 501
    assert logged_in.code('MODE S') == 200
    assert logged_in.code('MODE B') == 501
    assert logged_in.code('STRU F') == 200
    assert logged_in.code('STRU R') == 501


def test_port_validation(logged_in):
    assert logged_in.code('PORT') == 501
    assert logged_in.code('PORT 1,2,3') == 501
    assert logged_in.code('PORT 300,1,1,1,1,1') == 501
    # Dirección distinta a la del cliente: protección contra FTP bounce
    assert logged_in.code('PORT 10,0,0,1,4,1') == 501
    assert logged_in.code('PORT 127,0,0,1,4,1') == 200


# --- TRANSFERENCIAS ---

def test_store_then_retrieve_scenario(logged_in, roots):
    assert logged_in.code('CWD ..') == 550

    data = logged_in.open_passive()
    assert logged_in.code('STOR report.txt') == 150
    data.sendall(b'hello')
    data.close()
    assert logged_in.read_reply().startswith('226')
    assert (roots['alice'] / 'report.txt').read_bytes() == b'hello'

    data = logged_in.open_passive()
    assert logged_in.code('RETR report.txt') == 150
    assert read_all(data) == b'hello'
    assert logged_in.read_reply().startswith('226')


def test_passive_listener_is_consumed_by_one_transfer(logged_in, roots):
    (roots['alice'] / 'a.txt').write_bytes(b'aaa')
    (roots['alice'] / 'sub').mkdir()

    data = logged_in.open_passive()
    assert logged_in.code('LIST') == 150
    listing = read_all(data).decode().splitlines()
    assert logged_in.read_reply().startswith('226')
    assert len(listing) == 2
    assert listing[0].endswith(' a.txt')
    assert listing[1].startswith('d') and listing[1].endswith(' sub')

    assert logged_in.code('LIST') == 425


def test_second_pasv_replaces_the_first(logged_in):
    first = logged_in.pasv()
    logged_in.pasv()
    time.sleep(0.05)
    with pytest.raises(OSError):
        socket.create_connection(first, timeout=1).close()


def test_list_arguments(logged_in, roots):
    (roots['alice'] / 'sub').mkdir()
    (roots['alice'] / 'sub' / 'inner.txt').write_bytes(b'1')

    data = logged_in.open_passive()
    assert logged_in.code('NLST -la sub') == 150
    assert read_all(data) == b'inner.txt\r\n'
    assert logged_in.read_reply().startswith('226')

    logged_in.pasv()
    assert logged_in.code('LIST missing') == 450
    logged_in.pasv()
    assert logged_in.code('LIST ../outside') == 550


def test_retr_errors(logged_in, roots):
    (roots['alice'] / 'dir').mkdir()
    logged_in.pasv()
    assert logged_in.code('RETR missing.txt') == 550
    logged_in.pasv()
    assert logged_in.code('RETR dir') == 550
    logged_in.pasv()
    assert logged_in.code('RETR ../outside/secret.txt') == 550
    logged_in.pasv()
    assert logged_in.code('RETR') == 501


def test_transfer_without_pasv_or_port_is_425(logged_in, roots):
    (roots['alice'] / 'a.txt').write_bytes(b'a')
    assert logged_in.code('RETR a.txt') == 425
    assert logged_in.code('STOR b.txt') == 425
    assert not (roots['alice'] / 'b.txt').exists()


def test_stor_never_creates_directories(logged_in, roots):
    logged_in.pasv()
    assert logged_in.code('STOR newdir/file.txt') == 550
    assert not (roots['alice'] / 'newdir').exists()
    logged_in.pasv()
    assert logged_in.code('STOR ../outside/evil.txt') == 550
    assert not (roots['outside'] / 'evil.txt').exists()


def test_stor_onto_directory_is_550(logged_in, roots):
    (roots['alice'] / 'dir').mkdir()
    logged_in.pasv()
    assert logged_in.code('STOR dir') == 550


def test_ascii_retr_translates_line_endings(logged_in, roots):
    (roots['alice'] / 'notes.txt').write_bytes(b'one\ntwo\n')
    assert logged_in.code('TYPE A') == 200
    data = logged_in.open_passive()
    assert logged_in.cmd('RETR notes.txt').startswith('150 Opening ASCII')
    assert read_all(data) == b'one\r\ntwo\r\n'
    assert logged_in.read_reply().startswith('226')


def test_passive_timeout_is_425(logged_in, roots):
    (roots['alice'] / 'a.txt').write_bytes(b'a')
    logged_in.pasv()
    start = time.monotonic()
    assert logged_in.code('RETR a.txt') == 425
    assert time.monotonic() - start < 10


def test_idle_timeout(roots):
    srv = FtpServer(make_config(roots, idle_timeout=0.5), EventLog()).start()
    try:
        c = ControlClient(srv.address)
        try:
            assert c.read_reply().startswith('421')
        finally:
            c.close()
    finally:
        srv.shutdown()


# --- CLIENTE ESTÁNDAR (ftplib) ---

@pytest.fixture
def ftp(server):
    host, port = server.address
    f = ftplib.FTP(timeout=5)
    f.connect(host, port)
    f.login('alice', 'donttellbob')
    yield f
    try:
        f.quit()
    except ftplib.all_errors:
        f.close()


@pytest.mark.parametrize('passive', [True, False])
def test_binary_round_trip(ftp, roots, passive):
    ftp.set_pasv(passive)
    payload = os.urandom(300000) + b'\r\n\n\r'
    ftp.storbinary('STOR blob.bin', io.BytesIO(payload))
    assert (roots['alice'] / 'blob.bin').read_bytes() == payload

    received = io.BytesIO()
    ftp.retrbinary('RETR blob.bin', received.write)
    assert received.getvalue() == payload


def test_ftplib_navigation_and_listing(ftp, roots):
    (roots['alice'] / 'docs').mkdir()
    (roots['alice'] / 'docs' / 'x.txt').write_bytes(b'x')
    assert ftp.pwd() == '/'
    ftp.cwd('docs')
    assert ftp.pwd() == '/docs'
    assert ftp.nlst() == ['x.txt']
    lines = []
    ftp.retrlines('LIST', lines.append)
    assert len(lines) == 1 and lines[0].endswith(' x.txt')
    ftp.cwd('..')
    assert ftp.pwd() == '/'
    with pytest.raises(ftplib.error_perm):
        ftp.cwd('..')


def test_ftplib_ascii_upload(ftp, roots):
    ftp.storlines('STOR lines.txt', io.BytesIO(b'alpha\nbeta\n'))
    assert (roots['alice'] / 'lines.txt').read_bytes() == b'alpha\nbeta\n'


def test_sessions_are_independent(server, roots):
    (roots['alice'] / 'docs').mkdir()
    first = ControlClient(server.address)
    second = ControlClient(server.address)
    try:
        first.login()
        second.login('anonymous', 'x')
        assert first.code('CWD docs') == 250
        assert second.cmd('PWD') == '257 "/" is the current directory.'
        assert second.code('CWD docs') == 550
    finally:
        first.close()
        second.close()
