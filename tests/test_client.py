import asyncio
import pytest

from asysftp.client import SFTPClient, mode_to_pflags
from asysftp.common.exceptions import ProtocolError, ConnectionLost
from asysftp.session import SFTPSessionState
from asysftp.protocol.sftp import SSH_FXP, SSH_FXF, SSH_FX, ATTRS, SFTPException, SSH_FXP_STAT, \
	SSH_FXP_REALPATH

@pytest.mark.asyncio
async def test_concurrent_stats(server, client):
	for i in range(100):
		server.add_file(b'/home/test/f%d' % i, b'x' * i)

	results = await asyncio.gather(*[client.stat('/home/test/f%d' % i) for i in range(100)])
	for i, (attrs, err) in enumerate(results):
		assert err is None
		assert attrs.size == i
	pids = [req.pid for req in server.requests_of(SSH_FXP.STAT)]
	assert len(set(pids)) == 100

@pytest.mark.asyncio
async def test_status_mapping(server, client):
	attrs, err = await client.stat('/nope')
	assert attrs is None
	assert isinstance(err, SFTPException)
	assert err.status == SSH_FX.NO_SUCH_FILE
	assert err.message == 'no such file'
	assert err.language == 'en'

@pytest.mark.asyncio
async def test_stat_lstat_readlink(server, client):
	server.add_file(b'/home/test/target', b'abc')
	_, err = await client.symlink('/home/test/link', 'target')
	assert err is None
	req = server.requests_of(SSH_FXP.SYMLINK)[0]
	assert req.linkpath == b'/home/test/link'
	assert req.targetpath == b'target'

	attrs, err = await client.stat('/home/test/link')
	assert err is None
	assert attrs.is_file is True
	assert attrs.size == 3
	attrs, err = await client.lstat('/home/test/link')
	assert err is None
	assert attrs.is_link is True

	target, err = await client.readlink('/home/test/link')
	assert err is None
	assert target == b'target'

@pytest.mark.asyncio
async def test_directory_ops(server, client):
	ok, err = await client.mkdir('/home/test/sub')
	assert err is None and ok is True
	_, err = await client.mkdir('/home/test/sub')
	assert isinstance(err, SFTPException)
	assert err.status == SSH_FX.FAILURE

	_, err = await client.rename('/home/test/sub', '/home/test/other')
	assert err is None
	_, err = await client.rmdir('/home/test/other')
	assert err is None
	assert b'/home/test/other' not in server.dirs

@pytest.mark.asyncio
async def test_remove(server, client):
	server.add_file(b'/home/test/gone', b'1')
	_, err = await client.remove('/home/test/gone')
	assert err is None
	_, err = await client.unlink('/home/test/gone')
	assert err.status == SSH_FX.NO_SUCH_FILE

@pytest.mark.asyncio
async def test_realpath_and_cwd(server, client):
	path, err = await client.realpath('../test/./x')
	assert err is None
	assert path == b'/home/test/x'
	cwd, err = await client.cwd()
	assert cwd == b'/home/test'

@pytest.mark.asyncio
async def test_setstat(server, client):
	server.add_file(b'/home/test/f', b'0123456789')
	_, err = await client.setstat('/home/test/f', ATTRS(size = 4))
	assert err is None
	assert server.files[b'/home/test/f'] == b'0123'

	_, err = await client.setstat('/home/test/f', ATTRS(uid = 1))
	assert isinstance(err, ValueError)

@pytest.mark.asyncio
async def test_raw_handle_ops(server, client):
	handle, err = await client.open_handle('/home/test/raw', SSH_FXF.WRITE | SSH_FXF.CREAT)
	assert err is None
	_, err = await client.write(handle, 0, b'hello world')
	assert err is None
	data, err = await client.read(handle, 6, 100)
	assert data == b'world'
	_, err = await client.read(handle, 11, 100)
	assert err.is_eof is True
	attrs, err = await client.fstat(handle)
	assert attrs.size == 11
	_, err = await client.fsetstat(handle, ATTRS(size = 5))
	assert err is None
	_, err = await client.close_handle(handle)
	assert err is None
	assert server.files[b'/home/test/raw'] == b'hello'

	dhandle, err = await client.opendir_handle('/home/test')
	assert err is None
	entries, err = await client.readdir(dhandle)
	assert [e.filename for e in entries][:2] == [b'.', b'..']
	_, err = await client.readdir(dhandle)
	assert err.is_eof is True
	await client.close_handle(dhandle)

@pytest.mark.asyncio
async def test_extended(server, client):
	data, err = await client.extended('echo@test', b'\x00\x01payload')
	assert err is None
	assert data == b'\x00\x01payload'
	_, err = await client.extended('nope@test')
	assert err.status == SSH_FX.OP_UNSUPPORTED

@pytest.mark.asyncio
async def test_raw_request_and_submit(server, client):
	packet, err = await client.request(SSH_FXP_STAT('/home'))
	assert err is None
	assert packet.attrs.is_dir is True

	fut = client.submit(SSH_FXP_REALPATH('.'))
	packet = await fut
	assert packet.command == SSH_FXP.NAME
	assert packet.entries[0].filename == b'/home/test'

@pytest.mark.asyncio
async def test_unexpected_ok_status(server, client):
	# an OK status is only valid for requests that expect a status
	server.silent = True
	task = asyncio.create_task(client.stat('/home'))
	while len(server.requests_of(SSH_FXP.STAT)) == 0:
		await asyncio.sleep(0.01)
	server.status(server.requests_of(SSH_FXP.STAT)[0].pid, SSH_FX.OK)
	_, err = await task
	assert isinstance(err, ProtocolError)

@pytest.mark.asyncio
async def test_clone_shares_session(server, client):
	other = client.clone()
	assert other.session is client.session
	await other.close()
	await other.close()
	assert client.session.state == SFTPSessionState.READY
	attrs, err = await client.stat('/home')
	assert err is None

	await client.close()
	assert client.session.state == SFTPSessionState.CLOSED
	_, err = await other.stat('/home')
	assert isinstance(err, ConnectionLost)

@pytest.mark.asyncio
async def test_async_with(server):
	client, err = await SFTPClient.from_stream(server.stream)
	assert err is None
	async with client:
		_, err = await client.stat('/home')
		assert err is None
	assert client.session.state == SFTPSessionState.CLOSED

@pytest.mark.asyncio
async def test_listdir(server, client):
	server.readdir_batch = 2
	for i in range(5):
		server.add_file(b'/home/test/f%d' % i)
	entries, err = await client.listdir('/home/test')
	assert err is None
	assert [e.name for e in entries] == ['.', '..', 'f0', 'f1', 'f2', 'f3', 'f4']
	assert len(server.handles) == 0

	_, err = await client.listdir('/missing')
	assert err.status == SSH_FX.NO_SUCH_FILE

@pytest.mark.asyncio
async def test_download_upload(server, client, tmp_path):
	payload = bytes(range(256)) * 500
	server.add_file(b'/home/test/blob', payload)
	local = tmp_path / 'blob'
	_, err = await client.download('/home/test/blob', str(local))
	assert err is None
	assert local.read_bytes() == payload

	_, err = await client.upload(str(local), '/home/test/copy')
	assert err is None
	assert server.files[b'/home/test/copy'] == payload
	assert len(server.handles) == 0

def test_mode_to_pflags():
	assert mode_to_pflags('rb') == SSH_FXF.READ
	assert mode_to_pflags('w') == SSH_FXF.WRITE | SSH_FXF.TRUNC | SSH_FXF.CREAT
	assert mode_to_pflags('a+') & SSH_FXF.APPEND
	assert mode_to_pflags(SSH_FXF.READ | SSH_FXF.EXCL) == SSH_FXF.READ | SSH_FXF.EXCL
	with pytest.raises(ValueError):
		mode_to_pflags('rt')
	with pytest.raises(ValueError):
		mode_to_pflags('q')

@pytest.mark.asyncio
async def test_closed_clone_fails_locally(server, client):
	other = client.clone()
	await other.close()
	assert other.is_closed is True
	stats_before = len(server.requests_of(SSH_FXP.STAT))

	attrs, err = await other.stat('/home')
	assert attrs is None
	assert isinstance(err, ConnectionLost)
	_, err = await other.request(SSH_FXP_STAT('/home'))
	assert isinstance(err, ConnectionLost)
	with pytest.raises(ConnectionLost):
		await other.submit(SSH_FXP_STAT('/home'))
	_, err = await other.mkdir('/home/test/nope')
	assert isinstance(err, ConnectionLost)
	with pytest.raises(ConnectionLost):
		other.clone()
	assert len(server.requests_of(SSH_FXP.STAT)) == stats_before

	# the remaining client still works on the shared session
	attrs, err = await client.stat('/home')
	assert err is None
	assert client.session.state == SFTPSessionState.READY

@pytest.mark.asyncio
async def test_closed_client_file_write(server, client):
	other = client.clone()
	f, err = await other.open('/home/test/w', 'w')
	assert err is None
	await other.close()
	_, err = await f.write(b'data')
	assert isinstance(err, ConnectionLost)
	assert len(server.requests_of(SSH_FXP.WRITE)) == 0
