import asyncio
import posixpath

import pytest_asyncio

from asysftp.client import SFTPClient
from asysftp.common.settings import SFTPClientSettings
from asysftp.common.stream import SFTPStream
from asysftp.protocol.packetizer import SFTPPacketizer
from asysftp.protocol.sftp import SSH_FXP, SSH_FXF, SSH_FX, ATTRS, SFTPName, decode_message, \
	SSH_FXP_VERSION, SSH_FXP_STATUS, SSH_FXP_HANDLE, SSH_FXP_DATA, SSH_FXP_NAME, SSH_FXP_ATTRS, \
	SSH_FXP_EXTENDED_REPLY

class MemoryStream(SFTPStream):
	"""Client side of an in-memory duplex pipe. The test (or the fake server) feeds incoming and drains outgoing"""
	def __init__(self):
		self.incoming = asyncio.Queue()
		self.outgoing = asyncio.Queue()
		self.closed = False
		self.written = []
		self.fail_writes = False

	def feed(self, data:bytes):
		self.incoming.put_nowait(data)

	def feed_eof(self):
		self.incoming.put_nowait(None)

	async def read(self):
		data = await self.incoming.get()
		if data is None:
			# stay at EOF for every later read
			self.incoming.put_nowait(None)
			return b''
		return data

	async def write(self, data:bytes):
		if self.closed is True or self.fail_writes is True:
			raise ConnectionResetError('Stream is closed')
		self.written.append(data)
		self.outgoing.put_nowait(data)

	async def close(self):
		if self.closed is True:
			return
		self.closed = True
		self.outgoing.put_nowait(None)

class FakeSFTPServer:
	"""Minimal in-memory SFTP v3 server. Every request is answered from its own task,
	so per path delays make replies come back out of order."""
	def __init__(self, stream:MemoryStream):
		self.stream = stream
		self.version = 3
		self.extensions = {'statvfs@openssh.com': b'2'}
		self.answer_init = True
		self.silent = False
		self.readdir_batch = 100
		self.delays = {}
		self.cwd = b'/home/test'
		self.files = {}
		self.dirs = set([b'/', b'/home', b'/home/test'])
		self.links = {}
		self.requests = []
		self.handles = {}
		self.__handle_ctr = 0
		self.__task = None
		self.__workers = set()

	def start(self):
		self.__task = asyncio.create_task(self.__run())

	async def stop(self):
		for task in list(self.__workers) + [self.__task]:
			if task is not None and not task.done():
				task.cancel()
		await asyncio.gather(*self.__workers, self.__task, return_exceptions=True)

	def add_file(self, path:bytes, data:bytes = b''):
		self.files[path] = bytearray(data)

	def requests_of(self, command:SSH_FXP):
		return [req for req in self.requests if req.command == command]

	def reply(self, message, pid:int = None):
		self.stream.feed(message.to_bytes(pid))

	def status(self, pid:int, code:SSH_FX, msg:str = None):
		if msg is None and code != SSH_FX.OK:
			msg = code.name.lower().replace('_', ' ')
		self.reply(SSH_FXP_STATUS(code, msg, 'en' if msg is not None else None), pid)

	async def __run(self):
		packetizer = SFTPPacketizer()
		while True:
			data = await self.stream.outgoing.get()
			if data is None:
				return
			packetizer.feed(data)
			for frame in packetizer.process_buffer():
				pid, message = decode_message(frame)
				self.requests.append(message)
				if message.command == SSH_FXP.INIT:
					if self.answer_init is True:
						self.reply(SSH_FXP_VERSION(self.version, self.extensions))
					continue
				if self.silent is True:
					continue
				task = asyncio.create_task(self.__serve(pid, message))
				self.__workers.add(task)
				task.add_done_callback(self.__workers.discard)

	def __abspath(self, path:bytes):
		if not path.startswith(b'/'):
			path = posixpath.join(self.cwd, path)
		return posixpath.normpath(path)

	def __attrs(self, path:bytes, follow:bool = True):
		if path in self.links:
			if follow is False:
				return ATTRS(size = len(self.links[path]), uid = 1000, gid = 1000, permissions = 0o120777, atime = 1, mtime = 1)
			path = self.__abspath(self.links[path])
		if path in self.dirs:
			return ATTRS(size = 4096, uid = 1000, gid = 1000, permissions = 0o40755, atime = 1, mtime = 1)
		if path in self.files:
			return ATTRS(size = len(self.files[path]), uid = 1000, gid = 1000, permissions = 0o100644, atime = 1, mtime = 1)
		return None

	def __new_handle(self, kind:str, path:bytes, entries = None):
		self.__handle_ctr += 1
		handle = b'handle-%d' % self.__handle_ctr
		self.handles[handle] = [kind, path, entries]
		return handle

	def __listing(self, path:bytes):
		entries = [
			SFTPName(b'.', b'drwxr-xr-x .', self.__attrs(path)),
			SFTPName(b'..', b'drwxr-xr-x ..', self.__attrs(path)),
		]
		for child in sorted(list(self.dirs) + list(self.files)):
			if child == path or posixpath.dirname(child) != path:
				continue
			name = posixpath.basename(child)
			entries.append(SFTPName(name, b'-rw-r--r-- ' + name, self.__attrs(child)))
		return entries

	async def __serve(self, pid:int, msg):
		path = getattr(msg, 'path', None) or getattr(msg, 'filename', None)
		if path is not None and path in self.delays:
			await asyncio.sleep(self.delays[path])

		cmd = msg.command
		if cmd in (SSH_FXP.STAT, SSH_FXP.LSTAT):
			attrs = self.__attrs(self.__abspath(msg.path), cmd == SSH_FXP.STAT)
			if attrs is None:
				return self.status(pid, SSH_FX.NO_SUCH_FILE)
			return self.reply(SSH_FXP_ATTRS(attrs), pid)

		if cmd == SSH_FXP.OPEN:
			fpath = self.__abspath(msg.filename)
			if fpath in self.files:
				if msg.pflags & SSH_FXF.EXCL:
					return self.status(pid, SSH_FX.FAILURE, 'file exists')
				if msg.pflags & SSH_FXF.TRUNC:
					self.files[fpath] = bytearray()
			elif msg.pflags & SSH_FXF.CREAT and posixpath.dirname(fpath) in self.dirs:
				self.files[fpath] = bytearray()
			else:
				return self.status(pid, SSH_FX.NO_SUCH_FILE)
			return self.reply(SSH_FXP_HANDLE(self.__new_handle('file', fpath)), pid)

		if cmd == SSH_FXP.OPENDIR:
			dpath = self.__abspath(msg.path)
			if dpath not in self.dirs:
				return self.status(pid, SSH_FX.NO_SUCH_FILE)
			return self.reply(SSH_FXP_HANDLE(self.__new_handle('dir', dpath, self.__listing(dpath))), pid)

		if cmd in (SSH_FXP.CLOSE, SSH_FXP.READ, SSH_FXP.WRITE, SSH_FXP.FSTAT, SSH_FXP.FSETSTAT, SSH_FXP.READDIR):
			if msg.handle not in self.handles:
				return self.status(pid, SSH_FX.FAILURE, 'invalid handle')
			kind, hpath, entries = self.handles[msg.handle]
			if cmd == SSH_FXP.CLOSE:
				del self.handles[msg.handle]
				return self.status(pid, SSH_FX.OK)
			if cmd == SSH_FXP.FSTAT:
				return self.reply(SSH_FXP_ATTRS(self.__attrs(hpath)), pid)
			if cmd == SSH_FXP.READDIR:
				if kind != 'dir':
					return self.status(pid, SSH_FX.FAILURE)
				if len(entries) == 0:
					return self.status(pid, SSH_FX.EOF)
				batch = entries[:self.readdir_batch]
				self.handles[msg.handle][2] = entries[self.readdir_batch:]
				return self.reply(SSH_FXP_NAME(batch), pid)
			if kind != 'file':
				return self.status(pid, SSH_FX.FAILURE)
			data = self.files[hpath]
			if cmd == SSH_FXP.READ:
				if msg.offset >= len(data):
					return self.status(pid, SSH_FX.EOF)
				return self.reply(SSH_FXP_DATA(bytes(data[msg.offset:msg.offset + msg.dlength])), pid)
			if cmd == SSH_FXP.WRITE:
				if len(data) < msg.offset:
					data.extend(b'\x00' * (msg.offset - len(data)))
				data[msg.offset:msg.offset + len(msg.data)] = msg.data
				return self.status(pid, SSH_FX.OK)
			return self.__setstat(pid, hpath, msg.attrs)

		if cmd == SSH_FXP.SETSTAT:
			spath = self.__abspath(msg.path)
			if self.__attrs(spath) is None:
				return self.status(pid, SSH_FX.NO_SUCH_FILE)
			return self.__setstat(pid, spath, msg.attrs)

		if cmd == SSH_FXP.REMOVE:
			rpath = self.__abspath(msg.filename)
			if rpath in self.links:
				del self.links[rpath]
			elif rpath in self.files:
				del self.files[rpath]
			else:
				return self.status(pid, SSH_FX.NO_SUCH_FILE)
			return self.status(pid, SSH_FX.OK)

		if cmd == SSH_FXP.MKDIR:
			mpath = self.__abspath(msg.path)
			if self.__attrs(mpath) is not None:
				return self.status(pid, SSH_FX.FAILURE, 'already exists')
			if posixpath.dirname(mpath) not in self.dirs:
				return self.status(pid, SSH_FX.NO_SUCH_FILE)
			self.dirs.add(mpath)
			return self.status(pid, SSH_FX.OK)

		if cmd == SSH_FXP.RMDIR:
			rpath = self.__abspath(msg.path)
			if rpath not in self.dirs:
				return self.status(pid, SSH_FX.NO_SUCH_FILE)
			if len(self.__listing(rpath)) > 2:
				return self.status(pid, SSH_FX.FAILURE, 'directory not empty')
			self.dirs.discard(rpath)
			return self.status(pid, SSH_FX.OK)

		if cmd == SSH_FXP.RENAME:
			old = self.__abspath(msg.oldpath)
			new = self.__abspath(msg.newpath)
			if self.__attrs(new) is not None:
				return self.status(pid, SSH_FX.FAILURE, 'target exists')
			if old in self.files:
				self.files[new] = self.files.pop(old)
			elif old in self.dirs:
				self.dirs.discard(old)
				self.dirs.add(new)
			else:
				return self.status(pid, SSH_FX.NO_SUCH_FILE)
			return self.status(pid, SSH_FX.OK)

		if cmd == SSH_FXP.REALPATH:
			rpath = self.__abspath(msg.path)
			return self.reply(SSH_FXP_NAME([SFTPName(rpath, rpath, ATTRS())]), pid)

		if cmd == SSH_FXP.READLINK:
			lpath = self.__abspath(msg.path)
			if lpath not in self.links:
				return self.status(pid, SSH_FX.NO_SUCH_FILE)
			target = self.links[lpath]
			return self.reply(SSH_FXP_NAME([SFTPName(target, target, ATTRS())]), pid)

		if cmd == SSH_FXP.SYMLINK:
			lpath = self.__abspath(msg.linkpath)
			if self.__attrs(lpath, False) is not None:
				return self.status(pid, SSH_FX.FAILURE, 'already exists')
			self.links[lpath] = msg.targetpath
			return self.status(pid, SSH_FX.OK)

		if cmd == SSH_FXP.EXTENDED:
			if msg.extended_name == b'echo@test':
				return self.reply(SSH_FXP_EXTENDED_REPLY(msg.extended_data), pid)
			return self.status(pid, SSH_FX.OP_UNSUPPORTED)

		return self.status(pid, SSH_FX.OP_UNSUPPORTED)

	def __setstat(self, pid:int, path:bytes, attrs:ATTRS):
		if attrs.size is not None:
			if path not in self.files:
				return self.status(pid, SSH_FX.FAILURE)
			data = self.files[path]
			if attrs.size < len(data):
				del data[attrs.size:]
			else:
				data.extend(b'\x00' * (attrs.size - len(data)))
		return self.status(pid, SSH_FX.OK)

@pytest_asyncio.fixture
async def server():
	srv = FakeSFTPServer(MemoryStream())
	srv.start()
	yield srv
	await srv.stop()

@pytest_asyncio.fixture
async def settings():
	return SFTPClientSettings()

@pytest_asyncio.fixture
async def client(server, settings):
	client, err = await SFTPClient.from_stream(server.stream, settings)
	assert err is None
	yield client
	await client.session.close()
