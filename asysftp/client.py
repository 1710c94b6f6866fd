import asyncio
from typing import Union

from asysftp.common.exceptions import ConnectionLost
from asysftp.common.settings import SFTPClientSettings
from asysftp.common.stream import SFTPStream
from asysftp.session import SFTPSession
from asysftp.file import SFTPFile
from asysftp.directory import SFTPDirectory
from asysftp.protocol.sftp import SSH_FXF, PY_OPEN_TO_SSH_FXF, ATTRS, SFTPMessage, \
	SSH_FXP_OPEN, SSH_FXP_CLOSE, SSH_FXP_READ, SSH_FXP_WRITE, SSH_FXP_LSTAT, SSH_FXP_STAT, \
	SSH_FXP_FSTAT, SSH_FXP_SETSTAT, SSH_FXP_FSETSTAT, SSH_FXP_OPENDIR, SSH_FXP_READDIR, \
	SSH_FXP_REMOVE, SSH_FXP_MKDIR, SSH_FXP_RMDIR, SSH_FXP_REALPATH, SSH_FXP_RENAME, \
	SSH_FXP_READLINK, SSH_FXP_SYMLINK, SSH_FXP_EXTENDED

def mode_to_pflags(mode:Union[str, SSH_FXF]) -> SSH_FXF:
	"""Converts a python open() mode string to SFTP open flags"""
	if isinstance(mode, SSH_FXF):
		return mode
	if 't' in mode:
		raise ValueError('Text mode not supported!')

	# binary is the only mode there is
	mode = mode.replace('b', '')
	if mode not in PY_OPEN_TO_SSH_FXF:
		raise ValueError('Invalid mode "%s"!' % mode)
	return PY_OPEN_TO_SSH_FXF[mode]

class SFTPClient:
	"""Typed SFTP operations on top of a session. Every call returns (result, err).
	Clones are cheap and share the session, the session is closed when the last clone is closed."""
	def __init__(self, session:SFTPSession):
		self.__session = session
		self.__closed = False
		self.__session.acquire()

	async def __aenter__(self):
		return self

	async def __aexit__(self, exc_type, exc, tb):
		await self.close()

	@staticmethod
	async def from_stream(stream:SFTPStream, settings:SFTPClientSettings = None):
		"""Performs the version exchange on the stream and returns a new client"""
		session, err = await SFTPSession.start(stream, settings)
		if err is not None:
			return None, err
		return SFTPClient(session), None

	@property
	def session(self):
		return self.__session

	@property
	def settings(self):
		return self.__session.settings

	@property
	def version(self):
		return self.__session.version

	@property
	def server_extensions(self):
		return self.__session.server_extensions

	@property
	def is_closed(self):
		return self.__closed

	def __check_open(self):
		if self.__closed is True:
			raise ConnectionLost('Client is closed!')

	def clone(self):
		"""Returns a new client sharing this one's session"""
		self.__check_open()
		return SFTPClient(self.__session)

	def __copy__(self):
		return self.clone()

	async def close(self):
		"""Releases this client. The session is closed once every clone is closed"""
		if self.__closed is True:
			return
		self.__closed = True
		await self.__session.release()

	def submit(self, message:SFTPMessage) -> asyncio.Future:
		"""Sends a raw request immediately, returns the future of the reply packet"""
		if self.__closed is True:
			fut = asyncio.get_running_loop().create_future()
			fut.set_exception(ConnectionLost('Client is closed!'))
			return fut
		return self.__session.submit(message)

	async def send_message(self, message:SFTPMessage):
		"""Sends the request, returns an awaitable which resolves to (packet, err)"""
		self.__check_open()
		return await self.__session.send_message(message)

	async def request(self, message:SFTPMessage):
		"""Sends a raw request and waits for its reply"""
		try:
			fut = await self.send_message(message)
			return await fut
		except Exception as e:
			return None, e

	async def __status_request(self, message:SFTPMessage):
		try:
			fut = await self.send_message(message)
			_, err = await fut
			if err is not None:
				raise err

			return True, None
		except Exception as e:
			return None, e

	async def open_handle(self, path:Union[str, bytes], pflags:SSH_FXF, attrs:ATTRS = None):
		"""Opens a file and returns the raw remote handle"""
		try:
			fut = await self.send_message(SSH_FXP_OPEN(path, pflags, attrs))
			packet, err = await fut
			if err is not None:
				raise err

			return packet.handle, None
		except Exception as e:
			return None, e

	async def open(self, path:Union[str, bytes], mode:Union[str, SSH_FXF] = 'r', attrs:ATTRS = None):
		"""Opens a file"""
		try:
			pflags = mode_to_pflags(mode)
			handle, err = await self.open_handle(path, pflags, attrs)
			if err is not None:
				raise err

			return SFTPFile(self, handle, path = path, mode = pflags), None
		except Exception as e:
			return None, e

	async def close_handle(self, handle:bytes):
		"""Closes a remote file or directory handle"""
		return await self.__status_request(SSH_FXP_CLOSE(handle))

	async def read(self, handle:bytes, offset:int, length:int):
		"""Reads at most length bytes from offset. End of file comes back as an EOF SFTPException"""
		try:
			fut = await self.send_message(SSH_FXP_READ(handle, offset, length))
			packet, err = await fut
			if err is not None:
				raise err

			return packet.data, None
		except Exception as e:
			return None, e

	async def write(self, handle:bytes, offset:int, data:bytes):
		return await self.__status_request(SSH_FXP_WRITE(handle, offset, data))

	async def stat(self, path:Union[str, bytes]):
		"""Gets the stats of a file or directory"""
		try:
			fut = await self.send_message(SSH_FXP_STAT(path))
			packet, err = await fut
			if err is not None:
				raise err

			return packet.attrs, None
		except Exception as e:
			return None, e

	async def lstat(self, path:Union[str, bytes]):
		"""Gets the stats of a file or directory. Does NOT follow symlinks"""
		try:
			fut = await self.send_message(SSH_FXP_LSTAT(path))
			packet, err = await fut
			if err is not None:
				raise err

			return packet.attrs, None
		except Exception as e:
			return None, e

	async def fstat(self, handle:bytes):
		"""Gets the stats of an open file"""
		try:
			fut = await self.send_message(SSH_FXP_FSTAT(handle))
			packet, err = await fut
			if err is not None:
				raise err

			return packet.attrs, None
		except Exception as e:
			return None, e

	async def setstat(self, path:Union[str, bytes], attrs:ATTRS):
		"""Sets the stats of a file or directory"""
		return await self.__status_request(SSH_FXP_SETSTAT(path, attrs))

	async def fsetstat(self, handle:bytes, attrs:ATTRS):
		return await self.__status_request(SSH_FXP_FSETSTAT(handle, attrs))

	async def opendir_handle(self, path:Union[str, bytes]):
		try:
			fut = await self.send_message(SSH_FXP_OPENDIR(path))
			packet, err = await fut
			if err is not None:
				raise err

			return packet.handle, None
		except Exception as e:
			return None, e

	async def opendir(self, path:Union[str, bytes]):
		"""Opens a directory"""
		try:
			handle, err = await self.opendir_handle(path)
			if err is not None:
				raise err

			return SFTPDirectory(self, handle, path = path), None
		except Exception as e:
			return None, e

	async def readdir(self, handle:bytes):
		"""Reads the next batch of entries of an open directory. The end of the listing is an EOF SFTPException"""
		try:
			fut = await self.send_message(SSH_FXP_READDIR(handle))
			packet, err = await fut
			if err is not None:
				raise err

			return packet.entries, None
		except Exception as e:
			return None, e

	async def listdir(self, path:Union[str, bytes]):
		"""Returns every entry of a directory"""
		dirobj = None
		try:
			dirobj, err = await self.opendir(path)
			if err is not None:
				raise err

			entries, err = await dirobj.read_all()
			if err is not None:
				raise err

			_, err = await dirobj.close()
			dirobj = None
			if err is not None:
				raise err

			return entries, None
		except Exception as e:
			return None, e
		finally:
			if dirobj is not None:
				await dirobj.close()

	async def remove(self, path:Union[str, bytes]):
		"""Deletes a file"""
		return await self.__status_request(SSH_FXP_REMOVE(path))

	async def unlink(self, path:Union[str, bytes]):
		return await self.remove(path)

	async def rename(self, oldpath:Union[str, bytes], newpath:Union[str, bytes]):
		"""Renames a file or directory"""
		return await self.__status_request(SSH_FXP_RENAME(oldpath, newpath))

	async def mkdir(self, path:Union[str, bytes], attrs:ATTRS = None):
		"""Creates a directory"""
		return await self.__status_request(SSH_FXP_MKDIR(path, attrs))

	async def rmdir(self, path:Union[str, bytes]):
		"""Removes a directory"""
		return await self.__status_request(SSH_FXP_RMDIR(path))

	async def __single_name(self, message:SFTPMessage):
		try:
			fut = await self.send_message(message)
			packet, err = await fut
			if err is not None:
				raise err
			if len(packet.entries) != 1:
				raise ValueError('Expected exactly one name in reply, got %d' % len(packet.entries))

			return packet.entries[0].filename, None
		except Exception as e:
			return None, e

	async def realpath(self, path:Union[str, bytes]):
		"""Gets the real path of a file or directory"""
		return await self.__single_name(SSH_FXP_REALPATH(path))

	async def cwd(self):
		"""Gets the current working directory"""
		return await self.realpath('.')

	async def readlink(self, path:Union[str, bytes]):
		"""Gets the target of a symlink"""
		return await self.__single_name(SSH_FXP_READLINK(path))

	async def symlink(self, linkpath:Union[str, bytes], targetpath:Union[str, bytes]):
		"""Creates a symlink at linkpath pointing to targetpath"""
		return await self.__status_request(SSH_FXP_SYMLINK(linkpath, targetpath))

	async def extended(self, name:Union[str, bytes], data:bytes = b''):
		"""Sends a vendor specific request. Data goes out and comes back unparsed"""
		try:
			fut = await self.send_message(SSH_FXP_EXTENDED(name, data))
			packet, err = await fut
			if err is not None:
				raise err

			return packet.data, None
		except Exception as e:
			return None, e

	async def download(self, srcpath:Union[str, bytes], dstpath:str):
		"""Downloads a file from the remote server to the local machine"""
		sfile = None
		try:
			sfile, err = await self.open(srcpath, 'r')
			if err is not None:
				raise err

			with open(dstpath, 'wb') as f:
				async for data, err in sfile.read_chunked():
					if err is not None:
						raise err

					f.write(data)

			return True, None
		except Exception as e:
			return False, e
		finally:
			if sfile is not None and sfile.is_closed is False:
				await sfile.close()

	async def upload(self, srcpath:str, dstpath:Union[str, bytes]):
		"""Uploads a file from the local machine to the remote server"""
		sfile = None
		try:
			sfile, err = await self.open(dstpath, 'w')
			if err is not None:
				raise err

			with open(srcpath, 'rb') as f:
				while True:
					data = f.read(self.settings.write_chunk_size * 8)
					if len(data) == 0:
						break

					_, err = await sfile.write(data)
					if err is not None:
						raise err

			return True, None
		except Exception as e:
			return False, e
		finally:
			if sfile is not None and sfile.is_closed is False:
				await sfile.close()
