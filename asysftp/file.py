import asyncio
from typing import Union

from asysftp.common.exceptions import SFTPError, HandleClosed
from asysftp.protocol.sftp import SSH_FXF, ATTRS, SSH_FXP_WRITE

class SFTPFileState:
	"""Everything the clones of one open file share"""
	def __init__(self, handle:bytes):
		self.handle = handle
		self.offset = 0
		self.closed = False

class SFTPFile:
	"""An open remote file with a local cursor. Use SFTPClient.open to get one"""
	def __init__(self, client, handle:bytes, path:Union[str, bytes] = None, mode:SSH_FXF = None, state:SFTPFileState = None):
		self.__client = client
		self.__state = state if state is not None else SFTPFileState(handle)
		self.path = path
		self.mode = mode

	def __str__(self):
		return '<SFTPFile path=%s mode=%s>' % (self.path, self.mode)

	async def __aenter__(self):
		return self

	async def __aexit__(self, exc_type, exc, tb):
		if self.__state.closed is False:
			await self.close()

	@property
	def handle(self):
		return self.__state.handle

	@property
	def is_closed(self):
		return self.__state.closed

	def clone(self):
		"""Returns a second object for the same open file. Cursor and close state are shared"""
		return SFTPFile(self.__client, self.__state.handle, path = self.path, mode = self.mode, state = self.__state)

	def __check_open(self):
		if self.__state.closed is True:
			raise HandleClosed()

	def tell(self):
		"""Returns the current position in the file."""
		return self.__state.offset

	async def seek(self, offset:int, whence:int = 0):
		"""Moves the cursor. Only whence=2 talks to the server, it needs the file size"""
		try:
			self.__check_open()
			if whence == 0:
				new_offset = offset
			elif whence == 1:
				new_offset = self.__state.offset + offset
			elif whence == 2:
				attrs, err = await self.stat()
				if err is not None:
					raise err
				if attrs.size is None:
					raise SFTPError('Server did not report the file size, cannot seek from the end')
				new_offset = attrs.size + offset
			else:
				raise ValueError('Invalid whence %s!' % whence)

			if new_offset < 0:
				raise ValueError('Invalid offset! Resulting position %d is negative' % new_offset)
			self.__state.offset = new_offset
			return new_offset, None
		except Exception as e:
			return None, e

	async def __read(self, offset:int, length:int):
		"""Returns b'' at end of file"""
		data, err = await self.__client.read(self.__state.handle, offset, length)
		if err is not None:
			if getattr(err, 'is_eof', False) is True:
				return b''
			raise err
		return data

	async def pread(self, offset:int, length:int):
		"""Reads at most length bytes from offset. Does not move the cursor"""
		try:
			self.__check_open()
			if offset < 0 or length < 0:
				raise ValueError('Offset and length must not be negative!')
			if length == 0:
				return b'', None
			length = min(length, self.__client.settings.read_chunk_size)
			data = await self.__read(offset, length)
			return data, None
		except Exception as e:
			return None, e

	async def read(self, n:int = -1):
		"""Reads at most n bytes from the cursor in a single request.
		With n=-1 reads until end of file. At end of file the result is b''"""
		try:
			self.__check_open()
			if n == 0:
				return b'', None

			if n > 0:
				length = min(n, self.__client.settings.read_chunk_size)
				data = await self.__read(self.__state.offset, length)
				self.__state.offset += len(data)
				return data, None

			if n != -1:
				raise ValueError('Invalid read size %d' % n)

			buffer = []
			async for chunk, err in self.read_chunked():
				if err is not None:
					raise err
				buffer.append(chunk)
			return b''.join(buffer), None
		except Exception as e:
			return None, e

	async def read_chunked(self, n:int = -1, chunk_size:int = None):
		"""Yields (chunk, err) from the cursor until n bytes are read or end of file is hit"""
		try:
			self.__check_open()
			if chunk_size is None:
				chunk_size = self.__client.settings.read_chunk_size
			chunk_size = min(chunk_size, self.__client.settings.read_chunk_size)

			total = 0
			while n == -1 or total < n:
				self.__check_open()
				bytes_to_read = chunk_size if n == -1 else min(chunk_size, n - total)
				chunk = await self.__read(self.__state.offset, bytes_to_read)
				if len(chunk) == 0:
					break
				self.__state.offset += len(chunk)
				total += len(chunk)
				yield chunk, None

		except Exception as e:
			yield None, e

	def chunks(self, data:bytes):
		"""Yield successive write_chunk_size chunks from data."""
		chunk_size = self.__client.settings.write_chunk_size
		for i in range(0, len(data), chunk_size):
			yield i, data[i:i + chunk_size]

	async def pwrite(self, offset:int, data:bytes):
		"""Writes data at offset. All chunks are sent at once, the cursor is not moved"""
		try:
			self.__check_open()
			if offset < 0:
				raise ValueError('Offset must not be negative!')
			if len(data) == 0:
				return 0, None

			futs = []
			for pos, chunk in self.chunks(data):
				fut = await self.__client.send_message(SSH_FXP_WRITE(self.__state.handle, offset + pos, chunk))
				futs.append(fut)

			results = await asyncio.gather(*futs)
			for _, err in results:
				if err is not None:
					raise err

			return len(data), None
		except Exception as e:
			return None, e

	async def write(self, data:bytes):
		"""Writes data at the cursor. The cursor only moves if every chunk was written"""
		try:
			self.__check_open()
			offset = self.__state.offset
			written, err = await self.pwrite(offset, data)
			if err is not None:
				raise err

			self.__state.offset = offset + written
			return written, None
		except Exception as e:
			return None, e

	async def stat(self):
		"""Gets the file attributes."""
		try:
			self.__check_open()
			return await self.__client.fstat(self.__state.handle)
		except Exception as e:
			return None, e

	async def setstat(self, attrs:ATTRS):
		try:
			self.__check_open()
			return await self.__client.fsetstat(self.__state.handle, attrs)
		except Exception as e:
			return None, e

	async def truncate(self, size:int):
		"""Sets the file size"""
		return await self.setstat(ATTRS(size = size))

	async def close(self):
		"""Closes the file. Closing again fails with HandleClosed without talking to the server"""
		try:
			self.__check_open()
			# later calls on any clone must fail locally, even if CLOSE fails
			self.__state.closed = True
			return await self.__client.close_handle(self.__state.handle)
		except Exception as e:
			return None, e
