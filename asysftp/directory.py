import asyncio
from collections import deque
from typing import Union

from asysftp.common.exceptions import SFTPError, HandleClosed

class SFTPDirectoryState:
	def __init__(self, handle:bytes):
		self.handle = handle
		self.buffer = deque()
		self.eof = False
		self.closed = False
		self.lock = asyncio.Lock()

class SFTPDirectory:
	"""An open remote directory. Entries are fetched lazily one READDIR batch at a time.
	The listing can only be walked once, reaching the end does not close the handle."""
	def __init__(self, client, handle:bytes, path:Union[str, bytes] = None, state:SFTPDirectoryState = None):
		self.__client = client
		self.__state = state if state is not None else SFTPDirectoryState(handle)
		self.path = path

	def __str__(self):
		return '<SFTPDirectory path=%s>' % self.path

	async def __aenter__(self):
		return self

	async def __aexit__(self, exc_type, exc, tb):
		if self.__state.closed is False:
			await self.close()

	def __aiter__(self):
		return self.ls()

	@property
	def handle(self):
		return self.__state.handle

	@property
	def is_closed(self):
		return self.__state.closed

	@property
	def at_end(self):
		return self.__state.eof and len(self.__state.buffer) == 0

	def clone(self):
		return SFTPDirectory(self.__client, self.__state.handle, path = self.path, state = self.__state)

	async def __fill(self):
		entries, err = await self.__client.readdir(self.__state.handle)
		if self.__state.closed is True:
			# closed by a clone while the request was in flight
			raise HandleClosed()
		if err is not None:
			if getattr(err, 'is_eof', False) is True:
				self.__state.eof = True
				return
			raise err

		if len(entries) == 0:
			self.__state.eof = True
			raise SFTPError('Server sent an empty NAME reply without EOF status')
		self.__state.buffer.extend(entries)

	async def read_entry(self):
		"""Returns the next entry, (None, None) once the listing is over"""
		try:
			if self.__state.closed is True:
				raise HandleClosed()

			async with self.__state.lock:
				if self.__state.closed is True:
					raise HandleClosed()
				if len(self.__state.buffer) == 0 and self.__state.eof is False:
					await self.__fill()
				if len(self.__state.buffer) == 0:
					return None, None
				return self.__state.buffer.popleft(), None
		except Exception as e:
			return None, e

	async def ls(self):
		"""Yields (entry, err) for the rest of the listing. Stops after the first error"""
		while True:
			entry, err = await self.read_entry()
			if err is not None:
				yield None, err
				return
			if entry is None:
				return
			yield entry, None

	async def read_all(self):
		"""Returns every remaining entry"""
		try:
			entries = []
			async for entry, err in self.ls():
				if err is not None:
					raise err
				entries.append(entry)
			return entries, None
		except Exception as e:
			return None, e

	async def close(self):
		"""Closes the directory handle"""
		try:
			if self.__state.closed is True:
				raise HandleClosed()
			self.__state.closed = True
			self.__state.buffer.clear()
			return await self.__client.close_handle(self.__state.handle)
		except Exception as e:
			return None, e
