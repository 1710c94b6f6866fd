import asyncio
from asysftp import logger

class SFTPStream:
	"""Duplex, ordered, reliable byte stream the SFTP session runs on.
	Usually the data channel of an SSH session running the "sftp" subsystem.
	Override read, write and close."""

	async def read(self) -> bytes:
		"""Returns the next available bytes. Returns b'' when the stream is closed by the other side"""
		raise NotImplementedError()

	async def write(self, data:bytes):
		"""Writes all of data to the stream"""
		raise NotImplementedError()

	async def close(self):
		"""Closes the stream"""
		pass

class SFTPAsyncioStream(SFTPStream):
	"""Wraps an asyncio StreamReader/StreamWriter pair, eg. the stdout/stdin of an "ssh -s host sftp" subprocess"""
	def __init__(self, reader:asyncio.StreamReader, writer, read_size:int = 65536):
		self.reader = reader
		self.writer = writer
		self.read_size = read_size
		self.__closed = False

	async def read(self):
		return await self.reader.read(self.read_size)

	async def write(self, data:bytes):
		self.writer.write(data)
		await self.writer.drain()

	async def close(self):
		if self.__closed is True:
			return
		self.__closed = True
		self.writer.close()
		if hasattr(self.writer, 'wait_closed'):
			try:
				await self.writer.wait_closed()
			except ConnectionError as e:
				logger.debug('Stream was already broken while closing: %s' % e)
