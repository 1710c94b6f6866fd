import enum
import asyncio
import concurrent.futures
from typing import Dict

from asysftp import logger
from asysftp.common.settings import SFTPClientSettings
from asysftp.common.stream import SFTPStream
from asysftp.common.exceptions import SFTPError, ProtocolError, HandshakeFailed, ConnectionLost
from asysftp.correlator import SFTPCorrelator
from asysftp.protocol.packetizer import SFTPPacketizer
from asysftp.protocol.sftp import SSH_FXP, SSH_FXP_INIT, SFTPMessage, SFTP_EXPECTED_RESPONSES, \
	decode_message

class SFTPSessionState(enum.Enum):
	HANDSHAKING = 'HANDSHAKING'
	READY = 'READY'
	CLOSED = 'CLOSED'

async def resolve_response(fut:asyncio.Future, expected_packet_type:SSH_FXP):
	"""Waits for the reply and turns it into (packet, err). Non-OK statuses become SFTPException"""
	try:
		resp = await fut
		if resp.command == SSH_FXP.STATUS:
			if resp.is_ok is False:
				return None, resp.get_exception()
			if expected_packet_type != SSH_FXP.STATUS:
				return None, ProtocolError('Got OK status while expecting %s' % expected_packet_type)
			return resp, None
		if resp.command != expected_packet_type:
			return None, ProtocolError('Invalid response type! Expected: %s Got: %s' % (expected_packet_type, resp.command))
		return resp, None
	except Exception as e:
		return None, e

class SFTPSession:
	"""Owns the stream. One reader task dispatches the replies, one writer task
	sends whole frames in submission order. Any number of callers can submit
	requests concurrently, each one only waits for its own reply."""
	def __init__(self, stream:SFTPStream, settings:SFTPClientSettings = None):
		self.settings = settings if settings is not None else SFTPClientSettings()
		self.state = SFTPSessionState.HANDSHAKING
		self.version:int = None
		self.server_extensions:Dict[str, bytes] = {}
		self.closed_evt = asyncio.Event()
		self.loop:asyncio.AbstractEventLoop = None
		self.__stream = stream
		self.__packetizer = SFTPPacketizer(self.settings.max_packet_size)
		self.__correlator = SFTPCorrelator(self.__enqueue_frame)
		self.__out_queue = asyncio.Queue()
		self.__reader_task = None
		self.__writer_task = None
		self.__cleanup_started = False
		self.__refcount = 0

	async def __aenter__(self):
		return self

	async def __aexit__(self, exc_type, exc, tb):
		await self.close()

	@property
	def close_reason(self):
		return self.__correlator.closed_reason

	@property
	def outstanding(self):
		"""Number of requests waiting for a reply"""
		return len(self.__correlator)

	@staticmethod
	async def start(stream:SFTPStream, settings:SFTPClientSettings = None):
		"""Creates a session on the stream and performs the version exchange"""
		session = SFTPSession(stream, settings)
		_, err = await session.handshake()
		if err is not None:
			return None, err
		return session, None

	def acquire(self):
		self.__refcount += 1

	async def release(self):
		"""Drops one client reference, the last one closes the session"""
		self.__refcount -= 1
		if self.__refcount <= 0:
			await self.close()

	async def __write_frame(self, frame:bytes):
		async for chunk in self.__packetizer.data_out(frame):
			await self.__stream.write(chunk)

	async def __read_version(self):
		logger.debug('SFTP version exchange')
		init = SSH_FXP_INIT(self.settings.version, self.settings.init_extensions)
		await self.__write_frame(init.to_bytes())
		while True:
			frame = self.__packetizer.next_frame()
			if frame is not None:
				break
			data = await self.__stream.read()
			if not data:
				raise HandshakeFailed('Stream closed during version exchange')
			self.__packetizer.feed(data)

		_, packet = decode_message(frame)
		if packet.command != SSH_FXP.VERSION:
			raise HandshakeFailed('Expected VERSION from server, got %s' % packet.command.name)
		if packet.version != self.settings.version:
			raise HandshakeFailed('Server speaks SFTP version %d, only version %d is supported' % (packet.version, self.settings.version))
		return packet

	async def handshake(self):
		try:
			if self.state != SFTPSessionState.HANDSHAKING:
				raise HandshakeFailed('Session is %s, handshake already done' % self.state.name)
			try:
				packet = await asyncio.wait_for(self.__read_version(), self.settings.handshake_timeout)
			except asyncio.TimeoutError:
				raise HandshakeFailed('Server did not answer the version exchange in %s seconds' % self.settings.handshake_timeout) from None
			except HandshakeFailed:
				raise
			except Exception as e:
				raise HandshakeFailed('Version exchange failed: %s' % e) from e

			self.version = packet.version
			self.server_extensions = packet.extensions
			self.loop = asyncio.get_running_loop()
			self.state = SFTPSessionState.READY
			self.__reader_task = asyncio.create_task(self.__handle_in())
			self.__writer_task = asyncio.create_task(self.__handle_out())
			logger.debug('SFTP version exchange OK, version: %s extensions: %s' % (self.version, list(self.server_extensions.keys())))
			return True, None
		except Exception as e:
			await self.close(e)
			return None, e

	def __enqueue_frame(self, frame:bytes):
		self.__out_queue.put_nowait(frame)

	async def __handle_out(self):
		try:
			while True:
				frame = await self.__out_queue.get()
				if frame is None or self.state == SFTPSessionState.CLOSED:
					break
				await self.__write_frame(frame)
		except asyncio.CancelledError:
			raise
		except Exception as e:
			logger.debug('SFTP stream write failed: %s' % e)
			err = ConnectionLost('Failed to write to stream: %s' % e)
			err.__cause__ = e
			await self.close(err)

	async def __handle_in(self):
		try:
			# frames which arrived together with VERSION
			for frame in self.__packetizer.process_buffer():
				self.__correlator.on_frame(frame)

			while self.state == SFTPSessionState.READY:
				data = await self.__stream.read()
				if not data:
					raise ConnectionLost('Stream closed by the server')
				async for frame in self.__packetizer.data_in(data):
					self.__correlator.on_frame(frame)
		except asyncio.CancelledError:
			raise
		except Exception as e:
			logger.debug('SFTP reader stopped: %s' % e)
			await self.close(e)

	def submit(self, message:SFTPMessage) -> asyncio.Future:
		"""Sends the request right away and returns the future of the reply packet.
		Must be called from the event loop of the session."""
		if self.state == SFTPSessionState.HANDSHAKING:
			fut = asyncio.get_running_loop().create_future()
			fut.set_exception(SFTPError('Session handshake has not completed yet!'))
			return fut
		return self.__correlator.submit(message)

	async def send_message(self, message:SFTPMessage):
		"""Sends the request, returns an awaitable which resolves to (packet, err)"""
		fut = self.submit(message)
		return resolve_response(fut, SFTP_EXPECTED_RESPONSES.get(message.command))

	async def request(self, message:SFTPMessage):
		"""Sends the request and waits for the reply. Returns (packet, err)"""
		fut = await self.send_message(message)
		return await fut

	def submit_threadsafe(self, message:SFTPMessage) -> concurrent.futures.Future:
		"""Same as request but can be called from any thread. The result is (packet, err)"""
		if self.loop is None:
			raise SFTPError('Session handshake has not completed yet!')
		return asyncio.run_coroutine_threadsafe(self.request(message), self.loop)

	def terminate(self, reason:Exception = None):
		"""Moves the session to CLOSED and fails every pending request. Does not wait for the tasks"""
		if self.state == SFTPSessionState.CLOSED:
			return
		logger.debug('SFTP session terminated. Reason: %s' % reason)
		self.state = SFTPSessionState.CLOSED
		self.__correlator.fail_all(reason if reason is not None else ConnectionLost('Session closed'))
		self.__out_queue.put_nowait(None)
		self.closed_evt.set()

	async def close(self, reason:Exception = None):
		self.terminate(reason)
		if self.__cleanup_started is True:
			return
		self.__cleanup_started = True

		current = asyncio.current_task()
		tasks = []
		for task in [self.__reader_task, self.__writer_task]:
			if task is None or task is current or task.done():
				continue
			task.cancel()
			tasks.append(task)
		if len(tasks) > 0:
			await asyncio.gather(*tasks, return_exceptions=True)

		try:
			await self.__stream.close()
		except Exception as e:
			logger.debug('Error while closing the SFTP stream: %s' % e)
