import asyncio
from typing import Callable, Dict

from asysftp import logger
from asysftp.common.exceptions import SFTPError, ProtocolError, ConnectionLost
from asysftp.protocol.sftp import SSH_FXP, SFTPMessage, SFTP_EXPECTED_RESPONSES, \
	SFTP_RESPONSE_TYPES, encode_message, decode_message

class SFTPPendingRequest:
	def __init__(self, pid:int, command:SSH_FXP, future:asyncio.Future):
		self.pid = pid
		self.command = command
		self.expected = SFTP_EXPECTED_RESPONSES.get(command)
		self.future = future

	def resolve(self, packet:SFTPMessage):
		if self.future.done():
			# caller gave up waiting, the id was kept reserved until now
			logger.debug('Discarding %s for abandoned request %d' % (packet.command.name, self.pid))
			return
		self.future.set_result(packet)

	def fail(self, exc:Exception):
		if self.future.done():
			return
		self.future.set_exception(exc)

class SFTPCorrelator:
	"""Assigns request ids and matches the replies to the waiting callers.
	Only ever touched from the event loop thread and never awaits, so the
	pending table cannot be seen half-updated."""
	MAX_OUTSTANDING = 0x100000000

	def __init__(self, writer:Callable[[bytes], None]):
		self.__writer = writer
		self.__outstanding:Dict[int, SFTPPendingRequest] = {}
		self.__next_pid = 0
		self.closed_reason:Exception = None

	def __len__(self):
		return len(self.__outstanding)

	def __contains__(self, pid:int):
		return pid in self.__outstanding

	@property
	def is_closed(self):
		return self.closed_reason is not None

	def get_pid(self):
		"""Returns the next packet id which is not in use"""
		if len(self.__outstanding) >= self.MAX_OUTSTANDING:
			raise SFTPError('Too many outstanding requests! No free request id left')
		while True:
			self.__next_pid += 1
			self.__next_pid &= 0xffffffff
			if self.__next_pid not in self.__outstanding:
				break

		return self.__next_pid

	def get_connection_lost(self):
		if isinstance(self.closed_reason, ConnectionLost):
			return self.closed_reason
		err = ConnectionLost('Session terminated: %s' % self.closed_reason)
		err.__cause__ = self.closed_reason
		return err

	def submit(self, message:SFTPMessage) -> asyncio.Future:
		"""Registers the request and hands its frame to the writer. Returns the future of the reply"""
		fut = asyncio.get_running_loop().create_future()
		if self.closed_reason is not None:
			fut.set_exception(self.get_connection_lost())
			return fut

		try:
			if message.command not in SFTP_EXPECTED_RESPONSES or message.command == SSH_FXP.INIT:
				raise SFTPError('%s is not a request!' % message.command.name)
			pid = self.get_pid()
			frame = encode_message(message, pid)
		except Exception as e:
			fut.set_exception(e)
			return fut

		self.__outstanding[pid] = SFTPPendingRequest(pid, message.command, fut)
		logger.debug('SFTP request #%d: %s' % (pid, message.command.name))
		self.__writer(frame)
		return fut

	def on_frame(self, frame:bytes):
		"""Dispatches one inbound frame. Raises MalformedMessage or ProtocolError, both end the session"""
		pid, packet = decode_message(frame)
		if packet.command not in SFTP_RESPONSE_TYPES:
			raise ProtocolError('Unexpected %s message from server' % packet.command.name)

		pending = self.__outstanding.pop(pid, None)
		if pending is None:
			raise ProtocolError('Reply %s for unknown request id %d' % (packet.command.name, pid))

		logger.debug('SFTP reply #%d: %s' % (pid, packet.command.name))
		if packet.command != SSH_FXP.STATUS and packet.command != pending.expected:
			err = ProtocolError('Invalid response type! Expected: %s Got: %s' % (pending.expected, packet.command))
			pending.fail(err)
			raise err

		pending.resolve(packet)

	def fail_all(self, reason:Exception = None):
		"""Fails every pending request with ConnectionLost. Terminal, calling it again does nothing"""
		if self.closed_reason is not None:
			return
		self.closed_reason = reason if reason is not None else ConnectionLost()
		err = self.get_connection_lost()
		outstanding = self.__outstanding
		self.__outstanding = {}
		for pid in outstanding:
			outstanding[pid].fail(err)
