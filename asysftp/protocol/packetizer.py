from asysocks.unicomm.common.packetizers import Packetizer
from asysftp.common.exceptions import MalformedMessage
from asysftp.common.settings import SFTP_MAX_PACKET_SIZE

class SFTPPacketizer(Packetizer):
	"""Cuts the incoming byte stream into SFTP frames (uint32 length prefix included).
	A bad length is fatal, there is no way to find the next frame boundary after it."""
	def __init__(self, max_packet_size:int = SFTP_MAX_PACKET_SIZE, init_buffer:bytes = b''):
		Packetizer.__init__(self, max_packet_size)
		self.max_packet_size = max_packet_size
		self.in_buffer = init_buffer
		self.__total_size = -1

	def calc_packet_size(self):
		if len(self.in_buffer) < 4:
			self.__total_size = -1
			return

		packet_length = int.from_bytes(self.in_buffer[0:4], byteorder='big', signed = False)
		if packet_length < 5:
			raise MalformedMessage('Frame length %d is too short' % packet_length)
		if packet_length > self.max_packet_size:
			raise MalformedMessage('Frame length %d exceeds the maximum of %d' % (packet_length, self.max_packet_size))
		self.__total_size = packet_length + 4

	def feed(self, data:bytes):
		if data:
			self.in_buffer += data

	def next_frame(self):
		"""Returns the next complete frame from the buffer or None if more data is needed"""
		if self.__total_size == -1:
			self.calc_packet_size()
		if self.__total_size == -1 or len(self.in_buffer) < self.__total_size:
			return None

		frame = self.in_buffer[:self.__total_size]
		self.in_buffer = self.in_buffer[self.__total_size:]
		self.__total_size = -1
		return frame

	def process_buffer(self):
		while True:
			frame = self.next_frame()
			if frame is None:
				break
			yield frame

	@property
	def pending_bytes(self):
		return len(self.in_buffer)

	async def data_out(self, payload:bytes):
		if payload is None:
			return
		yield payload

	async def data_in(self, data:bytes):
		self.feed(data)
		for packet in self.process_buffer():
			yield packet
