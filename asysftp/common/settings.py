from typing import Dict

# openssh refuses anything above 256k, some room is left for the headers
SFTP_MAX_PACKET_SIZE = 256*1024 + 1024

class SFTPClientSettings:
	def __init__(self):
		self.version:int = 3
		self.init_extensions:Dict[str, bytes] = {}
		self.max_packet_size:int = SFTP_MAX_PACKET_SIZE
		self.read_chunk_size:int = 32768
		self.write_chunk_size:int = 32768
		self.handshake_timeout:int = 10

	def __str__(self):
		t = '==== SFTPClientSettings ====\r\n'
		for k in self.__dict__:
			t += '%s: %s\r\n' % (k, self.__dict__[k])
		return t
