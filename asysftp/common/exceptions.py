
class SFTPError(Exception):
	"""Base class for every error raised or returned by asysftp"""
	pass

class HandleClosed(SFTPError):
	"""The file or directory handle was already closed. Raised locally, nothing is sent to the server."""
	def __init__(self, msg:str = 'Handle is already closed!'):
		SFTPError.__init__(self, msg)

class ProtocolError(SFTPError):
	"""The server broke the protocol (unknown request id, unexpected reply type...). Fatal for the session."""
	pass

class MalformedMessage(ProtocolError):
	"""A frame could not be decoded. Fatal for the session, the stream cannot be resynchronized."""
	pass

class HandshakeFailed(SFTPError):
	pass

class ConnectionLost(SFTPError):
	"""The session is gone. Every pending and every later request fails with this."""
	def __init__(self, msg:str = 'Connection lost!'):
		SFTPError.__init__(self, msg)
