import io
import enum
from typing import List, Dict, Union

from asysftp.common.exceptions import SFTPError, MalformedMessage

# https://datatracker.ietf.org/doc/html/draft-ietf-secsh-filexfer-02
# http://cvsweb.openbsd.org/cgi-bin/cvsweb/~checkout~/src/usr.bin/ssh/PROTOCOL

SFTP_PROTOCOL_VERSION = 3

class SSH_FXP(enum.Enum):
	INIT = 1
	VERSION = 2
	OPEN = 3
	CLOSE = 4
	READ = 5
	WRITE = 6
	LSTAT = 7
	FSTAT = 8
	SETSTAT = 9
	FSETSTAT = 10
	OPENDIR = 11
	READDIR = 12
	REMOVE = 13
	MKDIR = 14
	RMDIR = 15
	REALPATH = 16
	STAT = 17
	RENAME = 18
	READLINK = 19
	SYMLINK = 20
	STATUS = 101
	HANDLE = 102
	DATA = 103
	NAME = 104
	ATTRS = 105
	EXTENDED = 200
	EXTENDED_REPLY = 201

class SSH_FXF(enum.IntFlag):
	READ = 0x00000001
	WRITE = 0x00000002
	APPEND = 0x00000004
	CREAT = 0x00000008
	TRUNC = 0x00000010
	EXCL = 0x00000020

PY_OPEN_TO_SSH_FXF = {
	'r': SSH_FXF.READ,
	'w': SSH_FXF.WRITE | SSH_FXF.TRUNC | SSH_FXF.CREAT,
	'x': SSH_FXF.WRITE | SSH_FXF.CREAT | SSH_FXF.EXCL,
	'a': SSH_FXF.WRITE | SSH_FXF.APPEND | SSH_FXF.CREAT,
	'r+': SSH_FXF.READ | SSH_FXF.WRITE,
	'w+': SSH_FXF.READ | SSH_FXF.WRITE | SSH_FXF.TRUNC | SSH_FXF.CREAT,
	'x+': SSH_FXF.READ | SSH_FXF.WRITE | SSH_FXF.CREAT | SSH_FXF.EXCL,
	'a+': SSH_FXF.READ | SSH_FXF.WRITE | SSH_FXF.APPEND | SSH_FXF.CREAT,
}

class SSH_FILEXFER_ATTR(enum.IntFlag):
	SIZE = 0x00000001
	UIDGID = 0x00000002
	PERMISSIONS = 0x00000004
	ACMODTIME = 0x00000008
	EXTENDED = 0x80000000

SSH_FILEXFER_ATTR_ALL = SSH_FILEXFER_ATTR.SIZE | SSH_FILEXFER_ATTR.UIDGID | \
	SSH_FILEXFER_ATTR.PERMISSIONS | SSH_FILEXFER_ATTR.ACMODTIME | SSH_FILEXFER_ATTR.EXTENDED

class SSH_FX(enum.Enum):
	OK = 0
	EOF = 1
	NO_SUCH_FILE = 2
	PERMISSION_DENIED = 3
	FAILURE = 4
	BAD_MESSAGE = 5
	NO_CONNECTION = 6
	CONNECTION_LOST = 7
	OP_UNSUPPORTED = 8

def status_code(value:int):
	"""Servers may send codes above the standard range, those are kept as plain ints"""
	try:
		return SSH_FX(value)
	except ValueError:
		return value

class SFTPException(SFTPError):
	"""The server answered with a non-OK status"""
	def __init__(self, error_code:Union[SSH_FX, int], msg:str = None, language:str = None):
		self.status = status_code(error_code) if isinstance(error_code, int) else error_code
		if isinstance(self.status, SSH_FX):
			self.error_code = self.status.value
			self.error_code_name = self.status.name
		else:
			self.error_code = self.status
			self.error_code_name = 'UNKNOWN_%s' % self.status
		self.message = msg
		self.language = language
		SFTPError.__init__(self, self.error_code, msg)

	@property
	def is_eof(self):
		return self.status == SSH_FX.EOF

	def __str__(self):
		if self.message:
			return '%s (%s): %s' % (self.error_code_name, self.error_code, self.message)
		return '%s (%s)' % (self.error_code_name, self.error_code)

def sftp_bytes(s:Union[str, bytes]) -> bytes:
	"""Paths and handles are raw bytes on the wire, str is encoded as UTF-8"""
	if isinstance(s, str):
		return s.encode('utf-8')
	if isinstance(s, (bytes, bytearray, memoryview)):
		return bytes(s)
	raise TypeError('Expected str or bytes, got %s' % type(s).__name__)

def read_exact(buff:io.BytesIO, size:int) -> bytes:
	data = buff.read(size)
	if len(data) != size:
		raise MalformedMessage('Truncated message! Needed %d bytes, only %d left' % (size, len(data)))
	return data

def read_uint(buff:io.BytesIO, size:int = 4) -> int:
	return int.from_bytes(read_exact(buff, size), byteorder='big', signed = False)

def read_string(buff:io.BytesIO) -> bytes:
	return read_exact(buff, read_uint(buff, 4))

def write_uint(value:int, size:int = 4) -> bytes:
	return int(value).to_bytes(size, byteorder='big', signed = False)

def write_string(data:Union[str, bytes]) -> bytes:
	data = sftp_bytes(data)
	return len(data).to_bytes(4, byteorder='big', signed = False) + data

def read_extension_pairs(buff:io.BytesIO, end:int) -> Dict[str, bytes]:
	extensions = {}
	while buff.tell() < end:
		ename = read_string(buff).decode('utf-8', errors='surrogateescape')
		extensions[ename] = read_string(buff)
	return extensions

def write_extension_pairs(extensions:Dict[str, bytes]) -> bytes:
	t = b''
	if extensions is None:
		return t
	for k, v in extensions.items():
		t += write_string(k.encode('utf-8', errors='surrogateescape'))
		t += write_string(v)
	return t

class ATTRS:
	def __init__(self, size:int = None, uid:int = None, gid:int = None, permissions:int = None, atime:int = None, mtime:int = None, extended:Dict[str, bytes] = None):
		self.size = size
		self.uid = uid
		self.gid = gid
		self.permissions = permissions
		self.atime = atime
		self.mtime = mtime
		self.extended = extended if extended is not None else {}

	@property
	def flags(self):
		"""Presence bitmask, computed from the fields which are set"""
		flags = SSH_FILEXFER_ATTR(0)
		if self.size is not None:
			flags |= SSH_FILEXFER_ATTR.SIZE
		if self.uid is not None or self.gid is not None:
			flags |= SSH_FILEXFER_ATTR.UIDGID
		if self.permissions is not None:
			flags |= SSH_FILEXFER_ATTR.PERMISSIONS
		if self.atime is not None or self.mtime is not None:
			flags |= SSH_FILEXFER_ATTR.ACMODTIME
		if len(self.extended) > 0:
			flags |= SSH_FILEXFER_ATTR.EXTENDED
		return flags

	@property
	def suid(self):
		return self.permissions is not None and bool(self.permissions & 0o4000)

	@property
	def sgid(self):
		return self.permissions is not None and bool(self.permissions & 0o2000)

	@property
	def sticky(self):
		return self.permissions is not None and bool(self.permissions & 0o1000)

	@property
	def ftype(self):
		if self.permissions is None:
			return None
		return (self.permissions & 0o170000) >> 12

	@property
	def owner(self):
		return self.uid

	@property
	def group(self):
		return self.gid

	@property
	def mode(self):
		if self.permissions is None:
			return None
		return self.permissions & 0o777

	@property
	def is_dir(self):
		return self.ftype == 0o4

	@property
	def is_file(self):
		return self.ftype == 0o10

	@property
	def is_link(self):
		return self.ftype == 0o12

	@staticmethod
	def from_bytes(data:bytes):
		return ATTRS.from_buffer(io.BytesIO(data))

	@staticmethod
	def from_buffer(buff:io.BytesIO):
		attrs = ATTRS()
		flags = read_uint(buff, 4)
		if flags & ~SSH_FILEXFER_ATTR_ALL.value:
			raise MalformedMessage('Unknown attribute flags 0x%x' % flags)
		flags = SSH_FILEXFER_ATTR(flags)
		if flags & SSH_FILEXFER_ATTR.SIZE:
			attrs.size = read_uint(buff, 8)
		if flags & SSH_FILEXFER_ATTR.UIDGID:
			attrs.uid = read_uint(buff, 4)
			attrs.gid = read_uint(buff, 4)
		if flags & SSH_FILEXFER_ATTR.PERMISSIONS:
			attrs.permissions = read_uint(buff, 4)
		if flags & SSH_FILEXFER_ATTR.ACMODTIME:
			attrs.atime = read_uint(buff, 4)
			attrs.mtime = read_uint(buff, 4)
		if flags & SSH_FILEXFER_ATTR.EXTENDED:
			extended_count = read_uint(buff, 4)
			for _ in range(extended_count):
				etype = read_string(buff).decode('utf-8', errors='surrogateescape')
				attrs.extended[etype] = read_string(buff)
		return attrs

	def to_bytes(self):
		if (self.uid is None) != (self.gid is None):
			raise ValueError('uid and gid must be set together!')
		if (self.atime is None) != (self.mtime is None):
			raise ValueError('atime and mtime must be set together!')

		flags = self.flags
		t  = write_uint(flags.value, 4)
		if flags & SSH_FILEXFER_ATTR.SIZE:
			t += write_uint(self.size, 8)
		if flags & SSH_FILEXFER_ATTR.UIDGID:
			t += write_uint(self.uid, 4)
			t += write_uint(self.gid, 4)
		if flags & SSH_FILEXFER_ATTR.PERMISSIONS:
			t += write_uint(self.permissions, 4)
		if flags & SSH_FILEXFER_ATTR.ACMODTIME:
			t += write_uint(self.atime, 4)
			t += write_uint(self.mtime, 4)
		if flags & SSH_FILEXFER_ATTR.EXTENDED:
			t += write_uint(len(self.extended), 4)
			for etype, edata in self.extended.items():
				t += write_string(etype.encode('utf-8', errors='surrogateescape'))
				t += write_string(edata)
		return t

	def to_dict(self):
		return {
			'size' : self.size,
			'uid' : self.uid,
			'gid' : self.gid,
			'permissions' : self.permissions,
			'atime' : self.atime,
			'mtime' : self.mtime,
			'extended' : dict(self.extended),
		}

	def __eq__(self, other):
		if not isinstance(other, ATTRS):
			return NotImplemented
		return self.to_dict() == other.to_dict()

	def __repr__(self):
		fields = ['%s=%r' % (k, v) for k, v in self.to_dict().items() if v is not None and v != {}]
		return 'ATTRS(%s)' % ', '.join(fields)

	def __str__(self):
		t = 'ATTRS:\r\n'
		t += 'flags: %s\r\n' % self.flags
		for k, v in self.to_dict().items():
			if v is not None and v != {}:
				t += '%s: %s\r\n' % (k, v)
		return t

class SFTPName:
	"""One entry of a NAME reply. Unpacks as (filename, longname, attrs)"""
	def __init__(self, filename:bytes, longname:bytes, attrs:ATTRS):
		self.filename = sftp_bytes(filename)
		self.longname = sftp_bytes(longname)
		self.attrs = attrs

	@property
	def name(self) -> str:
		return self.filename.decode('utf-8', errors='surrogateescape')

	@property
	def is_dir(self):
		return self.attrs.is_dir

	def __iter__(self):
		return iter((self.filename, self.longname, self.attrs))

	def __eq__(self, other):
		if not isinstance(other, SFTPName):
			return NotImplemented
		return tuple(self) == tuple(other)

	def __repr__(self):
		return '<SFTPName %r %r>' % (self.filename, self.attrs)


class SFTPMessage:
	"""Base of every SFTP packet.
	Frame: uint32 length | byte type | uint32 request id | payload
	Requests are never modified by encoding, the request id is passed to to_bytes."""
	command:SSH_FXP = None

	def __init__(self, pid:int = None):
		self.pid = pid

	@classmethod
	def from_bytes(cls, data:bytes):
		if len(data) < 5:
			raise MalformedMessage('Frame too short (%d bytes)' % len(data))
		buff = io.BytesIO(data)
		length = read_uint(buff, 4)
		if length != len(data) - 4:
			raise MalformedMessage('Declared frame length %d does not match the %d bytes available' % (length, len(data) - 4))
		command = buff.read(1)[0]
		if command != cls.command.value:
			raise MalformedMessage('Expected message type %s got %s' % (cls.command.name, command))
		msg = cls.from_buffer(buff, len(data))
		if buff.tell() != len(data):
			raise MalformedMessage('%d trailing bytes after %s payload' % (len(data) - buff.tell(), cls.command.name))
		return msg

	@classmethod
	def from_buffer(cls, buff:io.BytesIO, end:int):
		pid = read_uint(buff, 4)
		return cls.from_payload(buff, end, pid)

	@classmethod
	def from_payload(cls, buff:io.BytesIO, end:int, pid:int):
		raise NotImplementedError()

	def payload_to_bytes(self) -> bytes:
		raise NotImplementedError()

	def to_bytes(self, pid:int = None):
		if pid is None:
			pid = self.pid
		if pid is None:
			raise ValueError('%s needs a request id to be encoded' % self.command.name)
		body  = write_uint(self.command.value, 1)
		body += write_uint(pid, 4)
		body += self.payload_to_bytes()
		return write_uint(len(body), 4) + body

	def __repr__(self):
		fields = ['%s=%r' % (k, v) for k, v in self.__dict__.items() if k != 'pid']
		return '<%s pid=%s %s>' % (self.__class__.__name__, self.pid, ' '.join(fields))

class SSH_FXP_INIT(SFTPMessage):
	"""Version exchange, carries the version number in place of the request id"""
	command = SSH_FXP.INIT

	def __init__(self, version:int = SFTP_PROTOCOL_VERSION, extensions:Dict[str, bytes] = None):
		SFTPMessage.__init__(self, None)
		self.version = version
		self.extensions = extensions if extensions is not None else {}

	@classmethod
	def from_buffer(cls, buff:io.BytesIO, end:int):
		version = read_uint(buff, 4)
		extensions = read_extension_pairs(buff, end)
		return cls(version, extensions)

	def to_bytes(self, pid:int = None):
		body  = write_uint(self.command.value, 1)
		body += write_uint(self.version, 4)
		body += write_extension_pairs(self.extensions)
		return write_uint(len(body), 4) + body

class SSH_FXP_VERSION(SSH_FXP_INIT):
	command = SSH_FXP.VERSION

class _SFTPPathMessage(SFTPMessage):
	"""Requests carrying a single path"""
	def __init__(self, path:Union[str, bytes], pid:int = None):
		SFTPMessage.__init__(self, pid)
		self.path = sftp_bytes(path)

	@classmethod
	def from_payload(cls, buff, end, pid):
		return cls(read_string(buff), pid = pid)

	def payload_to_bytes(self):
		return write_string(self.path)

class _SFTPHandleMessage(SFTPMessage):
	"""Messages carrying a single handle"""
	def __init__(self, handle:bytes, pid:int = None):
		SFTPMessage.__init__(self, pid)
		self.handle = sftp_bytes(handle)

	@classmethod
	def from_payload(cls, buff, end, pid):
		return cls(read_string(buff), pid = pid)

	def payload_to_bytes(self):
		return write_string(self.handle)

class SSH_FXP_OPEN(SFTPMessage):
	command = SSH_FXP.OPEN

	def __init__(self, filename:Union[str, bytes], pflags:SSH_FXF, attrs:ATTRS = None, pid:int = None):
		SFTPMessage.__init__(self, pid)
		self.filename = sftp_bytes(filename)
		self.pflags = SSH_FXF(pflags)
		self.attrs = attrs if attrs is not None else ATTRS()

	@classmethod
	def from_payload(cls, buff, end, pid):
		filename = read_string(buff)
		pflags = SSH_FXF(read_uint(buff, 4))
		attrs = ATTRS.from_buffer(buff)
		return cls(filename, pflags, attrs, pid = pid)

	def payload_to_bytes(self):
		t  = write_string(self.filename)
		t += write_uint(self.pflags.value, 4)
		t += self.attrs.to_bytes()
		return t

class SSH_FXP_CLOSE(_SFTPHandleMessage):
	command = SSH_FXP.CLOSE

class SSH_FXP_READ(SFTPMessage):
	command = SSH_FXP.READ

	def __init__(self, handle:bytes, offset:int, dlength:int, pid:int = None):
		SFTPMessage.__init__(self, pid)
		self.handle = sftp_bytes(handle)
		self.offset = offset
		self.dlength = dlength

	@classmethod
	def from_payload(cls, buff, end, pid):
		handle = read_string(buff)
		offset = read_uint(buff, 8)
		dlength = read_uint(buff, 4)
		return cls(handle, offset, dlength, pid = pid)

	def payload_to_bytes(self):
		t  = write_string(self.handle)
		t += write_uint(self.offset, 8)
		t += write_uint(self.dlength, 4)
		return t

class SSH_FXP_WRITE(SFTPMessage):
	command = SSH_FXP.WRITE

	def __init__(self, handle:bytes, offset:int, data:bytes, pid:int = None):
		SFTPMessage.__init__(self, pid)
		self.handle = sftp_bytes(handle)
		self.offset = offset
		self.data = bytes(data)

	@classmethod
	def from_payload(cls, buff, end, pid):
		handle = read_string(buff)
		offset = read_uint(buff, 8)
		data = read_string(buff)
		return cls(handle, offset, data, pid = pid)

	def payload_to_bytes(self):
		t  = write_string(self.handle)
		t += write_uint(self.offset, 8)
		t += write_string(self.data)
		return t

class SSH_FXP_LSTAT(_SFTPPathMessage):
	"""Does NOT follow symlinks"""
	command = SSH_FXP.LSTAT

class SSH_FXP_STAT(_SFTPPathMessage):
	"""Only difference is that STAT follows symlinks, LSTAT doesn't"""
	command = SSH_FXP.STAT

class SSH_FXP_FSTAT(_SFTPHandleMessage):
	command = SSH_FXP.FSTAT

class SSH_FXP_SETSTAT(SFTPMessage):
	command = SSH_FXP.SETSTAT

	def __init__(self, path:Union[str, bytes], attrs:ATTRS, pid:int = None):
		SFTPMessage.__init__(self, pid)
		self.path = sftp_bytes(path)
		self.attrs = attrs

	@classmethod
	def from_payload(cls, buff, end, pid):
		path = read_string(buff)
		attrs = ATTRS.from_buffer(buff)
		return cls(path, attrs, pid = pid)

	def payload_to_bytes(self):
		return write_string(self.path) + self.attrs.to_bytes()

class SSH_FXP_FSETSTAT(SFTPMessage):
	command = SSH_FXP.FSETSTAT

	def __init__(self, handle:bytes, attrs:ATTRS, pid:int = None):
		SFTPMessage.__init__(self, pid)
		self.handle = sftp_bytes(handle)
		self.attrs = attrs

	@classmethod
	def from_payload(cls, buff, end, pid):
		handle = read_string(buff)
		attrs = ATTRS.from_buffer(buff)
		return cls(handle, attrs, pid = pid)

	def payload_to_bytes(self):
		return write_string(self.handle) + self.attrs.to_bytes()

class SSH_FXP_OPENDIR(_SFTPPathMessage):
	command = SSH_FXP.OPENDIR

class SSH_FXP_READDIR(_SFTPHandleMessage):
	command = SSH_FXP.READDIR

class SSH_FXP_REMOVE(SFTPMessage):
	command = SSH_FXP.REMOVE

	def __init__(self, filename:Union[str, bytes], pid:int = None):
		SFTPMessage.__init__(self, pid)
		self.filename = sftp_bytes(filename)

	@classmethod
	def from_payload(cls, buff, end, pid):
		return cls(read_string(buff), pid = pid)

	def payload_to_bytes(self):
		return write_string(self.filename)

class SSH_FXP_MKDIR(SFTPMessage):
	command = SSH_FXP.MKDIR

	def __init__(self, path:Union[str, bytes], attrs:ATTRS = None, pid:int = None):
		SFTPMessage.__init__(self, pid)
		self.path = sftp_bytes(path)
		self.attrs = attrs if attrs is not None else ATTRS()

	@classmethod
	def from_payload(cls, buff, end, pid):
		path = read_string(buff)
		attrs = ATTRS.from_buffer(buff)
		return cls(path, attrs, pid = pid)

	def payload_to_bytes(self):
		return write_string(self.path) + self.attrs.to_bytes()

class SSH_FXP_RMDIR(_SFTPPathMessage):
	command = SSH_FXP.RMDIR

class SSH_FXP_REALPATH(_SFTPPathMessage):
	command = SSH_FXP.REALPATH

class SSH_FXP_READLINK(_SFTPPathMessage):
	command = SSH_FXP.READLINK

class SSH_FXP_RENAME(SFTPMessage):
	command = SSH_FXP.RENAME

	def __init__(self, oldpath:Union[str, bytes], newpath:Union[str, bytes], pid:int = None):
		SFTPMessage.__init__(self, pid)
		self.oldpath = sftp_bytes(oldpath)
		self.newpath = sftp_bytes(newpath)

	@classmethod
	def from_payload(cls, buff, end, pid):
		oldpath = read_string(buff)
		newpath = read_string(buff)
		return cls(oldpath, newpath, pid = pid)

	def payload_to_bytes(self):
		return write_string(self.oldpath) + write_string(self.newpath)

class SSH_FXP_SYMLINK(SFTPMessage):
	"""Fields are sent in draft order. OpenSSH servers read them the other way around!"""
	command = SSH_FXP.SYMLINK

	def __init__(self, linkpath:Union[str, bytes], targetpath:Union[str, bytes], pid:int = None):
		SFTPMessage.__init__(self, pid)
		self.linkpath = sftp_bytes(linkpath)
		self.targetpath = sftp_bytes(targetpath)

	@classmethod
	def from_payload(cls, buff, end, pid):
		linkpath = read_string(buff)
		targetpath = read_string(buff)
		return cls(linkpath, targetpath, pid = pid)

	def payload_to_bytes(self):
		return write_string(self.linkpath) + write_string(self.targetpath)

class SSH_FXP_EXTENDED(SFTPMessage):
	"""Vendor request, the data is the rest of the frame and is passed through unparsed"""
	command = SSH_FXP.EXTENDED

	def __init__(self, extended_name:Union[str, bytes], extended_data:bytes = b'', pid:int = None):
		SFTPMessage.__init__(self, pid)
		self.extended_name = sftp_bytes(extended_name)
		self.extended_data = bytes(extended_data)

	@classmethod
	def from_payload(cls, buff, end, pid):
		extended_name = read_string(buff)
		extended_data = buff.read(end - buff.tell())
		return cls(extended_name, extended_data, pid = pid)

	def payload_to_bytes(self):
		return write_string(self.extended_name) + self.extended_data

class SSH_FXP_STATUS(SFTPMessage):
	command = SSH_FXP.STATUS

	def __init__(self, error_code:Union[SSH_FX, int], error_message:bytes = None, language:bytes = None, pid:int = None):
		SFTPMessage.__init__(self, pid)
		self.error_code = status_code(error_code) if isinstance(error_code, int) else error_code
		# some v3 servers leave out the message and the language tag
		self.error_message = sftp_bytes(error_message) if error_message is not None else None
		self.language = sftp_bytes(language) if language is not None else None

	@property
	def is_ok(self):
		return self.error_code == SSH_FX.OK

	@classmethod
	def from_payload(cls, buff, end, pid):
		error_code = read_uint(buff, 4)
		error_message = None
		language = None
		if buff.tell() < end:
			error_message = read_string(buff)
			if buff.tell() < end:
				language = read_string(buff)
		return cls(error_code, error_message, language, pid = pid)

	def payload_to_bytes(self):
		code = self.error_code.value if isinstance(self.error_code, SSH_FX) else self.error_code
		t = write_uint(code, 4)
		if self.error_message is not None or self.language is not None:
			t += write_string(self.error_message or b'')
		if self.language is not None:
			t += write_string(self.language)
		return t

	def get_exception(self):
		msg = None
		if self.error_message is not None:
			msg = self.error_message.decode('utf-8', errors='replace')
		language = None
		if self.language is not None:
			language = self.language.decode('utf-8', errors='replace')
		return SFTPException(self.error_code, msg, language)

class SSH_FXP_HANDLE(_SFTPHandleMessage):
	command = SSH_FXP.HANDLE

class SSH_FXP_DATA(SFTPMessage):
	command = SSH_FXP.DATA

	def __init__(self, data:bytes, pid:int = None):
		SFTPMessage.__init__(self, pid)
		self.data = bytes(data)

	@classmethod
	def from_payload(cls, buff, end, pid):
		return cls(read_string(buff), pid = pid)

	def payload_to_bytes(self):
		return write_string(self.data)

class SSH_FXP_NAME(SFTPMessage):
	command = SSH_FXP.NAME

	def __init__(self, entries:List[SFTPName], pid:int = None):
		SFTPMessage.__init__(self, pid)
		self.entries = entries

	@classmethod
	def from_payload(cls, buff, end, pid):
		count = read_uint(buff, 4)
		entries = []
		for _ in range(count):
			filename = read_string(buff)
			longname = read_string(buff)
			attrs = ATTRS.from_buffer(buff)
			entries.append(SFTPName(filename, longname, attrs))
		return cls(entries, pid = pid)

	def payload_to_bytes(self):
		t = write_uint(len(self.entries), 4)
		for filename, longname, attrs in self.entries:
			t += write_string(filename)
			t += write_string(longname)
			t += attrs.to_bytes()
		return t

class SSH_FXP_ATTRS(SFTPMessage):
	command = SSH_FXP.ATTRS

	def __init__(self, attrs:ATTRS, pid:int = None):
		SFTPMessage.__init__(self, pid)
		self.attrs = attrs

	@classmethod
	def from_payload(cls, buff, end, pid):
		return cls(ATTRS.from_buffer(buff), pid = pid)

	def payload_to_bytes(self):
		return self.attrs.to_bytes()

class SSH_FXP_EXTENDED_REPLY(SFTPMessage):
	command = SSH_FXP.EXTENDED_REPLY

	def __init__(self, data:bytes = b'', pid:int = None):
		SFTPMessage.__init__(self, pid)
		self.data = bytes(data)

	@classmethod
	def from_payload(cls, buff, end, pid):
		return cls(buff.read(end - buff.tell()), pid = pid)

	def payload_to_bytes(self):
		return self.data


SFTP_PACKET_TYPE_LOOKUP = {
	SSH_FXP.INIT: SSH_FXP_INIT,
	SSH_FXP.VERSION: SSH_FXP_VERSION,
	SSH_FXP.OPEN: SSH_FXP_OPEN,
	SSH_FXP.CLOSE: SSH_FXP_CLOSE,
	SSH_FXP.READ: SSH_FXP_READ,
	SSH_FXP.WRITE: SSH_FXP_WRITE,
	SSH_FXP.LSTAT: SSH_FXP_LSTAT,
	SSH_FXP.FSTAT: SSH_FXP_FSTAT,
	SSH_FXP.SETSTAT: SSH_FXP_SETSTAT,
	SSH_FXP.FSETSTAT: SSH_FXP_FSETSTAT,
	SSH_FXP.OPENDIR: SSH_FXP_OPENDIR,
	SSH_FXP.READDIR: SSH_FXP_READDIR,
	SSH_FXP.REMOVE: SSH_FXP_REMOVE,
	SSH_FXP.MKDIR: SSH_FXP_MKDIR,
	SSH_FXP.RMDIR: SSH_FXP_RMDIR,
	SSH_FXP.REALPATH: SSH_FXP_REALPATH,
	SSH_FXP.STAT: SSH_FXP_STAT,
	SSH_FXP.RENAME: SSH_FXP_RENAME,
	SSH_FXP.READLINK: SSH_FXP_READLINK,
	SSH_FXP.SYMLINK: SSH_FXP_SYMLINK,
	SSH_FXP.STATUS: SSH_FXP_STATUS,
	SSH_FXP.HANDLE: SSH_FXP_HANDLE,
	SSH_FXP.DATA: SSH_FXP_DATA,
	SSH_FXP.NAME: SSH_FXP_NAME,
	SSH_FXP.ATTRS: SSH_FXP_ATTRS,
	SSH_FXP.EXTENDED: SSH_FXP_EXTENDED,
	SSH_FXP.EXTENDED_REPLY: SSH_FXP_EXTENDED_REPLY,
}

# what the server answers with when the request succeeds, STATUS is always allowed
SFTP_EXPECTED_RESPONSES = {
	SSH_FXP.INIT: SSH_FXP.VERSION,
	SSH_FXP.OPEN: SSH_FXP.HANDLE,
	SSH_FXP.CLOSE: SSH_FXP.STATUS,
	SSH_FXP.READ: SSH_FXP.DATA,
	SSH_FXP.WRITE: SSH_FXP.STATUS,
	SSH_FXP.LSTAT: SSH_FXP.ATTRS,
	SSH_FXP.FSTAT: SSH_FXP.ATTRS,
	SSH_FXP.SETSTAT: SSH_FXP.STATUS,
	SSH_FXP.FSETSTAT: SSH_FXP.STATUS,
	SSH_FXP.OPENDIR: SSH_FXP.HANDLE,
	SSH_FXP.READDIR: SSH_FXP.NAME,
	SSH_FXP.REMOVE: SSH_FXP.STATUS,
	SSH_FXP.MKDIR: SSH_FXP.STATUS,
	SSH_FXP.RMDIR: SSH_FXP.STATUS,
	SSH_FXP.REALPATH: SSH_FXP.NAME,
	SSH_FXP.STAT: SSH_FXP.ATTRS,
	SSH_FXP.RENAME: SSH_FXP.STATUS,
	SSH_FXP.READLINK: SSH_FXP.NAME,
	SSH_FXP.SYMLINK: SSH_FXP.STATUS,
	SSH_FXP.EXTENDED: SSH_FXP.EXTENDED_REPLY,
}

SFTP_RESPONSE_TYPES = [
	SSH_FXP.STATUS,
	SSH_FXP.HANDLE,
	SSH_FXP.DATA,
	SSH_FXP.NAME,
	SSH_FXP.ATTRS,
	SSH_FXP.EXTENDED_REPLY,
]

def encode_message(message:SFTPMessage, pid:int = None) -> bytes:
	return message.to_bytes(pid)

def decode_message(data:bytes):
	"""Decodes one full frame (length prefix included). Returns (pid, message), pid is None for INIT/VERSION"""
	if len(data) < 5:
		raise MalformedMessage('Frame too short (%d bytes)' % len(data))
	length = int.from_bytes(data[:4], byteorder='big', signed = False)
	if length != len(data) - 4:
		raise MalformedMessage('Declared frame length %d does not match the %d bytes available' % (length, len(data) - 4))
	try:
		command = SSH_FXP(data[4])
	except ValueError:
		raise MalformedMessage('Unknown message type %d' % data[4]) from None
	message = SFTP_PACKET_TYPE_LOOKUP[command].from_bytes(data)
	return message.pid, message
