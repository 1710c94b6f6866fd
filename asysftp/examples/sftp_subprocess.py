import sys
import traceback
import asyncio
from asysftp.client import SFTPClient
from asysftp.common.stream import SFTPAsyncioStream

async def stop_process(proc, timeout:float = 5):
	"""Closes the pipe of the ssh child, kills it if it does not exit on its own"""
	if proc.returncode is not None:
		return proc.returncode
	if proc.stdin is not None and not proc.stdin.is_closing():
		proc.stdin.close()
	try:
		return await asyncio.wait_for(proc.wait(), timeout)
	except asyncio.TimeoutError:
		proc.kill()
		return await proc.wait()

async def amain(host:str, path:str):
	proc = None
	try:
		# the openssh client does the transport and the authentication
		proc = await asyncio.create_subprocess_exec(
			'ssh', host, '-s', 'sftp',
			stdin = asyncio.subprocess.PIPE,
			stdout = asyncio.subprocess.PIPE,
		)
		stream = SFTPAsyncioStream(proc.stdout, proc.stdin)
		client, err = await SFTPClient.from_stream(stream)
		if err is not None:
			raise err

		async with client:
			cwd, err = await client.cwd()
			if err is not None:
				raise err
			print('Remote directory: %s' % cwd.decode(errors='replace'))

			dirobj, err = await client.opendir(path)
			if err is not None:
				raise err

			async with dirobj:
				async for entry, err in dirobj:
					if err is not None:
						raise err
					print(entry.longname.decode(errors='replace'))

		print('Done!')
	except Exception as e:
		traceback.print_exc()
	finally:
		if proc is not None:
			await stop_process(proc)

def main():
	if len(sys.argv) < 2:
		print('Usage: %s [user@]host [path]' % sys.argv[0])
		return
	path = sys.argv[2] if len(sys.argv) > 2 else '.'
	asyncio.run(amain(sys.argv[1], path))

if __name__ == '__main__':
	main()
