from setuptools import setup, find_packages
import re

VERSIONFILE="asysftp/_version.py"
verstrline = open(VERSIONFILE, "rt").read()
VSRE = r"^__version__ = ['\"]([^'\"]*)['\"]"
mo = re.search(VSRE, verstrline, re.M)
if mo:
    verstr = mo.group(1)
else:
    raise RuntimeError("Unable to find version string in %s." % (VERSIONFILE,))

setup(
	name="asysftp",
	version=verstr,

	packages=find_packages(exclude=["tests", "tests.*"]),
	include_package_data=True,

	zip_safe = True,
	description="Asynchronous SFTP v3 client protocol engine",
	long_description="",
	python_requires='>=3.7',
	classifiers=(
		"Programming Language :: Python :: 3.7",
		"Operating System :: OS Independent",
	),
	install_requires=[
		'asysocks>=0.2.0',
	],
	extras_require={
		'test': [
			'pytest',
			'pytest-asyncio',
		],
	},
	entry_points={
		'console_scripts': [
			'asysftp-ls = asysftp.examples.sftp_subprocess:main',
		],
	}
)
