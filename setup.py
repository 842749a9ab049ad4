import os
import re
from codecs import open

from setuptools import find_packages
from setuptools import setup

# Based on https://github.com/pypa/sampleproject/blob/main/setup.py
# and https://python-packaging-user-guide.readthedocs.org/

here = os.path.abspath(os.path.dirname(__file__))

with open(os.path.join(here, "README.md"), encoding="utf-8") as f:
    long_description = f.read()
long_description_content_type = "text/markdown"

with open(os.path.join(here, "proxyagent/version.py")) as f:
    match = re.search(r'VERSION = "(.+?)"', f.read())
    assert match
    VERSION = match.group(1)

setup(
    name="proxyagent",
    version=VERSION,
    description="Route asyncio HTTP/HTTPS connections through a forward proxy using CONNECT tunnels.",
    long_description=long_description,
    long_description_content_type=long_description_content_type,
    license="MIT",
    classifiers=[
        "License :: OSI Approved :: MIT License",
        "Development Status :: 5 - Production/Stable",
        "Framework :: AsyncIO",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: Implementation :: CPython",
        "Topic :: Internet :: WWW/HTTP",
        "Topic :: Internet :: Proxy Servers",
        "Typing :: Typed",
    ],
    packages=find_packages(
        include=[
            "proxyagent",
            "proxyagent.*",
        ]
    ),
    include_package_data=True,
    # StreamWriter.start_tls and asyncio.timeout are 3.11+
    python_requires=">=3.11",
    # https://packaging.python.org/en/latest/discussions/install-requires-vs-requirements/#install-requires
    # It is not considered best practice to use install_requires to pin dependencies to specific versions.
    install_requires=[
        "certifi>=2019.9.11",  # no semver here - this should always be on the last release!
        "h11>=0.11,<0.17",
    ],
    extras_require={
        "dev": [
            "cryptography>=38.0",
            "pytest-asyncio>=0.17",
            "pytest-cov>=2.7.1",
            "pytest-timeout>=1.3.3",
            "pytest>=6.1.0",
        ],
    },
)
