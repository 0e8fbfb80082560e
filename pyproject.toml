[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "wgtun"
version = "0.4.0"
description = "Building blocks for a userspace WireGuard-style tunnel device: allowed-IP tables, peers, UDP and TUN sockets and the configuration protocol"
requires-python = ">=3.10"
dependencies = []
keywords = ["wireguard", "vpn", "tunnel", "tun", "udp", "networking"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Operating System :: MacOS",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["wgtun"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
