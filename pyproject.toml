[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "softrouter"
version = "0.1.0"
description = "A user-space IPv4 router with raw-link bridging, pcap savefile tools and a BPF interpreter"
requires-python = ">=3.10"
dependencies = [
    "psutil",
]
keywords = [
    "router",
    "routing-table",
    "arp",
    "ipv4",
    "pcap",
    "bpf",
    "nflog",
    "bridge",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Education",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Topic :: System :: Networking :: Monitoring",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
softrouter = "softrouter.forwarder:main"
softrouter-savefile = "softrouter.savefile:main"
softrouter-dump = "softrouter.dumptools:main"
softrouter-iflist = "softrouter.interfaces:main"
softrouter-bridge = "softrouter.capture:main"
softrouter-sendcap = "softrouter.replay:main"

[tool.hatch.build.targets.wheel]
packages = ["softrouter"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
