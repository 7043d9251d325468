[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "metagsm"
version = "0.1.0"
description = "Decoding of GSM/UMTS radio metadata: SCH and control-channel coding, diagnostic records, SMS parsing, RLC/MAC reassembly and session reporting"
requires-python = ">=3.10"
dependencies = []
keywords = ["gsm", "umts", "sms", "viterbi", "rlcmac", "telephony", "baseband"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Telecommunications Industry",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Communications :: Telephony",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["metagsm"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
