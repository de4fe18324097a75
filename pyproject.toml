[build-system]
requires = ["setuptools>=64"]
build-backend = "setuptools.build_meta"

[project]
name = "camstream"
version = "0.1.0"
description = "Camera capture building blocks: frame buffers, buffer lists, devices, buffer locks and control value parsing"
requires-python = ">=3.10"
dependencies = []
keywords = ["camera", "streaming", "video", "capture", "buffers", "fourcc"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Video :: Capture",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.setuptools.packages.find]
include = ["camstream*"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
