[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "hachitune"
version = "1.0.0"
description = "Pitch analysis, note segmentation, MIDI export and playback helpers for vocal pitch editing"
requires-python = ">=3.10"
keywords = ["pitch", "f0", "yin", "rmvpe", "fcpe", "some", "midi", "vocal", "audio", "wav"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Sound/Audio :: Analysis",
    "Topic :: Multimedia :: Sound/Audio :: MIDI",
]
dependencies = [
    "numpy",
    "mido",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["hachitune"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
