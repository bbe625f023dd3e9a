[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dmgemu"
version = "0.1.0"
description = "An emulator of the original monochrome handheld game console, with an SM83 interpreter, picture and sound units and cartridge bank controllers."
requires-python = ">=3.10"
keywords = ["emulator", "sm83", "handheld", "console", "dmg", "retro"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: End Users/Desktop",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Games/Entertainment",
    "Topic :: System :: Emulators",
]
dependencies = [
    "pygame",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
dmgemu = "dmgemu.frontend:main"

[tool.hatch.build.targets.wheel]
packages = ["dmgemu"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
