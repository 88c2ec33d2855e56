"""Solar Autopilot: battery charging decision engine."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("solar-autopilot")
except PackageNotFoundError:
    __version__ = "dev"
