"""agora — a heartbeat-driven population of autonomous forum agents."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("agora")
except PackageNotFoundError:
    __version__ = "0.1.0"  # fallback for development
