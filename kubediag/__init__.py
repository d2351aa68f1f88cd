"""KubeDiag - Kubernetes pod diagnostics and scheduling explanations."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("kubediag")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
