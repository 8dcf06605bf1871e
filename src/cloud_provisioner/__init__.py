"""Terraform-style plan/apply provisioning engine for multi-tier cloud topologies."""

import importlib.metadata

try:
    __version__ = importlib.metadata.version("cloud-provisioner")
except importlib.metadata.PackageNotFoundError:  # pragma: no cover - source checkout
    __version__ = "0.0.0"

__all__ = ["__version__"]
