"""
Infrastructure deployment orchestrator.

Drives service templates (servers, storage, clusters, VMs) to their
desired state through external device backends.
"""

__version__ = "0.1.0"
