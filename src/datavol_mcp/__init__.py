"""
Datavol MCP - idempotent LVM data volume provisioning for ephemeral VMs.

This package discovers the block devices attached to a host, composes them
into a single LVM logical volume mounted at a persistent mount point, and
grows that volume in place when new blank disks are attached.
"""

__version__ = "0.1.0"
