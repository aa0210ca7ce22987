"""Checkout provisioning."""

from git_test.worktree.provisioner import InPlaceProvisioner, Provisioner, WorktreeProvisioner

__all__ = ["InPlaceProvisioner", "Provisioner", "WorktreeProvisioner"]
