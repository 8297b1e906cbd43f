"""
fedsync - reconciliation core of a multi-cluster federation controller.

Given a federated template resource in a host store, the controller:
- Computes which member clusters should carry a copy
- Creates, updates and deletes those copies concurrently
- Reports per-cluster outcomes in the resource status
- Runs a finalizer-gated deletion protocol (cascade or orphan)
"""

__version__ = "0.1.0"
