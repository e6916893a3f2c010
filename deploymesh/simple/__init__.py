"""
High-level, user-friendly façade for DeployMesh.

This package exposes convenience wrappers that streamline common flows such
as loading a deployment document, applying it and evaluating its scaling
policies.
"""

from .client import DeploymentDocument, SimpleDeployment, load_document  # noqa: F401

__all__ = ["DeploymentDocument", "SimpleDeployment", "load_document"]
