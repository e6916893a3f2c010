"""Bundled configuration and policy constants for DeployMesh."""
