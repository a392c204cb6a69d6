"""HTTP surface for starting deployments and polling their status."""

from shipyard.serve.server import DeploymentServer, create_app

__all__ = ["DeploymentServer", "create_app"]
