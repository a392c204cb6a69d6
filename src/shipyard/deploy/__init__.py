"""shipyard deployment engine.

This package turns a deployment request into a running application:
repository profiling, plan resolution, bootstrap script generation,
cloud provisioning and status tracking.
"""

from shipyard.deploy.bootstrap import BootstrapPhase, generate_bootstrap_script
from shipyard.deploy.coordinator import DeploymentCoordinator
from shipyard.deploy.planner import PlanResolver, build_fallback_plan
from shipyard.deploy.profiler import profile_repository
from shipyard.deploy.provisioner import Provisioner
from shipyard.deploy.tracker import StatusTracker

__all__ = [
    "BootstrapPhase",
    "DeploymentCoordinator",
    "PlanResolver",
    "Provisioner",
    "StatusTracker",
    "build_fallback_plan",
    "generate_bootstrap_script",
    "profile_repository",
]
