"""hostdeploy - Single-host provisioning and redeployment orchestrator."""

__version__ = "0.1.0"

from hostdeploy.core.config import DeploymentEnvironment, Settings
from hostdeploy.deploy.models import DeploymentRun, LockInfo, ResourceSet

__all__ = ["Settings", "DeploymentEnvironment", "DeploymentRun", "LockInfo", "ResourceSet", "__version__"]
