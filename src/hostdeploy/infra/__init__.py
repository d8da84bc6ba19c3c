"""Infrastructure driver (terraform) and generated host inventory."""

from .inventory import write_inventory
from .terraform import TerraformDriver

__all__ = ["TerraformDriver", "write_inventory"]
