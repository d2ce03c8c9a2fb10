"""Route bundles for the tools API."""
from . import tools

ROUTERS = [
    tools.router,
]
