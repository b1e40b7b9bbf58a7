"""Build Handoff - builder/consumer coordination through a shared object store.

This package provides the two sides of a fixed-topology handoff: a builder
that produces artifacts and then scales its own capacity group to zero, and
a consumer that waits for those artifacts, stages them and starts a service.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
