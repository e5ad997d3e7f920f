"""ekspose: expose Deployments through a Service and an Ingress, and gate
their admission on a vulnerability scan of every declared image."""

__version__ = "0.1.0"
