"""GitOps automation for Kubernetes applications, driven by Flux, kubectl and git."""

__version__ = "0.1.0"