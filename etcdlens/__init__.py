"""Library for inspecting Kubernetes objects in etcd: storage encoding, bolt files and etcd reads."""

__version__ = "0.1.0"