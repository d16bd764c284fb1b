"""Resource pooling, pool metrics and ENI device-plugin logic for container networking."""

__version__ = "0.1.0"

__all__ = ["config", "deviceplugin", "interfaces", "metrics", "pool", "queue"]