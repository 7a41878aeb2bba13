"""TCP/UDP transports, interface-bound broadcast links and AutoIP discovery for Visionary 3D cameras."""

__version__ = "0.1.0"

__all__ = ["autoip", "netlink", "transport"]