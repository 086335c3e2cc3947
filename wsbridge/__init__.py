"""Tunnel argument parsing, configuration, DNS resolution, TLS contexts, unix socket listening and task executors for asyncio."""

__version__ = "0.1.0"