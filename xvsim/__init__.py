"""A pure-Python model of a small Unix-like teaching kernel: paging, processes, locks, pipes, system calls, packet headers and a shell parser."""

__version__ = "0.1.0"