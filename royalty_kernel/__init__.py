"""
Royalty Kernel.

Persistence, domain primitives and transactional services for royalty runs,
statements, lines, adjustments, rollback archives and the audit hash chain.

Higher layers (``royalty_engines``, ``royalty_services``, ``royalty_batch``)
build on the kernel; the kernel never imports from them.
"""

__version__ = "0.1.0"
