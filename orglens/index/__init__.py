"""
Index module: immutable Index assembly and atomic publication
"""

from .build_index import BuildReport, Index, IndexBuilder, blocking_key, build_index, department_key
from .publisher import IndexPublisher, PublishedSnapshot

__all__ = [
    'BuildReport',
    'Index',
    'IndexBuilder',
    'IndexPublisher',
    'PublishedSnapshot',
    'blocking_key',
    'build_index',
    'department_key',
]
