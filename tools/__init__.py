"""ForgeSR - Admin Tools"""

from .forge_admin import build_parser, main

__all__ = [
    'build_parser',
    'main',
]
__version__ = '1.0.0'
