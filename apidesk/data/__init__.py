"""
Static data shipped with apidesk
"""

from .bundled_endpoints import BUNDLED_ENDPOINTS, get_bundled_endpoints

__all__ = ['BUNDLED_ENDPOINTS', 'get_bundled_endpoints']
