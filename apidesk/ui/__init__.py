"""
UI support for apidesk
"""

from .dom_service import DomService, ClickEvent, console_confirm, create_document

__all__ = ['DomService', 'ClickEvent', 'console_confirm', 'create_document']
