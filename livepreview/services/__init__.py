"""Service layer for livepreview."""

from livepreview.services.installer import install_dependencies
from livepreview.services.preview_manager import PreviewManager, get_preview_manager

__all__ = ["PreviewManager", "get_preview_manager", "install_dependencies"]
