"""Image preview view/settings cache and surface synchronization."""

from image_preview.config import DEFAULT_CONFIG, ViewerConfig
from image_preview.format_settings import FormatSettings, FormatSettingsStore
from image_preview.formats import ImageFormat, NormalizationMode
from image_preview.local_settings import ImageLocalSettingsStore, MaskFilter
from image_preview.messages import Directive
from image_preview.preview import ImagePreview, PreviewManager
from image_preview.sync_protocol import SwitchCoordinator
from image_preview.view_cache import ViewCache

__all__ = [
    "__version__",
    "DEFAULT_CONFIG",
    "ViewerConfig",
    "FormatSettings",
    "FormatSettingsStore",
    "ImageFormat",
    "NormalizationMode",
    "ImageLocalSettingsStore",
    "MaskFilter",
    "Directive",
    "ImagePreview",
    "PreviewManager",
    "SwitchCoordinator",
    "ViewCache",
]

__version__ = "1.0.0"
