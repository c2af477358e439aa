from .schemas import (
    DEFAULT_SERVER,
    DEFAULT_VIEW_SERVER,
    MAX_BATCH_SIZE,
    UploaderConfig,
    load_app_config,
)

__all__ = [
    "DEFAULT_SERVER",
    "DEFAULT_VIEW_SERVER",
    "MAX_BATCH_SIZE",
    "UploaderConfig",
    "load_app_config",
]
