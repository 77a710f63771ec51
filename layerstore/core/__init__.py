"""LayerStore Core - Shared constants, errors and validators.

Import specific names from submodules:
    from layerstore.core.constants import ItemType, LayerState
    from layerstore.core.errors import NotFoundError
    from layerstore.core.validators import normalize_path
"""

from layerstore.core import constants, errors, validators

__all__ = [
    "constants",
    "errors",
    "validators",
]
