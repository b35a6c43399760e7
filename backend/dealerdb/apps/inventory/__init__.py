"""
Inventory module.

Serial decoding, the override overlay, image ordering, lot configuration
and portal sync for a dealer's portable buildings.
"""

from . import models  # noqa: F401
