"""Concrete job backends.

Each backend maps the generic job capability set (submit, status, result,
messages, cancel) onto one service's REST verbs and response shapes.
"""

from gisops.infrastructure.backends.generic import GenericJobBackend
from gisops.infrastructure.backends.geoprocessing import GeoprocessingBackend
from gisops.infrastructure.backends.elevation import ElevationBackend
from gisops.infrastructure.backends.portal_publish import PortalPublishBackend

__all__ = [
    "GenericJobBackend",
    "GeoprocessingBackend",
    "ElevationBackend",
    "PortalPublishBackend",
]
