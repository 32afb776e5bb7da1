"""Backend for the asynchronous elevation analysis tasks (Viewshed, Profile, ...)."""

import logging
from typing import Any, Dict, Mapping, Optional

from gisops.domain.errors import ValidationError
from gisops.infrastructure.backends.geoprocessing import GeoprocessingBackend

logger = logging.getLogger(__name__)

ELEVATION_GP_URL = "https://elevation.arcgis.com/arcgis/rest/services/Tools/Elevation/GPServer"

# Task name -> parameter that must be present.
ELEVATION_TASKS: Dict[str, str] = {
    "SummarizeElevation": "InputFeatures",
    "Viewshed": "InputPoints",
    "Profile": "InputLineFeatures",
}

DEM_RESOLUTIONS = ("FINEST", "10m", "30m", "90m")


class ElevationBackend(GeoprocessingBackend):
    name = "elevation"

    def __init__(self, task: str, service_url: Optional[str] = None):
        if task not in ELEVATION_TASKS:
            raise ValidationError(
                f"Unknown elevation task '{task}'. Available: {', '.join(sorted(ELEVATION_TASKS))}."
            )
        self.task = task
        super().__init__(f"{(service_url or ELEVATION_GP_URL).rstrip('/')}/{task}")

    def validate_params(self, params: Mapping[str, Any]) -> None:
        super().validate_params(params)
        required = ELEVATION_TASKS[self.task]
        if params.get(required) in (None, "", {}, []):
            raise ValidationError(f"{self.task} requires the '{required}' parameter.")
        resolution = params.get("DEMResolution")
        if resolution is not None and resolution not in DEM_RESOLUTIONS:
            raise ValidationError(
                f"Invalid DEMResolution {resolution!r}. Expected one of: {', '.join(DEM_RESOLUTIONS)}."
            )
