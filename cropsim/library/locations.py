"""
Named simulation locations.

A :class:`LocationRegistry` resolves the free-text location a user selects
("New Delhi, India") into a :class:`~cropsim.core.data_containers.LocationRef`
carrying coordinates, the WRB soil region used by the soil lookup and the
climate normals used by synthetic weather. Lookups are case-, comma- and
whitespace-insensitive; coordinates may also be given directly as
``"lat,lon"``.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, Iterator, Mapping

from cropsim.core.data_containers import (
    ClimateNormals,
    LocationRef,
    normalize_location_name,
)
from cropsim.core.errors import UnknownLocationError

DEFAULT_LOCATION = "New Delhi, India"

_COORDS = re.compile(
    r"^\s*(?P<lat>[-+]?\d+(?:\.\d+)?)\s*,\s*(?P<lon>[-+]?\d+(?:\.\d+)?)\s*$"
)


def _loc(name, lat, lon, region, mean, amp, diurnal, rain, peak, season):
    return LocationRef(
        name=name,
        latitude=lat,
        longitude=lon,
        soil_region=region,
        climate=ClimateNormals(
            mean_temp=mean,
            temp_amplitude=amp,
            diurnal_range=diurnal,
            annual_precip=rain,
            wet_peak_doy=peak,
            rain_seasonality=season,
        ),
    )


BUILTIN_LOCATIONS: tuple[LocationRef, ...] = (
    _loc("New Delhi, India", 28.61, 77.21, "cambisol",
         25.0, 9.0, 12.0, 790.0, 210, 0.85),
    _loc("Punjab, India", 30.90, 75.85, "luvisol",
         24.0, 9.5, 13.0, 650.0, 210, 0.8),
    _loc("Maharashtra, India", 19.08, 75.71, "vertisol",
         26.5, 4.5, 12.0, 900.0, 205, 0.9),
    _loc("Tamil Nadu, India", 11.13, 78.66, "acrisol",
         28.5, 3.0, 9.0, 950.0, 300, 0.6),
    _loc("West Bengal, India", 22.99, 87.85, "gleysol",
         26.5, 5.5, 9.0, 1580.0, 200, 0.8),
    _loc("Rajasthan, India", 26.91, 75.79, "arenosol",
         25.5, 8.5, 14.0, 550.0, 210, 0.9),
    _loc("Iowa, USA", 41.88, -93.10, "luvisol",
         9.5, 14.5, 11.0, 880.0, 160, 0.35),
    _loc("California, USA", 36.78, -119.42, "cambisol",
         17.0, 8.5, 16.0, 300.0, 15, 0.8),
    _loc("Kansas, USA", 38.50, -98.00, "vertisol",
         13.0, 13.5, 13.0, 720.0, 160, 0.45),
    _loc("Cordoba, Argentina", -31.42, -64.18, "luvisol",
         17.5, 6.5, 13.0, 800.0, 15, 0.6),
    _loc("Mato Grosso, Brazil", -12.64, -55.42, "ferralsol",
         25.5, 2.0, 11.0, 1900.0, 30, 0.85),
    _loc("Nairobi, Kenya", -1.29, 36.82, "cambisol",
         18.5, 1.5, 11.0, 900.0, 110, 0.5),
    _loc("Saxony, Germany", 51.10, 13.20, "podzol",
         9.0, 8.5, 8.0, 650.0, 190, 0.2),
)


class LocationRegistry:
    """
    Case-insensitive mapping of location names to :class:`LocationRef`.

    Parameters
    ----------
    locations : iterable of LocationRef, optional
        Initial entries; defaults to :data:`BUILTIN_LOCATIONS`.
    allow_coordinates : bool, default=True
        Resolve ``"lat,lon"`` strings to an ad-hoc location with default
        climate normals and soil region.
    """

    def __init__(
        self,
        locations: Iterable[LocationRef] | None = None,
        *,
        allow_coordinates: bool = True,
    ):
        self._by_key: dict[str, LocationRef] = {}
        self.allow_coordinates = allow_coordinates
        for loc in BUILTIN_LOCATIONS if locations is None else locations:
            self.register(loc)

    def register(self, location: LocationRef) -> None:
        self._by_key[location.key] = location

    def resolve(self, location: "str | LocationRef") -> LocationRef:
        """
        Resolve a name, ``"lat,lon"`` string or existing reference.

        Raises
        ------
        UnknownLocationError
            If the name is not registered and is not a coordinate pair.
        """
        if isinstance(location, LocationRef):
            return location
        if location is None or not str(location).strip():
            raise UnknownLocationError("No location selected.")
        key = normalize_location_name(location)
        if key in self._by_key:
            return self._by_key[key]
        if self.allow_coordinates:
            m = _COORDS.match(str(location))
            if m:
                try:
                    return LocationRef(
                        name=str(location).strip(),
                        latitude=float(m["lat"]),
                        longitude=float(m["lon"]),
                    )
                except ValueError as e:
                    raise UnknownLocationError(str(e)) from e
        raise UnknownLocationError(
            f"Unknown location '{location}'. Known: {self.names()}"
        )

    def names(self) -> list[str]:
        return sorted(loc.name for loc in self._by_key.values())

    def __contains__(self, name: object) -> bool:
        return normalize_location_name(str(name)) in self._by_key

    def __iter__(self) -> Iterator[LocationRef]:
        return iter(self._by_key.values())

    def __len__(self) -> int:
        return len(self._by_key)


def location_from_mapping(record: Mapping[str, Any]) -> LocationRef:
    """Build a :class:`LocationRef` from a plain record (e.g. YAML)."""
    climate = record.get("climate") or {}
    return LocationRef(
        name=str(record["name"]),
        latitude=float(record["latitude"]),
        longitude=float(record["longitude"]),
        soil_region=str(record.get("soil_region", "default")),
        climate=ClimateNormals(**climate),
    )
