"""
Initial soil state per location.

:class:`SoilModel` resolves the starting
:class:`~cropsim.core.data_containers.SoilState` of a run from a lookup table
keyed by WRB reference soil group. It is stateless after construction: daily
moisture changes belong to the growth engine, and fertility is never changed
during a run.

Notes
-----
- Table values (pH, nitrogen, organic matter, texture, drainage) follow the
  typical averages of each WRB reference soil group.
- Fertility is an index in ``[0, 1]`` combining nitrogen (70 %) and organic
  matter (30 %), normalized by 60 mg/kg N and 2.5 % OM.
- Initial moisture is the texture's field moisture, shifted by drainage
  class and scaled by ``moisture_scale``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from cropsim.core.data_containers import LocationRef, SoilState, TextureClass

logger = logging.getLogger(__name__)

_DRAINAGE_SHIFT = {
    "excessively drained": -0.10,
    "well drained": 0.0,
    "moderately well drained": 0.05,
    "poorly drained": 0.10,
}


@dataclass(frozen=True, slots=True)
class SoilProfile:
    """Static soil properties of one soil group."""

    ph: float = 7.0
    nitrogen: float = 50.0  # mg/kg
    organic_matter: float = 2.0  # %
    texture: TextureClass = TextureClass.LOAM
    drainage: str = "well drained"

    def __post_init__(self):
        object.__setattr__(self, "texture", TextureClass.parse(self.texture))
        object.__setattr__(self, "drainage", self.drainage.lower())
        if self.drainage not in _DRAINAGE_SHIFT:
            raise ValueError(
                f"Unknown drainage class '{self.drainage}'. "
                f"Known: {sorted(_DRAINAGE_SHIFT)}"
            )
        if self.nitrogen < 0.0 or self.organic_matter < 0.0:
            raise ValueError("nitrogen and organic_matter must be ≥ 0.")

    @property
    def fertility(self) -> float:
        index = 0.7 * self.nitrogen / 60.0 + 0.3 * self.organic_matter / 2.5
        return min(max(index, 0.0), 1.0)

    def initial_moisture(self, scale: float = 1.0) -> float:
        base = self.texture.field_moisture + _DRAINAGE_SHIFT[self.drainage]
        return min(max(base * scale, 0.0), 1.0)


DEFAULT_PROFILE = SoilProfile()

SOIL_TABLE: Mapping[str, SoilProfile] = {
    "luvisol": SoilProfile(6.5, 45.0, 1.8, "Clay loam"),
    "cambisol": SoilProfile(6.8, 55.0, 2.2, "Loam"),
    "ferralsol": SoilProfile(5.5, 35.0, 1.5, "Clay", "Moderately well drained"),
    "acrisol": SoilProfile(5.2, 30.0, 1.2, "Clay", "Poorly drained"),
    "arenosol": SoilProfile(6.0, 25.0, 0.8, "Sandy", "Excessively drained"),
    "vertisol": SoilProfile(7.5, 60.0, 2.5, "Clay", "Moderately well drained"),
    "gleysol": SoilProfile(6.2, 40.0, 1.8, "Silty clay", "Poorly drained"),
    "podzol": SoilProfile(4.8, 20.0, 1.0, "Sandy loam"),
}


class SoilModel:
    """
    Resolve the starting soil of a location.

    Parameters
    ----------
    table : mapping of str to SoilProfile, optional
        Soil groups by (lower-case) name; defaults to :data:`SOIL_TABLE`.
    default : SoilProfile, optional
        Profile used when the location's region is not in ``table``.
    moisture_scale : float, default=1.0
        Multiplier applied to the initial moisture (e.g. 0.5 for a dry
        start).
    """

    def __init__(
        self,
        table: Optional[Mapping[str, SoilProfile]] = None,
        default: SoilProfile = DEFAULT_PROFILE,
        moisture_scale: float = 1.0,
    ):
        if moisture_scale < 0.0:
            raise ValueError("moisture_scale must be ≥ 0.")
        self.table = {
            k.lower(): v for k, v in (table or SOIL_TABLE).items()
        }
        self.default = default
        self.moisture_scale = moisture_scale

    def profile_for(self, location: LocationRef) -> tuple[str, SoilProfile]:
        region = location.soil_region.lower()
        if region in self.table:
            return region, self.table[region]
        logger.debug(
            "No soil group '%s' for %s; using default profile",
            region,
            location.name,
        )
        return "default", self.default

    def initial_state(self, location: LocationRef) -> SoilState:
        """Starting moisture, fertility, texture and pH for ``location``."""
        region, profile = self.profile_for(location)
        return SoilState(
            moisture=profile.initial_moisture(self.moisture_scale),
            fertility=profile.fertility,
            texture=profile.texture,
            ph=profile.ph,
            soil_class=region,
        )


def soil_profile_from_mapping(record: Mapping[str, Any]) -> SoilProfile:
    return SoilProfile(
        ph=float(record.get("ph", DEFAULT_PROFILE.ph)),
        nitrogen=float(record.get("nitrogen", DEFAULT_PROFILE.nitrogen)),
        organic_matter=float(
            record.get("organic_matter", DEFAULT_PROFILE.organic_matter)
        ),
        texture=record.get("texture", DEFAULT_PROFILE.texture),
        drainage=str(record.get("drainage", DEFAULT_PROFILE.drainage)),
    )
