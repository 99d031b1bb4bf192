"""
Billable property catalog.

Static definitions of the properties usage is billed for. The catalog is
built once at startup and only read afterwards.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple


@dataclass(frozen=True)
class PropertyDefinition:
    """Definition of a single billable property."""
    name: str
    enum: int  # Stable numeric code of the property
    unit: str
    display_name: str

    def __post_init__(self):
        """Validate property definition values."""
        if not self.name or not self.name.strip():
            raise ValueError("property name cannot be empty")
        if self.enum < 0:
            raise ValueError("property enum cannot be negative")
        if not self.unit:
            raise ValueError(f"unit of property '{self.name}' cannot be empty")


@dataclass(frozen=True)
class PropertyCatalog:
    """Immutable snapshot of billable property definitions."""
    properties: Tuple[PropertyDefinition, ...]

    def __post_init__(self):
        """Validate names and enum codes are unique."""
        names = [p.name for p in self.properties]
        if len(set(names)) != len(names):
            raise ValueError("property names must be unique")
        enums = [p.enum for p in self.properties]
        if len(set(enums)) != len(enums):
            raise ValueError("property enum codes must be unique")

    @classmethod
    def from_definitions(cls, definitions: Iterable[PropertyDefinition]) -> "PropertyCatalog":
        return cls(properties=tuple(definitions))

    def get(self, name: str) -> Optional[PropertyDefinition]:
        """Look up a property definition by name."""
        for definition in self.properties:
            if definition.name == name:
                return definition
        return None

    @property
    def names(self) -> List[str]:
        return [p.name for p in self.properties]

    def to_dicts(self) -> List[Dict[str, object]]:
        """Plain representation used in query responses."""
        return [
            {
                "name": p.name,
                "enum": p.enum,
                "unit": p.unit,
                "displayName": p.display_name,
            }
            for p in self.properties
        ]


# Billable properties of the platform - used when no catalog is configured
DEFAULT_PROPERTY_CATALOG = PropertyCatalog.from_definitions([
    PropertyDefinition(name="cpu", enum=0, unit="millicore", display_name="CPU"),
    PropertyDefinition(name="memory", enum=1, unit="Mi", display_name="Memory"),
    PropertyDefinition(name="storage", enum=2, unit="Mi", display_name="Storage"),
    PropertyDefinition(name="network", enum=3, unit="Mi", display_name="Network"),
    PropertyDefinition(name="services.nodeports", enum=4, unit="1", display_name="Node ports"),
    PropertyDefinition(name="gpu", enum=5, unit="card", display_name="GPU"),
])
