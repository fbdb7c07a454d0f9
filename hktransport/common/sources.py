from dataclasses import dataclass
from typing import Optional

DIRECTION_CODES = {
    'I': 'I', 'inbound': 'I',
    'O': 'O', 'outbound': 'O',
}


@dataclass(frozen=True)
class SourceProfile:
    """What differs between the operators, kept as data rather than subclasses."""

    name: str
    direction_field: str
    # KMB multiplexes one route number over several service types
    service_type_field: Optional[str] = None
    default_service_type: str = '1'

    @property
    def has_service_types(self) -> bool:
        return self.service_type_field is not None

    def direction_of(self, route_stop: dict) -> Optional[str]:
        return DIRECTION_CODES.get(route_stop.get(self.direction_field))

    def service_type_of(self, route_stop: dict) -> str:
        if not self.has_service_types:
            return self.default_service_type
        return str(route_stop.get(self.service_type_field) or self.default_service_type)


CTB = SourceProfile(name='CTB', direction_field='dir')
KMB = SourceProfile(name='KMB', direction_field='bound', service_type_field='service_type')
