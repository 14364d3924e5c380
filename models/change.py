"""Change events emitted between consecutive listing observations."""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict


@dataclass
class ChangeEvent:
    """One detected difference between the stored and the incoming listing."""

    listing_id: str
    listing_title: str
    change_type: str
    old_value: str
    new_value: str
    description: str
    change_date: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChangeEvent":
        valid_fields = set(cls.__dataclass_fields__)
        return cls(**{k: v for k, v in data.items() if k in valid_fields})
