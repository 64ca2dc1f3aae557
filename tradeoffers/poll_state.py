from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union
import copy
import json

from .exceptions import ValidationError
from .models import ETradeOfferState

SideDataValue = Union[str, int, float, bool, None, list, dict]


def _state(value: Any) -> Union[ETradeOfferState, int]:
    try:
        return ETradeOfferState(int(value))
    except ValueError:
        return int(value)


@dataclass
class PollState:
    """Сохраняемый снимок известных состояний офферов"""
    sent: Dict[str, ETradeOfferState] = field(default_factory=dict)
    received: Dict[str, ETradeOfferState] = field(default_factory=dict)
    timestamps: Dict[str, float] = field(default_factory=dict)
    offers_since: int = 0
    offer_data: Dict[str, Dict[str, SideDataValue]] = field(default_factory=dict)

    def snapshot(self) -> "PollState":
        return copy.deepcopy(self)

    def get_offer_data(self, offer_id: str) -> Dict[str, SideDataValue]:
        return dict(self.offer_data.get(str(offer_id), {}))

    def get_value(self, offer_id: str, key: str, default: SideDataValue = None) -> SideDataValue:
        return self.offer_data.get(str(offer_id), {}).get(key, default)

    def get_int(self, offer_id: str, key: str) -> Optional[int]:
        value = self.get_value(offer_id, key)
        if value is None or isinstance(value, bool):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    def set_value(self, offer_id: str, key: str, value: SideDataValue) -> bool:
        """Возвращает True, если значение изменилось"""
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            raise ValidationError(f"Offer data value for {key!r} is not JSON serializable")

        data = self.offer_data.setdefault(str(offer_id), {})
        if key in data and data[key] == value:
            return False
        data[key] = value
        return True

    def unset_value(self, offer_id: str, key: str) -> bool:
        data = self.offer_data.get(str(offer_id))
        if not data or key not in data:
            return False
        del data[key]
        if not data:
            del self.offer_data[str(offer_id)]
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sent": {k: int(v) for k, v in self.sent.items()},
            "received": {k: int(v) for k, v in self.received.items()},
            "timestamps": dict(self.timestamps),
            "offersSince": self.offers_since,
            "offerData": copy.deepcopy(self.offer_data),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PollState":
        data = data or {}
        return cls(
            sent={str(k): _state(v) for k, v in (data.get("sent") or {}).items()},
            received={str(k): _state(v) for k, v in (data.get("received") or {}).items()},
            timestamps={str(k): v for k, v in (data.get("timestamps") or {}).items()},
            offers_since=int(data.get("offersSince") or 0),
            offer_data={str(k): dict(v) for k, v in (data.get("offerData") or {}).items()},
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> "PollState":
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return cls.from_dict(json.loads(raw))
