from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, NamedTuple, Optional, Tuple, Union
import re

from .exceptions import RemoteProtocolError, ValidationError

STEAMID64_BASE = 76561197960265728
IMAGE_BASE_URL = "https://steamcommunity-a.akamaihd.net/economy/image/"


class ETradeOfferState(IntEnum):
    Invalid = 1
    Active = 2
    Accepted = 3
    Countered = 4
    Expired = 5
    Canceled = 6
    Declined = 7
    InvalidItems = 8
    CreatedNeedsConfirmation = 9
    CanceledBySecondFactor = 10
    InEscrow = 11


class EOfferFilter(IntEnum):
    ActiveOnly = 1
    HistoricalOnly = 2
    All = 3


class EConfirmationMethod(IntEnum):
    None_ = 0
    Email = 1
    MobileApp = 2


class ETradeStatus(IntEnum):
    Init = 0
    PreCommitted = 1
    Committed = 2
    Complete = 3
    Failed = 4
    PartialSupportRollback = 5
    FullSupportRollback = 6
    SupportRollback_Selective = 7
    RollbackFailed = 8
    RollbackAbandoned = 9
    InEscrow = 10
    EscrowRollback = 11


class EResult(IntEnum):
    Invalid = 0
    OK = 1
    Fail = 2
    NoConnection = 3
    InvalidPassword = 5
    LoggedInElsewhere = 6
    InvalidParam = 8
    Busy = 10
    InvalidState = 11
    AccessDenied = 15
    Timeout = 16
    Banned = 17
    ServiceUnavailable = 20
    NotLoggedOn = 21
    Pending = 22
    InsufficientPrivilege = 24
    LimitExceeded = 25
    Revoked = 26
    Expired = 27
    DuplicateRequest = 29
    NoMatch = 42
    AccountDisabled = 43
    ServiceReadOnly = 44
    RateLimitExceeded = 84
    TooManyPending = 108


class SendResult(str, Enum):
    SENT = "sent"
    PENDING = "pending"


class AcceptResult(str, Enum):
    ACCEPTED = "accepted"
    PENDING = "pending"
    ESCROW = "escrow"


def eresult_name(code: Any) -> str:
    try:
        return EResult(int(code)).name
    except (TypeError, ValueError):
        return str(code)


def steamid_from_accountid(accountid: Union[int, str]) -> str:
    return str(STEAMID64_BASE + int(accountid))


def accountid_from_steamid(steamid: Union[int, str]) -> int:
    return int(steamid) - STEAMID64_BASE


class ClassKey(NamedTuple):
    appid: int
    classid: str
    instanceid: str = "0"

    @classmethod
    def of(cls, item: Any, appid: Optional[int] = None) -> "ClassKey":
        """Ключ описания для ассета, EconItem или сырого словаря"""
        get = item.get if isinstance(item, dict) else lambda k: getattr(item, k, None)
        appid = appid or get("appid")
        classid = get("classid")
        try:
            appid = int(appid)
        except (TypeError, ValueError):
            raise RemoteProtocolError(f"Item has no valid appid: {appid!r}")
        if classid is None or classid == "":
            raise RemoteProtocolError("Item has no classid")
        return cls(appid, str(classid), str(get("instanceid") or "0"))

    def __str__(self) -> str:
        return f"{self.appid}_{self.classid}_{self.instanceid}"


@dataclass(frozen=True)
class ItemRef:
    appid: int
    contextid: str
    assetid: str
    amount: int = field(default=1, compare=False)

    @classmethod
    def from_data(cls, details: Any) -> "ItemRef":
        if isinstance(details, ItemRef):
            return details

        get = details.get if isinstance(details, dict) else lambda k: getattr(details, k, None)
        assetid = get("assetid") or get("id")
        if get("appid") is None or get("contextid") is None or assetid is None:
            raise ValidationError("Missing appid, contextid, or assetid parameter")

        return cls(
            appid=int(get("appid")),
            contextid=str(get("contextid")),
            assetid=str(assetid),
            amount=int(get("amount") or 1),
        )

    def to_asset(self) -> Dict[str, Any]:
        return {
            "appid": self.appid,
            "contextid": self.contextid,
            "amount": self.amount,
            "assetid": self.assetid,
        }


def item_identity(item: Any) -> Tuple[int, str, str]:
    ref = ItemRef.from_data(item)
    return ref.appid, ref.contextid, ref.assetid


def item_equals(a: Any, b: Any) -> bool:
    return item_identity(a) == item_identity(b)


def _fix_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    try:
        return bool(int(value))
    except (TypeError, ValueError):
        return False


def _fix_array(obj: Any) -> List[Any]:
    if obj is None or obj == "":
        return []
    if isinstance(obj, dict):
        keys = sorted(obj, key=lambda k: int(k) if str(k).isdigit() else 0)
        return [obj[k] for k in keys]
    return list(obj)


def _fix_tags(tags: Any) -> List[Dict[str, Any]]:
    fixed = []
    for tag in _fix_array(tags):
        tag = dict(tag)
        tag["name"] = tag["localized_tag_name"] = tag.get("localized_tag_name") or tag.get("name")
        tag["color"] = tag.get("color") or ""
        tag["category_name"] = tag["localized_category_name"] = (
            tag.get("localized_category_name") or tag.get("category_name")
        )
        fixed.append(tag)
    return fixed


@dataclass
class EconItem:
    """Ассет в оффере вместе с описанием класса (если оно известно)"""
    appid: int
    contextid: str
    assetid: str
    classid: str
    instanceid: str = "0"
    amount: int = 1
    missing: bool = False
    name: Optional[str] = None
    market_name: Optional[str] = None
    market_hash_name: Optional[str] = None
    type: Optional[str] = None
    icon_url: Optional[str] = None
    icon_url_large: Optional[str] = None
    tradable: bool = False
    marketable: bool = False
    commodity: bool = False
    market_tradable_restriction: int = 0
    market_marketable_restriction: int = 0
    market_fee_app: Optional[int] = None
    tags: List[Dict[str, Any]] = field(default_factory=list)
    descriptions: List[Any] = field(default_factory=list)
    owner_descriptions: List[Any] = field(default_factory=list)
    actions: List[Any] = field(default_factory=list)
    owner_actions: List[Any] = field(default_factory=list)
    market_actions: List[Any] = field(default_factory=list)
    fraudwarnings: List[Any] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_data(cls, data: Dict[str, Any], description: Optional[Dict[str, Any]] = None) -> "EconItem":
        merged = dict(data)
        if description:
            merged.update(description)

        appid = int(merged.get("appid") or 0)
        market_hash_name = merged.get("market_hash_name")
        market_fee_app = merged.get("market_fee_app")
        if appid == 753 and not market_fee_app and market_hash_name:
            match = re.match(r"^(\d+)-", market_hash_name)
            if match:
                market_fee_app = int(match.group(1))

        return cls(
            appid=appid,
            contextid=str(merged.get("contextid") or ""),
            assetid=str(merged.get("assetid") or merged.get("id") or ""),
            classid=str(merged.get("classid") or ""),
            instanceid=str(merged.get("instanceid") or "0"),
            amount=int(merged.get("amount") or 1),
            missing=_fix_bool(merged.get("missing", False)),
            name=merged.get("name"),
            market_name=merged.get("market_name"),
            market_hash_name=market_hash_name,
            type=merged.get("type"),
            icon_url=merged.get("icon_url"),
            icon_url_large=merged.get("icon_url_large"),
            tradable=_fix_bool(merged.get("tradable")),
            marketable=_fix_bool(merged.get("marketable")),
            commodity=_fix_bool(merged.get("commodity")),
            market_tradable_restriction=int(merged.get("market_tradable_restriction") or 0),
            market_marketable_restriction=int(merged.get("market_marketable_restriction") or 0),
            market_fee_app=int(market_fee_app) if market_fee_app else None,
            tags=_fix_tags(merged.get("tags")),
            descriptions=_fix_array(merged.get("descriptions")),
            owner_descriptions=_fix_array(merged.get("owner_descriptions")),
            actions=_fix_array(merged.get("actions")),
            owner_actions=_fix_array(merged.get("owner_actions")),
            market_actions=_fix_array(merged.get("market_actions")),
            fraudwarnings=_fix_array(merged.get("fraudwarnings")),
            raw=merged,
        )

    @property
    def id(self) -> str:
        return self.assetid

    @property
    def class_key(self) -> ClassKey:
        return ClassKey(self.appid, self.classid, self.instanceid)

    def image_url(self) -> str:
        return f"{IMAGE_BASE_URL}{self.icon_url}/"

    def large_image_url(self) -> str:
        if not self.icon_url_large:
            return self.image_url()
        return f"{IMAGE_BASE_URL}{self.icon_url_large}/"

    def get_tag(self, category: str) -> Optional[Dict[str, Any]]:
        for tag in self.tags:
            if tag.get("category") == category:
                return tag
        return None

    def to_ref(self) -> ItemRef:
        return ItemRef(self.appid, self.contextid, self.assetid, self.amount)


@dataclass
class ExchangeDetails:
    status: ETradeStatus
    trade_init_time: float
    received_items: List[Any]
    sent_items: List[Any]
