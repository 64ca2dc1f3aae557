from typing import Any, Dict, Iterable, List, Optional, Tuple
import json
import logging
import threading

from .exceptions import (
    DataUnavailable,
    InvalidState,
    OfferManagerError,
    RemoteProtocolError,
    SessionExpired,
    TransportError,
    ValidationError,
)
from .models import (
    AcceptResult,
    EConfirmationMethod,
    ETradeOfferState,
    ETradeStatus,
    EconItem,
    ExchangeDetails,
    ItemRef,
    SendResult,
    accountid_from_steamid,
    item_equals,
    steamid_from_accountid,
)
from .parsers import UserDetails
from .steam_client import COMMUNITY_URL, make_steam_error

logger = logging.getLogger(__name__)

OFFER_LIFETIME = 14 * 24 * 60 * 60
MAX_MESSAGE_LENGTH = 128

_CANCELABLE_STATES = (ETradeOfferState.Active, ETradeOfferState.CreatedNeedsConfirmation)
_SETTLED_TRADE_STATUSES = (ETradeStatus.Complete, ETradeStatus.InEscrow, ETradeStatus.EscrowRollback)
_REFRESHED_PROPERTIES = (
    "id", "state", "expires", "created", "updated", "escrow_ends", "confirmation_method", "trade_id",
)


class TradeOffer:
    """
    Трейд-оффер и его машина состояний.

    До отправки (id is None) оффер можно редактировать. После submit() id
    назначает Steam, и дальше состояние меняется только через accept/decline/
    cancel или данными из опроса.
    """

    def __init__(self, manager, partner: str, token: Optional[str] = None):
        self.manager = manager
        self.partner = str(partner)
        self.id: Optional[str] = None
        self.message: Optional[str] = None
        self.state = ETradeOfferState.Invalid
        self.items_to_give: List[Any] = []
        self.items_to_receive: List[Any] = []
        self.is_our_offer: Optional[bool] = None
        self.created: Optional[float] = None
        self.updated: Optional[float] = None
        self.expires: Optional[float] = None
        self.trade_id: Optional[str] = None
        self.from_real_time_trade: Optional[bool] = None
        self.confirmation_method: Optional[EConfirmationMethod] = None
        self.escrow_ends: Optional[float] = None
        self.raw_json = ""
        self._token = token
        self._countering: Optional[str] = None
        self._countered_offer: Optional["TradeOffer"] = None
        self._temp_data: Dict[str, Any] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_data(cls, manager, data: Dict[str, Any]) -> "TradeOffer":
        """Оффер из записи GetTradeOffers/GetTradeOffer"""
        if not isinstance(data, dict) or not data.get("tradeofferid") or not data.get("accountid_other"):
            raise RemoteProtocolError("Malformed trade offer record", body=data)
        try:
            partner = steamid_from_accountid(data["accountid_other"])
        except (TypeError, ValueError):
            raise RemoteProtocolError("Malformed trade offer record", body=data)

        offer = cls(manager, partner)
        offer.id = str(data["tradeofferid"])
        offer.message = data.get("message")
        try:
            offer.state = ETradeOfferState(int(data.get("trade_offer_state")))
        except (TypeError, ValueError):
            offer.state = ETradeOfferState.Invalid
        offer.items_to_give = manager.descriptions.describe(data.get("items_to_give") or [])
        offer.items_to_receive = manager.descriptions.describe(data.get("items_to_receive") or [])
        offer.is_our_offer = bool(data.get("is_our_offer"))
        offer.created = float(data.get("time_created") or 0)
        offer.updated = float(data.get("time_updated") or 0)
        offer.expires = float(data.get("expiration_time") or 0)
        offer.trade_id = str(data["tradeid"]) if data.get("tradeid") else None
        offer.from_real_time_trade = bool(data.get("from_real_time_trade"))
        try:
            offer.confirmation_method = EConfirmationMethod(int(data.get("confirmation_method") or 0))
        except ValueError:
            offer.confirmation_method = EConfirmationMethod.None_
        offer.escrow_ends = float(data["escrow_end_date"]) if data.get("escrow_end_date") else None
        offer.raw_json = json.dumps(data)
        return offer

    def __repr__(self) -> str:
        state = self.state.name if self.id else "Unsent"
        return f"<TradeOffer #{self.id} {state} partner={self.partner}>"

    @property
    def is_sent(self) -> bool:
        return self.id is not None

    def is_glitched(self) -> bool:
        if not self.id:
            return False

        items = self.items_to_give + self.items_to_receive
        if not items:
            return True

        if self.manager.language and any(not getattr(item, "name", None) for item in items):
            return True

        return False

    def contains_item(self, item: Any) -> bool:
        return any(item_equals(offer_item, item) for offer_item in self.items_to_give + self.items_to_receive)

    # Данные оффера

    def data(self, key: Optional[str] = None, default: Any = None) -> Any:
        if not self.id:
            if key is None:
                return dict(self._temp_data)
            return self._temp_data.get(key, default)

        if key is None:
            return self.manager.get_offer_data(self.id)
        return self.manager.get_offer_data(self.id, key, default)

    def set_data(self, key: str, value: Any):
        if key == "cancelTime":
            if not self.is_our_offer:
                raise ValidationError(f"Cannot set cancelTime for offer #{self.id} as we did not send it.")
            if self.id and self.state not in _CANCELABLE_STATES:
                raise InvalidState(
                    f"Cannot set cancelTime for offer #{self.id} as it is not active ({self.state.name})."
                )

        if not self.id:
            self._temp_data[key] = value
            return

        self.manager.set_offer_data(self.id, key, value)

    def unset_data(self, key: str):
        if not self.id:
            self._temp_data.pop(key, None)
            return
        self.manager.unset_offer_data(self.id, key)

    # Редактирование до отправки

    def add_my_item(self, item: Any) -> bool:
        return self._add_item(item, self.items_to_give)

    def add_my_items(self, items: Iterable[Any]) -> int:
        return sum(1 for item in items if self.add_my_item(item))

    def remove_my_item(self, item: Any) -> bool:
        return self._remove_item(item, self.items_to_give)

    def remove_my_items(self, items: Iterable[Any]) -> int:
        return sum(1 for item in items if self.remove_my_item(item))

    def add_their_item(self, item: Any) -> bool:
        return self._add_item(item, self.items_to_receive)

    def add_their_items(self, items: Iterable[Any]) -> int:
        return sum(1 for item in items if self.add_their_item(item))

    def remove_their_item(self, item: Any) -> bool:
        return self._remove_item(item, self.items_to_receive)

    def remove_their_items(self, items: Iterable[Any]) -> int:
        return sum(1 for item in items if self.remove_their_item(item))

    def set_message(self, message: Any):
        self._ensure_unsent("Cannot set message in an already-sent offer")
        self.message = str(message)[:MAX_MESSAGE_LENGTH]

    def set_token(self, token: Optional[str]):
        self._ensure_unsent("Cannot set token in an already-sent offer")
        self._token = token

    def duplicate(self) -> "TradeOffer":
        offer = TradeOffer(self.manager, self.partner, self._token)
        offer.items_to_give = list(self.items_to_give)
        offer.items_to_receive = list(self.items_to_receive)
        offer.is_our_offer = True
        offer.from_real_time_trade = False
        return offer

    def counter(self) -> "TradeOffer":
        if self.state != ETradeOfferState.Active:
            raise InvalidState("Cannot counter a non-active offer.")

        offer = self.duplicate()
        offer._countering = self.id
        offer._countered_offer = self
        return offer

    # Операции со Steam

    def submit(self) -> SendResult:
        if self.id:
            raise ValidationError("This offer has already been sent")

        if not self.items_to_give and not self.items_to_receive:
            raise ValidationError("Cannot send an empty trade offer")

        offer_data = {
            "newversion": True,
            "version": len(self.items_to_give) + len(self.items_to_receive) + 1,
            "me": {"assets": [_asset(item) for item in self.items_to_give], "currency": [], "ready": False},
            "them": {"assets": [_asset(item) for item in self.items_to_receive], "currency": [], "ready": False},
        }

        create_params = {}
        if self._token:
            create_params["trade_offer_access_token"] = self._token

        form = {
            "sessionid": self.manager.transport.get_session_id(),
            "serverid": 1,
            "partner": self.partner,
            "tradeoffermessage": self.message or "",
            "json_tradeoffer": json.dumps(offer_data),
            "captcha": "",
            "trade_offer_create_params": json.dumps(create_params),
        }
        if self._countering:
            form["tradeofferid_countered"] = self._countering

        with self.manager.sending_offer():
            result = self.manager.transport.request(
                "POST", f"{COMMUNITY_URL}/tradeoffer/new/send", data=form,
                headers={"Referer": self._referer("new")},
            )
            body = self._check_response(result, expired_status=401)

            if not body.get("tradeofferid"):
                raise RemoteProtocolError("Unknown response", body=body)

            now = self.manager.now()
            self.id = str(body["tradeofferid"])
            self.state = ETradeOfferState.Active
            self.created = now
            self.updated = now
            self.expires = now + OFFER_LIFETIME
            self.confirmation_method = EConfirmationMethod.None_

            if body.get("needs_email_confirmation"):
                self.state = ETradeOfferState.CreatedNeedsConfirmation
                self.confirmation_method = EConfirmationMethod.Email

            if body.get("needs_mobile_confirmation"):
                self.state = ETradeOfferState.CreatedNeedsConfirmation
                self.confirmation_method = EConfirmationMethod.MobileApp

            self.manager.record_sent_offer(self, self._temp_data)
            self._temp_data = {}

        if self._countered_offer is not None:
            self._countered_offer.state = ETradeOfferState.Countered

        if self.state == ETradeOfferState.CreatedNeedsConfirmation:
            return SendResult.PENDING
        return SendResult.SENT

    def decline(self):
        if not self.id:
            raise ValidationError("Cannot cancel or decline an unsent offer")

        with self._lock:
            if self.state not in _CANCELABLE_STATES:
                raise InvalidState(f"Offer #{self.id} is not active, so it may not be cancelled or declined")

            action = "cancel" if self.is_our_offer else "decline"
            result = self.manager.transport.request(
                "POST", f"{COMMUNITY_URL}/tradeoffer/{self.id}/{action}",
                data={"sessionid": self.manager.transport.get_session_id()},
                headers={"Referer": self._referer(self.id)},
            )
            body = self._check_response(result, expired_status=401)

            if str(body.get("tradeofferid")) != self.id:
                raise RemoteProtocolError("Wrong response", body=body)

            self.state = ETradeOfferState.Canceled if self.is_our_offer else ETradeOfferState.Declined
            self.updated = self.manager.now()

        self.manager.request_poll()

    def cancel(self):
        self.decline()

    def accept(self, skip_state_update: bool = False) -> AcceptResult:
        if not self.id:
            raise ValidationError("Cannot accept an unsent offer")

        if self.is_our_offer:
            raise ValidationError(f"Cannot accept our own offer #{self.id}")

        if self.state != ETradeOfferState.Active:
            raise InvalidState(f"Offer #{self.id} is not active, so it may not be accepted")

        result = self.manager.transport.request(
            "POST", f"{COMMUNITY_URL}/tradeoffer/{self.id}/accept",
            data={
                "sessionid": self.manager.transport.get_session_id(),
                "serverid": 1,
                "tradeofferid": self.id,
                "partner": self.partner,
                "captcha": "",
            },
            headers={"Referer": f"{COMMUNITY_URL}/tradeoffer/{self.id}/"},
        )
        body = self._check_response(result, expired_status=403)

        self.manager.request_poll()

        if skip_state_update:
            if body.get("tradeid"):
                self.trade_id = str(body["tradeid"])
            if body.get("needs_mobile_confirmation") or body.get("needs_email_confirmation"):
                return AcceptResult.PENDING
            return AcceptResult.ACCEPTED

        try:
            self.update()
        except OfferManagerError as e:
            raise type(e)(f"Cannot load new trade data: {e}", eresult=e.eresult, cause=e.cause, body=e.body) from e

        if self.confirmation_method is not None and self.confirmation_method != EConfirmationMethod.None_:
            return AcceptResult.PENDING
        if self.state == ETradeOfferState.InEscrow:
            return AcceptResult.ESCROW
        if self.state == ETradeOfferState.Accepted:
            return AcceptResult.ACCEPTED
        raise RemoteProtocolError(f"Unknown state {self.state}")

    def update(self):
        """Обновление состояния оффера из GetTradeOffer"""
        fresh = self.manager.get_offer(self.id)
        glitched = self.is_glitched()
        for name, value in vars(fresh).items():
            if name.startswith("_") or name == "manager":
                continue
            if name in _REFRESHED_PROPERTIES or glitched:
                setattr(self, name, value)

    def get_received_items(self, get_actions: bool = False) -> List[EconItem]:
        if not self.id:
            raise ValidationError("Cannot request received items on an unsent offer")

        if self.state != ETradeOfferState.Accepted:
            raise InvalidState(f"Offer #{self.id} is not accepted, cannot request received items")

        if not self.trade_id:
            raise ValidationError(f"Offer #{self.id} is accepted, but does not have a trade ID")

        result = self.manager.transport.request("GET", f"{COMMUNITY_URL}/trade/{self.trade_id}/receipt/")
        if result.status_code != 200:
            raise TransportError(f"HTTP error {result.status_code}")

        items = self._parser().parse_receipt(result.text)
        if not items and self.items_to_receive:
            raise DataUnavailable("Data temporarily unavailable; try again later")

        if get_actions:
            try:
                return self.manager.descriptions.resolve(items)
            except OfferManagerError as e:
                logger.debug(f"Can't describe received items of offer #{self.id}: {e}")
        return [EconItem.from_data(item) for item in items]

    def get_exchange_details(self, get_details_if_failed: bool = False) -> ExchangeDetails:
        if not self.id:
            raise ValidationError("Cannot get trade details for an unsent trade offer")

        if not self.trade_id:
            raise ValidationError("No trade ID; unable to get trade details")

        body = self.manager.api_call("GET", "GetTradeStatus", 1, {"tradeid": self.trade_id})
        response = body.get("response")
        if not isinstance(response, dict) or response.get("trades") is None:
            raise RemoteProtocolError("Malformed response", body=body)

        trades = response["trades"]
        trade = trades[0] if trades else None
        if not trade or str(trade.get("tradeid")) != str(self.trade_id):
            raise DataUnavailable("Trade not found in GetTradeStatus response; try again later")

        try:
            status = ETradeStatus(int(trade.get("status")))
        except (TypeError, ValueError):
            status = trade.get("status")

        if not get_details_if_failed and status not in _SETTLED_TRADE_STATUSES:
            raise RemoteProtocolError(f"Trade status is {getattr(status, 'name', status)}")

        received = trade.get("assets_received") or []
        given = trade.get("assets_given") or []
        if self.manager.language:
            self.manager.descriptions.request(received + given)

        return ExchangeDetails(
            status=status,
            trade_init_time=float(trade.get("time_init") or 0),
            received_items=self.manager.descriptions.describe(received),
            sent_items=self.manager.descriptions.describe(given),
        )

    def get_user_details(self) -> Tuple[UserDetails, UserDetails]:
        if self.id and self.is_our_offer:
            raise ValidationError("Cannot get user details for an offer that we sent.")

        if self.id and self.state != ETradeOfferState.Active:
            raise InvalidState("Cannot get user details for an offer that is sent and not Active.")

        if not self.manager.steam_id:
            raise ValidationError("Our SteamID is not known yet")

        if self.id:
            url = f"{COMMUNITY_URL}/tradeoffer/{self.id}/"
        else:
            url = self._referer("new")

        result = self.manager.transport.request("GET", url)
        if result.status_code != 200:
            raise TransportError(f"HTTP error {result.status_code}")

        return self._parser().parse_user_details(
            result.text,
            accountid_from_steamid(self.manager.steam_id),
            accountid_from_steamid(self.partner),
        )

    def _parser(self):
        if self.manager.parser is None:
            raise ValidationError("No page parser configured")
        return self.manager.parser

    def _referer(self, offer_id: str) -> str:
        url = f"{COMMUNITY_URL}/tradeoffer/{offer_id}/?partner={accountid_from_steamid(self.partner)}"
        if self._token:
            url += f"&token={self._token}"
        return url

    def _check_response(self, result, expired_status: int) -> Dict[str, Any]:
        body = result.body
        if result.status_code != 200:
            if result.status_code == expired_status:
                error = SessionExpired("Not Logged In")
                self.manager.notify_session_expired(error)
                raise error
            if isinstance(body, dict) and body.get("strError"):
                raise make_steam_error(body)
            raise TransportError(f"HTTP error {result.status_code}", body=body)

        if not isinstance(body, dict):
            raise RemoteProtocolError("Malformed JSON response", body=body)

        if body.get("strError"):
            raise make_steam_error(body)

        return body

    def _ensure_unsent(self, message: str):
        if self.id:
            raise ValidationError(message)

    def _add_item(self, details: Any, target: List[Any]) -> bool:
        self._ensure_unsent("Cannot add items to an already-sent offer")
        item = ItemRef.from_data(details)
        if any(item_equals(existing, item) for existing in target):
            return False
        target.append(item)
        return True

    def _remove_item(self, details: Any, target: List[Any]) -> bool:
        self._ensure_unsent("Cannot remove items from an already-sent offer")
        for index, existing in enumerate(target):
            if item_equals(existing, details):
                del target[index]
                return True
        return False


def _asset(item: Any) -> Dict[str, Any]:
    ref = item if isinstance(item, ItemRef) else ItemRef.from_data(item)
    return ref.to_asset()
