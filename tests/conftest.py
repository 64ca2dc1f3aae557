"""
Общие фикстуры для тестов менеджера трейд-офферов.

- FakeTransport: HTTP транспорт с ответами по фрагменту URL
- FakeClock: управляемые часы
- MemoryStorage: хранилище в памяти вместо файлов
- manager: TradeOfferManager без таймера опроса
"""

from dataclasses import dataclass
from functools import partial
from typing import Any, Dict, List, Optional
import threading

import pytest

from tradeoffers.events import Event
from tradeoffers.manager import TradeOfferManager
from tradeoffers.models import ETradeOfferState, STEAMID64_BASE
from tradeoffers.options import ManagerOptions
from tradeoffers.steam_client import HttpResult

NOW = 1_700_000_000.0
MY_ACCOUNT_ID = 1001
PARTNER_ACCOUNT_ID = 2002
MY_STEAM_ID = str(STEAMID64_BASE + MY_ACCOUNT_ID)
PARTNER_STEAM_ID = str(STEAMID64_BASE + PARTNER_ACCOUNT_ID)


@dataclass
class Call:
    method: str
    url: str
    params: Optional[Dict[str, Any]] = None
    data: Optional[Dict[str, Any]] = None


class FakeTransport:
    """Транспорт с заранее заданными ответами; запоминает все запросы"""

    def __init__(self):
        self.routes: List[list] = []
        self.calls: List[Call] = []
        self.language: Optional[str] = None
        self._lock = threading.Lock()

    def route(self, fragment: str, *responses, method: Optional[str] = None):
        """
        Ответы на запросы, URL которых содержит fragment. Ответы выдаются по
        очереди, последний повторяется. Ответ: dict (тело 200), HttpResult,
        исключение или callable(method, url, params, data).
        """
        self.routes.insert(0, [method, fragment, list(responses)])

    def set_offers(self, sent=(), received=()):
        self.route("/GetTradeOffers/", offers_response(sent, received))

    def request(self, method, url, params=None, data=None, headers=None) -> HttpResult:
        with self._lock:
            self.calls.append(Call(method, url, params, data))
            response = None
            for route in self.routes:
                route_method, fragment, responses = route
                if fragment in url and (route_method is None or route_method == method):
                    response = responses.pop(0) if len(responses) > 1 else responses[0]
                    break
            else:
                raise AssertionError(f"Unexpected request {method} {url}")

        if callable(response) and not isinstance(response, type):
            response = response(method, url, params, data)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, HttpResult):
            return response
        return HttpResult(200, {}, response, "")

    def calls_to(self, fragment: str) -> List[Call]:
        with self._lock:
            return [call for call in self.calls if fragment in call.url]

    def get_session_id(self) -> str:
        return "test-session-id"

    def set_language(self, language_name: str):
        self.language = language_name


class FakeClock:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class MemoryStorage:
    def __init__(self):
        self.files: Dict[str, bytes] = {}
        self.writes: List[str] = []

    def read(self, key: str) -> Optional[bytes]:
        return self.files.get(key)

    def read_many(self, keys) -> Dict[str, Optional[bytes]]:
        return {key: self.files.get(key) for key in keys}

    def write(self, key: str, content: bytes):
        self.writes.append(key)
        self.files[key] = content


class EventRecorder:
    """Подписывается на все события менеджера"""

    def __init__(self, manager):
        self.events: List[tuple] = []
        self._lock = threading.Lock()
        for event in Event:
            manager.on(event, partial(self._record, event))

    def _record(self, event, *args):
        with self._lock:
            self.events.append((event, args))

    def of(self, event: Event) -> List[tuple]:
        with self._lock:
            return [args for recorded, args in self.events if recorded == event]

    def names(self) -> List[Event]:
        with self._lock:
            return [event for event, _ in self.events]


def make_item(assetid, classid="100", instanceid="0", appid=730, contextid="2", amount=1) -> Dict[str, Any]:
    return {
        "appid": appid,
        "contextid": str(contextid),
        "assetid": str(assetid),
        "classid": str(classid),
        "instanceid": str(instanceid),
        "amount": str(amount),
    }


def make_offer(offer_id, state=ETradeOfferState.Active, is_our_offer=False, created=None, updated=None,
               items_to_give=None, items_to_receive=None, accountid_other=PARTNER_ACCOUNT_ID,
               **extra) -> Dict[str, Any]:
    data = {
        "tradeofferid": str(offer_id),
        "accountid_other": accountid_other,
        "message": "",
        "expiration_time": int(NOW) + 14 * 24 * 3600,
        "trade_offer_state": int(state),
        "items_to_give": [make_item(f"{offer_id}01")] if items_to_give is None else items_to_give,
        "items_to_receive": [] if items_to_receive is None else items_to_receive,
        "is_our_offer": is_our_offer,
        "time_created": int(NOW - 100) if created is None else created,
        "time_updated": int(NOW - 100) if updated is None else updated,
        "from_real_time_trade": False,
        "escrow_end_date": 0,
        "confirmation_method": 0,
    }
    data.update(extra)
    return data


def offers_response(sent=(), received=(), next_cursor=0) -> Dict[str, Any]:
    return {
        "response": {
            "trade_offers_sent": list(sent),
            "trade_offers_received": list(received),
            "next_cursor": next_cursor,
        }
    }


def offer_response(offer: Dict[str, Any], descriptions=None) -> Dict[str, Any]:
    return {"response": {"offer": offer, "descriptions": descriptions or []}}


def echo_offer_id(method, url, params, data):
    """Ответ community на cancel/decline: id оффера из URL"""
    offer_id = url.rstrip("/").split("/")[-2]
    return {"tradeofferid": offer_id}


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def make_manager(transport, clock):
    created = []

    def factory(**kwargs):
        option_values = dict({"poll_interval": -1}, **kwargs.pop("option_values", {}))
        options = ManagerOptions(**option_values)
        kwargs.setdefault("steam_id", MY_STEAM_ID)
        manager = TradeOfferManager(transport, "APIKEY", options=options, clock=clock, **kwargs)
        created.append(manager)
        return manager

    yield factory

    for manager in created:
        manager.shutdown(wait=True)


@pytest.fixture
def manager(make_manager):
    return make_manager()
