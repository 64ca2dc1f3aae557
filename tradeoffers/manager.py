from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union
import logging
import threading
import time

from utils.storage import FileStorage

from .cache import DescriptionCache
from .descriptions import DescriptionFetcher
from .events import Event, EventHub
from .exceptions import OfferManagerError, ValidationError
from .fetcher import OfferFetcher
from .models import EConfirmationMethod, EOfferFilter, ETradeOfferState
from .offer import TradeOffer
from .options import ManagerOptions, resolve_language
from .poll_state import PollState
from .steam_client import SteamApi

logger = logging.getLogger(__name__)

# Окно перекрытия для инкрементального опроса, секунды
OFFERS_SINCE_GRACE = 1800
HISTORICAL_CUTOFF_DEFAULT = 31536000


class TradeOfferManager:
    """
    Сверка офферов аккаунта со Steam.

    Каждый цикл опроса загружает отправленные и полученные офферы, сравнивает
    их с PollState, рассылает события и применяет политику автоотмены.
    Одновременно выполняется не больше одного цикла; запросы, пришедшие во
    время цикла, сливаются в один повторный запуск.
    """

    def __init__(self, transport, api_key: str, steam_id: Optional[str] = None,
                 options: Optional[ManagerOptions] = None,
                 cache: Optional[DescriptionCache] = None,
                 storage=None, parser=None,
                 listeners: Optional[Dict[Event, Iterable[Callable]]] = None,
                 poll_data: Union[PollState, Dict[str, Any], None] = None,
                 clock: Callable[[], float] = time.time,
                 name: Optional[str] = None):
        self.options = options or ManagerOptions()
        self.name = name or (f"manager_{steam_id}" if steam_id else "manager")
        self.transport = transport
        self.steam_id = str(steam_id) if steam_id else None
        self.parser = parser
        self._clock = clock

        self.language, self.language_name = resolve_language(self.options.language)
        if self.language_name and hasattr(transport, "set_language"):
            transport.set_language(self.language_name)

        if storage is None and self.options.data_directory:
            storage = FileStorage(self.options.data_directory, self.options.gzip_data)
        self.storage = storage

        self._owns_cache = cache is None
        self.cache = cache or DescriptionCache(
            self.options.asset_cache_max_items,
            self.options.asset_cache_gc_interval,
            storage=storage,
        )

        self.events = EventHub(listeners)
        self.api = SteamApi(transport, api_key, on_session_expired=self.notify_session_expired)
        self.offer_fetcher = OfferFetcher(self.api, self.language)
        self.descriptions = DescriptionFetcher(self.api, self.cache, self.language)

        if isinstance(poll_data, PollState):
            self.poll_data = poll_data
        else:
            self.poll_data = PollState.from_dict(poll_data)

        self.poll_interval = self.options.poll_interval
        self.minimum_poll_interval = self.options.minimum_poll_interval
        self.poll_full_update_interval = self.options.poll_full_update_interval
        self.cancel_time = self.options.cancel_time
        self.pending_cancel_time = self.options.pending_cancel_time
        self.cancel_offer_count = self.options.cancel_offer_count
        self.cancel_offer_count_min_age = self.options.cancel_offer_count_min_age or 0

        self._last_poll = 0.0
        self._last_poll_full_update = 0.0
        self._started = False
        self._shutdown = False
        self._cycle_running = False
        self._rerun_requested = False
        self._rerun_full_update = False
        self._poll_timer: Optional[threading.Timer] = None
        self._trigger_lock = threading.Lock()
        self._data_lock = threading.RLock()
        self._send_lock = threading.Lock()
        self._pending_offer_send_responses = 0
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix=f"{self.name}-cancel")

    # Жизненный цикл

    def on(self, event: Event, callback: Callable):
        self.events.on(event, callback)

    def now(self) -> float:
        return self._clock()

    def start(self):
        """Загрузка сохраненного PollState и первый цикл опроса"""
        if self._shutdown:
            raise ValidationError("Manager has been shut down")

        self._load_poll_data()
        with self._trigger_lock:
            self._started = True
        self.do_poll()

    def pause(self):
        with self._trigger_lock:
            self._started = False
            self._cancel_timer()

    def shutdown(self, wait: bool = False):
        with self._trigger_lock:
            if self._shutdown:
                return
            self._shutdown = True
            self._started = False
            self._cancel_timer()

        self._executor.shutdown(wait=wait, cancel_futures=not wait)
        if self._owns_cache:
            self.cache.close()
        logger.debug(f"{self.name} shut down")

    @property
    def is_polling(self) -> bool:
        return self._started and not self._shutdown

    # Офферы

    def create_offer(self, partner: str, token: Optional[str] = None) -> TradeOffer:
        offer = TradeOffer(self, partner, token)
        offer.is_our_offer = True
        offer.from_real_time_trade = False
        return offer

    def get_offer(self, offer_id: str) -> TradeOffer:
        data, descriptions = self.offer_fetcher.fetch_one(str(offer_id))
        if self.language:
            self.descriptions.digest(descriptions)
            self.descriptions.request(_offer_items([data]))
        return TradeOffer.from_data(self, data)

    def get_offers(self, offer_filter: EOfferFilter,
                   historical_cutoff: Optional[float] = None) -> Tuple[List[TradeOffer], List[TradeOffer]]:
        if historical_cutoff is None:
            historical_cutoff = self.now() + HISTORICAL_CUTOFF_DEFAULT

        sent_data, _ = self.offer_fetcher.fetch(offer_filter, int(historical_cutoff), get_sent=True, get_received=False)
        _, received_data = self.offer_fetcher.fetch(offer_filter, int(historical_cutoff), get_sent=False, get_received=True)

        if self.language:
            self.descriptions.request(_offer_items(sent_data + received_data))

        sent = [TradeOffer.from_data(self, data) for data in sent_data]
        received = [TradeOffer.from_data(self, data) for data in received_data]

        self.events.emit(Event.OFFER_LIST_FETCHED, offer_filter, sent, received)
        return sent, received

    def get_offers_containing_items(self, items: Any, include_inactive: bool = False):
        if isinstance(items, (dict, str)) or not isinstance(items, Iterable):
            items = [items]
        items = list(items)

        offer_filter = EOfferFilter.All if include_inactive else EOfferFilter.ActiveOnly
        sent, received = self.get_offers(offer_filter)

        def contains(offer):
            return any(offer.contains_item(item) for item in items)

        return [o for o in sent if contains(o)], [o for o in received if contains(o)]

    def api_call(self, http_method: str, method: str, version: int = 1,
                 params: Dict = None, iface: str = "IEconService") -> Dict[str, Any]:
        return self.api.call(http_method, method, version, params, iface=iface)

    def notify_session_expired(self, error: Exception):
        logger.warning(f"{self.name}: session expired ({error})")
        self.events.emit(Event.SESSION_EXPIRED, error)

    # Данные офферов в PollState

    def get_offer_data(self, offer_id: str, key: Optional[str] = None, default: Any = None) -> Any:
        with self._data_lock:
            if key is None:
                return self.poll_data.get_offer_data(offer_id)
            return self.poll_data.get_value(offer_id, key, default)

    def set_offer_data(self, offer_id: str, key: str, value: Any):
        with self._data_lock:
            if self.poll_data.set_value(offer_id, key, value):
                self._poll_data_changed()

    def unset_offer_data(self, offer_id: str, key: str):
        with self._data_lock:
            if self.poll_data.unset_value(offer_id, key):
                self._poll_data_changed()

    def record_sent_offer(self, offer: TradeOffer, temp_data: Dict[str, Any]):
        with self._data_lock:
            for key, value in temp_data.items():
                self.poll_data.set_value(offer.id, key, value)
            self.poll_data.sent[offer.id] = offer.state
            self._poll_data_changed()

    @contextmanager
    def sending_offer(self):
        with self._send_lock:
            self._pending_offer_send_responses += 1
        try:
            yield
        finally:
            with self._send_lock:
                self._pending_offer_send_responses -= 1

    # Опрос

    def request_poll(self):
        """Внеочередной опрос в фоне"""
        if not self.is_polling:
            return
        threading.Thread(target=self.do_poll, name=f"{self.name}-poll", daemon=True).start()

    def do_poll(self, full_update: bool = False):
        with self._trigger_lock:
            if not self._started or self._shutdown:
                return
            if self._cycle_running:
                self._rerun_requested = True
                self._rerun_full_update = self._rerun_full_update or full_update
                return
            self._cycle_running = True

        try:
            while True:
                self._poll_cycle(full_update)
                with self._trigger_lock:
                    if not self._rerun_requested or self._shutdown:
                        return
                    full_update = self._rerun_full_update
                    self._rerun_requested = False
                    self._rerun_full_update = False
        finally:
            with self._trigger_lock:
                self._cycle_running = False
                self._rerun_requested = False
                self._rerun_full_update = False

    def _poll_cycle(self, full_update: bool):
        now = self.now()
        since_last_poll = (now - self._last_poll) * 1000
        if since_last_poll < self.minimum_poll_interval:
            self._reset_poll_timer(self.minimum_poll_interval - since_last_poll)
            return

        self._last_poll = now
        with self._trigger_lock:
            self._cancel_timer()

        offers_since = 0
        if self.poll_data.offers_since:
            offers_since = self.poll_data.offers_since - OFFERS_SINCE_GRACE

        is_full_update = False
        if (now - self._last_poll_full_update) * 1000 >= self.poll_full_update_interval or full_update:
            is_full_update = True
            self._last_poll_full_update = now
            offers_since = 1

        logger.debug(f"{self.name}: trade offer poll since {offers_since}"
                     f"{' (full update)' if is_full_update else ''}")
        started = time.monotonic()

        try:
            sent, received = self.get_offers(
                EOfferFilter.All if is_full_update else EOfferFilter.ActiveOnly, offers_since
            )
        except OfferManagerError as e:
            logger.debug(f"{self.name}: error getting trade offers for poll: {e}")
            self._poll_failed(e)
            return
        except Exception as e:
            logger.exception(f"{self.name}: unexpected error getting trade offers for poll")
            self._poll_failed(e)
            return

        logger.debug(f"{self.name}: trade offer poll succeeded in {int((time.monotonic() - started) * 1000)} ms")

        with self._data_lock:
            original = self.poll_data.snapshot()
            try:
                cancellations, has_glitched = self._reconcile(sent, received, now)
            except Exception as e:
                logger.exception(f"{self.name}: poll reconciliation failed")
                self.poll_data = original
                self._poll_failed(e)
                return

            if not has_glitched:
                latest = self.poll_data.offers_since or 0
                for offer in sent + received:
                    latest = max(latest, int(offer.updated or 0))
                self.poll_data.offers_since = latest

            if self.poll_data != original:
                self._poll_data_changed()

        for offer, event, reason in cancellations:
            self._submit_cancel(offer, event, reason)

        self.events.emit(Event.POLL_SUCCESS)
        self._reset_poll_timer()

    def _poll_failed(self, error: Exception):
        self.events.emit(Event.POLL_FAILURE, error)
        self._reset_poll_timer()

    def _reconcile(self, sent: List[TradeOffer], received: List[TradeOffer], now: float):
        cancellations = []
        scheduled = set()
        has_glitched = False

        def schedule_cancel(offer, event, reason=None):
            if offer.id not in scheduled:
                scheduled.add(offer.id)
                cancellations.append((offer, event, reason))

        states = self.poll_data.sent
        timestamps = self.poll_data.timestamps

        with self._send_lock:
            send_in_flight = self._pending_offer_send_responses > 0

        for offer in sent:
            known = states.get(offer.id)
            if known is None:
                if not send_in_flight:
                    if offer.from_real_time_trade:
                        if _needs_confirmation(offer):
                            self.events.emit(Event.REAL_TIME_CONFIRMATION_REQUIRED, offer)
                        elif offer.state == ETradeOfferState.Accepted:
                            self.events.emit(Event.REAL_TIME_TRADE_COMPLETED, offer)

                    self.events.emit(Event.UNKNOWN_OFFER_SENT, offer)
                    states[offer.id] = offer.state
                    timestamps[offer.id] = offer.created
            elif offer.state != known:
                if not offer.is_glitched():
                    if offer.from_real_time_trade and offer.state == ETradeOfferState.Accepted:
                        self.events.emit(Event.REAL_TIME_TRADE_COMPLETED, offer)

                    self.events.emit(Event.SENT_OFFER_CHANGED, offer, known)
                    states[offer.id] = offer.state
                    timestamps[offer.id] = offer.created
                else:
                    has_glitched = True
                    without_name = 0
                    if self.language:
                        without_name = len([i for i in offer.items_to_give + offer.items_to_receive if not i.name])
                    logger.debug(
                        f"Not emitting sent-offer-changed for {offer.id} right now because it's glitched "
                        f"({len(offer.items_to_give)} to give, {len(offer.items_to_receive)} to receive, "
                        f"{without_name} without name)"
                    )

            if offer.state == ETradeOfferState.Active:
                cancel_time = self.cancel_time
                custom = self.poll_data.get_value(offer.id, "cancelTime")
                if custom is not None:
                    cancel_time = self.poll_data.get_int(offer.id, "cancelTime")

                if cancel_time and (now - offer.updated) * 1000 >= cancel_time:
                    schedule_cancel(offer, Event.SENT_OFFER_CANCELED, "cancelTime")

            if offer.state == ETradeOfferState.CreatedNeedsConfirmation and self.pending_cancel_time:
                pending_cancel_time = self.pending_cancel_time
                custom = self.poll_data.get_value(offer.id, "pendingCancelTime")
                if custom is not None:
                    pending_cancel_time = self.poll_data.get_int(offer.id, "pendingCancelTime")

                if pending_cancel_time and (now - offer.created) * 1000 >= pending_cancel_time:
                    schedule_cancel(offer, Event.SENT_PENDING_OFFER_CANCELED)

        if self.cancel_offer_count:
            sent_active = [offer for offer in sent if offer.state == ETradeOfferState.Active]
            if sent_active and len(sent_active) >= self.cancel_offer_count:
                oldest = min(sent_active, key=lambda offer: offer.updated)
                if (now - oldest.updated) * 1000 >= self.cancel_offer_count_min_age:
                    schedule_cancel(oldest, Event.SENT_OFFER_CANCELED, "cancelOfferCount")

        states = self.poll_data.received
        for offer in received:
            if offer.is_glitched():
                has_glitched = True
                continue

            known = states.get(offer.id)
            if offer.from_real_time_trade:
                if known is None and _needs_confirmation(offer):
                    self.events.emit(Event.REAL_TIME_CONFIRMATION_REQUIRED, offer)
                elif offer.state == ETradeOfferState.Accepted and known != offer.state:
                    self.events.emit(Event.REAL_TIME_TRADE_COMPLETED, offer)

            if known is None and offer.state == ETradeOfferState.Active:
                self.events.emit(Event.NEW_OFFER, offer)
            elif known is not None and offer.state != known:
                self.events.emit(Event.RECEIVED_OFFER_CHANGED, offer, known)

            states[offer.id] = offer.state
            timestamps[offer.id] = offer.created

        return cancellations, has_glitched

    def _submit_cancel(self, offer: TradeOffer, event: Event, reason: Optional[str]):
        try:
            self._executor.submit(self._auto_cancel, offer, event, reason)
        except RuntimeError:
            logger.debug(f"{self.name}: not auto-canceling offer #{offer.id}, manager is shut down")

    def _auto_cancel(self, offer: TradeOffer, event: Event, reason: Optional[str]):
        try:
            offer.cancel()
        except OfferManagerError as e:
            logger.debug(f"Can't auto-cancel offer #{offer.id}: {e}")
            return

        if event == Event.SENT_OFFER_CANCELED:
            self.events.emit(event, offer, reason)
        else:
            self.events.emit(event, offer)

    def _reset_poll_timer(self, delay_ms: Optional[float] = None):
        if self.poll_interval < 0:
            return

        with self._trigger_lock:
            if self._shutdown or not self._started:
                return
            if delay_ms or self.poll_interval >= self.minimum_poll_interval:
                self._cancel_timer()
                self._poll_timer = threading.Timer((delay_ms or self.poll_interval) / 1000, self.do_poll)
                self._poll_timer.daemon = True
                self._poll_timer.start()

    def _cancel_timer(self):
        if self._poll_timer is not None:
            self._poll_timer.cancel()
            self._poll_timer = None

    # Сохранение PollState

    def _poll_data_filename(self) -> str:
        return f"polldata_{self.steam_id}.json"

    def _can_persist_poll_data(self) -> bool:
        return bool(self.options.save_poll_data and self.storage and self.steam_id)

    def _load_poll_data(self):
        if not self._can_persist_poll_data():
            return

        raw = self.storage.read(self._poll_data_filename())
        if not raw:
            return

        try:
            loaded = PollState.from_json(raw)
        except (ValueError, TypeError) as e:
            logger.debug(f"Error parsing poll data from disk: {e}")
            return

        with self._data_lock:
            self.poll_data = loaded

    def _poll_data_changed(self):
        if self._can_persist_poll_data():
            try:
                self.storage.write(self._poll_data_filename(), self.poll_data.to_json().encode("utf-8"))
            except OSError as e:
                logger.debug(f"Cannot write {self._poll_data_filename()}: {e}")

        self.events.emit(Event.POLL_DATA_UPDATED, self.poll_data)


def _needs_confirmation(offer: TradeOffer) -> bool:
    if offer.state == ETradeOfferState.CreatedNeedsConfirmation:
        return True
    return (offer.state == ETradeOfferState.Active
            and offer.confirmation_method not in (None, EConfirmationMethod.None_))


def _offer_items(offers: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    items = []
    for data in offers:
        items.extend(data.get("items_to_give") or [])
        items.extend(data.get("items_to_receive") or [])
    return items
