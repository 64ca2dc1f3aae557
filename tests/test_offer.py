import json

import pytest

from tradeoffers.events import Event
from tradeoffers.exceptions import (
    InvalidState,
    RemoteProtocolError,
    SessionExpired,
    SteamError,
    ValidationError,
)
from tradeoffers.models import (
    AcceptResult,
    EConfirmationMethod,
    ETradeOfferState,
    ETradeStatus,
    ItemRef,
    SendResult,
)
from tradeoffers.offer import MAX_MESSAGE_LENGTH, OFFER_LIFETIME, TradeOffer
from tradeoffers.steam_client import HttpResult

from conftest import NOW, PARTNER_STEAM_ID, EventRecorder, echo_offer_id, make_item, make_offer, offer_response

MY_ITEM = {"appid": 730, "contextid": "2", "assetid": "111"}
THEIR_ITEM = {"appid": 440, "contextid": "2", "assetid": "222", "amount": 2}


def new_offer(manager) -> TradeOffer:
    offer = manager.create_offer(PARTNER_STEAM_ID, token="tok")
    offer.add_my_item(MY_ITEM)
    offer.add_their_item(THEIR_ITEM)
    return offer


def test_add_items_deduplicates(manager) -> None:
    offer = manager.create_offer(PARTNER_STEAM_ID)

    assert offer.add_my_item(MY_ITEM) is True
    assert offer.add_my_item(dict(MY_ITEM, amount=3)) is False
    assert offer.add_their_items([THEIR_ITEM, THEIR_ITEM]) == 1
    assert offer.items_to_give == [ItemRef(730, "2", "111")]
    assert offer.contains_item({"appid": 440, "contextid": 2, "assetid": 222})


def test_remove_items(manager) -> None:
    offer = new_offer(manager)

    assert offer.remove_my_item(MY_ITEM) is True
    assert offer.remove_my_item(MY_ITEM) is False
    assert offer.items_to_give == []


def test_item_without_ids_is_rejected(manager) -> None:
    with pytest.raises(ValidationError):
        manager.create_offer(PARTNER_STEAM_ID).add_my_item({"appid": 730})


def test_message_is_truncated(manager) -> None:
    offer = manager.create_offer(PARTNER_STEAM_ID)
    offer.set_message("x" * 500)

    assert len(offer.message) == MAX_MESSAGE_LENGTH


def test_submit(manager, transport) -> None:
    transport.route("/tradeoffer/new/send", {"tradeofferid": "99"})
    offer = new_offer(manager)
    offer.set_message("hi")

    assert offer.submit() == SendResult.SENT

    assert offer.id == "99"
    assert offer.state == ETradeOfferState.Active
    assert offer.created == NOW
    assert offer.expires == NOW + OFFER_LIFETIME
    assert offer.confirmation_method == EConfirmationMethod.None_
    assert manager.poll_data.sent == {"99": ETradeOfferState.Active}

    form = transport.calls[0].data
    assert form["partner"] == PARTNER_STEAM_ID
    assert form["tradeoffermessage"] == "hi"
    assert form["sessionid"] == "test-session-id"
    assert json.loads(form["trade_offer_create_params"]) == {"trade_offer_access_token": "tok"}
    payload = json.loads(form["json_tradeoffer"])
    assert payload["me"]["assets"] == [{"appid": 730, "contextid": "2", "amount": 1, "assetid": "111"}]
    assert payload["them"]["assets"] == [{"appid": 440, "contextid": "2", "amount": 2, "assetid": "222"}]
    assert payload["version"] == 3


def test_sent_offer_cannot_be_edited(manager, transport) -> None:
    transport.route("/tradeoffer/new/send", {"tradeofferid": "99"})
    offer = new_offer(manager)
    offer.submit()

    with pytest.raises(ValidationError):
        offer.add_my_item({"appid": 730, "contextid": "2", "assetid": "5"})
    with pytest.raises(ValidationError):
        offer.remove_their_item(THEIR_ITEM)
    with pytest.raises(ValidationError):
        offer.set_message("late")
    with pytest.raises(ValidationError):
        offer.set_token("other")
    with pytest.raises(ValidationError):
        offer.submit()


def test_submit_needing_mobile_confirmation(manager, transport) -> None:
    transport.route("/tradeoffer/new/send", {"tradeofferid": "99", "needs_mobile_confirmation": True})
    offer = new_offer(manager)

    assert offer.submit() == SendResult.PENDING
    assert offer.state == ETradeOfferState.CreatedNeedsConfirmation
    assert offer.confirmation_method == EConfirmationMethod.MobileApp


def test_submit_empty_offer(manager) -> None:
    with pytest.raises(ValidationError, match="empty"):
        manager.create_offer(PARTNER_STEAM_ID).submit()


def test_data_set_before_submit_is_persisted(manager, transport) -> None:
    transport.route("/tradeoffer/new/send", {"tradeofferid": "99"})
    offer = new_offer(manager)
    offer.set_data("order", "A-1")
    offer.set_data("cancelTime", 60000)

    assert offer.data("order") == "A-1"
    offer.submit()

    assert manager.get_offer_data("99") == {"order": "A-1", "cancelTime": 60000}
    assert offer.data("order") == "A-1"

    offer.unset_data("order")
    assert offer.data() == {"cancelTime": 60000}


def test_submit_session_expired(manager, transport) -> None:
    events = EventRecorder(manager)
    transport.route("/tradeoffer/new/send", HttpResult(401, {}, None, ""))

    with pytest.raises(SessionExpired):
        new_offer(manager).submit()

    assert len(events.of(Event.SESSION_EXPIRED)) == 1


def test_submit_steam_error(manager, transport) -> None:
    transport.route("/tradeoffer/new/send", HttpResult(500, {}, {"strError": "Something went wrong (26)"}))

    with pytest.raises(SteamError) as excinfo:
        new_offer(manager).submit()

    assert excinfo.value.eresult == 26


def test_counter_marks_original_countered(manager, transport) -> None:
    transport.route("/tradeoffer/new/send", {"tradeofferid": "100"})
    original = TradeOffer.from_data(manager, make_offer(50))

    counter = original.counter()
    assert counter.is_our_offer
    assert counter.items_to_give == original.items_to_give
    counter.submit()

    assert transport.calls[0].data["tradeofferid_countered"] == "50"
    assert original.state == ETradeOfferState.Countered


def test_counter_requires_active_offer(manager) -> None:
    offer = TradeOffer.from_data(manager, make_offer(50, state=ETradeOfferState.Accepted))

    with pytest.raises(InvalidState):
        offer.counter()


def test_decline_received_offer(manager, transport) -> None:
    transport.route("/decline", echo_offer_id)
    offer = TradeOffer.from_data(manager, make_offer(7))

    offer.decline()

    assert offer.state == ETradeOfferState.Declined
    assert transport.calls[0].url.endswith("/tradeoffer/7/decline")

    with pytest.raises(InvalidState):
        offer.decline()


def test_cancel_sent_offer(manager, transport) -> None:
    transport.route("/cancel", echo_offer_id)
    offer = TradeOffer.from_data(manager, make_offer(8, state=ETradeOfferState.CreatedNeedsConfirmation,
                                                     is_our_offer=True))

    offer.cancel()

    assert offer.state == ETradeOfferState.Canceled
    assert transport.calls[0].url.endswith("/tradeoffer/8/cancel")


def test_decline_wrong_response(manager, transport) -> None:
    transport.route("/decline", {"tradeofferid": "999"})
    offer = TradeOffer.from_data(manager, make_offer(7))

    with pytest.raises(RemoteProtocolError, match="Wrong response"):
        offer.decline()
    assert offer.state == ETradeOfferState.Active


def test_decline_unsent_offer(manager) -> None:
    with pytest.raises(ValidationError):
        manager.create_offer(PARTNER_STEAM_ID).decline()


def test_accept_checks(manager) -> None:
    with pytest.raises(ValidationError):
        manager.create_offer(PARTNER_STEAM_ID).accept()

    ours = TradeOffer.from_data(manager, make_offer(1, is_our_offer=True))
    with pytest.raises(ValidationError):
        ours.accept()

    accepted = TradeOffer.from_data(manager, make_offer(2, state=ETradeOfferState.Accepted))
    with pytest.raises(InvalidState):
        accepted.accept()


def test_accept_refreshes_state(manager, transport) -> None:
    transport.route("/tradeoffer/5/accept", {"tradeid": "555"})
    transport.route("/GetTradeOffer/", offer_response(make_offer(5, state=ETradeOfferState.Accepted, tradeid="555")))
    offer = TradeOffer.from_data(manager, make_offer(5))

    assert offer.accept() == AcceptResult.ACCEPTED
    assert offer.state == ETradeOfferState.Accepted
    assert offer.trade_id == "555"
    assert transport.calls[0].data["tradeofferid"] == "5"


def test_accept_into_escrow(manager, transport) -> None:
    transport.route("/tradeoffer/5/accept", {"tradeid": "555"})
    transport.route("/GetTradeOffer/", offer_response(make_offer(5, state=ETradeOfferState.InEscrow)))
    offer = TradeOffer.from_data(manager, make_offer(5))

    assert offer.accept() == AcceptResult.ESCROW


def test_accept_without_state_update(manager, transport) -> None:
    transport.route("/tradeoffer/5/accept", {"tradeid": "555", "needs_mobile_confirmation": True})
    offer = TradeOffer.from_data(manager, make_offer(5))

    assert offer.accept(skip_state_update=True) == AcceptResult.PENDING
    assert offer.trade_id == "555"
    assert transport.calls_to("/GetTradeOffer/") == []


def test_accept_forbidden_expires_session(manager, transport) -> None:
    transport.route("/accept", HttpResult(403, {}, None, ""))
    offer = TradeOffer.from_data(manager, make_offer(5))

    with pytest.raises(SessionExpired):
        offer.accept()


def test_cancel_time_only_for_our_active_offers(manager) -> None:
    received = TradeOffer.from_data(manager, make_offer(1))
    with pytest.raises(ValidationError):
        received.set_data("cancelTime", 1000)

    finished = TradeOffer.from_data(manager, make_offer(2, state=ETradeOfferState.Accepted, is_our_offer=True))
    with pytest.raises(InvalidState):
        finished.set_data("cancelTime", 1000)

    active = TradeOffer.from_data(manager, make_offer(3, is_our_offer=True))
    active.set_data("cancelTime", 1000)
    assert manager.get_offer_data("3", "cancelTime") == 1000


def test_glitched_offer(manager) -> None:
    assert TradeOffer.from_data(manager, make_offer(1, items_to_give=[], items_to_receive=[])).is_glitched()
    assert not TradeOffer.from_data(manager, make_offer(2)).is_glitched()
    assert not manager.create_offer(PARTNER_STEAM_ID).is_glitched()


def test_glitched_without_names_when_language_set(make_manager) -> None:
    manager = make_manager(option_values={"language": "en"})
    offer = TradeOffer.from_data(manager, make_offer(1))

    assert offer.is_glitched()


def test_exchange_details(manager, transport) -> None:
    transport.route("/GetTradeStatus/", {"response": {"trades": [{
        "tradeid": "555",
        "status": 3,
        "time_init": 1700000000,
        "assets_received": [make_item(1, appid=440)],
        "assets_given": [make_item(2), make_item(3)],
    }]}})
    offer = TradeOffer.from_data(manager, make_offer(5, state=ETradeOfferState.Accepted, tradeid="555"))

    details = offer.get_exchange_details()

    assert details.status == ETradeStatus.Complete
    assert details.trade_init_time == 1700000000
    assert [item.assetid for item in details.received_items] == ["1"]
    assert [item.assetid for item in details.sent_items] == ["2", "3"]


def test_exchange_details_unsettled_trade(manager, transport) -> None:
    transport.route("/GetTradeStatus/", {"response": {"trades": [{"tradeid": "555", "status": 4}]}})
    offer = TradeOffer.from_data(manager, make_offer(5, state=ETradeOfferState.Accepted, tradeid="555"))

    with pytest.raises(RemoteProtocolError, match="Failed"):
        offer.get_exchange_details()

    assert offer.get_exchange_details(get_details_if_failed=True).status == ETradeStatus.Failed


def test_exchange_details_without_trade_id(manager) -> None:
    with pytest.raises(ValidationError):
        TradeOffer.from_data(manager, make_offer(5)).get_exchange_details()


class StubParser:
    def __init__(self, receipt=None):
        self.receipt = receipt or []

    def parse_receipt(self, raw):
        return self.receipt

    def parse_user_details(self, raw, my_account_id, their_account_id):
        return raw, my_account_id, their_account_id


def test_received_items_via_parser(make_manager, transport) -> None:
    manager = make_manager(parser=StubParser([make_item(9)]))
    transport.route("/receipt/", HttpResult(200, {}, None, "<html>"))
    offer = TradeOffer.from_data(manager, make_offer(5, state=ETradeOfferState.Accepted, tradeid="555"))

    items = offer.get_received_items()

    assert [item.assetid for item in items] == ["9"]
    assert transport.calls[0].url.endswith("/trade/555/receipt/")


def test_received_items_require_accepted_offer(manager) -> None:
    with pytest.raises(InvalidState):
        TradeOffer.from_data(manager, make_offer(5)).get_received_items()


def test_user_details_via_parser(make_manager, transport) -> None:
    manager = make_manager(parser=StubParser())
    transport.route("/tradeoffer/5/", HttpResult(200, {}, None, "<page>"))
    offer = TradeOffer.from_data(manager, make_offer(5))

    raw, my_account_id, their_account_id = offer.get_user_details()

    assert raw == "<page>"
    assert my_account_id == 1001
    assert their_account_id == 2002


def test_received_items_fall_back_when_descriptions_fail(make_manager, transport, caplog) -> None:
    manager = make_manager(parser=StubParser([make_item(9)]))
    transport.route("/receipt/", HttpResult(200, {}, None, "<html>"))
    transport.route("/GetAssetClassInfo/", HttpResult(502, {}, None, ""))
    offer = TradeOffer.from_data(manager, make_offer(5, state=ETradeOfferState.Accepted, tradeid="555"))

    with caplog.at_level("DEBUG", logger="tradeoffers.offer"):
        items = offer.get_received_items(get_actions=True)

    assert [item.assetid for item in items] == ["9"]
    assert "Can't describe received items of offer #5" in caplog.text


@pytest.mark.parametrize("missing", ["tradeofferid", "accountid_other"])
def test_malformed_offer_record(manager, missing) -> None:
    data = make_offer(5)
    del data[missing]

    with pytest.raises(RemoteProtocolError, match="Malformed trade offer record"):
        TradeOffer.from_data(manager, data)
