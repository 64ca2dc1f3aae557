import pytest

from tradeoffers.exceptions import DataUnavailable, RemoteProtocolError, ValidationError
from tradeoffers.fetcher import OfferFetcher, offer_malformed, offer_super_malformed
from tradeoffers.models import EOfferFilter
from tradeoffers.steam_client import SteamApi

from conftest import make_offer, offer_response, offers_response


@pytest.fixture
def fetcher(transport):
    return OfferFetcher(SteamApi(transport, "APIKEY"))


def test_malformed_checks() -> None:
    assert offer_super_malformed(make_offer(1, accountid_other=None))
    assert offer_malformed(make_offer(1, items_to_give=[], items_to_receive=[]))
    assert not offer_malformed(make_offer(1))


def test_cursor_pages_are_concatenated(transport, fetcher) -> None:
    pages = {
        0: offers_response(sent=[make_offer(1)], next_cursor=5),
        5: offers_response(received=[make_offer(2)], next_cursor=9),
        9: offers_response(sent=[make_offer(3)], received=[make_offer(4)], next_cursor=0),
    }
    transport.route("/GetTradeOffers/", lambda method, url, params, data: pages[params["cursor"]])

    sent, received = fetcher.fetch(EOfferFilter.All, 1)

    assert [o["tradeofferid"] for o in sent] == ["1", "3"]
    assert [o["tradeofferid"] for o in received] == ["2", "4"]
    assert [call.params["cursor"] for call in transport.calls] == [0, 5, 9]


def test_filter_parameters(transport, fetcher) -> None:
    transport.set_offers()

    fetcher.fetch(EOfferFilter.ActiveOnly, 12345, get_sent=False, get_received=True)

    params = transport.calls[0].params
    assert params["active_only"] == 1
    assert params["historical_only"] == 0
    assert params["get_sent_offers"] == 0
    assert params["get_received_offers"] == 1
    assert params["time_historical_cutoff"] == 12345
    assert params["key"] == "APIKEY"


def test_all_malformed_page_is_unavailable(transport, fetcher) -> None:
    transport.set_offers(sent=[make_offer(1, items_to_give=[], items_to_receive=[])])

    with pytest.raises(DataUnavailable):
        fetcher.fetch(EOfferFilter.All, 1)


def test_severely_malformed_offer_spoils_page(transport, fetcher) -> None:
    transport.set_offers(received=[make_offer(1), make_offer(2, accountid_other=0)])

    with pytest.raises(DataUnavailable):
        fetcher.fetch(EOfferFilter.All, 1)


def test_partially_malformed_page_is_accepted(transport, fetcher) -> None:
    transport.set_offers(received=[make_offer(1), make_offer(2, items_to_give=[], items_to_receive=[])])

    _, received = fetcher.fetch(EOfferFilter.All, 1)

    assert len(received) == 2


def test_unknown_filter_is_rejected(fetcher) -> None:
    with pytest.raises(ValidationError):
        fetcher.fetch(7, 1)


def test_fetch_one_without_offer(transport, fetcher) -> None:
    transport.route("/GetTradeOffer/", {"response": {}})

    with pytest.raises(RemoteProtocolError, match="No matching offer found"):
        fetcher.fetch_one("1")


def test_fetch_one_returns_descriptions(transport, fetcher) -> None:
    transport.route("/GetTradeOffer/", offer_response(make_offer(1), descriptions=[{"classid": "100"}]))

    offer, descriptions = fetcher.fetch_one("1")

    assert offer["tradeofferid"] == "1"
    assert descriptions == [{"classid": "100"}]
