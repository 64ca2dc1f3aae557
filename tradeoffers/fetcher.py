from typing import Any, Dict, List, Optional, Tuple
import logging

from .exceptions import DataUnavailable, RemoteProtocolError, ValidationError
from .models import EOfferFilter

logger = logging.getLogger(__name__)


def offer_super_malformed(offer: Dict[str, Any]) -> bool:
    return not offer.get("accountid_other")


def offer_malformed(offer: Dict[str, Any]) -> bool:
    if offer_super_malformed(offer):
        return True
    return len(offer.get("items_to_give") or []) + len(offer.get("items_to_receive") or []) == 0


class OfferFetcher:
    """Постраничная загрузка офферов через GetTradeOffers"""

    def __init__(self, api, language: Optional[str] = None):
        self.api = api
        self.language = language

    def fetch(self, offer_filter: EOfferFilter, historical_cutoff: int,
              get_sent: bool = True, get_received: bool = True) -> Tuple[List[Dict], List[Dict]]:
        if offer_filter not in (EOfferFilter.ActiveOnly, EOfferFilter.HistoricalOnly, EOfferFilter.All):
            raise ValidationError(f'Unexpected value "{offer_filter}" for offer filter')

        params = {
            "get_sent_offers": 1 if get_sent else 0,
            "get_received_offers": 1 if get_received else 0,
            "get_descriptions": 0,
            "active_only": 1 if offer_filter == EOfferFilter.ActiveOnly else 0,
            "historical_only": 1 if offer_filter == EOfferFilter.HistoricalOnly else 0,
            "time_historical_cutoff": int(historical_cutoff),
            "cursor": 0,
        }
        if self.language:
            params["language"] = self.language

        sent: List[Dict] = []
        received: List[Dict] = []

        while True:
            body = self.api.call("GET", "GetTradeOffers", 1, params)
            response = body.get("response")
            if not isinstance(response, dict):
                raise RemoteProtocolError("Malformed API response", body=body)

            page_sent = response.get("trade_offers_sent") or []
            page_received = response.get("trade_offers_received") or []
            page = page_sent + page_received
            if page and (all(offer_malformed(o) for o in page) or any(offer_super_malformed(o) for o in page)):
                raise DataUnavailable("Data temporarily unavailable")

            sent.extend(page_sent)
            received.extend(page_received)

            cursor = response.get("next_cursor") or 0
            if not isinstance(cursor, int) or isinstance(cursor, bool) or cursor == 0:
                break

            logger.debug(f"GetTradeOffers with cursor {cursor}")
            params["cursor"] = cursor

        return sent, received

    def fetch_one(self, offer_id: str) -> Tuple[Dict, List[Dict]]:
        """Один оффер и описания из того же ответа"""
        body = self.api.call("GET", "GetTradeOffer", 1, {"tradeofferid": offer_id})
        response = body.get("response")
        if not isinstance(response, dict):
            raise RemoteProtocolError("Malformed API response", body=body)

        offer = response.get("offer")
        if not offer:
            raise RemoteProtocolError("No matching offer found", body=body)

        if offer_malformed(offer):
            raise DataUnavailable("Data temporarily unavailable")

        descriptions = response.get("descriptions") or []
        if isinstance(descriptions, dict):
            descriptions = list(descriptions.values())

        return offer, descriptions
