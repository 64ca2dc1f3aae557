from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional
import logging
import re

import requests
from requests.structures import CaseInsensitiveDict
from steampy.client import SteamClient
from steampy.exceptions import InvalidCredentials

from .exceptions import (
    ProxyError,
    RemoteProtocolError,
    SessionExpired,
    SteamError,
    TransportError,
)
from .models import eresult_name

logger = logging.getLogger(__name__)

WEB_API_URL = "https://api.steampowered.com"
COMMUNITY_URL = "https://steamcommunity.com"


@dataclass
class HttpResult:
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    text: str = ""

    def __post_init__(self):
        self.headers = CaseInsensitiveDict(self.headers or {})


class SteamClientWrapper:
    """HTTP транспорт поверх сессии steampy/requests"""

    def __init__(self, api_key: str, session: Optional[requests.Session] = None,
                 proxy: str = None, timeout: float = 30):
        self.api_key = api_key
        self.session = session or requests.Session()
        self.proxy = proxy
        self.timeout = timeout
        self.client: Optional[SteamClient] = None
        self._setup_session()

    @classmethod
    def login(cls, api_key: str, username: str, password: str, ma_file_path: str,
              proxy: str = None) -> "SteamClientWrapper":
        client = SteamClient(api_key)
        try:
            client.login(username, password, ma_file_path)
        except InvalidCredentials as e:
            raise SessionExpired(f"Steam auth failed: {e}")

        wrapper = cls(api_key, session=client._session, proxy=proxy)
        wrapper.client = client
        return wrapper

    def _setup_session(self):
        if self.proxy:
            proxies = {"http": self.proxy, "https": self.proxy}
            self.session.proxies.update(proxies)
            try:
                # Проверка работоспособности прокси
                test = requests.get(WEB_API_URL, proxies=proxies, timeout=10)
                if test.status_code != 200:
                    raise ProxyError("Proxy test failed")
            except requests.RequestException as e:
                raise ProxyError(f"Proxy error: {e}")

    def request(self, method: str, url: str, params: Dict = None, data: Dict = None,
                headers: Dict = None) -> HttpResult:
        try:
            response = self.session.request(
                method, url, params=params, data=data, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise TransportError(f"Request to {url} failed: {e}")

        try:
            body = response.json()
        except ValueError:
            body = None

        return HttpResult(response.status_code, dict(response.headers), body, response.text)

    def get_session_id(self) -> str:
        if self.client is not None:
            return self.client._get_session_id()
        return self.session.cookies.get("sessionid", domain="steamcommunity.com") or ""

    def set_language(self, language_name: str):
        self.session.cookies.set("Steam_Language", language_name, domain="steamcommunity.com")


class SteamApi:
    """Вызовы Steam Web API с разбором HTTP статуса и x-eresult"""

    def __init__(self, transport, api_key: str,
                 on_session_expired: Optional[Callable[[Exception], None]] = None):
        self.transport = transport
        self.api_key = api_key
        self.on_session_expired = on_session_expired

    def call(self, http_method: str, method: str, version: int = 1, params: Dict = None,
             iface: str = "IEconService") -> Dict[str, Any]:
        if not self.api_key:
            raise TransportError("API key is not set yet")

        url = f"{WEB_API_URL}/{iface}/{method}/v{version}/"
        payload = dict(params or {})
        payload["key"] = self.api_key

        if http_method == "GET":
            result = self.transport.request("GET", url, params=payload)
        else:
            result = self.transport.request(http_method, url, data=payload)

        if result.status_code != 200:
            error = TransportError(f"HTTP error {result.status_code}", body=result.body)
            if "Access is denied" in (result.text or ""):
                error = SessionExpired(f"HTTP error {result.status_code}", body=result.body)
                self._notify_session_expired(error)
            raise error

        body = result.body
        eresult = result.headers.get("x-eresult")
        if eresult is not None:
            try:
                eresult = int(eresult)
            except ValueError:
                raise RemoteProtocolError(f"Invalid x-eresult header {eresult!r}", body=body)

        if eresult == 2 and isinstance(body, dict) and (
                len(body) > 1 or (isinstance(body.get("response"), dict) and body["response"])):
            eresult = 1

        if eresult is not None and eresult != 1:
            raise RemoteProtocolError(eresult_name(eresult), eresult=eresult, body=body)

        if not isinstance(body, dict):
            raise RemoteProtocolError("Invalid API response", body=body)

        return body

    def _notify_session_expired(self, error: Exception):
        if self.on_session_expired:
            self.on_session_expired(error)


_STR_ERROR_CAUSES = [
    (r"You cannot trade with .* because they have a trade ban\.", "TradeBan", None),
    (r"You have logged in from a new device", "NewDevice", None),
    (r"is not available to trade\. More information will be shown to", "TargetCannotTrade", None),
    (r"sent too many trade offers", "OfferLimitExceeded", 25),
    (r"unable to contact the game's item server", "ItemServerUnavailable", 20),
]


def make_steam_error(body: Dict[str, Any]) -> SteamError:
    """Ошибка из strError ответа steamcommunity.com"""
    message = body["strError"]
    eresult = None
    cause = None

    match = re.search(r"\((\d+)\)$", message)
    if match:
        eresult = int(match.group(1))

    for pattern, pattern_cause, pattern_eresult in _STR_ERROR_CAUSES:
        if re.search(pattern, message):
            cause = pattern_cause
            if pattern_eresult is not None:
                eresult = pattern_eresult

    return SteamError(message, eresult=eresult, cause=cause, body=body)
