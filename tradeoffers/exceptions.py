from typing import Any, Optional


class OfferManagerError(Exception):
    """Базовое исключение менеджера трейд-офферов"""

    def __init__(self, message: str = "", eresult: Optional[int] = None,
                 cause: Optional[str] = None, body: Any = None):
        super().__init__(message)
        self.eresult = eresult
        self.cause = cause
        self.body = body


class TransportError(OfferManagerError):
    """Сетевая ошибка или HTTP статус отличный от 200"""
    pass


class SessionExpired(TransportError):
    """Сессия истекла, требуется повторный логин"""
    pass


class RemoteProtocolError(OfferManagerError):
    """Ответ сервиса неожиданной формы"""
    pass


class SteamError(RemoteProtocolError):
    """Ошибка, которую вернул сам Steam (strError)"""
    pass


class DataUnavailable(OfferManagerError):
    """Данные временно недоступны, повторить в следующем цикле"""
    pass


class FetchError(OfferManagerError):
    """Не удалось получить описания предметов"""
    pass


class ValidationError(OfferManagerError):
    """Недопустимый вызов или некорректные входные данные"""
    pass


class InvalidState(ValidationError):
    """Оффер в состоянии, не допускающем операцию"""
    pass


class ProxyError(OfferManagerError):
    """Ошибка прокси"""
    pass
