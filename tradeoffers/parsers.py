from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple


@dataclass
class UserDetails:
    persona_name: Optional[str] = None
    contexts: Dict[str, Any] = field(default_factory=dict)
    escrow_days: Optional[int] = None
    probation: Optional[bool] = None
    avatar_icon: Optional[str] = None
    avatar_medium: Optional[str] = None
    avatar_full: Optional[str] = None


class PageParser(Protocol):
    """
    Разбор HTML страниц steamcommunity.com.

    Реализация внешняя: менеджер передает сырой текст страницы и получает
    структурированные данные. Ошибки разметки реализация сообщает через
    RemoteProtocolError.
    """

    def parse_receipt(self, raw: str) -> List[Dict[str, Any]]:
        ...

    def parse_user_details(self, raw: str, my_account_id: int,
                           their_account_id: int) -> Tuple[UserDetails, UserDetails]:
        ...
