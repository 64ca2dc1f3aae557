from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from typing import Any, Dict, List, Optional
import time
import uvicorn

from admin_panel import ManagerRegistry
from tradeoffers.exceptions import (
    InvalidState,
    OfferManagerError,
    SessionExpired,
    ValidationError,
)
from tradeoffers.models import EOfferFilter

app = FastAPI(title="Steam Trade Offers API", version="1.0.0")

# Настройка CORS для веб-интерфейса
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Глобальный реестр, создается при первом запросе
registry: Optional[ManagerRegistry] = None


def get_registry() -> ManagerRegistry:
    global registry
    if registry is None:
        registry = ManagerRegistry()
    return registry


# Pydantic модели для API
class ManagerCreateRequest(BaseModel):
    name: str
    steam_id: str
    username: str
    password: str
    api_key: str
    ma_file: str
    proxy: Optional[str] = None
    options: Dict[str, Any] = {}


class OfferDataRequest(BaseModel):
    key: str
    value: Any = None


FILTERS = {
    "active": EOfferFilter.ActiveOnly,
    "historical": EOfferFilter.HistoricalOnly,
    "all": EOfferFilter.All,
}


def _offer_to_dict(offer) -> Dict:
    return {
        "id": offer.id,
        "partner": offer.partner,
        "state": offer.state.name,
        "is_our_offer": offer.is_our_offer,
        "message": offer.message,
        "created": offer.created,
        "updated": offer.updated,
        "expires": offer.expires,
        "trade_id": offer.trade_id,
        "confirmation_method": offer.confirmation_method.name if offer.confirmation_method is not None else None,
        "items_to_give": [_item_to_dict(item) for item in offer.items_to_give],
        "items_to_receive": [_item_to_dict(item) for item in offer.items_to_receive],
    }


def _item_to_dict(item) -> Dict:
    return {
        "appid": item.appid,
        "contextid": item.contextid,
        "assetid": item.assetid,
        "amount": item.amount,
        "name": getattr(item, "name", None),
        "market_hash_name": getattr(item, "market_hash_name", None),
    }


def _manager_or_404(registry: ManagerRegistry, manager_id: str):
    manager = registry.get_manager(manager_id)
    if manager is None:
        raise HTTPException(status_code=404, detail="Менеджер не найден")
    return manager


def _raise_http(error: OfferManagerError):
    if isinstance(error, InvalidState):
        raise HTTPException(status_code=409, detail=str(error))
    if isinstance(error, ValidationError):
        raise HTTPException(status_code=400, detail=str(error))
    if isinstance(error, SessionExpired):
        raise HTTPException(status_code=401, detail=str(error))
    raise HTTPException(status_code=502, detail=str(error))


# API Endpoints
@app.get("/")
async def root():
    """Корневой endpoint"""
    return {"message": "Steam Trade Offers API", "version": "1.0.0"}


@app.get("/api/managers", response_model=List[Dict])
async def get_managers(name: Optional[str] = None, steam_id: Optional[str] = None,
                       username: Optional[str] = None,
                       registry: ManagerRegistry = Depends(get_registry)):
    """Список менеджеров с возможностью фильтрации"""
    filters = {}
    if name:
        filters["name"] = name
    if steam_id:
        filters["steam_id"] = steam_id
    if username:
        filters["username"] = username

    return registry.get_manager_list(filters)


@app.post("/api/managers")
def create_manager(request: ManagerCreateRequest, registry: ManagerRegistry = Depends(get_registry)):
    """Создание менеджера для аккаунта"""
    try:
        manager_id = registry.create_manager(request.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OfferManagerError as e:
        _raise_http(e)

    return {"status": "success", "manager_id": manager_id, "message": "Менеджер создан"}


@app.post("/api/managers/{manager_id}/pause")
async def pause_manager(manager_id: str, registry: ManagerRegistry = Depends(get_registry)):
    """Остановка опроса"""
    if not registry.pause_manager(manager_id):
        raise HTTPException(status_code=404, detail="Менеджер не найден")
    return {"status": "success", "message": f"Опрос менеджера {manager_id} приостановлен"}


@app.post("/api/managers/{manager_id}/resume")
def resume_manager(manager_id: str, registry: ManagerRegistry = Depends(get_registry)):
    """Возобновление опроса"""
    if not registry.resume_manager(manager_id):
        raise HTTPException(status_code=404, detail="Менеджер не найден")
    return {"status": "success", "message": f"Опрос менеджера {manager_id} возобновлен"}


@app.delete("/api/managers/{manager_id}")
async def delete_manager(manager_id: str, registry: ManagerRegistry = Depends(get_registry)):
    """Удаление менеджера"""
    if not registry.delete_manager(manager_id):
        raise HTTPException(status_code=404, detail="Менеджер не найден")
    return {"status": "success", "message": f"Менеджер {manager_id} удален"}


@app.post("/api/managers/{manager_id}/poll")
def force_poll(manager_id: str, full: bool = False, registry: ManagerRegistry = Depends(get_registry)):
    """Внеочередной опрос"""
    _manager_or_404(registry, manager_id)
    if not registry.force_poll(manager_id, full):
        raise HTTPException(status_code=409, detail="Опрос менеджера приостановлен")
    return {"status": "success", "full_update": full}


@app.get("/api/managers/{manager_id}/poll-data")
async def get_poll_data(manager_id: str, registry: ManagerRegistry = Depends(get_registry)):
    """Текущий PollState менеджера"""
    manager = _manager_or_404(registry, manager_id)
    return manager.poll_data.to_dict()


@app.get("/api/managers/{manager_id}/offers")
def get_offers(manager_id: str, filter: str = "active", registry: ManagerRegistry = Depends(get_registry)):
    """Офферы аккаунта: active, historical или all"""
    manager = _manager_or_404(registry, manager_id)
    if filter not in FILTERS:
        raise HTTPException(status_code=400, detail=f"Неизвестный фильтр {filter}")

    try:
        sent, received = manager.get_offers(FILTERS[filter])
    except OfferManagerError as e:
        _raise_http(e)

    return {
        "sent": [_offer_to_dict(offer) for offer in sent],
        "received": [_offer_to_dict(offer) for offer in received],
    }


@app.get("/api/managers/{manager_id}/offers/{offer_id}")
def get_offer(manager_id: str, offer_id: str, registry: ManagerRegistry = Depends(get_registry)):
    manager = _manager_or_404(registry, manager_id)
    try:
        offer = manager.get_offer(offer_id)
    except OfferManagerError as e:
        _raise_http(e)
    return _offer_to_dict(offer)


@app.post("/api/managers/{manager_id}/offers/{offer_id}/{action}")
def offer_action(manager_id: str, offer_id: str, action: str,
                 registry: ManagerRegistry = Depends(get_registry)):
    """Принятие, отклонение или отмена оффера"""
    manager = _manager_or_404(registry, manager_id)
    if action not in ("accept", "decline", "cancel"):
        raise HTTPException(status_code=404, detail=f"Неизвестное действие {action}")

    try:
        offer = manager.get_offer(offer_id)
        if action == "accept":
            result = offer.accept().value
        else:
            getattr(offer, action)()
            result = offer.state.name
    except OfferManagerError as e:
        _raise_http(e)

    return {"status": "success", "offer_id": offer_id, "result": result}


@app.put("/api/managers/{manager_id}/offers/{offer_id}/data")
async def set_offer_data(manager_id: str, offer_id: str, request: OfferDataRequest,
                         registry: ManagerRegistry = Depends(get_registry)):
    """Запись пользовательских данных оффера в PollState"""
    manager = _manager_or_404(registry, manager_id)
    try:
        if request.value is None:
            manager.unset_offer_data(offer_id, request.key)
        else:
            manager.set_offer_data(offer_id, request.key, request.value)
    except OfferManagerError as e:
        _raise_http(e)
    return {"status": "success", "data": manager.get_offer_data(offer_id)}


@app.get("/api/notifications")
async def get_notifications(registry: ManagerRegistry = Depends(get_registry)):
    """Получение уведомлений админа"""
    notifications = registry.get_admin_notifications()
    return {"notifications": notifications, "total_count": len(notifications)}


@app.delete("/api/notifications")
async def clear_notifications(registry: ManagerRegistry = Depends(get_registry)):
    """Очистка уведомлений админа"""
    if not registry.clear_admin_notifications():
        raise HTTPException(status_code=500, detail="Ошибка очистки уведомлений")
    return {"status": "success", "message": "Уведомления очищены"}


@app.get("/api/stats")
async def get_system_stats(registry: ManagerRegistry = Depends(get_registry)):
    """Статистика системы"""
    managers = registry.get_manager_list()
    return {
        "total_managers": len(managers),
        "polling_managers": len([m for m in managers if m["is_polling"]]),
        "paused_managers": len([m for m in managers if not m["is_polling"]]),
        "managers_with_failures": len([m for m in managers if m["poll_failures"] > 0]),
        "known_offers": sum(m["known_offers"] for m in managers),
        "cached_descriptions": len(registry.shared_cache) if registry.shared_cache is not None else 0,
        "notifications_count": len(registry.get_admin_notifications()),
    }


@app.get("/api/health")
async def health_check():
    """Проверка здоровья API"""
    return {"status": "healthy", "timestamp": time.time()}


if __name__ == "__main__":
    print("Запуск API сервера для управления трейд-офферами Steam...")
    print("API документация доступна по адресу: http://localhost:8000/docs")

    uvicorn.run(
        "api_server:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
