"""
RESTful API 路由

提供裝置配對、硬體訊號、緊急操作、事件與照護者查詢等 API。
"""

import time
from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from carewatch.core.errors import PermissionDenied
from carewatch.core.models import Actor
from carewatch.engine.emergency import HARDWARE_SIGNALS, EmergencyEngine, Outcome
from carewatch.engine.state_machine import Trigger
from carewatch.store import BaseStore


router = APIRouter(prefix="/api", tags=["API"])

# 應用程式啟動時間
_start_time = time.time()

ACTION_TRIGGERS = {
    "sos": Trigger.MANUAL_SOS,
    "cancel": Trigger.CANCEL_FALL,
    "ambulance": Trigger.REQUEST_AMBULANCE,
    "resolve": Trigger.RESOLVE,
    # 倒數計時由客戶端執行，到期時由其回報
    "escalate": Trigger.COUNTDOWN_EXPIRED,
}
TRIGGER_ACTIONS = {trigger: action for action, trigger in ACTION_TRIGGERS.items()}


class PairRequest(BaseModel):
    role: Actor
    device_id: str | None = None
    user_ref: str | None = None


class VitalsUpdate(BaseModel):
    heartRate: int | None = Field(default=None, ge=0)
    spo2: int | None = Field(default=None, ge=0, le=100)
    battery: int | None = Field(default=None, ge=0, le=100)


class ActionRequest(BaseModel):
    role: Actor


class CaregiverCreate(BaseModel):
    name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    role: Actor


def get_store(request: Request) -> BaseStore:
    """取得共享儲存實例"""
    return request.app.state.store


def get_engine(request: Request) -> EmergencyEngine:
    """取得緊急狀態引擎實例"""
    return request.app.state.engine


def _require_person(role: Actor) -> None:
    if not role.is_person:
        raise HTTPException(status_code=422, detail="role must be elderly or caregiver")


def _require_wearer(role: Actor) -> None:
    if role != Actor.ELDERLY:
        raise PermissionDenied("Only the wearer may manage caregivers")


@router.get("/status")
async def get_status(request: Request) -> dict:
    """取得系統狀態

    Returns:
        系統狀態資訊
    """
    uptime = time.time() - _start_time
    return {
        "status": "running",
        "uptime_seconds": round(uptime, 2),
        "version": "0.1.0",
        "tenant": get_store(request).tenant,
    }


@router.post("/devices", status_code=201)
def pair_device(body: PairRequest, request: Request) -> dict:
    """配對裝置（不存在時建立，ID 未提供時自動產生）"""
    _require_person(body.role)
    device = get_engine(request).pair_device(body.role, device_id=body.device_id, user_ref=body.user_ref)
    return device.to_dict()


@router.get("/devices/{device_id}")
def get_device(device_id: str, request: Request) -> dict:
    """取得裝置目前狀態"""
    return get_store(request).get_device(device_id).to_dict()


@router.put("/devices/{device_id}/vitals")
def update_vitals(device_id: str, body: VitalsUpdate, request: Request) -> dict:
    """寫入生命徵象（只更新 vitals，不改變狀態）"""
    partial = body.model_dump(exclude_none=True)
    if not partial:
        raise HTTPException(status_code=422, detail="No vitals given")
    device = get_engine(request).update_vitals(device_id, partial)
    return device.to_dict()


@router.post("/devices/{device_id}/signals/{signal}")
def hardware_signal(device_id: str, signal: str, request: Request) -> dict:
    """接收硬體訊號（fall / sos）"""
    if signal not in HARDWARE_SIGNALS:
        raise HTTPException(status_code=404, detail=f"Unknown signal: {signal}")
    result = get_engine(request).hardware_signal(device_id, signal)
    return result.to_dict()


@router.post("/devices/{device_id}/actions/{action}")
def perform_action(device_id: str, action: str, body: ActionRequest, request: Request) -> dict:
    """執行配戴者或照護者的緊急操作

    Returns:
        轉換結果；權限不足回傳 403，狀態不允許回傳 409
    """
    trigger = ACTION_TRIGGERS.get(action)
    if trigger is None:
        raise HTTPException(status_code=404, detail=f"Unknown action: {action}")
    _require_person(body.role)

    engine = get_engine(request)
    if trigger == Trigger.COUNTDOWN_EXPIRED:
        # 由系統執行，事件記錄為計時到期的客戶端角色
        result = engine.escalate(device_id, role=body.role)
    else:
        result = engine.request(device_id, trigger, body.role)
    match result.outcome:
        case Outcome.PERMISSION_DENIED:
            raise HTTPException(status_code=403, detail=result.to_dict())
        case Outcome.INVALID_STATE | Outcome.CONFLICT:
            raise HTTPException(status_code=409, detail=result.to_dict())
    return result.to_dict()


@router.get("/devices/{device_id}/allowed-actions")
def allowed_actions(
    device_id: str,
    role: Annotated[Actor, Query(description="elderly 或 caregiver")],
    request: Request,
) -> dict:
    """列出該角色在目前狀態下可執行的操作"""
    triggers = get_engine(request).allowed_actions(device_id, role)
    return {"actions": [TRIGGER_ACTIONS[t] for t in triggers if t in TRIGGER_ACTIONS]}


@router.get("/devices/{device_id}/events")
def get_events(
    device_id: str,
    request: Request,
    limit: Annotated[int, Query(ge=1, le=500, description="數量上限")] = 50,
) -> dict:
    """取得裝置事件歷史（新到舊）"""
    engine = get_engine(request)
    engine.store.get_device(device_id)
    events = engine.event_logger.history(device_id, limit=limit)
    return {"events": [e.to_dict() for e in events], "count": len(events)}


@router.get("/devices/{device_id}/caregivers")
def list_caregivers(device_id: str, request: Request) -> dict:
    """取得照護者名單（依優先順序）"""
    store = get_store(request)
    store.get_device(device_id)
    caregivers = store.list_caregivers(device_id)
    return {"caregivers": [c.to_dict() for c in caregivers]}


@router.post("/devices/{device_id}/caregivers", status_code=201)
def add_caregiver(device_id: str, body: CaregiverCreate, request: Request) -> dict:
    """新增照護者（僅限配戴者）"""
    _require_wearer(body.role)
    caregiver = get_store(request).add_caregiver(device_id, body.name, body.phone)
    return caregiver.to_dict()


@router.delete("/devices/{device_id}/caregivers/{caregiver_id}")
def remove_caregiver(
    device_id: str,
    caregiver_id: str,
    role: Annotated[Actor, Query()],
    request: Request,
) -> dict:
    """移除照護者（僅限配戴者）"""
    _require_wearer(role)
    store = get_store(request)
    if caregiver_id not in {c.id for c in store.list_caregivers(device_id)}:
        raise HTTPException(status_code=404, detail="Caregiver not found")
    store.remove_caregiver(caregiver_id)
    return {"success": True, "message": f"Caregiver {caregiver_id} removed"}


__all__ = ["router"]
