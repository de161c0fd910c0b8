from fastapi import FastAPI, Request, Form, Depends
from fastapi.responses import JSONResponse, StreamingResponse
from datetime import date
from typing import Optional
import asyncio, json, time

import config
from database import SQLALCHEMY_DATABASE_URL, make_engine, make_session_factory, init_db
from docstore import DocumentStore
from errors import StoreAccessError, WriteRejected
from logging_config import setup_logging
from payroll import range_paystub, weekly_paystub
from provider import SyncProvider
from seeder import load_catalog

app = FastAPI()

class SSEHub:
    def __init__(self):
        self.clients = set()
        self.lock = asyncio.Lock()
    async def connect(self):
        q = asyncio.Queue()
        async with self.lock:
            self.clients.add(q)
        return q
    async def disconnect(self, q):
        async with self.lock:
            self.clients.discard(q)
    def publish(self, payload: dict):
        # called from snapshot callbacks on the loop thread; queues are unbounded
        for q in list(self.clients):
            q.put_nowait(payload)
hub = SSEHub()

@app.on_event("startup")
async def _startup():
    setup_logging(config.LOG_LEVEL)
    engine = make_engine(getattr(app.state, "database_url", SQLALCHEMY_DATABASE_URL))
    init_db(engine)
    store = DocumentStore(make_session_factory(engine))
    provider = SyncProvider(store, catalog=load_catalog())
    provider.errors.subscribe(lambda err: hub.publish({"event": "error", "t": time.time(), **err.to_dict()}))
    provider.aggregate.subscribe(lambda changed: hub.publish({"event": "state", "t": time.time(), "changed": sorted(changed)}))
    app.state.provider = provider
    await provider.start()

@app.on_event("shutdown")
async def _shutdown():
    provider = getattr(app.state, "provider", None)
    if provider is not None:
        await provider.stop()

def get_provider(request: Request) -> SyncProvider:
    return request.app.state.provider

def ok(message: str, **extra):
    return JSONResponse({"status": "success", "message": message, **extra})

def fail(message: str, status_code: int, **extra):
    return JSONResponse({"status": "error", "message": message, **extra}, status_code=status_code)

def rejected(err: StoreAccessError):
    return fail("Permiso denegado", 403, error=err.to_dict())

# read side

@app.get("/api/state")
async def state(p: SyncProvider = Depends(get_provider)):
    return p.state()

@app.get("/api/draft")
async def draft_state(p: SyncProvider = Depends(get_provider)):
    return p.draft.to_dict()

@app.get("/api/paystub/{employee_id}")
async def paystub(employee_id: str, draft: bool = False, p: SyncProvider = Depends(get_provider)):
    emp = p.aggregate.employees.get(employee_id)
    if not emp: return fail("Empleado no encontrado", 404)
    if draft:
        return p.draft.paystub(employee_id).to_dict()
    items = p.aggregate.team_items(emp.team_id)
    return weekly_paystub(emp, items, p.aggregate.production.values(), p.draft.today()).to_dict()

@app.get("/api/paystub/{employee_id}/range")
async def paystub_range(employee_id: str, start: date, end: date, p: SyncProvider = Depends(get_provider)):
    if employee_id not in p.aggregate.employees: return fail("Empleado no encontrado", 404)
    lines, total = range_paystub(employee_id, p.aggregate.items, p.aggregate.production.values(), start, end)
    return {"employeeId": employee_id, "total": total, "entries": [
        {"date": l.date.isoformat(), "item": l.item_name, "rate": l.rate, "quantity": l.quantity, "pay": l.pay}
        for l in lines
    ]}

# teams

@app.post("/team/add")
async def team_add(name: str = Form(...), p: SyncProvider = Depends(get_provider)):
    try:
        team_id = await p.mutations.add_team(name)
    except ValueError: return fail("Nombre vacío", 400)
    except WriteRejected as e: return rejected(e)
    return ok("Grupo agregado", id=team_id)

@app.post("/team/rename")
async def team_rename(team_id: str = Form(...), name: str = Form(...), p: SyncProvider = Depends(get_provider)):
    if team_id not in p.aggregate.teams: return fail("Grupo no encontrado", 404)
    if not name.strip(): return fail("Nombre vacío", 400)
    p.mutations.rename_team(team_id, name)
    return ok("Nombre del grupo guardado")

@app.post("/team/delete")
async def team_delete(team_id: str = Form(...), p: SyncProvider = Depends(get_provider)):
    try:
        counts = await p.mutations.delete_team(team_id)
    except WriteRejected as e: return rejected(e)
    return ok("Grupo eliminado", deleted=counts)

# employees

@app.post("/employee/add")
async def employee_add(name: str = Form(...), team_id: str = Form(...), p: SyncProvider = Depends(get_provider)):
    if team_id not in p.aggregate.teams: return fail("Grupo no encontrado", 404)
    try:
        employee_id = await p.mutations.add_employee(name, team_id)
    except ValueError: return fail("Nombre vacío", 400)
    except WriteRejected as e: return rejected(e)
    return ok("Empleado agregado", id=employee_id)

@app.post("/employee/rename")
async def employee_rename(employee_id: str = Form(...), name: str = Form(...), p: SyncProvider = Depends(get_provider)):
    team_id = p.aggregate.team_of_employee(employee_id)
    if not team_id: return fail("Empleado no encontrado", 404)
    if not name.strip(): return fail("Nombre vacío", 400)
    p.mutations.rename_employee(employee_id, team_id, name)
    return ok("Nombre actualizado")

@app.post("/employee/delete")
async def employee_delete(employee_id: str = Form(...), p: SyncProvider = Depends(get_provider)):
    team_id = p.aggregate.team_of_employee(employee_id)
    if not team_id: return fail("Empleado no encontrado", 404)
    try:
        removed = await p.mutations.delete_employee(employee_id, team_id)
    except WriteRejected as e: return rejected(e)
    return ok("Empleado eliminado", entries=removed)

# draft edits

@app.post("/item/rate")
async def item_rate(item_id: str = Form(...), rate: str = Form(""), p: SyncProvider = Depends(get_provider)):
    try:
        value = p.draft.set_rate(item_id, rate)
    except KeyError: return fail("Producto no encontrado", 404)
    return ok("Tarifa cambiada", rate=value, hasChanges=p.has_changes)

@app.post("/production/set")
async def production_set(employee_id: str = Form(...), item_id: str = Form(...), day: int = Form(...),
                         quantity: str = Form(""), p: SyncProvider = Depends(get_provider)):
    if employee_id not in p.aggregate.employees: return fail("Empleado no encontrado", 404)
    try:
        entry = p.draft.set_production_quantity(employee_id, item_id, day, quantity)
    except ValueError: return fail("Día incorrecto", 400)
    return ok("Cantidad cambiada", entry=entry.to_dict(), hasChanges=p.has_changes)

@app.post("/reset")
async def reset(team_id: Optional[str] = Form(None), p: SyncProvider = Depends(get_provider)):
    count = p.mutations.reset_production(team_id or None)
    return ok("Producción reiniciada", entries=count, hasChanges=p.has_changes)

@app.post("/save")
async def save(p: SyncProvider = Depends(get_provider)):
    try:
        changes = await p.save_all_changes()
    except WriteRejected as e: return rejected(e)
    return ok("Cambios guardados", changes=changes.summary())

@app.get("/events")
async def events(request: Request):
    q = await hub.connect()
    async def gen():
        try:
            yield f"data: {json.dumps({'event':'hello','t': time.time()})}\n\n"
            while True:
                if await request.is_disconnected(): break
                try:
                    payload = await asyncio.wait_for(q.get(), timeout=config.SSE_KEEPALIVE_SECONDS)
                    yield f"data: {json.dumps(payload, default=str)}\n\n"
                except asyncio.TimeoutError:
                    yield f": keep-alive\n\n"
        finally:
            await hub.disconnect(q)
    return StreamingResponse(gen(), media_type="text/event-stream")
